"""
Dynamic Client Registration (RFC 7591) and client lookups.
"""

from __future__ import annotations

import hmac
import logging
import secrets
import uuid
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlsplit

from oauth_bridge.clients.base import OAuthStore
from oauth_bridge.core.errors import OAuthError, OAuthErrorCode
from oauth_bridge.models.oauth import GrantType, RegisteredClient
from oauth_bridge.schemas import ClientRegistrationRequest

logger = logging.getLogger(__name__)

SUPPORTED_GRANT_TYPES = frozenset(grant.value for grant in GrantType)
SUPPORTED_RESPONSE_TYPES = frozenset({"code"})
_LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1", "::1"})
_CLIENT_ID_PREFIX = "mcp_"


def _is_loopback(hostname: str) -> bool:
    return hostname in _LOOPBACK_HOSTS or hostname.endswith(".localhost")


class ClientRegistry:
    """Register OAuth clients and resolve them by ``client_id``."""

    def __init__(self, store: OAuthStore, *, default_scope: str = "read write") -> None:
        self._store = store
        self._default_scope = default_scope

    def register(self, request: ClientRegistrationRequest) -> RegisteredClient:
        """Validate client metadata and persist a freshly credentialed client."""
        if not request.redirect_uris:
            raise OAuthError(
                OAuthErrorCode.INVALID_CLIENT_METADATA,
                "redirect_uris is required and must be a non-empty array",
            )
        for uri in request.redirect_uris:
            self._validate_redirect_uri(uri)

        grant_types = request.grant_types or [
            GrantType.AUTHORIZATION_CODE.value,
            GrantType.REFRESH_TOKEN.value,
        ]
        unsupported = [grant for grant in grant_types if grant not in SUPPORTED_GRANT_TYPES]
        if unsupported:
            raise OAuthError(
                OAuthErrorCode.INVALID_CLIENT_METADATA,
                f"Unsupported grant_type: {unsupported[0]}",
            )

        response_types = request.response_types or ["code"]
        unsupported = [
            kind for kind in response_types if kind not in SUPPORTED_RESPONSE_TYPES
        ]
        if unsupported:
            raise OAuthError(
                OAuthErrorCode.INVALID_CLIENT_METADATA,
                f"Unsupported response_type: {unsupported[0]}",
            )

        client = RegisteredClient(
            id=str(uuid.uuid4()),
            client_id=f"{_CLIENT_ID_PREFIX}{secrets.token_hex(16)}",
            client_secret=secrets.token_hex(32),
            client_name=request.client_name,
            redirect_uris=list(dict.fromkeys(request.redirect_uris)),
            grant_types=list(dict.fromkeys(grant_types)),
            response_types=list(dict.fromkeys(response_types)),
            scope=request.scope or self._default_scope,
            created_at=datetime.now(timezone.utc),
        )
        self._store.insert_client(client)
        logger.info(
            "Registered client %s (%s)", client.client_id, client.client_name or "unnamed"
        )
        return client

    @staticmethod
    def _validate_redirect_uri(uri: str) -> None:
        malformed = OAuthError(
            OAuthErrorCode.INVALID_CLIENT_METADATA,
            f"Invalid redirect URI format: {uri}",
        )
        try:
            parts = urlsplit(uri)
            hostname = parts.hostname
        except ValueError as exc:
            raise malformed from exc
        if not parts.scheme or not hostname:
            raise malformed
        if parts.fragment:
            raise OAuthError(
                OAuthErrorCode.INVALID_REDIRECT_URI,
                f"Redirect URI must not contain a fragment: {uri}",
            )
        if parts.scheme != "https" and not (
            parts.scheme == "http" and _is_loopback(hostname)
        ):
            raise OAuthError(
                OAuthErrorCode.INVALID_REDIRECT_URI,
                f"Redirect URI must use HTTPS: {uri}",
            )

    def lookup(self, client_id: str) -> Optional[RegisteredClient]:
        return self._store.find_client(client_id)

    @staticmethod
    def is_redirect_uri_registered(client: RegisteredClient, uri: str) -> bool:
        """Exact string match only; no prefix or wildcard matching."""
        return uri in client.redirect_uris

    def authenticate(self, client_id: str, client_secret: str) -> RegisteredClient:
        """Resolve a confidential client, raising ``invalid_client`` on any mismatch."""
        client = self.lookup(client_id)
        if client is None or not hmac.compare_digest(
            client.client_secret.encode("utf-8"), client_secret.encode("utf-8")
        ):
            raise OAuthError(
                OAuthErrorCode.INVALID_CLIENT,
                "Client authentication failed",
                status_code=401,
                headers={"WWW-Authenticate": 'Basic realm="oauth"'},
            )
        return client


__all__ = [
    "ClientRegistry",
    "SUPPORTED_GRANT_TYPES",
    "SUPPORTED_RESPONSE_TYPES",
]
