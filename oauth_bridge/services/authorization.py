"""
Authorization endpoint orchestration.

Bridges the client's PKCE-protected authorization request to the upstream
provider's plain authorization-code flow. The session's own code travels to
the upstream as ``state`` and comes back on the callback, where it is handed to
the client as the authorization code; the client's PKCE material never leaves
this service.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from oauth_bridge.clients.base import OAuthStore
from oauth_bridge.clients.upstream_auth import UpstreamOAuthClient
from oauth_bridge.core.errors import OAuthError, OAuthErrorCode
from oauth_bridge.models.oauth import (
    AuthorizationSession,
    CodeChallengeMethod,
    SessionStatus,
)
from oauth_bridge.schemas import AuthorizationRequest, UpstreamCallback
from oauth_bridge.services import pkce
from oauth_bridge.services.client_registry import ClientRegistry

logger = logging.getLogger(__name__)


def build_redirect_url(base_uri: str, params: Dict[str, Optional[str]]) -> str:
    """Append query parameters to ``base_uri``, keeping any it already carries."""
    parts = urlsplit(base_uri)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend((key, value) for key, value in params.items() if value is not None)
    return urlunsplit(parts._replace(query=urlencode(query)))


def generate_session_code() -> str:
    """Opaque authorization code with 256 bits of entropy."""
    return secrets.token_urlsafe(32)


class AuthorizationOrchestrator:
    """Run the authorize and upstream-callback legs of the bridged flow."""

    def __init__(
        self,
        store: OAuthStore,
        registry: ClientRegistry,
        upstream_client: UpstreamOAuthClient,
        *,
        code_ttl_seconds: int = 600,
    ) -> None:
        self._store = store
        self._registry = registry
        self._upstream = upstream_client
        self._code_ttl = timedelta(seconds=code_ttl_seconds)

    def authorize(self, request: AuthorizationRequest) -> str:
        """Validate an authorization request and return the upstream consent URL.

        Every failure here is raised as an ``OAuthError`` for a direct JSON
        answer: the redirect URI is not trusted until the client and its
        registration have both been checked.
        """
        if not request.response_type:
            raise OAuthError(OAuthErrorCode.INVALID_REQUEST, "response_type is required")
        if request.response_type != "code":
            raise OAuthError(
                OAuthErrorCode.UNSUPPORTED_RESPONSE_TYPE,
                "Only code response_type is supported",
            )
        if not request.client_id:
            raise OAuthError(OAuthErrorCode.INVALID_REQUEST, "client_id is required")
        if not request.redirect_uri:
            raise OAuthError(OAuthErrorCode.INVALID_REQUEST, "redirect_uri is required")
        if not request.code_challenge:
            raise OAuthError(
                OAuthErrorCode.INVALID_REQUEST, "code_challenge is required (PKCE)"
            )

        method = request.code_challenge_method or CodeChallengeMethod.S256.value
        if method != CodeChallengeMethod.S256.value:
            raise OAuthError(
                OAuthErrorCode.INVALID_REQUEST,
                "Only S256 code_challenge_method is supported",
            )
        if not pkce.is_valid_challenge_format(request.code_challenge, method):
            raise OAuthError(OAuthErrorCode.INVALID_REQUEST, "Invalid code_challenge format")

        client = self._registry.lookup(request.client_id)
        if client is None:
            raise OAuthError(OAuthErrorCode.INVALID_CLIENT, "Unknown client_id")
        if not self._registry.is_redirect_uri_registered(client, request.redirect_uri):
            raise OAuthError(
                OAuthErrorCode.INVALID_REQUEST,
                "redirect_uri does not match registered URIs",
            )

        now = datetime.now(timezone.utc)
        session = AuthorizationSession(
            code=generate_session_code(),
            client_id=client.client_id,
            redirect_uri=request.redirect_uri,
            scope=request.scope,
            code_challenge=request.code_challenge,
            code_challenge_method=CodeChallengeMethod(method),
            state=request.state,
            status=SessionStatus.AWAITING_UPSTREAM,
            created_at=now,
            expires_at=now + self._code_ttl,
        )
        self._store.insert_session(session)
        logger.info("Redirecting client %s to upstream authorization", client.client_id)
        return self._upstream.build_authorization_url(state=session.code)

    def handle_callback(self, callback: UpstreamCallback) -> str:
        """Correlate the upstream callback and return the client redirect URL.

        Raises ``OAuthError`` only while no session, and therefore no verified
        redirect URI, is known. From then on errors travel on the redirect.
        """
        if not callback.state:
            raise OAuthError(OAuthErrorCode.INVALID_REQUEST, "Missing state parameter")

        session = self._store.find_session(callback.state)
        if session is None:
            raise OAuthError(OAuthErrorCode.INVALID_REQUEST, "Invalid or expired state")

        def redirect_error(error: OAuthErrorCode, description: str) -> str:
            return build_redirect_url(
                session.redirect_uri,
                {
                    "error": error.value,
                    "error_description": description,
                    "state": session.state,
                },
            )

        if callback.error:
            logger.warning(
                "Upstream authorization failed for client %s: %s - %s",
                session.client_id,
                callback.error,
                callback.error_description,
            )
            self._store.deny_session(session.code)
            return redirect_error(
                OAuthErrorCode.ACCESS_DENIED,
                "Authorization was denied by the upstream provider",
            )

        now = datetime.now(timezone.utc)
        status = session.effective_status(now)
        if status is SessionStatus.EXPIRED:
            return redirect_error(
                OAuthErrorCode.INVALID_REQUEST, "Authorization request has expired"
            )
        if status is not SessionStatus.AWAITING_UPSTREAM:
            return redirect_error(
                OAuthErrorCode.INVALID_REQUEST,
                "Authorization request was already completed",
            )

        if not callback.code:
            logger.error("Upstream callback for client %s carried no code", session.client_id)
            return redirect_error(
                OAuthErrorCode.SERVER_ERROR,
                "No authorization code received from the upstream provider",
            )

        if not self._store.grant_session(
            session.code, upstream_code=callback.code, now=now
        ):
            return redirect_error(
                OAuthErrorCode.INVALID_REQUEST,
                "Authorization request was already completed",
            )

        logger.info("Upstream granted authorization for client %s", session.client_id)
        return build_redirect_url(
            session.redirect_uri, {"code": session.code, "state": session.state}
        )


__all__ = [
    "AuthorizationOrchestrator",
    "build_redirect_url",
    "generate_session_code",
]
