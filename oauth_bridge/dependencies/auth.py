"""
Bearer authentication for routes that act on the upstream API for a caller.
"""

import logging
from typing import Annotated, Optional

from fastapi import Depends, Header

from oauth_bridge.clients import OAuthStore, UpstreamApiClient
from oauth_bridge.core.config import AppSettings
from oauth_bridge.core.errors import OAuthError, OAuthErrorCode
from oauth_bridge.models.oauth import IssuedToken
from oauth_bridge.services import (
    AccessTokenSigner,
    InvalidAccessTokenError,
    UpstreamTokenService,
)

from .clients import get_access_token_signer, get_oauth_store, get_upstream_token_service
from .config import get_app_settings

logger = logging.getLogger(__name__)


def _unauthorized(description: str) -> OAuthError:
    return OAuthError(
        OAuthErrorCode.INVALID_TOKEN,
        description,
        status_code=401,
        headers={
            "WWW-Authenticate": (
                f'Bearer realm="oauth", error="invalid_token", '
                f'error_description="{description}"'
            )
        },
    )


def require_issued_token(
    store: Annotated[OAuthStore, Depends(get_oauth_store)],
    signer: Annotated[AccessTokenSigner, Depends(get_access_token_signer)],
    authorization: Annotated[Optional[str], Header()] = None,
) -> IssuedToken:
    """Resolve the live ``IssuedToken`` behind a bearer access token."""
    if not authorization:
        raise _unauthorized("Missing bearer token")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() != "bearer" or not credentials.strip():
        raise _unauthorized("Malformed Authorization header")
    access_token = credentials.strip()

    try:
        signer.decode(access_token)
    except InvalidAccessTokenError as exc:
        logger.debug("Rejected bearer token: %s", exc)
        raise _unauthorized("Access token is invalid or expired") from exc

    token = store.find_token_by_access(access_token)
    if token is None or not token.is_active():
        raise _unauthorized("Access token has been revoked")
    return token


def get_upstream_api_client(
    token: Annotated[IssuedToken, Depends(require_issued_token)],
    token_service: Annotated[UpstreamTokenService, Depends(get_upstream_token_service)],
    settings: Annotated[AppSettings, Depends(get_app_settings)],
) -> UpstreamApiClient:
    """Provide an upstream API client bound to the caller's issued token."""
    return UpstreamApiClient(
        token,
        token_service=token_service,
        api_base_url=str(settings.upstream.api_base_url),
        timeout_seconds=settings.upstream.timeout_seconds,
    )


__all__ = ["get_upstream_api_client", "require_issued_token"]
