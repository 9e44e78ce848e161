"""
Factory functions to provide shared clients and services as FastAPI dependencies.

Process-wide singletons are cached with ``lru_cache``; the request-scoped
services are assembled through ``Depends`` so a test override of any building
block reaches every service built on it.
"""

import logging
import secrets
from datetime import timedelta
from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from oauth_bridge.clients import OAuthStore, SQLiteOAuthStore, UpstreamOAuthClient
from oauth_bridge.core.config import AppSettings
from oauth_bridge.services import (
    AccessTokenSigner,
    AuthorizationOrchestrator,
    ClientRegistry,
    TokenCipherService,
    TokenExchangeService,
    UpstreamTokenService,
)

from .config import get_app_settings

logger = logging.getLogger(__name__)


@lru_cache()
def _jwt_secret() -> str:
    secret = get_app_settings().security.jwt_secret
    if secret:
        return secret
    logger.warning(
        "JWT_SECRET is not set; using a random per-process secret. "
        "Issued tokens will not survive a restart."
    )
    return secrets.token_hex(32)


@lru_cache()
def get_token_cipher_service() -> TokenCipherService:
    """Provide symmetric encryption helper for token storage."""
    settings = get_app_settings()
    secret = settings.security.token_encryption_secret or _jwt_secret()
    return TokenCipherService(secret=secret)


@lru_cache()
def get_oauth_store() -> OAuthStore:
    """Provide the shared SQLite store for clients, sessions and tokens."""
    settings = get_app_settings()
    return SQLiteOAuthStore(settings.database_path, cipher=get_token_cipher_service())


@lru_cache()
def get_upstream_oauth_client() -> UpstreamOAuthClient:
    """Create a singleton upstream OAuth client."""
    settings = get_app_settings()
    return UpstreamOAuthClient(settings.upstream, callback_url=settings.callback_url)


@lru_cache()
def get_access_token_signer() -> AccessTokenSigner:
    """Provide the signer for locally issued access tokens."""
    settings = get_app_settings()
    return AccessTokenSigner(
        secret=_jwt_secret(),
        issuer=settings.base_url,
        ttl_seconds=settings.oauth.access_token_ttl_seconds,
    )


def get_client_registry(
    store: Annotated[OAuthStore, Depends(get_oauth_store)],
    settings: Annotated[AppSettings, Depends(get_app_settings)],
) -> ClientRegistry:
    """Build the dynamic client registry."""
    return ClientRegistry(store, default_scope=settings.oauth.default_scope)


def get_authorization_orchestrator(
    store: Annotated[OAuthStore, Depends(get_oauth_store)],
    registry: Annotated[ClientRegistry, Depends(get_client_registry)],
    upstream: Annotated[UpstreamOAuthClient, Depends(get_upstream_oauth_client)],
    settings: Annotated[AppSettings, Depends(get_app_settings)],
) -> AuthorizationOrchestrator:
    """Build the authorize/callback orchestrator."""
    return AuthorizationOrchestrator(
        store,
        registry,
        upstream,
        code_ttl_seconds=settings.oauth.auth_code_ttl_seconds,
    )


def get_token_exchange_service(
    store: Annotated[OAuthStore, Depends(get_oauth_store)],
    registry: Annotated[ClientRegistry, Depends(get_client_registry)],
    upstream: Annotated[UpstreamOAuthClient, Depends(get_upstream_oauth_client)],
    signer: Annotated[AccessTokenSigner, Depends(get_access_token_signer)],
    settings: Annotated[AppSettings, Depends(get_app_settings)],
) -> TokenExchangeService:
    """Build the token endpoint service."""
    return TokenExchangeService(
        store,
        registry,
        upstream,
        signer,
        default_scope=settings.oauth.default_scope,
    )


def get_upstream_token_service(
    store: Annotated[OAuthStore, Depends(get_oauth_store)],
    upstream: Annotated[UpstreamOAuthClient, Depends(get_upstream_oauth_client)],
    settings: Annotated[AppSettings, Depends(get_app_settings)],
) -> UpstreamTokenService:
    """Build the freshness guard for upstream credentials."""
    return UpstreamTokenService(
        store,
        upstream,
        refresh_margin=timedelta(seconds=settings.oauth.upstream_refresh_margin_seconds),
    )


__all__ = [
    "get_access_token_signer",
    "get_authorization_orchestrator",
    "get_client_registry",
    "get_oauth_store",
    "get_token_cipher_service",
    "get_token_exchange_service",
    "get_upstream_oauth_client",
    "get_upstream_token_service",
]
