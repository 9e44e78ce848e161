"""Expose dependency helpers for FastAPI routers."""

from .auth import get_upstream_api_client, require_issued_token
from .clients import (
    get_access_token_signer,
    get_authorization_orchestrator,
    get_client_registry,
    get_oauth_store,
    get_token_cipher_service,
    get_token_exchange_service,
    get_upstream_oauth_client,
    get_upstream_token_service,
)
from .config import SettingsDependency, get_app_settings

__all__ = [
    "SettingsDependency",
    "get_access_token_signer",
    "get_app_settings",
    "get_authorization_orchestrator",
    "get_client_registry",
    "get_oauth_store",
    "get_token_cipher_service",
    "get_token_exchange_service",
    "get_upstream_api_client",
    "get_upstream_oauth_client",
    "get_upstream_token_service",
    "require_issued_token",
]
