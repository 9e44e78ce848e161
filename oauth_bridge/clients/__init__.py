"""Expose constructed client wrappers."""

from .base import OAuthStore
from .sqlite_store import SQLiteOAuthStore
from .upstream_api import UpstreamApiClient
from .upstream_auth import UpstreamOAuthClient

__all__ = [
    "OAuthStore",
    "SQLiteOAuthStore",
    "UpstreamApiClient",
    "UpstreamOAuthClient",
]
