"""Service layer exports."""

from .access_tokens import AccessTokenSigner, InvalidAccessTokenError
from .authorization import AuthorizationOrchestrator
from .client_registry import ClientRegistry
from .token_cipher import TokenCipherService
from .token_exchange import TokenExchangeService
from .upstream_tokens import UpstreamTokenService

__all__ = [
    "AccessTokenSigner",
    "AuthorizationOrchestrator",
    "ClientRegistry",
    "InvalidAccessTokenError",
    "TokenCipherService",
    "TokenExchangeService",
    "UpstreamTokenService",
]
