"""Public schema exports."""

from .oauth import (
    AuthorizationRequest,
    ClientRegistrationRequest,
    ClientRegistrationResponse,
    OAuthErrorResponse,
    TokenRequest,
    TokenResponse,
    UpstreamCallback,
)

__all__ = [
    "AuthorizationRequest",
    "ClientRegistrationRequest",
    "ClientRegistrationResponse",
    "OAuthErrorResponse",
    "TokenRequest",
    "TokenResponse",
    "UpstreamCallback",
]
