"""Request and response payloads of the OAuth endpoints."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ClientRegistrationRequest(BaseModel):
    """RFC 7591 client metadata sent to the registration endpoint."""

    model_config = ConfigDict(extra="ignore")

    redirect_uris: List[str] = Field(default_factory=list)
    client_name: Optional[str] = None
    grant_types: Optional[List[str]] = None
    response_types: Optional[List[str]] = None
    scope: Optional[str] = None
    token_endpoint_auth_method: Optional[str] = None


class ClientRegistrationResponse(BaseModel):
    client_id: str
    client_secret: str
    client_id_issued_at: int
    client_secret_expires_at: int = 0
    client_name: Optional[str] = None
    redirect_uris: List[str]
    grant_types: List[str]
    response_types: List[str]
    scope: Optional[str] = None
    token_endpoint_auth_method: str = "client_secret_post"


class AuthorizationRequest(BaseModel):
    """Query parameters of the authorization endpoint, unvalidated."""

    model_config = ConfigDict(extra="ignore")

    response_type: Optional[str] = None
    client_id: Optional[str] = None
    redirect_uri: Optional[str] = None
    scope: Optional[str] = None
    state: Optional[str] = None
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None
    resource: Optional[str] = None


class UpstreamCallback(BaseModel):
    """Query parameters the upstream provider sends back to the callback."""

    model_config = ConfigDict(extra="ignore")

    code: Optional[str] = None
    state: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None


class TokenRequest(BaseModel):
    """Token endpoint form, with client credentials merged from Basic auth."""

    model_config = ConfigDict(extra="ignore")

    grant_type: Optional[str] = None
    code: Optional[str] = None
    redirect_uri: Optional[str] = None
    code_verifier: Optional[str] = None
    refresh_token: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    resource: Optional[str] = None


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    refresh_token: Optional[str] = None
    scope: Optional[str] = None


class OAuthErrorResponse(BaseModel):
    error: str
    error_description: Optional[str] = None


__all__ = [
    "AuthorizationRequest",
    "ClientRegistrationRequest",
    "ClientRegistrationResponse",
    "OAuthErrorResponse",
    "TokenRequest",
    "TokenResponse",
    "UpstreamCallback",
]
