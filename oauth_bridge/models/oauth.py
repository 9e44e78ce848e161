"""
Domain models for the bridged OAuth flow.

All three records live in the same durable store: registered clients, the
in-flight authorization sessions linking our code to the upstream code, and
issued tokens binding a local token pair to one upstream token pair.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CodeChallengeMethod(str, Enum):
    S256 = "S256"
    PLAIN = "plain"


class GrantType(str, Enum):
    AUTHORIZATION_CODE = "authorization_code"
    REFRESH_TOKEN = "refresh_token"


class SessionStatus(str, Enum):
    """Lifecycle of an authorization session."""

    CREATED = "created"
    AWAITING_UPSTREAM = "awaiting_upstream"
    UPSTREAM_GRANTED = "upstream_granted"
    EXCHANGED = "exchanged"
    DENIED = "denied"
    EXPIRED = "expired"


class RegisteredClient(BaseModel):
    """A dynamically registered OAuth client."""

    model_config = {"frozen": True}

    id: str
    client_id: str
    client_secret: str
    client_name: Optional[str] = None
    redirect_uris: List[str]
    grant_types: List[GrantType]
    response_types: List[str] = Field(default_factory=lambda: ["code"])
    scope: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class AuthorizationSession(BaseModel):
    """An authorization request waiting for, or holding, an upstream grant."""

    code: str
    client_id: str
    redirect_uri: str
    scope: Optional[str] = None
    code_challenge: str
    code_challenge_method: CodeChallengeMethod = CodeChallengeMethod.S256
    state: Optional[str] = None
    upstream_code: Optional[str] = None
    user_id: Optional[str] = None
    company_id: Optional[int] = None
    status: SessionStatus = SessionStatus.CREATED
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime
    used: bool = False

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def is_redeemable(self, now: Optional[datetime] = None) -> bool:
        return not self.used and not self.is_expired(now)

    def effective_status(self, now: Optional[datetime] = None) -> SessionStatus:
        """Stored status, with EXPIRED substituted once the TTL has elapsed."""
        if self.status in (SessionStatus.EXCHANGED, SessionStatus.DENIED):
            return self.status
        if self.is_expired(now):
            return SessionStatus.EXPIRED
        return self.status


class IssuedToken(BaseModel):
    """A local access/refresh token pair bound to one upstream token pair."""

    id: str
    client_id: str
    user_id: Optional[str] = None
    company_id: Optional[int] = None
    access_token: str
    refresh_token: str
    upstream_access_token: str
    upstream_refresh_token: Optional[str] = None
    upstream_expires_at: Optional[datetime] = None
    scope: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime
    revoked: bool = False
    upstream_version: int = Field(
        0, description="Bumped on every in-place upstream credential refresh."
    )

    def is_active(self, now: Optional[datetime] = None) -> bool:
        return not self.revoked and (now or utcnow()) < self.expires_at


class UpstreamTokenPair(BaseModel):
    """Token material returned by the upstream provider's token endpoint."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: datetime
    scope: Optional[str] = None
    user_id: Optional[str] = None
    company_id: Optional[int] = None


__all__ = [
    "AuthorizationSession",
    "CodeChallengeMethod",
    "GrantType",
    "IssuedToken",
    "RegisteredClient",
    "SessionStatus",
    "UpstreamTokenPair",
    "utcnow",
]
