"""Minting and verification of the bridge's own bearer tokens."""

from __future__ import annotations

import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt

_ALGORITHM = "HS256"


class InvalidAccessTokenError(Exception):
    """Raised when a bearer token fails signature, issuer, audience or expiry checks."""


class AccessTokenSigner:
    """Issue HS256 JWT access tokens scoped to this bridge as issuer and audience."""

    def __init__(self, *, secret: str, issuer: str, ttl_seconds: int = 3600) -> None:
        if not secret:
            raise ValueError("JWT signing secret must be provided.")
        self._secret = secret
        self._issuer = issuer
        self.ttl_seconds = ttl_seconds

    def mint(
        self,
        *,
        subject: str,
        client_id: str,
        scope: str,
        company_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> tuple[str, datetime]:
        """Return ``(token, expires_at)`` for a fresh access token."""
        issued_at = now or datetime.now(timezone.utc)
        expires_at = issued_at + timedelta(seconds=self.ttl_seconds)
        claims: Dict[str, Any] = {
            "iss": self._issuer,
            "aud": self._issuer,
            "sub": subject,
            "client_id": client_id,
            "scope": scope,
            "company_id": company_id,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
            # Two tokens minted in the same second for the same grant must still differ.
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(claims, self._secret, algorithm=_ALGORITHM), expires_at

    def decode(self, token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(
                token,
                self._secret,
                algorithms=[_ALGORITHM],
                issuer=self._issuer,
                audience=self._issuer,
                options={"require": ["exp", "iat", "sub", "client_id"]},
            )
        except jwt.PyJWTError as exc:
            raise InvalidAccessTokenError(str(exc)) from exc


def generate_refresh_token() -> str:
    """Opaque 256-bit refresh token."""
    return secrets.token_hex(32)


__all__ = ["AccessTokenSigner", "InvalidAccessTokenError", "generate_refresh_token"]
