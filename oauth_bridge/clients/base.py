"""Storage capability set required by the OAuth services."""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol, Tuple

from oauth_bridge.models.oauth import (
    AuthorizationSession,
    IssuedToken,
    RegisteredClient,
    UpstreamTokenPair,
)


class OAuthStore(Protocol):
    """Durable store for clients, authorization sessions and issued tokens.

    Every method returning ``bool`` is a single conditional update; ``True``
    means this caller performed the transition.
    """

    def insert_client(self, client: RegisteredClient) -> None: ...

    def find_client(self, client_id: str) -> Optional[RegisteredClient]: ...

    def insert_session(self, session: AuthorizationSession) -> None: ...

    def find_session(self, code: str) -> Optional[AuthorizationSession]: ...

    def grant_session(
        self,
        code: str,
        *,
        upstream_code: str,
        now: datetime,
        user_id: Optional[str] = None,
        company_id: Optional[int] = None,
    ) -> bool: ...

    def deny_session(self, code: str) -> bool: ...

    def mark_session_used(self, code: str, *, now: datetime) -> bool: ...

    def insert_token(self, token: IssuedToken) -> None: ...

    def find_token(
        self, token_id: str, *, include_revoked: bool = False
    ) -> Optional[IssuedToken]: ...

    def find_token_by_access(self, access_token: str) -> Optional[IssuedToken]: ...

    def find_token_by_refresh(self, refresh_token: str) -> Optional[IssuedToken]: ...

    def revoke_token(self, token_id: str, *, now: datetime) -> bool: ...

    def update_upstream_tokens(
        self, token_id: str, *, expected_version: int, pair: UpstreamTokenPair
    ) -> bool: ...

    def delete_expired(
        self,
        *,
        now: datetime,
        session_retention_seconds: int,
        revoked_token_retention_seconds: int,
    ) -> Tuple[int, int]: ...


__all__ = ["OAuthStore"]
