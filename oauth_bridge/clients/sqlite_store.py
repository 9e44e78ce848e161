"""SQLite-backed persistence for clients, authorization sessions and tokens."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional, Tuple

from oauth_bridge.models.oauth import (
    AuthorizationSession,
    IssuedToken,
    RegisteredClient,
    SessionStatus,
    UpstreamTokenPair,
)
from oauth_bridge.services.token_cipher import TokenCipherService

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS oauth_clients (
        id TEXT PRIMARY KEY,
        client_id TEXT UNIQUE NOT NULL,
        client_secret TEXT NOT NULL,
        client_name TEXT,
        redirect_uris TEXT NOT NULL,
        grant_types TEXT NOT NULL,
        response_types TEXT NOT NULL,
        scope TEXT,
        created_at INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS auth_sessions (
        code TEXT PRIMARY KEY,
        client_id TEXT NOT NULL,
        redirect_uri TEXT NOT NULL,
        scope TEXT,
        code_challenge TEXT NOT NULL,
        code_challenge_method TEXT NOT NULL DEFAULT 'S256',
        state TEXT,
        upstream_code TEXT,
        user_id TEXT,
        company_id INTEGER,
        status TEXT NOT NULL,
        created_at INTEGER NOT NULL,
        expires_at INTEGER NOT NULL,
        used INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS issued_tokens (
        id TEXT PRIMARY KEY,
        client_id TEXT NOT NULL,
        user_id TEXT,
        company_id INTEGER,
        access_token TEXT UNIQUE NOT NULL,
        refresh_token TEXT UNIQUE NOT NULL,
        upstream_access_token TEXT NOT NULL,
        upstream_refresh_token TEXT,
        upstream_expires_at INTEGER,
        upstream_version INTEGER NOT NULL DEFAULT 0,
        scope TEXT,
        created_at INTEGER NOT NULL,
        expires_at INTEGER NOT NULL,
        revoked INTEGER NOT NULL DEFAULT 0,
        revoked_at INTEGER
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_auth_sessions_client_id ON auth_sessions(client_id)",
    "CREATE INDEX IF NOT EXISTS idx_auth_sessions_expires_at ON auth_sessions(expires_at)",
    "CREATE INDEX IF NOT EXISTS idx_issued_tokens_client_id ON issued_tokens(client_id)",
    "CREATE INDEX IF NOT EXISTS idx_issued_tokens_revoked_at ON issued_tokens(revoked_at)",
)


def _to_epoch(value: Optional[datetime]) -> Optional[int]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def _from_epoch(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


class SQLiteOAuthStore:
    """OAuth store keeping each entity in its own table.

    Connections are opened per operation; lifecycle transitions are single
    conditional UPDATE statements so concurrent requests cannot both win.
    """

    def __init__(self, db_path: str, *, cipher: TokenCipherService) -> None:
        self._db_path = Path(db_path)
        self._cipher = cipher
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path, timeout=10.0, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            for statement in _SCHEMA:
                conn.execute(statement)

    # Clients -----------------------------------------------------------------

    def insert_client(self, client: RegisteredClient) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO oauth_clients (
                    id, client_id, client_secret, client_name, redirect_uris,
                    grant_types, response_types, scope, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    client.id,
                    client.client_id,
                    client.client_secret,
                    client.client_name,
                    json.dumps(client.redirect_uris),
                    json.dumps([grant.value for grant in client.grant_types]),
                    json.dumps(client.response_types),
                    client.scope,
                    _to_epoch(client.created_at),
                ),
            )

    def find_client(self, client_id: str) -> Optional[RegisteredClient]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM oauth_clients WHERE client_id = ?", (client_id,)
            ).fetchone()
        if not row:
            return None
        return RegisteredClient(
            id=row["id"],
            client_id=row["client_id"],
            client_secret=row["client_secret"],
            client_name=row["client_name"],
            redirect_uris=json.loads(row["redirect_uris"]),
            grant_types=json.loads(row["grant_types"]),
            response_types=json.loads(row["response_types"]),
            scope=row["scope"],
            created_at=_from_epoch(row["created_at"]),
        )

    # Authorization sessions ----------------------------------------------------

    def insert_session(self, session: AuthorizationSession) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO auth_sessions (
                    code, client_id, redirect_uri, scope, code_challenge,
                    code_challenge_method, state, upstream_code, user_id,
                    company_id, status, created_at, expires_at, used
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    session.code,
                    session.client_id,
                    session.redirect_uri,
                    session.scope,
                    session.code_challenge,
                    session.code_challenge_method.value,
                    session.state,
                    session.upstream_code,
                    session.user_id,
                    session.company_id,
                    session.status.value,
                    _to_epoch(session.created_at),
                    _to_epoch(session.expires_at),
                    int(session.used),
                ),
            )

    def find_session(self, code: str) -> Optional[AuthorizationSession]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM auth_sessions WHERE code = ?", (code,)
            ).fetchone()
        if not row:
            return None
        return AuthorizationSession(
            code=row["code"],
            client_id=row["client_id"],
            redirect_uri=row["redirect_uri"],
            scope=row["scope"],
            code_challenge=row["code_challenge"],
            code_challenge_method=row["code_challenge_method"],
            state=row["state"],
            upstream_code=row["upstream_code"],
            user_id=row["user_id"],
            company_id=row["company_id"],
            status=row["status"],
            created_at=_from_epoch(row["created_at"]),
            expires_at=_from_epoch(row["expires_at"]),
            used=bool(row["used"]),
        )

    def grant_session(
        self,
        code: str,
        *,
        upstream_code: str,
        now: datetime,
        user_id: Optional[str] = None,
        company_id: Optional[int] = None,
    ) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE auth_sessions
                SET upstream_code = ?, user_id = ?, company_id = ?, status = ?
                WHERE code = ? AND status = ? AND used = 0 AND expires_at > ?
                """,
                (
                    upstream_code,
                    user_id,
                    company_id,
                    SessionStatus.UPSTREAM_GRANTED.value,
                    code,
                    SessionStatus.AWAITING_UPSTREAM.value,
                    _to_epoch(now),
                ),
            )
        return cursor.rowcount == 1

    def deny_session(self, code: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE auth_sessions SET status = ? WHERE code = ? AND status = ?",
                (
                    SessionStatus.DENIED.value,
                    code,
                    SessionStatus.AWAITING_UPSTREAM.value,
                ),
            )
        return cursor.rowcount == 1

    def mark_session_used(self, code: str, *, now: datetime) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE auth_sessions SET used = 1, status = ?
                WHERE code = ? AND used = 0 AND status = ? AND expires_at > ?
                """,
                (
                    SessionStatus.EXCHANGED.value,
                    code,
                    SessionStatus.UPSTREAM_GRANTED.value,
                    _to_epoch(now),
                ),
            )
        return cursor.rowcount == 1

    # Issued tokens -------------------------------------------------------------

    def insert_token(self, token: IssuedToken) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO issued_tokens (
                    id, client_id, user_id, company_id, access_token,
                    refresh_token, upstream_access_token, upstream_refresh_token,
                    upstream_expires_at, upstream_version, scope, created_at,
                    expires_at, revoked
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    token.id,
                    token.client_id,
                    token.user_id,
                    token.company_id,
                    token.access_token,
                    token.refresh_token,
                    self._cipher.encrypt(token.upstream_access_token),
                    self._cipher.encrypt_optional(token.upstream_refresh_token),
                    _to_epoch(token.upstream_expires_at),
                    token.upstream_version,
                    token.scope,
                    _to_epoch(token.created_at),
                    _to_epoch(token.expires_at),
                    int(token.revoked),
                ),
            )

    def _row_to_token(self, row: sqlite3.Row) -> IssuedToken:
        return IssuedToken(
            id=row["id"],
            client_id=row["client_id"],
            user_id=row["user_id"],
            company_id=row["company_id"],
            access_token=row["access_token"],
            refresh_token=row["refresh_token"],
            upstream_access_token=self._cipher.decrypt(row["upstream_access_token"]),
            upstream_refresh_token=self._cipher.decrypt_optional(
                row["upstream_refresh_token"]
            ),
            upstream_expires_at=_from_epoch(row["upstream_expires_at"]),
            upstream_version=row["upstream_version"],
            scope=row["scope"],
            created_at=_from_epoch(row["created_at"]),
            expires_at=_from_epoch(row["expires_at"]),
            revoked=bool(row["revoked"]),
        )

    def _find_token_where(
        self, column: str, value: str, *, include_revoked: bool = False
    ) -> Optional[IssuedToken]:
        query = f"SELECT * FROM issued_tokens WHERE {column} = ?"
        if not include_revoked:
            query += " AND revoked = 0"
        with self._connect() as conn:
            row = conn.execute(query, (value,)).fetchone()
        return self._row_to_token(row) if row else None

    def find_token(
        self, token_id: str, *, include_revoked: bool = False
    ) -> Optional[IssuedToken]:
        return self._find_token_where("id", token_id, include_revoked=include_revoked)

    def find_token_by_access(self, access_token: str) -> Optional[IssuedToken]:
        return self._find_token_where("access_token", access_token)

    def find_token_by_refresh(self, refresh_token: str) -> Optional[IssuedToken]:
        return self._find_token_where("refresh_token", refresh_token)

    def revoke_token(self, token_id: str, *, now: datetime) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE issued_tokens SET revoked = 1, revoked_at = ?
                WHERE id = ? AND revoked = 0
                """,
                (_to_epoch(now), token_id),
            )
        return cursor.rowcount == 1

    def update_upstream_tokens(
        self, token_id: str, *, expected_version: int, pair: UpstreamTokenPair
    ) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE issued_tokens
                SET upstream_access_token = ?,
                    upstream_refresh_token = COALESCE(?, upstream_refresh_token),
                    upstream_expires_at = ?,
                    upstream_version = upstream_version + 1
                WHERE id = ? AND revoked = 0 AND upstream_version = ?
                """,
                (
                    self._cipher.encrypt(pair.access_token),
                    self._cipher.encrypt_optional(pair.refresh_token),
                    _to_epoch(pair.expires_at),
                    token_id,
                    expected_version,
                ),
            )
        return cursor.rowcount == 1

    # Maintenance ---------------------------------------------------------------

    def delete_expired(
        self,
        *,
        now: datetime,
        session_retention_seconds: int,
        revoked_token_retention_seconds: int,
    ) -> Tuple[int, int]:
        """Range-delete stale sessions and long-revoked tokens.

        Returns ``(sessions_deleted, tokens_deleted)``. Unrevoked tokens are
        kept even after their access token expires because their refresh
        token still continues the chain.
        """
        now_epoch = _to_epoch(now)
        with self._connect() as conn:
            sessions = conn.execute(
                "DELETE FROM auth_sessions WHERE expires_at < ?",
                (now_epoch - session_retention_seconds,),
            ).rowcount
            tokens = conn.execute(
                "DELETE FROM issued_tokens WHERE revoked = 1 AND revoked_at < ?",
                (now_epoch - revoked_token_retention_seconds,),
            ).rowcount
        return sessions, tokens


__all__ = ["SQLiteOAuthStore"]
