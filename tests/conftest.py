"""Pytest configuration shared across the suite."""

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from oauth_bridge.clients.sqlite_store import SQLiteOAuthStore
from oauth_bridge.core.errors import UpstreamTokenError
from oauth_bridge.models.oauth import UpstreamTokenPair
from oauth_bridge.services.token_cipher import TokenCipherService


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO-powered tests to run against asyncio backend only."""
    return "asyncio"


@pytest.fixture
def store(tmp_path) -> SQLiteOAuthStore:
    return SQLiteOAuthStore(
        str(tmp_path / "oauth.db"), cipher=TokenCipherService(secret="test-secret")
    )


class DummyUpstreamOAuthClient:
    """Stands in for the upstream token endpoint and consent page."""

    def __init__(self) -> None:
        self.states: List[str] = []
        self.exchanged_codes: List[str] = []
        self.refreshed_tokens: List[str] = []
        self.fail_exchange: Optional[UpstreamTokenError] = None
        self.fail_refresh: Optional[UpstreamTokenError] = None
        self.expires_in = 21600
        self._counter = 0

    def build_authorization_url(self, state: str) -> str:
        self.states.append(state)
        return f"https://upstream.example.com/authorize?state={state}"

    def _next_pair(self) -> UpstreamTokenPair:
        self._counter += 1
        return UpstreamTokenPair(
            access_token=f"upstream-access-{self._counter}",
            refresh_token=f"upstream-refresh-{self._counter}",
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=self.expires_in),
            user_id="4242",
            company_id=1001,
        )

    async def exchange_authorization_code(self, code: str) -> UpstreamTokenPair:
        self.exchanged_codes.append(code)
        if self.fail_exchange is not None:
            raise self.fail_exchange
        return self._next_pair()

    async def refresh_token(self, refresh_token: str) -> UpstreamTokenPair:
        self.refreshed_tokens.append(refresh_token)
        if self.fail_refresh is not None:
            raise self.fail_refresh
        return self._next_pair()


@pytest.fixture
def upstream() -> DummyUpstreamOAuthClient:
    return DummyUpstreamOAuthClient()
