try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from oauth_bridge.clients.upstream_api import UpstreamApiClient
from oauth_bridge.core.errors import (
    UpstreamApiError,
    UpstreamCredentialsUnavailableError,
    UpstreamTokenError,
)
from oauth_bridge.models.oauth import IssuedToken, UpstreamTokenPair
from oauth_bridge.services.upstream_tokens import UpstreamTokenService


def _seed(store, *, expires_in: timedelta, refresh_token="upstream-refresh") -> IssuedToken:
    now = datetime.now(timezone.utc).replace(microsecond=0)
    token = IssuedToken(
        id="token-1",
        client_id="mcp_client",
        access_token="local-access",
        refresh_token="local-refresh",
        upstream_access_token="upstream-access-0",
        upstream_refresh_token=refresh_token,
        upstream_expires_at=now + expires_in,
        created_at=now,
        expires_at=now + timedelta(hours=1),
        company_id=1001,
    )
    store.insert_token(token)
    return token


@pytest.fixture
def token_service(store, upstream) -> UpstreamTokenService:
    return UpstreamTokenService(store, upstream)


@pytest.mark.anyio
async def test_fresh_token_is_used_as_is(token_service, store, upstream) -> None:
    token = _seed(store, expires_in=timedelta(hours=1))

    result = await token_service.ensure_fresh(token)

    assert result.upstream_access_token == "upstream-access-0"
    assert upstream.refreshed_tokens == []


@pytest.mark.anyio
async def test_token_inside_margin_is_refreshed_in_place(
    token_service, store, upstream
) -> None:
    token = _seed(store, expires_in=timedelta(minutes=4))

    result = await token_service.ensure_fresh(token)

    assert upstream.refreshed_tokens == ["upstream-refresh"]
    assert result.upstream_access_token == "upstream-access-1"
    stored = store.find_token("token-1")
    assert stored.upstream_access_token == "upstream-access-1"
    assert stored.upstream_refresh_token == "upstream-refresh-1"
    assert stored.upstream_version == 1
    # Local credentials are untouched by an upstream refresh.
    assert stored.access_token == "local-access"
    assert stored.refresh_token == "local-refresh"


@pytest.mark.anyio
async def test_missing_refresh_token_fails_before_calling_upstream(
    token_service, store, upstream
) -> None:
    token = _seed(store, expires_in=timedelta(minutes=1), refresh_token=None)

    with pytest.raises(UpstreamCredentialsUnavailableError):
        await token_service.ensure_fresh(token)

    assert upstream.refreshed_tokens == []


@pytest.mark.anyio
async def test_failed_refresh_is_unavailable(token_service, store, upstream) -> None:
    token = _seed(store, expires_in=timedelta(minutes=1))
    upstream.fail_refresh = UpstreamTokenError("invalid_grant")

    with pytest.raises(UpstreamCredentialsUnavailableError):
        await token_service.ensure_fresh(token)


@pytest.mark.anyio
async def test_lost_refresh_race_adopts_stored_credentials(
    token_service, store, upstream
) -> None:
    token = _seed(store, expires_in=timedelta(minutes=1))
    store.update_upstream_tokens(
        "token-1",
        expected_version=0,
        pair=UpstreamTokenPair(
            access_token="winner-access",
            refresh_token="winner-refresh",
            expires_at=datetime.now(timezone.utc) + timedelta(hours=6),
        ),
    )

    result = await token_service.ensure_fresh(token)

    assert result.upstream_access_token == "winner-access"
    assert store.find_token("token-1").upstream_access_token == "winner-access"


@pytest.mark.anyio
async def test_api_client_sends_fresh_upstream_token(token_service, store, upstream) -> None:
    token = _seed(store, expires_in=timedelta(minutes=2))
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"user": {"id": 4242}})

    api = UpstreamApiClient(
        token,
        token_service=token_service,
        api_base_url="https://api.example.com/",
        transport=httpx.MockTransport(handler),
    )

    payload = await api.get("/api/1/users/me", params={"companies": "true"})

    assert payload == {"user": {"id": 4242}}
    assert str(seen[0].url) == "https://api.example.com/api/1/users/me?companies=true"
    assert seen[0].headers["Authorization"] == "Bearer upstream-access-1"
    assert api.company_id == 1001


@pytest.mark.anyio
async def test_api_client_raises_on_error_status(token_service, store) -> None:
    token = _seed(store, expires_in=timedelta(hours=1))

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400, json={"status_code": 400, "errors": [{"messages": ["bad partner"]}]}
        )

    api = UpstreamApiClient(
        token,
        token_service=token_service,
        api_base_url="https://api.example.com",
        transport=httpx.MockTransport(handler),
    )

    with pytest.raises(UpstreamApiError) as excinfo:
        await api.post("/api/1/partners", json={"name": "x"})

    assert excinfo.value.status_code == 400
    assert "bad partner" in str(excinfo.value)


@pytest.mark.anyio
async def test_api_client_returns_empty_dict_for_no_content(token_service, store) -> None:
    token = _seed(store, expires_in=timedelta(hours=1))

    api = UpstreamApiClient(
        token,
        token_service=token_service,
        api_base_url="https://api.example.com",
        transport=httpx.MockTransport(lambda request: httpx.Response(204)),
    )

    assert await api.delete("/api/1/partners/1") == {}
