try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from datetime import datetime, timedelta, timezone

import anyio
import pytest

from oauth_bridge.core.errors import OAuthError, OAuthErrorCode, UpstreamTokenError
from oauth_bridge.models.oauth import UpstreamTokenPair
from oauth_bridge.schemas import (
    AuthorizationRequest,
    ClientRegistrationRequest,
    TokenRequest,
    UpstreamCallback,
)
from oauth_bridge.services import pkce
from oauth_bridge.services.access_tokens import AccessTokenSigner
from oauth_bridge.services.authorization import AuthorizationOrchestrator
from oauth_bridge.services.client_registry import ClientRegistry
from oauth_bridge.services.token_exchange import TokenExchangeService

REDIRECT_URI = "https://app.example.com/cb"
VERIFIER = "correct-horse-battery-staple-" + "x" * 30
ISSUER = "https://bridge.example.com"


@pytest.fixture
def registry(store) -> ClientRegistry:
    return ClientRegistry(store)


@pytest.fixture
def client(registry):
    return registry.register(ClientRegistrationRequest(redirect_uris=[REDIRECT_URI]))


@pytest.fixture
def signer() -> AccessTokenSigner:
    return AccessTokenSigner(
        secret="exchange-secret-exchange-secret-32", issuer=ISSUER, ttl_seconds=3600
    )


@pytest.fixture
def service(store, registry, upstream, signer) -> TokenExchangeService:
    return TokenExchangeService(store, registry, upstream, signer)


@pytest.fixture
def granted_code(store, registry, upstream, client) -> str:
    """Run authorize and callback, returning the code the client would receive."""
    orchestrator = AuthorizationOrchestrator(store, registry, upstream)
    orchestrator.authorize(
        AuthorizationRequest(
            response_type="code",
            client_id=client.client_id,
            redirect_uri=REDIRECT_URI,
            code_challenge=pkce.compute_challenge(VERIFIER),
            code_challenge_method="S256",
            scope="read",
        )
    )
    code = upstream.states[-1]
    orchestrator.handle_callback(UpstreamCallback(code="UP123", state=code))
    return code


def _code_request(client, code: str, **overrides) -> TokenRequest:
    values = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": REDIRECT_URI,
        "code_verifier": VERIFIER,
        "client_id": client.client_id,
    }
    values.update(overrides)
    return TokenRequest(**values)


async def _expect_error(service, request: TokenRequest) -> OAuthError:
    with pytest.raises(OAuthError) as excinfo:
        await service.exchange(request)
    return excinfo.value


@pytest.mark.anyio
async def test_code_exchange_issues_bound_tokens(
    service, client, granted_code, store, upstream, signer
) -> None:
    response = await service.exchange(_code_request(client, granted_code))

    assert response.token_type == "Bearer"
    assert response.expires_in == 3600
    assert response.scope == "read"
    assert upstream.exchanged_codes == ["UP123"]

    claims = signer.decode(response.access_token)
    assert claims["sub"] == "4242"
    assert claims["company_id"] == 1001
    assert claims["client_id"] == client.client_id

    token = store.find_token_by_refresh(response.refresh_token)
    assert token.access_token == response.access_token
    assert token.upstream_access_token == "upstream-access-1"
    assert store.find_session(granted_code).used is True


@pytest.mark.anyio
async def test_code_cannot_be_redeemed_twice(service, client, granted_code) -> None:
    await service.exchange(_code_request(client, granted_code))

    error = await _expect_error(service, _code_request(client, granted_code))

    assert error.error is OAuthErrorCode.INVALID_GRANT


@pytest.mark.anyio
async def test_concurrent_redemption_has_single_winner(
    service, client, granted_code, upstream
) -> None:
    outcomes: list[str] = []

    async def redeem() -> None:
        try:
            await service.exchange(_code_request(client, granted_code))
            outcomes.append("ok")
        except OAuthError as exc:
            outcomes.append(exc.error.value)

    async with anyio.create_task_group() as group:
        for _ in range(5):
            group.start_soon(redeem)

    assert sorted(outcomes) == ["invalid_grant"] * 4 + ["ok"]
    assert upstream.exchanged_codes == ["UP123"]


@pytest.mark.anyio
async def test_wrong_verifier_does_not_consume_code(service, client, granted_code) -> None:
    error = await _expect_error(
        service, _code_request(client, granted_code, code_verifier="w" * 50)
    )
    assert error.error is OAuthErrorCode.INVALID_GRANT

    response = await service.exchange(_code_request(client, granted_code))
    assert response.access_token


@pytest.mark.anyio
async def test_redirect_uri_mismatch_is_invalid_grant(
    service, client, granted_code
) -> None:
    error = await _expect_error(
        service,
        _code_request(client, granted_code, redirect_uri="https://app.example.com/other"),
    )

    assert error.error is OAuthErrorCode.INVALID_GRANT


@pytest.mark.anyio
async def test_code_bound_to_another_client_is_invalid_grant(
    service, registry, granted_code
) -> None:
    other = registry.register(ClientRegistrationRequest(redirect_uris=[REDIRECT_URI]))

    error = await _expect_error(service, _code_request(other, granted_code))

    assert error.error is OAuthErrorCode.INVALID_GRANT


@pytest.mark.anyio
async def test_expired_code_is_invalid_grant(service, client, granted_code, store) -> None:
    session = store.find_session(granted_code)
    store.insert_session(
        session.model_copy(
            update={
                "code": "stale-code",
                "expires_at": datetime.now(timezone.utc) - timedelta(seconds=1),
            }
        )
    )

    error = await _expect_error(service, _code_request(client, "stale-code"))

    assert error.error is OAuthErrorCode.INVALID_GRANT


@pytest.mark.anyio
async def test_upstream_exchange_failure_is_generic_invalid_grant(
    service, client, granted_code, upstream
) -> None:
    upstream.fail_exchange = UpstreamTokenError("invalid_grant", "upstream secret detail")

    error = await _expect_error(service, _code_request(client, granted_code))

    assert error.error is OAuthErrorCode.INVALID_GRANT
    assert "upstream secret detail" not in error.description


@pytest.mark.anyio
async def test_wrong_client_secret_is_invalid_client(service, client, granted_code) -> None:
    error = await _expect_error(
        service, _code_request(client, granted_code, client_secret="nope")
    )

    assert error.error is OAuthErrorCode.INVALID_CLIENT
    assert error.status_code == 401


@pytest.mark.anyio
@pytest.mark.parametrize(
    ("grant_type", "expected"),
    [
        (None, OAuthErrorCode.INVALID_REQUEST),
        ("password", OAuthErrorCode.UNSUPPORTED_GRANT_TYPE),
    ],
)
async def test_grant_type_is_validated(service, client, grant_type, expected) -> None:
    error = await _expect_error(
        service, TokenRequest(grant_type=grant_type, client_id=client.client_id)
    )

    assert error.error is expected


@pytest.mark.anyio
async def test_missing_code_parameters_are_invalid_request(service, client) -> None:
    error = await _expect_error(
        service, TokenRequest(grant_type="authorization_code", client_id=client.client_id)
    )

    assert error.error is OAuthErrorCode.INVALID_REQUEST


@pytest.mark.anyio
async def test_refresh_rotates_and_revokes_predecessor(
    service, client, granted_code, store, upstream
) -> None:
    first = await service.exchange(_code_request(client, granted_code))

    second = await service.exchange(
        TokenRequest(
            grant_type="refresh_token",
            refresh_token=first.refresh_token,
            client_id=client.client_id,
        )
    )

    assert second.refresh_token != first.refresh_token
    assert second.access_token != first.access_token
    assert upstream.refreshed_tokens == ["upstream-refresh-1"]
    assert store.find_token_by_refresh(first.refresh_token) is None
    assert store.find_token_by_access(first.access_token) is None
    successor = store.find_token_by_refresh(second.refresh_token)
    assert successor.upstream_access_token == "upstream-access-2"
    assert successor.scope == "read"

    error = await _expect_error(
        service,
        TokenRequest(
            grant_type="refresh_token",
            refresh_token=first.refresh_token,
            client_id=client.client_id,
        ),
    )
    assert error.error is OAuthErrorCode.INVALID_GRANT


@pytest.mark.anyio
async def test_concurrent_refresh_mints_one_successor(
    service, client, granted_code, upstream
) -> None:
    first = await service.exchange(_code_request(client, granted_code))
    outcomes: list[str] = []

    async def refresh() -> None:
        try:
            await service.exchange(
                TokenRequest(
                    grant_type="refresh_token",
                    refresh_token=first.refresh_token,
                    client_id=client.client_id,
                )
            )
            outcomes.append("ok")
        except OAuthError as exc:
            outcomes.append(exc.error.value)

    async with anyio.create_task_group() as group:
        for _ in range(4):
            group.start_soon(refresh)

    assert sorted(outcomes) == ["invalid_grant"] * 3 + ["ok"]
    assert len(upstream.refreshed_tokens) == 1


@pytest.mark.anyio
async def test_failed_upstream_refresh_revokes_local_token(
    service, client, granted_code, store, upstream
) -> None:
    first = await service.exchange(_code_request(client, granted_code))
    upstream.fail_refresh = UpstreamTokenError("invalid_grant", "revoked upstream")

    error = await _expect_error(
        service,
        TokenRequest(
            grant_type="refresh_token",
            refresh_token=first.refresh_token,
            client_id=client.client_id,
        ),
    )

    assert error.error is OAuthErrorCode.INVALID_GRANT
    assert store.find_token_by_refresh(first.refresh_token) is None


@pytest.mark.anyio
async def test_refresh_by_other_client_is_rejected(
    service, registry, client, granted_code, store
) -> None:
    first = await service.exchange(_code_request(client, granted_code))
    other = registry.register(ClientRegistrationRequest(redirect_uris=[REDIRECT_URI]))

    error = await _expect_error(
        service,
        TokenRequest(
            grant_type="refresh_token",
            refresh_token=first.refresh_token,
            client_id=other.client_id,
        ),
    )

    assert error.error is OAuthErrorCode.INVALID_GRANT
    assert store.find_token_by_refresh(first.refresh_token) is not None


@pytest.mark.anyio
async def test_refresh_uses_upstream_credentials_rotated_before_revoke(
    service, client, granted_code, store, upstream, monkeypatch
) -> None:
    first = await service.exchange(_code_request(client, granted_code))
    token = store.find_token_by_refresh(first.refresh_token)
    revoke = store.revoke_token

    def rotate_then_revoke(token_id, *, now):
        # A freshness refresh on another request lands just before the revoke.
        store.update_upstream_tokens(
            token_id,
            expected_version=token.upstream_version,
            pair=UpstreamTokenPair(
                access_token="guard-access",
                refresh_token="guard-refresh",
                expires_at=datetime.now(timezone.utc) + timedelta(hours=6),
            ),
        )
        return revoke(token_id, now=now)

    monkeypatch.setattr(store, "revoke_token", rotate_then_revoke)

    second = await service.exchange(
        TokenRequest(
            grant_type="refresh_token",
            refresh_token=first.refresh_token,
            client_id=client.client_id,
        )
    )

    assert upstream.refreshed_tokens == ["guard-refresh"]
    assert store.find_token_by_refresh(second.refresh_token) is not None
