"""
Token endpoint grants.

Both grants end the same way: one upstream token pair is bound to a freshly
minted local access token and an opaque local refresh token, stored together
as an ``IssuedToken``. Local refresh tokens are single use and rotate on every
refresh.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from oauth_bridge.clients.base import OAuthStore
from oauth_bridge.clients.upstream_auth import UpstreamOAuthClient
from oauth_bridge.core.errors import OAuthError, OAuthErrorCode, UpstreamTokenError
from oauth_bridge.models.oauth import (
    AuthorizationSession,
    GrantType,
    IssuedToken,
    RegisteredClient,
    SessionStatus,
    UpstreamTokenPair,
)
from oauth_bridge.schemas import TokenRequest, TokenResponse
from oauth_bridge.services import pkce
from oauth_bridge.services.access_tokens import AccessTokenSigner, generate_refresh_token
from oauth_bridge.services.client_registry import ClientRegistry

logger = logging.getLogger(__name__)

_DEFAULT_SUBJECT = "user"


def _invalid_grant(description: str) -> OAuthError:
    return OAuthError(OAuthErrorCode.INVALID_GRANT, description)


class TokenExchangeService:
    """Redeem authorization codes and rotate refresh tokens."""

    def __init__(
        self,
        store: OAuthStore,
        registry: ClientRegistry,
        upstream_client: UpstreamOAuthClient,
        signer: AccessTokenSigner,
        *,
        default_scope: str = "read write",
    ) -> None:
        self._store = store
        self._registry = registry
        self._upstream = upstream_client
        self._signer = signer
        self._default_scope = default_scope

    async def exchange(self, request: TokenRequest) -> TokenResponse:
        if not request.grant_type:
            raise OAuthError(OAuthErrorCode.INVALID_REQUEST, "grant_type is required")
        if request.grant_type == GrantType.AUTHORIZATION_CODE.value:
            return await self._authorization_code_grant(request)
        if request.grant_type == GrantType.REFRESH_TOKEN.value:
            return await self._refresh_token_grant(request)
        raise OAuthError(
            OAuthErrorCode.UNSUPPORTED_GRANT_TYPE,
            f"Unsupported grant_type: {request.grant_type}",
        )

    def _resolve_client(self, request: TokenRequest) -> RegisteredClient:
        """Look up the calling client, checking its secret when one was sent."""
        if not request.client_id:
            raise OAuthError(OAuthErrorCode.INVALID_REQUEST, "client_id is required")
        if request.client_secret is not None:
            return self._registry.authenticate(request.client_id, request.client_secret)
        client = self._registry.lookup(request.client_id)
        if client is None:
            raise OAuthError(
                OAuthErrorCode.INVALID_CLIENT,
                "Unknown client_id",
                status_code=401,
                headers={"WWW-Authenticate": 'Basic realm="oauth"'},
            )
        return client

    async def _authorization_code_grant(self, request: TokenRequest) -> TokenResponse:
        for name in ("code", "redirect_uri", "client_id", "code_verifier"):
            if not getattr(request, name):
                raise OAuthError(OAuthErrorCode.INVALID_REQUEST, f"{name} is required")
        client = self._resolve_client(request)

        now = datetime.now(timezone.utc)
        session = self._store.find_session(request.code)
        if session is None:
            raise _invalid_grant("Invalid authorization code")
        if not session.is_redeemable(now):
            raise _invalid_grant("Authorization code is expired or already used")
        if session.client_id != client.client_id:
            raise _invalid_grant("client_id mismatch")
        if session.redirect_uri != request.redirect_uri:
            raise _invalid_grant("redirect_uri mismatch")
        if session.status is not SessionStatus.UPSTREAM_GRANTED or not session.upstream_code:
            raise _invalid_grant("Authorization has not been granted")

        # A failed verifier leaves the code redeemable for the legitimate holder.
        if not pkce.verify(
            request.code_verifier, session.code_challenge, session.code_challenge_method
        ):
            raise _invalid_grant("PKCE verification failed")

        if not self._store.mark_session_used(session.code, now=now):
            raise _invalid_grant("Authorization code is expired or already used")

        try:
            pair = await self._upstream.exchange_authorization_code(session.upstream_code)
        except UpstreamTokenError as exc:
            logger.warning(
                "Upstream code exchange failed for client %s: %s", client.client_id, exc
            )
            raise _invalid_grant("Failed to exchange authorization code upstream") from exc

        token = self._issue(
            client_id=client.client_id,
            pair=pair,
            scope=session.scope,
            fallback_session=session,
            now=now,
        )
        logger.info("Issued tokens to client %s via authorization_code", client.client_id)
        return self._to_response(token, now)

    async def _refresh_token_grant(self, request: TokenRequest) -> TokenResponse:
        if not request.refresh_token:
            raise OAuthError(OAuthErrorCode.INVALID_REQUEST, "refresh_token is required")
        client = self._resolve_client(request)

        previous = self._store.find_token_by_refresh(request.refresh_token)
        if previous is None:
            raise _invalid_grant("Invalid refresh token")
        if previous.client_id != client.client_id:
            raise _invalid_grant("client_id mismatch")

        now = datetime.now(timezone.utc)
        # Revoking first makes the local refresh token single use even when two
        # requests race for it; only the caller that flips the row continues.
        if not self._store.revoke_token(previous.id, now=now):
            raise _invalid_grant("Refresh token has already been used")

        # The freshness guard may have rotated the upstream pair before the
        # revoke; its updates stop at revoked rows, so this read is final.
        previous = self._store.find_token(previous.id, include_revoked=True) or previous

        if not previous.upstream_refresh_token:
            raise _invalid_grant("No upstream refresh token available")

        try:
            pair = await self._upstream.refresh_token(previous.upstream_refresh_token)
        except UpstreamTokenError as exc:
            logger.warning(
                "Upstream refresh failed for client %s, revoked token %s: %s",
                client.client_id,
                previous.id,
                exc,
            )
            raise _invalid_grant("Failed to refresh upstream authorization") from exc

        if not pair.refresh_token:
            pair = pair.model_copy(update={"refresh_token": previous.upstream_refresh_token})

        token = self._issue(
            client_id=client.client_id,
            pair=pair,
            scope=previous.scope,
            fallback_user_id=previous.user_id,
            fallback_company_id=previous.company_id,
            now=now,
        )
        logger.info("Rotated refresh token for client %s", client.client_id)
        return self._to_response(token, now)

    def _issue(
        self,
        *,
        client_id: str,
        pair: UpstreamTokenPair,
        scope: Optional[str],
        now: datetime,
        fallback_session: Optional[AuthorizationSession] = None,
        fallback_user_id: Optional[str] = None,
        fallback_company_id: Optional[int] = None,
    ) -> IssuedToken:
        if fallback_session is not None:
            fallback_user_id = fallback_session.user_id
            fallback_company_id = fallback_session.company_id
        user_id = pair.user_id or fallback_user_id
        company_id = pair.company_id if pair.company_id is not None else fallback_company_id

        access_token, expires_at = self._signer.mint(
            subject=user_id or _DEFAULT_SUBJECT,
            client_id=client_id,
            scope=scope or self._default_scope,
            company_id=company_id,
            now=now,
        )
        token = IssuedToken(
            id=str(uuid.uuid4()),
            client_id=client_id,
            user_id=user_id,
            company_id=company_id,
            access_token=access_token,
            refresh_token=generate_refresh_token(),
            upstream_access_token=pair.access_token,
            upstream_refresh_token=pair.refresh_token,
            upstream_expires_at=pair.expires_at,
            scope=scope,
            created_at=now,
            expires_at=expires_at,
        )
        self._store.insert_token(token)
        return token

    @staticmethod
    def _to_response(token: IssuedToken, now: datetime) -> TokenResponse:
        return TokenResponse(
            access_token=token.access_token,
            expires_in=max(int((token.expires_at - now).total_seconds()), 0),
            refresh_token=token.refresh_token,
            scope=token.scope,
        )


__all__ = ["TokenExchangeService"]
