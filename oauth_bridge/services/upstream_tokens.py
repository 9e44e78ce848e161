"""
Freshness guard for the upstream credentials bound to an issued token.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from oauth_bridge.clients.base import OAuthStore
from oauth_bridge.clients.upstream_auth import UpstreamOAuthClient
from oauth_bridge.core.errors import UpstreamCredentialsUnavailableError, UpstreamTokenError
from oauth_bridge.models.oauth import IssuedToken

logger = logging.getLogger(__name__)

_REFRESH_MARGIN = timedelta(minutes=5)


class UpstreamTokenService:
    """Hand out upstream access tokens that will not expire mid-request."""

    def __init__(
        self,
        store: OAuthStore,
        upstream_client: UpstreamOAuthClient,
        *,
        refresh_margin: timedelta = _REFRESH_MARGIN,
    ) -> None:
        self._store = store
        self._upstream = upstream_client
        self._refresh_margin = refresh_margin

    def is_fresh(self, token: IssuedToken, now: Optional[datetime] = None) -> bool:
        if token.upstream_expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return token.upstream_expires_at > now + self._refresh_margin

    async def ensure_fresh(self, token: IssuedToken) -> IssuedToken:
        """Return ``token`` or a copy whose upstream credentials are fresh.

        Concurrent callers may all refresh; the store's version check lets only
        one of them persist, and the others adopt whatever was stored.
        """
        if self.is_fresh(token):
            return token
        if not token.upstream_refresh_token:
            raise UpstreamCredentialsUnavailableError(
                "Upstream access token expired and no refresh token is stored."
            )

        try:
            pair = await self._upstream.refresh_token(token.upstream_refresh_token)
        except UpstreamTokenError as exc:
            current = self._store.find_token(token.id)
            if current is not None and self.is_fresh(current):
                return current
            logger.warning("Upstream refresh failed for token %s: %s", token.id, exc)
            raise UpstreamCredentialsUnavailableError(
                "Unable to refresh upstream credentials."
            ) from exc

        if self._store.update_upstream_tokens(
            token.id, expected_version=token.upstream_version, pair=pair
        ):
            logger.info("Refreshed upstream credentials for token %s", token.id)
            return token.model_copy(
                update={
                    "upstream_access_token": pair.access_token,
                    "upstream_refresh_token": pair.refresh_token
                    or token.upstream_refresh_token,
                    "upstream_expires_at": pair.expires_at,
                    "upstream_version": token.upstream_version + 1,
                }
            )

        current = self._store.find_token(token.id)
        if current is None:
            raise UpstreamCredentialsUnavailableError("Token was revoked during refresh.")
        logger.debug("Lost upstream refresh race for token %s", token.id)
        return current


__all__ = ["UpstreamTokenService"]
