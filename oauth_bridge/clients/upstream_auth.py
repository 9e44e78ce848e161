"""
Upstream provider OAuth utilities.

Builds the provider's consent URL and performs the code-for-token and
refresh-token exchanges against its token endpoint. Failures are never retried
here: a rejected refresh means the upstream grant is gone.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from oauth_bridge.core.config import UpstreamSettings
from oauth_bridge.core.errors import UpstreamTokenError
from oauth_bridge.models.oauth import UpstreamTokenPair

logger = logging.getLogger(__name__)


class UpstreamOAuthClient:
    """Talk to the upstream provider's authorization and token endpoints."""

    def __init__(
        self,
        upstream_settings: UpstreamSettings,
        *,
        callback_url: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._upstream = upstream_settings
        self._callback_url = callback_url
        self._transport = transport

    def build_authorization_url(self, state: str) -> str:
        """Construct the upstream consent URL carrying our session code as state."""
        params = {
            "response_type": "code",
            "client_id": self._upstream.client_id,
            "redirect_uri": self._callback_url,
            "state": state,
        }
        if self._upstream.prompt:
            params["prompt"] = self._upstream.prompt
        return f"{self._upstream.authorization_endpoint}?{urlencode(params)}"

    async def exchange_authorization_code(self, code: str) -> UpstreamTokenPair:
        """Exchange an upstream authorization code for an upstream token pair."""
        return await self._request_token(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self._callback_url,
            },
            require_refresh_token=True,
        )

    async def refresh_token(self, refresh_token: str) -> UpstreamTokenPair:
        """Trade an upstream refresh token for a new upstream token pair."""
        return await self._request_token(
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            require_refresh_token=False,
        )

    async def _request_token(
        self, grant: Dict[str, str], *, require_refresh_token: bool
    ) -> UpstreamTokenPair:
        payload = {
            **grant,
            "client_id": self._upstream.client_id,
            "client_secret": self._upstream.client_secret,
        }
        requested_at = datetime.now(timezone.utc)

        try:
            async with httpx.AsyncClient(
                timeout=self._upstream.timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(
                    str(self._upstream.token_endpoint),
                    data=payload,
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as exc:
            raise UpstreamTokenError(
                "temporarily_unavailable", f"Token endpoint unreachable: {exc}"
            ) from exc

        body = _json_or_empty(response)
        if not response.is_success:
            logger.warning(
                "Upstream token endpoint rejected %s grant with status %s",
                grant["grant_type"],
                response.status_code,
            )
            raise UpstreamTokenError(
                str(body.get("error") or "upstream_error"),
                str(body.get("error_description") or response.text[:200]),
                status_code=response.status_code,
            )

        access_token = body.get("access_token")
        refresh_token = body.get("refresh_token")
        expires_in = body.get("expires_in")
        if not access_token or not expires_in:
            raise UpstreamTokenError(
                "invalid_response", "Incomplete token payload returned upstream."
            )
        if require_refresh_token and not refresh_token:
            raise UpstreamTokenError(
                "invalid_response", "Upstream token payload lacks a refresh token."
            )

        company_id = body.get("company_id")
        resource_owner = body.get("resource_owner_id")
        try:
            issued_at = requested_at
            if body.get("created_at"):
                issued_at = datetime.fromtimestamp(int(body["created_at"]), tz=timezone.utc)
            return UpstreamTokenPair(
                access_token=access_token,
                refresh_token=refresh_token,
                expires_at=issued_at + timedelta(seconds=int(expires_in)),
                scope=body.get("scope"),
                user_id=str(resource_owner) if resource_owner is not None else None,
                company_id=int(company_id) if company_id is not None else None,
            )
        except (TypeError, ValueError, OverflowError, OSError) as exc:
            # pydantic.ValidationError is a ValueError.
            raise UpstreamTokenError(
                "invalid_response", f"Malformed token payload returned upstream: {exc}"
            ) from exc


def _json_or_empty(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


__all__ = ["UpstreamOAuthClient"]
