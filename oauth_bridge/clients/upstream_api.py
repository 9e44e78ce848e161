"""Client for the upstream accounting REST API, acting on behalf of one issued token."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from oauth_bridge.core.errors import UpstreamApiError
from oauth_bridge.models.oauth import IssuedToken
from oauth_bridge.services.upstream_tokens import UpstreamTokenService

logger = logging.getLogger(__name__)


class UpstreamApiClient:
    """Call the upstream API with credentials checked for freshness before each request."""

    def __init__(
        self,
        token: IssuedToken,
        *,
        token_service: UpstreamTokenService,
        api_base_url: str,
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._token = token
        self._token_service = token_service
        self._base_url = api_base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._transport = transport

    @property
    def company_id(self) -> Optional[int]:
        return self._token.company_id

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        self._token = await self._token_service.ensure_fresh(self._token)
        url = f"{self._base_url}/{path.lstrip('/')}"
        headers = {
            "Authorization": f"Bearer {self._token.upstream_access_token}",
            "Accept": "application/json",
        }

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.request(
                method.upper(), url, params=params, json=json, headers=headers
            )

        if response.status_code == 204 or not response.content:
            payload: Dict[str, Any] = {}
        else:
            try:
                payload = response.json()
            except ValueError:
                payload = {"raw": response.text}

        if not response.is_success:
            logger.warning(
                "Upstream API %s %s failed with status %s",
                method.upper(),
                path,
                response.status_code,
            )
            raise UpstreamApiError(
                response.status_code, payload if isinstance(payload, dict) else {}
            )
        return payload if isinstance(payload, dict) else {"data": payload}

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self.request("POST", path, json=json)

    async def put(self, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self.request("PUT", path, json=json)

    async def delete(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self.request("DELETE", path, params=params)


__all__ = ["UpstreamApiClient"]
