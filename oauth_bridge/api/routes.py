"""
FastAPI routes for the OAuth bridge.
"""

from __future__ import annotations

import base64
import binascii
import logging
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Annotated, Any, Dict, Optional, Tuple
from urllib.parse import unquote

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import ValidationError

from oauth_bridge.core.config import AppSettings
from oauth_bridge.core.errors import OAuthError, OAuthErrorCode
from oauth_bridge.dependencies import (
    get_app_settings,
    get_authorization_orchestrator,
    get_client_registry,
    get_token_exchange_service,
    get_upstream_api_client,
)
from oauth_bridge.schemas import (
    AuthorizationRequest,
    ClientRegistrationRequest,
    ClientRegistrationResponse,
    TokenRequest,
    UpstreamCallback,
)
from oauth_bridge.services.client_registry import (
    SUPPORTED_GRANT_TYPES,
    SUPPORTED_RESPONSE_TYPES,
)

router = APIRouter()
logger = logging.getLogger(__name__)

NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def _authorization_server_metadata(settings: AppSettings) -> Dict[str, Any]:
    base_url = settings.base_url
    return {
        "issuer": base_url,
        "authorization_endpoint": f"{base_url}/oauth/authorize",
        "token_endpoint": f"{base_url}/oauth/token",
        "registration_endpoint": f"{base_url}/oauth/register",
        "response_types_supported": sorted(SUPPORTED_RESPONSE_TYPES),
        "grant_types_supported": sorted(SUPPORTED_GRANT_TYPES),
        "code_challenge_methods_supported": ["S256"],
        "token_endpoint_auth_methods_supported": [
            "client_secret_post",
            "client_secret_basic",
        ],
        "scopes_supported": list(settings.oauth.scopes),
    }


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/.well-known/oauth-authorization-server")
async def authorization_server_metadata(
    settings: Annotated[AppSettings, Depends(get_app_settings)],
) -> dict:
    """RFC 8414 authorization server metadata."""
    return _authorization_server_metadata(settings)


@router.get("/.well-known/openid-configuration")
async def openid_configuration(
    settings: Annotated[AppSettings, Depends(get_app_settings)],
) -> dict:
    metadata = _authorization_server_metadata(settings)
    metadata["subject_types_supported"] = ["public"]
    metadata["id_token_signing_alg_values_supported"] = ["HS256"]
    return metadata


@router.get("/.well-known/oauth-protected-resource")
async def protected_resource_metadata(
    settings: Annotated[AppSettings, Depends(get_app_settings)],
) -> dict:
    """RFC 9728 protected resource metadata."""
    return {
        "resource": settings.base_url,
        "authorization_servers": [settings.base_url],
        "bearer_methods_supported": ["header"],
        "scopes_supported": list(settings.oauth.scopes),
    }


@router.post("/oauth/register", status_code=HTTPStatus.CREATED)
async def register_client(
    request: Request,
    registry: Annotated[Any, Depends(get_client_registry)],
) -> JSONResponse:
    """Dynamic client registration (RFC 7591)."""
    try:
        payload = await request.json()
    except ValueError as exc:
        raise OAuthError(
            OAuthErrorCode.INVALID_CLIENT_METADATA, "Request body must be a JSON object"
        ) from exc

    try:
        metadata = ClientRegistrationRequest.model_validate(payload)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ())) or "body"
        raise OAuthError(
            OAuthErrorCode.INVALID_CLIENT_METADATA, f"{location}: {first.get('msg')}"
        ) from exc

    client = registry.register(metadata)
    body = ClientRegistrationResponse(
        client_id=client.client_id,
        client_secret=client.client_secret,
        client_id_issued_at=int(client.created_at.timestamp()),
        client_name=client.client_name,
        redirect_uris=client.redirect_uris,
        grant_types=[grant.value for grant in client.grant_types],
        response_types=client.response_types,
        scope=client.scope,
    )
    return JSONResponse(
        status_code=HTTPStatus.CREATED,
        content=body.model_dump(exclude_none=True),
        headers=NO_STORE_HEADERS,
    )


@router.get("/oauth/authorize")
def authorize(
    request: Request,
    orchestrator: Annotated[Any, Depends(get_authorization_orchestrator)],
) -> RedirectResponse:
    """Validate the client's PKCE request and send the user to the upstream consent page."""
    params = AuthorizationRequest.model_validate(dict(request.query_params))
    upstream_url = orchestrator.authorize(params)
    return RedirectResponse(url=upstream_url, status_code=HTTPStatus.FOUND)


@router.get("/oauth/callback")
def upstream_callback(
    request: Request,
    orchestrator: Annotated[Any, Depends(get_authorization_orchestrator)],
) -> RedirectResponse:
    """Receive the upstream grant and hand our own code back to the client."""
    callback = UpstreamCallback.model_validate(dict(request.query_params))
    client_url = orchestrator.handle_callback(callback)
    return RedirectResponse(url=client_url, status_code=HTTPStatus.FOUND)


def _basic_credentials(header: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Decode ``Authorization: Basic`` client credentials, if present."""
    if not header:
        return None, None
    scheme, _, encoded = header.partition(" ")
    if scheme.lower() != "basic":
        return None, None
    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise OAuthError(
            OAuthErrorCode.INVALID_CLIENT,
            "Malformed Basic authorization header",
            status_code=HTTPStatus.UNAUTHORIZED,
            headers={"WWW-Authenticate": 'Basic realm="oauth"'},
        ) from exc
    client_id, separator, client_secret = decoded.partition(":")
    if not separator:
        raise OAuthError(
            OAuthErrorCode.INVALID_CLIENT,
            "Malformed Basic authorization header",
            status_code=HTTPStatus.UNAUTHORIZED,
            headers={"WWW-Authenticate": 'Basic realm="oauth"'},
        )
    return unquote(client_id), unquote(client_secret)


async def _token_request_from(request: Request) -> TokenRequest:
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            payload = await request.json()
        except ValueError as exc:
            raise OAuthError(OAuthErrorCode.INVALID_REQUEST, "Malformed JSON body") from exc
        if not isinstance(payload, dict):
            raise OAuthError(OAuthErrorCode.INVALID_REQUEST, "Body must be a JSON object")
    else:
        form = await request.form()
        payload = {key: value for key, value in form.items() if isinstance(value, str)}

    basic_id, basic_secret = _basic_credentials(request.headers.get("authorization"))
    if basic_id is not None:
        body_id = payload.get("client_id")
        if body_id and body_id != basic_id:
            raise OAuthError(
                OAuthErrorCode.INVALID_REQUEST,
                "client_id in body does not match Basic credentials",
            )
        payload["client_id"] = basic_id
        payload["client_secret"] = basic_secret

    try:
        return TokenRequest.model_validate(payload)
    except ValidationError as exc:
        raise OAuthError(OAuthErrorCode.INVALID_REQUEST, "Malformed token request") from exc


@router.post("/oauth/token")
async def issue_token(
    request: Request,
    token_service: Annotated[Any, Depends(get_token_exchange_service)],
) -> JSONResponse:
    """Token endpoint for the authorization_code and refresh_token grants."""
    try:
        token_request = await _token_request_from(request)
        response = await token_service.exchange(token_request)
    except OAuthError as exc:
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_response(),
            headers={**NO_STORE_HEADERS, **exc.headers},
        )
    return JSONResponse(
        content=response.model_dump(exclude_none=True), headers=NO_STORE_HEADERS
    )


@router.get("/api/me")
async def current_user(
    api_client: Annotated[Any, Depends(get_upstream_api_client)],
) -> dict:
    """Return the upstream user profile behind the caller's bearer token."""
    return await api_client.get("/api/1/users/me", params={"companies": "true"})


__all__ = ["router"]
