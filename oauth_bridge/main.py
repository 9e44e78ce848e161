"""
FastAPI application entrypoint for the OAuth bridge.
"""

from __future__ import annotations

import logging
from http import HTTPStatus

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from oauth_bridge.api.routes import router as api_router
from oauth_bridge.core.config import get_settings
from oauth_bridge.core.errors import (
    OAuthError,
    OAuthErrorCode,
    UpstreamApiError,
    UpstreamCredentialsUnavailableError,
)
from oauth_bridge.core.logging import configure_logging

logger = logging.getLogger(__name__)


async def _oauth_error_handler(request: Request, exc: OAuthError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code, content=exc.to_response(), headers=exc.headers
    )


async def _credentials_unavailable_handler(
    request: Request, exc: UpstreamCredentialsUnavailableError
) -> JSONResponse:
    logger.warning("Upstream credentials unavailable for %s: %s", request.url.path, exc)
    description = "Upstream authorization is no longer valid; authorize again"
    return JSONResponse(
        status_code=HTTPStatus.UNAUTHORIZED,
        content={"error": OAuthErrorCode.INVALID_TOKEN.value, "error_description": description},
        headers={
            "WWW-Authenticate": (
                f'Bearer realm="oauth", error="invalid_token", '
                f'error_description="{description}"'
            )
        },
    )


async def _upstream_api_error_handler(
    request: Request, exc: UpstreamApiError
) -> JSONResponse:
    return JSONResponse(
        status_code=HTTPStatus.BAD_GATEWAY,
        content={"error": "upstream_error", "error_description": str(exc)},
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
        content={
            "error": OAuthErrorCode.SERVER_ERROR.value,
            "error_description": "Internal server error",
        },
    )


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="freee OAuth Bridge",
        version="0.1.0",
        description="OAuth 2.1 authorization server with PKCE and DCR in front of freee.",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )
    app.add_exception_handler(OAuthError, _oauth_error_handler)
    app.add_exception_handler(
        UpstreamCredentialsUnavailableError, _credentials_unavailable_handler
    )
    app.add_exception_handler(UpstreamApiError, _upstream_api_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
    app.include_router(api_router)
    return app


app = create_app()


def run() -> None:
    """Serve the application with uvicorn on the configured host and port."""
    settings = get_settings()
    uvicorn.run(
        "oauth_bridge.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


__all__ = ["app", "create_app", "run"]
