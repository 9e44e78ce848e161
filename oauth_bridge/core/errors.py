"""
OAuth error taxonomy shared by the services and the HTTP layer.
"""

from __future__ import annotations

from enum import Enum
from http import HTTPStatus
from typing import Any, Dict, Optional


class OAuthErrorCode(str, Enum):
    """Error codes defined by RFC 6749, RFC 7591 and RFC 6750."""

    INVALID_REQUEST = "invalid_request"
    INVALID_CLIENT = "invalid_client"
    INVALID_GRANT = "invalid_grant"
    INVALID_SCOPE = "invalid_scope"
    INVALID_CLIENT_METADATA = "invalid_client_metadata"
    INVALID_REDIRECT_URI = "invalid_redirect_uri"
    UNSUPPORTED_GRANT_TYPE = "unsupported_grant_type"
    UNSUPPORTED_RESPONSE_TYPE = "unsupported_response_type"
    ACCESS_DENIED = "access_denied"
    INVALID_TOKEN = "invalid_token"
    SERVER_ERROR = "server_error"


class OAuthError(Exception):
    """An OAuth protocol error that is safe to show to the calling client."""

    def __init__(
        self,
        error: OAuthErrorCode,
        description: str,
        *,
        status_code: int = HTTPStatus.BAD_REQUEST,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        super().__init__(f"{error.value}: {description}")
        self.error = error
        self.description = description
        self.status_code = int(status_code)
        self.headers = headers or {}

    def to_response(self) -> Dict[str, Any]:
        return {"error": self.error.value, "error_description": self.description}


class UpstreamTokenError(Exception):
    """Raised when the upstream token endpoint rejects an exchange or refresh."""

    def __init__(
        self,
        error: str,
        description: str = "",
        *,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(f"{error}: {description}" if description else error)
        self.error = error
        self.description = description
        self.status_code = status_code


class UpstreamCredentialsUnavailableError(Exception):
    """Raised when no usable upstream access token can be produced for a call."""


class UpstreamApiError(Exception):
    """Raised when the upstream resource API answers with a non-2xx status."""

    def __init__(self, status_code: int, payload: Dict[str, Any]) -> None:
        messages = [
            message
            for entry in payload.get("errors") or []
            if isinstance(entry, dict)
            for message in entry.get("messages") or []
        ]
        summary = ", ".join(str(message) for message in messages) or "Unknown error"
        super().__init__(f"Upstream API error ({status_code}): {summary}")
        self.status_code = status_code
        self.payload = payload


__all__ = [
    "OAuthError",
    "OAuthErrorCode",
    "UpstreamApiError",
    "UpstreamCredentialsUnavailableError",
    "UpstreamTokenError",
]
