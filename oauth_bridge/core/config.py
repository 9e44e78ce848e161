"""
Application configuration models and helpers.

Centralizes settings management so the HTTP layer, the stores and the upstream
clients all receive one explicit configuration object built at startup.
"""

from functools import lru_cache
from typing import Annotated, Optional

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

_ENV_CONFIG = SettingsConfigDict(
    env_file=".env",
    env_file_encoding="utf-8",
    extra="ignore",
    populate_by_name=True,
)


class UpstreamSettings(BaseSettings):
    """Credentials and endpoints of the upstream accounting provider."""

    model_config = _ENV_CONFIG

    client_id: str = Field(..., validation_alias="UPSTREAM_CLIENT_ID")
    client_secret: str = Field(..., validation_alias="UPSTREAM_CLIENT_SECRET")
    authorization_endpoint: AnyHttpUrl = Field(
        "https://accounts.secure.freee.co.jp/public_api/authorize",
        validation_alias="UPSTREAM_AUTHORIZATION_ENDPOINT",
    )
    token_endpoint: AnyHttpUrl = Field(
        "https://accounts.secure.freee.co.jp/public_api/token",
        validation_alias="UPSTREAM_TOKEN_ENDPOINT",
    )
    api_base_url: AnyHttpUrl = Field(
        "https://api.freee.co.jp",
        validation_alias="UPSTREAM_API_BASE_URL",
    )
    prompt: Optional[str] = Field(
        "select_company",
        validation_alias="UPSTREAM_PROMPT",
        description="Forwarded as the upstream `prompt` parameter when set.",
    )
    timeout_seconds: float = Field(10.0, validation_alias="UPSTREAM_TIMEOUT_SECONDS")


class SecuritySettings(BaseSettings):
    """Security-related configuration."""

    model_config = _ENV_CONFIG

    jwt_secret: Optional[str] = Field(
        None,
        validation_alias="JWT_SECRET",
        description="HS256 key for local access tokens. Random per process when unset.",
    )
    token_encryption_secret: Optional[str] = Field(
        None,
        validation_alias="TOKEN_ENCRYPTION_SECRET",
        description=(
            "Secret used to derive the symmetric key for encrypting stored "
            "upstream tokens. Falls back to the JWT secret."
        ),
    )


class OAuthSettings(BaseSettings):
    """Lifetimes and scope configuration of the bridged OAuth flow."""

    model_config = _ENV_CONFIG

    auth_code_ttl_seconds: int = Field(600, validation_alias="AUTH_CODE_TTL")
    access_token_ttl_seconds: int = Field(3600, validation_alias="ACCESS_TOKEN_TTL")
    upstream_refresh_margin_seconds: int = Field(
        300, validation_alias="UPSTREAM_REFRESH_MARGIN"
    )
    scopes: Annotated[tuple[str, ...], NoDecode] = Field(
        ("read", "write", "default_read"),
        validation_alias="OAUTH_SCOPES",
    )
    default_scope: str = Field("read write", validation_alias="OAUTH_DEFAULT_SCOPE")
    used_code_retention_seconds: int = Field(
        3600, validation_alias="USED_CODE_RETENTION"
    )
    revoked_token_retention_seconds: int = Field(
        86400, validation_alias="REVOKED_TOKEN_RETENTION"
    )

    @field_validator("scopes", mode="before")
    @classmethod
    def _split_scopes(
        cls, value: str | tuple[str, ...] | list[str]
    ) -> tuple[str, ...]:
        """Support providing scopes as a comma-separated string."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(value)
        return tuple(scope.strip() for scope in value.split(",") if scope.strip())


class AppSettings(BaseSettings):
    """Root settings object for the FastAPI application."""

    model_config = _ENV_CONFIG

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    base_url: str = Field("http://localhost:2091", validation_alias="BASE_URL")
    host: str = Field("0.0.0.0", validation_alias="HOST")
    port: int = Field(2091, validation_alias="PORT")
    database_path: str = Field("./data/app.db", validation_alias="DATABASE_PATH")
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    upstream: UpstreamSettings = Field(default_factory=UpstreamSettings)

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def callback_url(self) -> str:
        """Redirect URI registered with the upstream provider."""
        return f"{self.base_url}/oauth/callback"


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "OAuthSettings",
    "SecuritySettings",
    "UpstreamSettings",
    "get_settings",
]
