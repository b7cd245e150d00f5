"""
Shared configuration management for the Nexus platform edge.
"""

from pydantic import AnyHttpUrl, Field, TypeAdapter, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_HTTP_URL = TypeAdapter(AnyHttpUrl)


class BaseConfig(BaseSettings):
    """Base configuration class with common settings.

    Settings are loaded once from the process environment (and an optional
    ``.env`` file) and frozen afterwards; components receive the instance
    explicitly instead of reading the environment per request.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    # Environment
    env: str = Field(default="production", validation_alias="GATEWAY_ENV")
    log_level: str = Field(default="info", validation_alias="LOG_LEVEL")

    # Process
    host: str = Field(default="0.0.0.0", validation_alias="HOST")
    port: int = Field(default=8000, validation_alias="PORT")

    # External services
    redis_url: str = Field(default="redis://localhost:6379/0", validation_alias="REDIS_URL")

    @field_validator("log_level")
    @classmethod
    def _known_log_level(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {"debug", "info", "warning", "error", "critical"}:
            raise ValueError(f"Unknown log level '{value}'")
        return normalized


def validate_http_url(value: str) -> str:
    """Validate an absolute http(s) URL and return it without a trailing slash."""
    _HTTP_URL.validate_python(value)
    return value.rstrip("/")
