"""
Application configuration models and helpers.

Centralizes settings management so the FastAPI app, the services it wires up
and the operational scripts share a consistent configuration surface.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Optional

import os

from pydantic import AnyHttpUrl, Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _load_env_file(path: str = ".env") -> None:
    """Best-effort load key=value pairs from a .env file without extra deps."""
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in os.environ:
            continue
        cleaned = value.strip().strip('"').strip("'")
        os.environ[key] = cleaned


_load_env_file()


def _split_csv(value: str | tuple[str, ...] | list[str]) -> tuple[str, ...]:
    if isinstance(value, tuple):
        return value
    if isinstance(value, list):
        return tuple(value)
    return tuple(item.strip() for item in value.split(",") if item.strip())


class SlackSettings(BaseSettings):
    """Configuration required for the Slack OAuth exchange and Web API calls."""

    client_id: str = Field(..., validation_alias="SLACK_CLIENT_ID")
    client_secret: str = Field(..., validation_alias="SLACK_CLIENT_SECRET")
    redirect_uri: Optional[AnyHttpUrl] = Field(
        None,
        validation_alias="SLACK_REDIRECT_URI",
        description="Callback URL registered with the Slack app.",
    )
    allowed_team_id: Optional[str] = Field(
        None,
        validation_alias="SLACK_ALLOWED_TEAM_ID",
        description="Workspace whose members may log in. Any workspace when unset.",
    )
    user_scopes: Annotated[tuple[str, ...], NoDecode] = Field(
        ("users:read", "users:read.email", "users.profile:read", "chat:write"),
        validation_alias="SLACK_USER_SCOPES",
    )
    bot_scopes: Annotated[tuple[str, ...], NoDecode] = Field(
        ("users:read", "users:read.email"),
        validation_alias="SLACK_BOT_SCOPES",
    )

    @field_validator("user_scopes", "bot_scopes", mode="before")
    @classmethod
    def _split_scopes(
        cls, value: str | tuple[str, ...] | list[str]
    ) -> tuple[str, ...]:
        """Support providing scopes as a comma-separated string."""
        return _split_csv(value)


class SecuritySettings(BaseSettings):
    """Security-related configuration."""

    encryption_key: str = Field(
        ...,
        min_length=1,
        validation_alias="ENCRYPTION_KEY",
        description=(
            "AES-256 key for stored Slack tokens: 64 hex characters, or any "
            "secret which is stretched with SHA-256."
        ),
    )
    state_secret: Optional[str] = Field(
        None,
        validation_alias="STATE_SECRET",
        description="HMAC secret for OAuth state tokens. Defaults to ENCRYPTION_KEY.",
    )

    @property
    def effective_state_secret(self) -> str:
        return self.state_secret or self.encryption_key


class RelaySettings(BaseSettings):
    """Where OAuth results may be delivered once the callback completes."""

    allowed_origins: Annotated[tuple[str, ...], NoDecode] = Field(
        (
            "http://localhost:3001",
            "http://localhost:5173",
            "http://localhost:5174",
        ),
        validation_alias="RELAY_ALLOWED_ORIGINS",
    )
    relay_path: str = Field("/slack-auth", validation_alias="RELAY_PATH")
    storage_key: str = Field("slackAuthResult", validation_alias="RELAY_STORAGE_KEY")

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def _split_origins(
        cls, value: str | tuple[str, ...] | list[str]
    ) -> tuple[str, ...]:
        """Support providing origins as a comma-separated string."""
        return tuple(origin.rstrip("/") for origin in _split_csv(value))


class AppSettings(BaseSettings):
    """Root settings object for the FastAPI application."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    frontend_base_url: Optional[HttpUrl] = Field(
        None,
        validation_alias="FRONTEND_BASE_URL",
        description="Origin of the attendance front-end hosting the relay path.",
    )
    database_path: str = Field("data/lab_access.db", validation_alias="DATABASE_PATH")
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    slack: SlackSettings = Field(default_factory=SlackSettings)
    relay: RelaySettings = Field(default_factory=RelaySettings)


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "RelaySettings",
    "SecuritySettings",
    "SlackSettings",
    "get_settings",
]
