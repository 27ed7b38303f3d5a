"""Service configuration loaded from the environment.

Every variable uses the ``KICK_`` prefix, e.g. ``KICK_CLIENT_ID`` or
``KICK_SESSION_SECRET``. A ``.env`` file in the working directory is read too.
``KICK_SCOPES`` is a space- or comma-separated list.
"""

from __future__ import annotations

import re
from typing import Annotated, Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_SCOPES = [
    "user:read",
    "channel:read",
    "channel:write",
    "chat:write",
    "streamkey:read",
    "events:subscribe",
    "moderation:ban",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="KICK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    client_id: str = Field(min_length=1)
    client_secret: SecretStr
    redirect_uri: str = "http://localhost:3000/api/auth/callback"
    authorize_url: str = "https://id.kick.com/oauth/authorize"
    token_url: str = "https://id.kick.com/oauth/token"
    scopes: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_SCOPES)
    )

    session_secret: SecretStr
    environment: Literal["development", "production", "test"] = "development"

    http_timeout: float = Field(default=15.0, ge=10.0, le=15.0)
    landing_path: str = "/dashboard?auth=success"
    logout_redirect: str = "/dashboard?logout=success"

    host: str = "127.0.0.1"
    port: int = 3000
    log_level: str = "INFO"

    @field_validator("scopes", mode="before")
    @classmethod
    def split_scopes(cls, v: object) -> object:
        if isinstance(v, str):
            return [scope for scope in re.split(r"[\s,]+", v) if scope]
        return v

    @field_validator("session_secret")
    @classmethod
    def validate_session_secret(cls, v: SecretStr) -> SecretStr:
        if len(v.get_secret_value()) < 32:
            raise ValueError("session_secret must be at least 32 characters")
        return v

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper()

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def describe(self) -> dict[str, object]:
        """Configuration presence report with no secret values."""
        return {
            "client_id": bool(self.client_id),
            "has_client_secret": bool(self.client_secret.get_secret_value()),
            "has_session_secret": bool(self.session_secret.get_secret_value()),
            "redirect_uri": self.redirect_uri,
            "scopes": list(self.scopes),
            "environment": self.environment,
        }
