"""Application configuration settings."""
from __future__ import annotations

import os
from functools import lru_cache

from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Runtime toggles -----------------------------------------------------
# Execution environment: "dev" | "staging" | "prod"
ENV = os.getenv("TRUSTDESK_ENV", "dev").lower()

# Legacy admin key, only honoured in dev-like environments
DEV_API_KEY_ALLOWED = ENV in {"dev", "local", "test"}


class Settings(BaseSettings):
    """Environment configuration for the trustdesk backend."""

    app_env: str = ENV
    database_url: str = "sqlite:///trustdesk.db"
    SECRET_KEY: str = "change-me"
    DEV_API_KEY: str | None = Field(
        default=None,
        validation_alias=AliasChoices("DEV_API_KEY", "API_KEY"),
    )
    CORS_ALLOW_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]
    SENTRY_DSN: str | None = None
    PROMETHEUS_ENABLED: bool = False
    LOG_LEVEL: str = "INFO"
    ALLOW_DB_CREATE_ALL: bool = False

    # --- Database engine -------------------------------------------------
    DB_ECHO: bool = False
    DB_POOL_SIZE: int = 5

    # --- Background jobs -------------------------------------------------
    SCHEDULER_ENABLED: bool = False
    AUTO_RELEASE_INTERVAL_MINUTES: int = 60
    DISPUTE_ESCALATION_INTERVAL_MINUTES: int = 60

    # --- Escrow defaults -------------------------------------------------
    ESCROW_DEFAULT_EXPIRY_DAYS: int = 30
    ESCROW_AUTO_RELEASE_DAYS: int = 14

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("DEV_API_KEY")
    @classmethod
    def _strip_empty_key(cls, value: str | None) -> str | None:
        """Normalise empty keys to ``None`` so they never match a blank token."""

        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None


class AppInfo(BaseModel):
    name: str = "trustdesk-backend"
    version: str = "0.1.0"


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()


__all__ = [
    "ENV",
    "DEV_API_KEY_ALLOWED",
    "Settings",
    "AppInfo",
    "get_settings",
]
