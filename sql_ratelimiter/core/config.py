"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file

The rate limiter core never reads these settings directly. They are turned
into an explicit ``RateLimitConfig`` by callers (see
``sql_ratelimiter.services.rate_limiter.create_rate_limiter``).
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

# Select the .env file for the current environment
_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists and we are not under test
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file and not os.getenv("TESTING"):
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_store_settings() -> "StoreSettings":
    """Build store settings from environment."""

    return StoreSettings()


def _build_log_settings() -> "LogSettings":
    """Build log settings from environment."""

    return LogSettings()


def _build_app_settings() -> "AppSettings":
    """Build app settings from environment."""

    return AppSettings()


class StoreSettings(BaseSettings):
    """Backing store connection settings.

    The ``LIBSQL_`` prefix keeps the variable names used by existing
    deployments (``LIBSQL_URL``, ``LIBSQL_AUTH_TOKEN``).
    """

    url: str = Field(
        "sqlite+aiosqlite:///./data.db",
        description="SQLAlchemy URL (or file: URL) of the counter store",
    )
    auth_token: str | None = Field(
        None,
        description="Optional credential, sent as the PostgreSQL password (e.g. an IAM token)",
    )
    table_name: str = Field(
        "rate_limits",
        description="Table holding one counter row per effective key",
    )

    model_config = SettingsConfigDict(
        env_prefix="LIBSQL_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="Log format: json or plain")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header carrying the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class AppSettings(BaseSettings):
    """Example HTTP application configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    rate_limit_enabled: bool = Field(
        True,
        description="Apply the minute/day quotas to /api routes",
    )
    rate_limit_key_prefix: str = Field(
        "ratelimit:ip",
        description="Prefix namespacing the per-client counters",
    )
    minute_limit: int = Field(
        5,
        description="Requests allowed per client in the short window",
        ge=1,
    )
    minute_window_seconds: int = Field(
        60,
        description="Short window size in seconds",
        ge=1,
    )
    day_limit: int = Field(
        10,
        description="Requests allowed per client in the long window",
        ge=1,
    )
    day_window_seconds: int = Field(
        86400,
        description="Long window size in seconds",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main settings container.

    Composed from the domain-specific settings above; each one reads its own
    prefixed environment variables.
    """

    app_env: str = APP_ENV
    store: StoreSettings = Field(default_factory=_build_store_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)
    app: AppSettings = Field(default_factory=_build_app_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
