"""Guard configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

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

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_guard_settings() -> "GuardSettings":
    """Build guard settings from environment.

    Pydantic Settings (v2) populates values from environment variables; the
    factory keeps nested construction lazy so env loading above applies.
    """

    return GuardSettings()


def _build_store_settings() -> "StoreSettings":
    """Build store settings from environment."""

    return StoreSettings()


def _build_log_settings() -> "LogSettings":
    return LogSettings()


class GuardSettings(BaseSettings):
    """Guard behaviour: error policy, store timeouts and tier overrides."""

    open_on_store_error: bool = Field(
        True,
        description=(
            "Fail open (allow the attempt) when the attempt store errors or times out. "
            "Set to false for strict mode, where store errors propagate to the caller."
        ),
    )
    store_timeout_seconds: float = Field(
        2.0,
        description="Upper bound for a single attempt store call",
        gt=0,
    )
    tiers: dict[str, dict[str, Any]] = Field(
        default_factory=dict,
        description=(
            "JSON mapping of tier name to tier options, merged onto the default tiers "
            '(e.g. {"login": {"free_retries": 3}, "otp": {...}})'
        ),
    )

    model_config = SettingsConfigDict(
        env_prefix="GUARD_",
        case_sensitive=False,
    )


class StoreSettings(BaseSettings):
    """Attempt store backend configuration."""

    backend: Literal["memory", "sql"] = Field(
        "memory",
        description="Attempt store backend: 'memory' (per-process) or 'sql' (persisted)",
    )
    database_url: str | None = Field(
        None,
        description="SQLAlchemy database URL, required for the sql backend",
    )
    pool_size: int = Field(
        5,
        description="Connection pool size for the sql backend",
        ge=1,
    )
    pool_timeout_seconds: float = Field(
        5.0,
        description="Seconds to wait for a pooled connection",
        gt=0,
    )
    create_schema: bool = Field(
        True,
        description="Create the attempts table on startup if it does not exist",
    )
    echo: bool = Field(
        False,
        description="Echo SQL statements (debugging only)",
    )

    model_config = SettingsConfigDict(
        env_prefix="STORE_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: Literal["json", "plain"] = Field(
        "json",
        description="Log line format",
    )
    output: Literal["stdout", "file"] = Field(
        "stdout",
        description="Log destination",
    )
    file_path: str | None = Field(
        None,
        description="Log file path when output=file (default logs/bruteguard.log)",
    )
    max_bytes: int = Field(
        0,
        description="Rotate the log file at this size; 0 disables rotation",
        ge=0,
    )
    backup_count: int = Field(
        5,
        description="Rotated log files to keep",
        ge=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are malformed.
    """

    app_env: str = APP_ENV
    guard: GuardSettings = Field(default_factory=_build_guard_settings)
    store: StoreSettings = Field(default_factory=_build_store_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
