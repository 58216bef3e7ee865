"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
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


def parse_csv(value: str | None) -> list[str]:
    """Split a comma-separated setting into trimmed, non-empty items.

    Examples:
        >>> parse_csv("localhost, 127.0.0.1 ,")
        ['localhost', '127.0.0.1']
        >>> parse_csv(None)
        []
    """
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    public_base_url: str | None = Field(
        None,
        description="Public URL the service is reachable at (e.g. https://ipmap.example.com)",
    )
    not_ready_retry_after_seconds: int = Field(
        30,
        description="Retry-After hint returned while no snapshot has been synced yet",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
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
        description="Where log lines are written",
    )
    file_path: str | None = Field(
        None,
        description="Log file path when output=file (default logs/app.log)",
    )
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate the log file after this many bytes (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(5, description="Rotated log files to keep", ge=0)
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to read and echo the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class CacheSettings(BaseSettings):
    """Snapshot cache configuration."""

    dir: str = Field(
        ".cache",
        description="Directory holding the durable snapshot file",
    )
    file_name: str = Field(
        "aws-ip-ranges.json",
        description="Durable snapshot file name",
    )
    max_age_seconds: int = Field(
        24 * 60 * 60,
        description="Snapshots older than this are treated as absent by every tier",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="CACHE_",
        case_sensitive=False,
    )

    @property
    def file_path(self) -> Path:
        return Path(self.dir) / self.file_name


class SyncSettings(BaseSettings):
    """Background synchronizer configuration."""

    enabled: bool = Field(
        True,
        description="Start the synchronizer with the application",
    )
    mode: Literal["continuous", "one_shot"] = Field(
        "continuous",
        description=(
            "continuous: sync now and then every interval (long-lived servers); "
            "one_shot: sync once per invocation (serverless, external schedulers)"
        ),
    )
    source_url: str = Field(
        "https://ip-ranges.amazonaws.com/ip-ranges.json",
        description="Upstream AWS IP ranges document",
    )
    interval_seconds: int = Field(
        60 * 60,
        description="Period between continuous sync runs",
        ge=1,
    )
    force_refresh_seconds: int = Field(
        24 * 60 * 60,
        description="Rewrite an unchanged snapshot once it is this old",
        ge=1,
    )
    timeout_seconds: float = Field(
        30.0,
        description="Upstream request timeout in seconds",
        gt=0,
    )
    user_agent: str = Field(
        "IPMap/1.0 (Background Sync)",
        description="User-Agent sent to the upstream publisher",
    )

    model_config = SettingsConfigDict(
        env_prefix="SYNC_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Per-route fixed-window rate limits and exemption heuristics."""

    enabled: bool = Field(
        True,
        description="Enable per-client rate limiting on data endpoints",
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers",
    )
    sweep_interval_seconds: int = Field(
        5 * 60,
        description="Period of the expired-window sweep",
        ge=1,
    )

    api_requests: int = Field(50, description="Raw document requests per window", ge=1)
    api_window_seconds: int = Field(60 * 60, description="Raw document window", ge=1)
    search_requests: int = Field(10, description="Search requests per window", ge=1)
    search_window_seconds: int = Field(60, description="Search window", ge=1)
    export_requests: int = Field(5, description="Export requests per window", ge=1)
    export_window_seconds: int = Field(10 * 60, description="Export window", ge=1)

    internal_header: str = Field(
        "X-Internal-Request",
        description="Header whose value 'true' marks a first-party request",
    )
    internal_hosts: str = Field(
        "localhost,127.0.0.1",
        description="Comma-separated hosts whose Origin/Referer marks a first-party request",
    )
    internal_user_agents: str = Field(
        "IPMap/,Next.js,node-fetch",
        description="Comma-separated User-Agent fragments of internal tooling",
    )
    external_tool_signatures: str = Field(
        "curl,Postman",
        description="Comma-separated User-Agent fragments that are never treated as first-party",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


def _build_app_settings() -> "AppSettings":
    """Build app settings from environment.

    Pydantic Settings (v2) can populate values from environment variables.
    However, static type checkers often treat required fields as required
    constructor arguments, which is not how BaseSettings is intended to be used.
    """

    return AppSettings()  # type: ignore[call-arg]


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are inconsistent.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=_build_app_settings)
    log: LogSettings = Field(default_factory=LogSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def _check_sync_timeout(self) -> "Settings":
        if self.sync.timeout_seconds >= self.sync.interval_seconds:
            raise ValueError("SYNC_TIMEOUT_SECONDS must be shorter than SYNC_INTERVAL_SECONDS")
        return self


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
