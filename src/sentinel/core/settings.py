"""
Centralized settings for the Sentinel scheduler.

Manifesto:
    One validated, cached settings object for every entry point. The CLI,
    the web-cron endpoint and handler constructors all read the same
    ``SENTINEL_*`` environment variables through ``get_settings()``.

    - **Pydantic validation:** Type-checked at startup, not mid-run
    - **Environment-driven:** Reads from env vars and .env files
    - **Sensible defaults:** A local SQLite file works out of the box

Examples:
    >>> settings = SentinelSettings(max_execution=30, execution_bias=50)
    >>> settings.execution_budget
    15.0

Tags:
    configuration, settings, pydantic, caching, validation, sentinel

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

#: Stuck detection never uses a shorter threshold than this (minutes).
MIN_STUCK_THRESHOLD = 3


class SentinelSettings(BaseSettings):
    """Sentinel configuration.

    All fields can be set via ``SENTINEL_*`` environment variables (e.g.
    ``SENTINEL_MAX_EXECUTION=120``) or through a ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="SENTINEL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Database ─────────────────────────────────────────────────
    database_url: str = Field(default="sqlite:///sentinel.db")

    # ── Scheduler ────────────────────────────────────────────────
    max_execution: int = Field(default=60, ge=1, description="Seconds per invocation")
    execution_bias: int = Field(default=75, description="Percent of max_execution to use")
    cron_stuck_threshold: int = Field(default=MIN_STUCK_THRESHOLD, description="Minutes")

    # ── Web-cron ─────────────────────────────────────────────────
    webcron_key: str = Field(default="", description="Empty disables the web-cron endpoint")

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_json: bool | None = Field(default=None, description="None auto-detects from the tty")
    log_dir: Path = Field(default=Path("log"))
    log_file: str = Field(default="sentinel.log", description="File under log_dir; empty disables")

    # ── Log rotation task ────────────────────────────────────────
    log_rotate_files: int = Field(default=3, ge=0, description="0 disables rotation")
    log_rotate_compress: bool = Field(default=True)
    log_rotate_min_size: int = Field(default=1024 * 1024, ge=0, description="Bytes")
    log_backup_threshold: int = Field(default=14, ge=0, description="Days")

    # ── Handlers ─────────────────────────────────────────────────
    handler_packages: list[str] = Field(default=["sentinel.tasks"])

    @field_validator("execution_bias")
    @classmethod
    def _clamp_bias(cls, value: int) -> int:
        return max(10, min(100, value))

    @field_validator("cron_stuck_threshold")
    @classmethod
    def _min_threshold(cls, value: int) -> int:
        return max(MIN_STUCK_THRESHOLD, value)

    # ── Derived properties ───────────────────────────────────────

    @property
    def execution_budget(self) -> float:
        """Seconds of wall time one invocation may spend running tasks."""
        return self.max_execution * self.execution_bias / 100

    @property
    def log_path(self) -> Path | None:
        """Where CLI and web-cron invocations append their log, if anywhere."""
        return self.log_dir / self.log_file if self.log_file else None

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, SentinelSettings] = {}


def get_settings(*, _force_reload: bool = False) -> SentinelSettings:
    """Load, validate and cache a :class:`SentinelSettings` instance."""
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]
    settings = SentinelSettings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()


__all__ = [
    "MIN_STUCK_THRESHOLD",
    "SentinelSettings",
    "get_settings",
    "clear_settings_cache",
]
