"""Runner settings loaded from the environment.

All fields can be set through ``PROCSPINE_*`` environment variables (e.g.
``PROCSPINE_MAX_PARALLEL=8``) or a ``.env`` file in the working directory.
Unknown variables are ignored.

Examples:
    >>> from procspine.core.settings import RunnerSettings
    >>> RunnerSettings(max_parallel=2).poll_interval
    0.001

Tags:
    settings, configuration, pydantic, environment, procspine

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from typing import Literal

import pydantic
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from procspine.core.errors import ConfigError


class RunnerSettings(BaseSettings):
    """Defaults used by :class:`~procspine.execution.runner.ProcessManager`
    and :func:`~procspine.core.logging.configure_logging`.

    Fields
    ──────
    max_parallel   : Concurrency cap when a call does not pass one
    poll_interval  : Seconds between liveness checks (1000 µs by default)
    log_level      : structlog level
    log_format     : ``json`` or ``console`` renderer
    """

    model_config = SettingsConfigDict(
        env_prefix="PROCSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Scheduling ───────────────────────────────────────────────
    max_parallel: int = Field(default=4, description="Concurrency cap (sign is ignored)")
    poll_interval: float = Field(default=0.001, ge=0, description="Seconds between polls")

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: Literal["json", "console"] = Field(default="console")

    @field_validator("max_parallel")
    @classmethod
    def _non_zero(cls, value: int) -> int:
        if value == 0:
            raise ValueError("max_parallel must be non-zero")
        return value

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, RunnerSettings] = {}


def get_settings(*, _force_reload: bool = False) -> RunnerSettings:
    """Load, validate, and cache a :class:`RunnerSettings` instance.

    Raises:
        ConfigError: If an environment value fails validation.
    """
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]

    try:
        settings = RunnerSettings()
    except pydantic.ValidationError as exc:
        raise ConfigError(f"Invalid procspine settings: {exc}", cause=exc) from exc

    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    _settings_cache.clear()


__all__ = ["RunnerSettings", "get_settings", "clear_settings_cache"]
