"""
Configuration for clockspine.

Two layers:

- :class:`ClockSettings` - process-level defaults read from ``CLOCKSPINE_*``
  environment variables and ``.env`` files (pydantic-settings). Used by the
  CLI and by :meth:`Manager.from_settings`.
- :class:`ManagerOptions` - validation model for ``Manager.configure(...)``.
  Unknown keys and invalid values fail the ``configure`` call.

Examples:
    >>> settings = ClockSettings(tick_length_seconds=0.5)
    >>> manager = Manager.from_settings(settings)

    $ CLOCKSPINE_TICK_LENGTH_SECONDS=5 CLOCKSPINE_TZ=Europe/Berlin clockspine run clock.py

Tags:
    settings, configuration, pydantic, environment, clockspine
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import timedelta, tzinfo
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def resolve_tz(value: str | tzinfo | None) -> tzinfo | None:
    """Turn an IANA zone name into a tzinfo; pass tzinfo objects through.

    Raises:
        ValueError: If the zone name is unknown
    """
    if value is None or isinstance(value, tzinfo):
        return value
    try:
        return ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError, TypeError) as exc:
        raise ValueError(f"Unknown time zone: {value!r}") from exc


class ClockSettings(BaseSettings):
    """Environment-driven defaults for a manager and its logging.

    Fields
    ──────
    tick_length_seconds     : Seconds between evaluation passes
    max_concurrent_detached : Cap on concurrently running detached jobs (unset = unbounded)
    thread                  : Run jobs detached unless the event says otherwise
    tz                      : Default zone for at-constraints and predicates
    log_level               : structlog level
    log_format              : "json" or "console"
    """

    model_config = SettingsConfigDict(
        env_prefix="CLOCKSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Loop ─────────────────────────────────────────────────────
    tick_length_seconds: float = Field(default=1.0, gt=0)
    max_concurrent_detached: int | None = Field(default=None, ge=1)
    thread: bool = False
    tz: str | None = None

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = Field(default="console", pattern="^(json|console)$")

    @field_validator("tz")
    @classmethod
    def _known_zone(cls, value: str | None) -> str | None:
        resolve_tz(value)
        return value

    def manager_options(self) -> dict[str, Any]:
        """The subset of settings understood by ``Manager.configure``."""
        return {
            "tick_length": timedelta(seconds=self.tick_length_seconds),
            "max_concurrent_detached": self.max_concurrent_detached,
            "thread": self.thread,
            "tz": self.tz,
        }


class ManagerOptions(BaseModel):
    """Validated options for ``Manager.configure``. Only fields that were set are applied."""

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    tick_length: timedelta | None = None
    max_concurrent_detached: int | None = Field(default=None, ge=1)
    logger: Any = None
    thread: bool | None = None
    tz: Any = None
    handler: Callable[..., Any] | None = None
    error_handler: Callable[..., Any] | None = None

    @field_validator("tick_length")
    @classmethod
    def _positive_tick(cls, value: timedelta | None) -> timedelta | None:
        if value is not None and value <= timedelta(0):
            raise ValueError("tick_length must be positive")
        return value

    @field_validator("tz")
    @classmethod
    def _zone(cls, value: Any) -> tzinfo | None:
        return resolve_tz(value)


__all__ = ["ClockSettings", "ManagerOptions", "resolve_tz"]
