"""Centralized configuration for txoutbox.

All fields can be set via ``TXOUTBOX_*`` environment variables (e.g.
``TXOUTBOX_DATABASE_URL=postgresql+psycopg://...``) or through a ``.env``
file.  Values are validated at construction: a bad value fails at startup
with a pydantic ``ValidationError`` rather than mid-flush.

Examples:
    >>> from txoutbox.core.settings import OutboxSettings
    >>> s = OutboxSettings(database_url="sqlite:///outbox.db", block_after_attempts=3)
    >>> s.resolved_dialect().value
    'sqlite'

Tags:
    settings, configuration, pydantic, environment
"""

from __future__ import annotations

from datetime import timedelta

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from txoutbox.core.dialect import DialectName, infer_dialect


class OutboxSettings(BaseSettings):
    """Outbox configuration.

    Fields
    ──────
    database_url          : Where TXNO_OUTBOX lives (SQLite path or SQLAlchemy URL)
    dialect               : Engine override; inferred from ``database_url`` when unset
    migrate               : Run schema migrations on ``initialize()``
    block_after_attempts  : Failed attempts before an entry is blocked
    backoff_*             : Exponential retry curve
    retention_seconds     : How long processed entries are kept for dedup
    """

    model_config = SettingsConfigDict(
        env_prefix="TXOUTBOX_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Database ─────────────────────────────────────────────────
    database_url: str = Field(default="sqlite:///outbox.db")
    dialect: DialectName | None = Field(default=None)
    migrate: bool = Field(default=True)
    table_name: str = Field(default="TXNO_OUTBOX", pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")

    # ── Dispatch ─────────────────────────────────────────────────
    flush_batch_size: int = Field(default=4096, gt=0)
    attempt_frequency_seconds: float = Field(default=120.0, gt=0)
    block_after_attempts: int = Field(default=5, ge=1)
    process_immediately: bool = Field(default=True)
    submitter_workers: int = Field(default=0, ge=0, description="0 runs invocations inline")

    # ── Backoff ──────────────────────────────────────────────────
    backoff_base_seconds: float = Field(default=30.0, gt=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    backoff_max_seconds: float = Field(default=3600.0, gt=0)

    # ── Retention / scheduling ───────────────────────────────────
    retention_seconds: float = Field(default=7 * 24 * 3600.0, ge=0)
    flush_interval_seconds: float = Field(default=10.0, gt=0)

    # ── Observability ────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", pattern=r"^(json|console)$")

    @model_validator(mode="after")
    def _validate_backoff(self) -> OutboxSettings:
        if self.backoff_max_seconds < self.backoff_base_seconds:
            raise ValueError("backoff_max_seconds must be >= backoff_base_seconds")
        return self

    # ── Derived properties ───────────────────────────────────────

    def resolved_dialect(self) -> DialectName:
        return self.dialect or infer_dialect(self.database_url)

    @property
    def attempt_frequency(self) -> timedelta:
        return timedelta(seconds=self.attempt_frequency_seconds)

    @property
    def retention_threshold(self) -> timedelta:
        return timedelta(seconds=self.retention_seconds)


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, OutboxSettings] = {}


def get_settings(*, env_file: str | None = None, _force_reload: bool = False) -> OutboxSettings:
    """Load, validate, and cache an :class:`OutboxSettings` instance."""
    cache_key = env_file or ""
    if not _force_reload and cache_key in _settings_cache:
        return _settings_cache[cache_key]

    if env_file:
        settings = OutboxSettings(_env_file=env_file)  # type: ignore[call-arg]
    else:
        settings = OutboxSettings()
    _settings_cache[cache_key] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()


__all__ = ["OutboxSettings", "get_settings", "clear_settings_cache"]
