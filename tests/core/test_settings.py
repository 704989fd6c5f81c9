"""Tests for OutboxSettings and the cached settings factory."""

from __future__ import annotations

import os
from datetime import timedelta

import pytest
from pydantic import ValidationError

from txoutbox.core.dialect import DialectName
from txoutbox.core.settings import OutboxSettings, clear_settings_cache, get_settings


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Run from an empty directory with no TXOUTBOX_* variables set."""
    monkeypatch.chdir(tmp_path)
    for key in list(os.environ):
        if key.startswith("TXOUTBOX_"):
            monkeypatch.delenv(key)


class TestDefaults:
    def test_defaults(self):
        s = OutboxSettings()
        assert s.database_url == "sqlite:///outbox.db"
        assert s.table_name == "TXNO_OUTBOX"
        assert s.flush_batch_size == 4096
        assert s.block_after_attempts == 5
        assert s.attempt_frequency == timedelta(minutes=2)
        assert s.retention_threshold == timedelta(days=7)
        assert s.migrate is True
        assert s.submitter_workers == 0

    def test_dialect_inferred_from_url(self):
        assert OutboxSettings(database_url="postgresql+psycopg://h/db").resolved_dialect() is (
            DialectName.POSTGRESQL
        )

    def test_explicit_dialect_wins(self):
        s = OutboxSettings(database_url="mysql+pymysql://h/db", dialect="mysql5")
        assert s.resolved_dialect() is DialectName.MY_SQL_5


class TestValidation:
    @pytest.mark.parametrize(
        "field,value",
        [
            ("flush_batch_size", 0),
            ("block_after_attempts", 0),
            ("attempt_frequency_seconds", 0),
            ("submitter_workers", -1),
            ("table_name", "drop table; --"),
            ("log_format", "xml"),
            ("dialect", "db2"),
        ],
    )
    def test_rejects_bad_values(self, field, value):
        with pytest.raises(ValidationError):
            OutboxSettings(**{field: value})

    def test_backoff_cap_below_base(self):
        with pytest.raises(ValidationError, match="backoff_max_seconds"):
            OutboxSettings(backoff_base_seconds=60, backoff_max_seconds=30)


class TestEnvironment:
    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("TXOUTBOX_BLOCK_AFTER_ATTEMPTS", "3")
        monkeypatch.setenv("TXOUTBOX_MIGRATE", "false")
        s = OutboxSettings()
        assert s.block_after_attempts == 3
        assert s.migrate is False

    def test_env_file(self, tmp_path):
        env = tmp_path / "custom.env"
        env.write_text("TXOUTBOX_TABLE_NAME=ORDERS_OUTBOX\n", encoding="utf-8")
        assert get_settings(env_file=str(env)).table_name == "ORDERS_OUTBOX"


class TestFactory:
    def test_cached(self):
        assert get_settings() is get_settings()

    def test_force_reload(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("TXOUTBOX_FLUSH_BATCH_SIZE", "10")
        assert get_settings() is first
        reloaded = get_settings(_force_reload=True)
        assert reloaded.flush_batch_size == 10

    def test_clear_cache(self):
        first = get_settings()
        clear_settings_cache()
        assert get_settings() is not first
