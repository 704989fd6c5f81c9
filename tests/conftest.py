"""
Shared pytest fixtures for txoutbox tests.

This module provides:
- Global state cleanup (handler registry, settings cache, log context)
- File-backed SQLite transaction managers and a migrated outbox table
- A controllable clock so retry and retention timing is deterministic

Usage:
    def test_something(outbox, registry, clock):
        registry.register("orders.confirm", lambda order_id: order_id)
        ...
"""

import logging
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Generator

import pytest
import structlog

# Ensure txoutbox package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from txoutbox.core.dialect import get_dialect
from txoutbox.core.logging import clear_context
from txoutbox.core.settings import clear_settings_cache
from txoutbox.core.sqlite_conn import SqliteConnection
from txoutbox.core.transactions import ConnectionTransactionManager
from txoutbox.dispatch.backoff import FixedBackoff
from txoutbox.dispatch.invocation import (
    InvocationRegistry,
    RegistryInvocationExecutor,
    reset_default_registry,
)
from txoutbox.dispatch.outbox import TransactionOutbox
from txoutbox.dispatch.persistor import DefaultPersistor


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark tests without explicit markers as unit tests."""
    for item in items:
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Global State Cleanup
# =============================================================================


@pytest.fixture(autouse=True)
def clean_global_state() -> Generator[None, None, None]:
    """Reset registries, cached settings and logging between tests."""
    reset_default_registry()
    clear_settings_cache()
    clear_context()
    yield
    reset_default_registry()
    clear_settings_cache()
    clear_context()
    structlog.reset_defaults()
    logging.getLogger().handlers.clear()


# =============================================================================
# Clock
# =============================================================================


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "outbox.db"


@pytest.fixture
def tm(db_path: Path) -> ConnectionTransactionManager:
    """Transaction manager opening a new SQLite connection per unit of work."""
    return ConnectionTransactionManager(lambda: SqliteConnection(str(db_path), timeout=10.0))


@pytest.fixture
def dialect():
    return get_dialect("sqlite")


@pytest.fixture
def persistor(dialect) -> DefaultPersistor:
    return DefaultPersistor(dialect)


@pytest.fixture
def migrated(tm, persistor) -> DefaultPersistor:
    """Persistor whose table has been created at the latest schema version."""
    persistor.migrate(tm)
    return persistor


# =============================================================================
# Outbox Fixtures
# =============================================================================


@pytest.fixture
def registry() -> InvocationRegistry:
    return InvocationRegistry()


@pytest.fixture
def outbox(tm, migrated, registry, clock) -> TransactionOutbox:
    """Outbox with inline processing, a fixed 60s backoff and a fake clock."""
    return TransactionOutbox(
        tm,
        migrated,
        RegistryInvocationExecutor(registry),
        backoff=FixedBackoff(seconds=60),
        block_after_attempts=5,
        clock=clock,
    )
