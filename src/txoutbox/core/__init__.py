"""txoutbox core -- storage-facing primitives.

Architecture::

    Layer 1 -- Errors, logging, configuration
        errors.py          Structured error hierarchy (OutboxError and subclasses)
        logging.py         structlog configuration and context helpers
        settings.py        OutboxSettings (pydantic-settings, TXOUTBOX_ prefix)

    Layer 2 -- Database access
        protocols.py       Connection / ManagedConnection / TransactionManager
        transactions.py    Transaction + thread-local transaction managers
        sqlite_conn.py     sqlite3 adapter (BEGIN IMMEDIATE transactions)
        orm/               SQLAlchemy engine, session and Connection bridge
        connection.py      create_transaction_manager(url)
        dialect.py         Per-engine SQL strategy (6 dialects)
        migrations/        Versioned schema history + MigrationManager
"""

from txoutbox.core.dialect import Dialect, DialectName, get_dialect, infer_dialect
from txoutbox.core.errors import (
    ConfigError,
    DuplicateRequestError,
    EntryBlockedError,
    HandlerNotFoundError,
    InvalidConfigError,
    InvocationError,
    MigrationError,
    NoTransactionActiveError,
    OptimisticLockError,
    OutboxError,
    PersistenceError,
)
from txoutbox.core.protocols import Connection, ManagedConnection, TransactionManager
from txoutbox.core.sqlite_conn import SqliteConnection
from txoutbox.core.transactions import (
    ConnectionTransactionManager,
    SessionTransactionManager,
    Transaction,
)

__all__ = [
    "Dialect",
    "DialectName",
    "get_dialect",
    "infer_dialect",
    "ConfigError",
    "DuplicateRequestError",
    "EntryBlockedError",
    "HandlerNotFoundError",
    "InvalidConfigError",
    "InvocationError",
    "MigrationError",
    "NoTransactionActiveError",
    "OptimisticLockError",
    "OutboxError",
    "PersistenceError",
    "Connection",
    "ManagedConnection",
    "TransactionManager",
    "SqliteConnection",
    "ConnectionTransactionManager",
    "SessionTransactionManager",
    "Transaction",
]
