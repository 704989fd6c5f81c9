"""
Canonical protocol definitions for txoutbox.

The outbox depends only on the *shape* of a database connection and of a
transaction manager, never on a concrete driver.  Any object matching
these protocols works: the bundled ``SqliteConnection`` and
``SAConnectionBridge`` adapters, a test double, or an adapter around the
host application's own connectivity layer.

Architecture:
    ::

        protocols.py
        ├── Connection          — DB-API-like sync connection
        ├── ManagedConnection   — Connection + begin()/close() lifecycle
        └── TransactionManager  — "run this unit of work in a transaction"

    Consumers:
        core/migrations, dispatch/persistor, dispatch/outbox

Tags:
    protocol, connection, transaction, contracts
"""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractContextManager
from typing import TYPE_CHECKING, Any, Protocol, TypeVar, runtime_checkable

if TYPE_CHECKING:
    from txoutbox.core.transactions import Transaction

T = TypeVar("T")


@runtime_checkable
class Connection(Protocol):
    """
    Minimal synchronous connection interface for outbox SQL.

    ``execute`` returns a cursor-like object exposing ``rowcount``; the
    rows of the last statement are read back through ``fetchone`` /
    ``fetchall`` on the connection itself.

    Architecture:
        ::

            Connection Protocol:
            ┌────────────────────────────────────────────────────────┐
            │ execute(sql, params)   → cursor (rowcount)             │
            │ executemany(sql, list) → cursor                        │
            │ fetchone()             → row | None                    │
            │ fetchall()             → list[row]                     │
            │ commit()               → commit transaction            │
            │ rollback()             → rollback transaction          │
            └────────────────────────────────────────────────────────┘
    """

    def execute(self, sql: str, params: tuple = ()) -> Any:
        """Execute SQL statement with optional parameters."""
        ...

    def executemany(self, sql: str, params: list[tuple]) -> Any:
        """Execute SQL statement for multiple parameter sets."""
        ...

    def fetchone(self) -> Any:
        """Fetch one row from last query."""
        ...

    def fetchall(self) -> list:
        """Fetch all rows from last query."""
        ...

    def commit(self) -> None:
        """Commit current transaction."""
        ...

    def rollback(self) -> None:
        """Rollback current transaction."""
        ...


@runtime_checkable
class ManagedConnection(Connection, Protocol):
    """A :class:`Connection` whose transaction and lifetime are controlled explicitly.

    Transaction managers open one per unit of work, call ``begin()``, then
    ``commit()`` or ``rollback()``, and finally ``close()``.
    """

    def begin(self) -> None:
        """Start a transaction (no-op for drivers that begin implicitly)."""
        ...

    def close(self) -> None:
        """Release the underlying connection."""
        ...


@runtime_checkable
class TransactionManager(Protocol):
    """
    Contract for running units of work transactionally.

    ``in_transaction`` commits when ``work`` returns and rolls back when
    it raises (re-raising the exception).  ``current`` returns the
    innermost transaction open on the calling thread, so that code running
    inside the host's business transaction can join it.
    """

    def in_transaction(self, work: Callable[[Transaction], T]) -> T:
        """Run ``work`` in a new transaction and return its result."""
        ...

    def transaction(self) -> AbstractContextManager[Transaction]:
        """Context-manager form of :meth:`in_transaction`."""
        ...

    def current(self) -> Transaction:
        """The active transaction; raises ``NoTransactionActiveError`` if none."""
        ...


__all__ = [
    "Connection",
    "ManagedConnection",
    "TransactionManager",
]
