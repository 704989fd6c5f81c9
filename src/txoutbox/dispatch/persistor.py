"""Persistor: all reads and writes of the outbox table.

Every statement runs on the connection of a transaction supplied by the
caller; the persistor never commits.  SQL text comes from the
:class:`~txoutbox.core.dialect.Dialect`, so the observable contract of each
operation is the same on every engine.

Concurrency contract:
    - ``update`` is optimistic: ``WHERE id = ? AND version = ?``; no match
      raises :class:`OptimisticLockError`.
    - ``select_batch`` uses the dialect's skip-locked selection so two
      concurrent callers never receive the same row while both hold their
      transactions open.
    - ``lock`` re-acquires a single row at a known version before
      processing.

Driver errors other than unique-key violations on ``uniqueRequestId`` are
wrapped in :class:`PersistenceError` with the driver exception as cause.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol

from txoutbox.core.dialect import Dialect, read_bool, read_timestamp
from txoutbox.core.errors import (
    DuplicateRequestError,
    OptimisticLockError,
    OutboxError,
    PersistenceError,
)
from txoutbox.core.logging import get_logger
from txoutbox.core.migrations import MIGRATIONS, OUTBOX_TABLE, MigrationManager, MigrationResult
from txoutbox.dispatch.entry import OutboxEntry
from txoutbox.dispatch.invocation import InvocationSerializer, JsonInvocationSerializer

if TYPE_CHECKING:
    from txoutbox.core.protocols import TransactionManager
    from txoutbox.core.transactions import Transaction

logger = get_logger(__name__)

COLUMNS = [
    "id",
    "uniqueRequestId",
    "invocation",
    "createdTime",
    "lastAttemptTime",
    "nextAttemptTime",
    "attempts",
    "blocked",
    "processed",
    "version",
]

_INTEGRITY_ERROR_NAMES = {"IntegrityError", "UniqueViolation"}


def is_integrity_violation(error: BaseException) -> bool:
    """Detect a constraint violation from any DB-API driver or SQLAlchemy.

    Checks the exception class hierarchy for the DB-API ``IntegrityError``
    name and the SQLSTATE class ``23`` where the driver exposes it.
    """
    for candidate in (error, getattr(error, "orig", None)):
        if candidate is None:
            continue
        if any(cls.__name__ in _INTEGRITY_ERROR_NAMES for cls in type(candidate).__mro__):
            return True
        state = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if isinstance(state, str) and state.startswith("23"):
            return True
    return False


@dataclass(frozen=True)
class StatusCounts:
    pending: int = 0
    blocked: int = 0
    processed: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.blocked + self.processed


class Persistor(Protocol):
    """Storage operations the dispatch engine relies on."""

    def migrate(self, transaction_manager: TransactionManager) -> MigrationResult | None: ...

    def save(self, tx: Transaction, entry: OutboxEntry) -> None: ...

    def update(self, tx: Transaction, entry: OutboxEntry) -> None: ...

    def delete(self, tx: Transaction, entry: OutboxEntry) -> bool: ...

    def lock(self, tx: Transaction, entry: OutboxEntry) -> bool: ...

    def select_batch(self, tx: Transaction, batch_size: int, now: datetime) -> list[OutboxEntry]: ...

    def exists_unique(self, tx: Transaction, unique_request_id: str) -> bool: ...

    def unblock(self, tx: Transaction, entry_id: str) -> bool: ...

    def delete_processed_and_expired(self, tx: Transaction, batch_size: int, now: datetime) -> int: ...

    def get(self, tx: Transaction, entry_id: str) -> OutboxEntry | None: ...

    def table_exists(self, tx: Transaction) -> bool: ...

    def count_by_status(self, tx: Transaction) -> StatusCounts: ...

    def clear(self, tx: Transaction) -> None: ...


class DefaultPersistor:
    """SQL persistor over a single outbox table.

    Parameters
    ----------
    dialect
        Engine-specific SQL strategy.
    table_name
        Outbox table (default ``TXNO_OUTBOX``).
    migrate
        Run the migration manager from :meth:`migrate`.  Disable when the
        schema is managed externally.
    serializer
        Converts invocations to the stored text.
    """

    def __init__(
        self,
        dialect: Dialect,
        *,
        table_name: str = OUTBOX_TABLE,
        migrate: bool = True,
        serializer: InvocationSerializer | None = None,
    ) -> None:
        self.dialect = dialect
        self.table_name = table_name
        self.migrate_enabled = migrate
        self.serializer = serializer or JsonInvocationSerializer()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def migrate(self, transaction_manager: TransactionManager) -> MigrationResult | None:
        """Bring the schema up to date, unless migration is disabled."""
        if not self.migrate_enabled:
            logger.info("persistor.migration_disabled", table=self.table_name)
            return None
        manager = MigrationManager(
            transaction_manager, self.dialect, MIGRATIONS, table_name=self.table_name
        )
        return manager.migrate()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def save(self, tx: Transaction, entry: OutboxEntry) -> None:
        """Insert a new entry.

        Raises:
            DuplicateRequestError: ``unique_request_id`` is already stored.
        """
        d = self.dialect
        sql = (
            f"INSERT INTO {self.table_name} ({', '.join(COLUMNS)}) "
            f"VALUES ({d.placeholders(len(COLUMNS))})"
        )
        params = (
            entry.id,
            entry.unique_request_id,
            self.serializer.serialize(entry.invocation),
            d.timestamp_param(entry.created_time),
            d.timestamp_param(entry.last_attempt_time),
            d.timestamp_param(entry.next_attempt_time),
            0,
            d.bool_param(False),
            d.bool_param(False),
            0,
        )
        try:
            tx.connection.execute(sql, params)
        except Exception as e:
            if entry.unique_request_id is not None and is_integrity_violation(e):
                raise DuplicateRequestError(
                    f"Request {entry.unique_request_id} already submitted", cause=e
                ).with_context(entry_id=entry.id, unique_request_id=entry.unique_request_id) from e
            raise PersistenceError(f"Failed to insert entry: {e}", cause=e).with_context(
                entry_id=entry.id, dialect=d.name.value
            ) from e
        entry.attempts = 0
        entry.version = 0
        entry.blocked = False
        entry.processed = False
        logger.debug("persistor.saved", entry_id=entry.id, unique_request_id=entry.unique_request_id)

    def update(self, tx: Transaction, entry: OutboxEntry) -> None:
        """Write the mutable fields of ``entry`` if its version is current.

        Raises:
            OptimisticLockError: The row is gone or was updated concurrently.
        """
        d = self.dialect
        ph = d.placeholder
        sql = (
            f"UPDATE {self.table_name} SET "
            f"lastAttemptTime = {ph(0)}, nextAttemptTime = {ph(1)}, attempts = {ph(2)}, "
            f"blocked = {ph(3)}, processed = {ph(4)}, version = {ph(5)} "
            f"WHERE id = {ph(6)} AND version = {ph(7)}"
        )
        params = (
            d.timestamp_param(entry.last_attempt_time),
            d.timestamp_param(entry.next_attempt_time),
            entry.attempts,
            d.bool_param(entry.blocked),
            d.bool_param(entry.processed),
            entry.version + 1,
            entry.id,
            entry.version,
        )
        with self._db_errors("update", entry.id):
            cursor = tx.connection.execute(sql, params)
        if cursor.rowcount != 1:
            raise OptimisticLockError(
                f"Entry {entry.id} was modified or removed (expected version {entry.version})"
            ).with_context(entry_id=entry.id)
        entry.version += 1

    def delete(self, tx: Transaction, entry: OutboxEntry) -> bool:
        """Delete ``entry`` if it has been processed; otherwise do nothing."""
        d = self.dialect
        sql = (
            f"DELETE FROM {self.table_name} "
            f"WHERE id = {d.placeholder(0)} AND processed = {d.boolean_true()}"
        )
        with self._db_errors("delete", entry.id):
            cursor = tx.connection.execute(sql, (entry.id,))
        return cursor.rowcount > 0

    def unblock(self, tx: Transaction, entry_id: str) -> bool:
        """Clear ``blocked`` and reset ``attempts`` on a blocked, unprocessed entry."""
        d = self.dialect
        sql = (
            f"UPDATE {self.table_name} SET attempts = 0, blocked = {d.boolean_false()}, "
            f"version = version + 1 "
            f"WHERE blocked = {d.boolean_true()} AND processed = {d.boolean_false()} "
            f"AND id = {d.placeholder(0)}"
        )
        with self._db_errors("unblock", entry_id):
            cursor = tx.connection.execute(sql, (entry_id,))
        return cursor.rowcount > 0

    def delete_processed_and_expired(self, tx: Transaction, batch_size: int, now: datetime) -> int:
        """Delete up to ``batch_size`` processed entries whose retention has elapsed."""
        d = self.dialect
        where = f"processed = {d.boolean_true()} AND nextAttemptTime < {d.placeholder(0)}"
        sql = d.delete_limited(self.table_name, where, batch_size)
        with self._db_errors("delete_processed_and_expired"):
            cursor = tx.connection.execute(sql, (d.timestamp_param(now),))
        return max(cursor.rowcount, 0)

    def clear(self, tx: Transaction) -> None:
        """Delete every entry (for tests and operators)."""
        with self._db_errors("clear"):
            tx.connection.execute(f"DELETE FROM {self.table_name}")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def lock(self, tx: Transaction, entry: OutboxEntry) -> bool:
        """Lock the entry's row if it is still at ``entry.version``."""
        d = self.dialect
        where = f"id = {d.placeholder(0)} AND version = {d.placeholder(1)}"
        sql = d.lock_row(self.table_name, ["id"], where)
        with self._db_errors("lock", entry.id):
            tx.connection.execute(sql, (entry.id, entry.version))
            return tx.connection.fetchone() is not None

    def select_batch(self, tx: Transaction, batch_size: int, now: datetime) -> list[OutboxEntry]:
        """Due entries, oldest first, locked against concurrent selection."""
        d = self.dialect
        where = (
            f"blocked = {d.boolean_false()} AND processed = {d.boolean_false()} "
            f"AND nextAttemptTime <= {d.placeholder(0)}"
        )
        sql = d.select_batch(self.table_name, COLUMNS, where, "nextAttemptTime", batch_size)
        with self._db_errors("select_batch"):
            tx.connection.execute(sql, (d.timestamp_param(now),))
            rows = tx.connection.fetchall()
        return [self._to_entry(row) for row in rows]

    def exists_unique(self, tx: Transaction, unique_request_id: str) -> bool:
        sql = (
            f"SELECT id FROM {self.table_name} "
            f"WHERE uniqueRequestId = {self.dialect.placeholder(0)}"
        )
        with self._db_errors("exists_unique"):
            tx.connection.execute(sql, (unique_request_id,))
            return tx.connection.fetchone() is not None

    def get(self, tx: Transaction, entry_id: str) -> OutboxEntry | None:
        sql = (
            f"SELECT {', '.join(COLUMNS)} FROM {self.table_name} "
            f"WHERE id = {self.dialect.placeholder(0)}"
        )
        with self._db_errors("get", entry_id):
            tx.connection.execute(sql, (entry_id,))
            row = tx.connection.fetchone()
        return self._to_entry(row) if row else None

    def table_exists(self, tx: Transaction) -> bool:
        with self._db_errors("table_exists"):
            tx.connection.execute(self.dialect.table_exists_query(), (self.table_name,))
            return tx.connection.fetchone() is not None

    def count_by_status(self, tx: Transaction) -> StatusCounts:
        sql = f"SELECT processed, blocked, COUNT(*) FROM {self.table_name} GROUP BY processed, blocked"
        with self._db_errors("count_by_status"):
            tx.connection.execute(sql)
            rows = tx.connection.fetchall()
        counts = {"pending": 0, "blocked": 0, "processed": 0}
        for processed, blocked, count in rows:
            if read_bool(processed):
                counts["processed"] += int(count)
            elif read_bool(blocked):
                counts["blocked"] += int(count)
            else:
                counts["pending"] += int(count)
        return StatusCounts(**counts)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _to_entry(self, row: Any) -> OutboxEntry:
        (
            entry_id,
            unique_request_id,
            invocation,
            created_time,
            last_attempt_time,
            next_attempt_time,
            attempts,
            blocked,
            processed,
            version,
        ) = row
        if hasattr(invocation, "read"):
            # Oracle CLOB
            invocation = invocation.read()
        return OutboxEntry(
            id=entry_id,
            invocation=self.serializer.deserialize(invocation),
            created_time=read_timestamp(created_time),
            last_attempt_time=read_timestamp(last_attempt_time),
            next_attempt_time=read_timestamp(next_attempt_time),
            attempts=int(attempts or 0),
            blocked=read_bool(blocked),
            processed=read_bool(processed),
            unique_request_id=unique_request_id,
            version=int(version or 0),
        )

    @contextmanager
    def _db_errors(self, operation: str, entry_id: str | None = None) -> Iterator[None]:
        try:
            yield
        except OutboxError:
            raise
        except Exception as e:
            raise PersistenceError(f"{operation} failed: {e}", cause=e).with_context(
                entry_id=entry_id, dialect=self.dialect.name.value
            ) from e


__all__ = [
    "COLUMNS",
    "Persistor",
    "DefaultPersistor",
    "StatusCounts",
    "is_integrity_violation",
]
