"""Migration manager.

Brings the outbox schema up to the latest version inside a single
transaction, tracking progress in the one-row ``TXNO_VERSION`` table.
Concurrent startups serialize on the version-table lock: the second
process sees the advanced version and applies nothing.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from txoutbox.core.dialect import VERSION_TABLE, Dialect
from txoutbox.core.errors import MigrationError
from txoutbox.core.logging import get_logger
from txoutbox.core.migrations.versions import MIGRATIONS, OUTBOX_TABLE, Migration
from txoutbox.core.protocols import TransactionManager
from txoutbox.core.transactions import Transaction

logger = get_logger(__name__)


@dataclass
class MigrationResult:
    """Result of a migration run."""

    from_version: int = 0
    to_version: int = 0
    applied: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    """Migrations whose SQL was empty on this dialect (version still recorded)."""

    @property
    def changed(self) -> bool:
        return self.to_version != self.from_version


class MigrationManager:
    """Applies pending :class:`Migration` steps for one dialect.

    Parameters
    ----------
    transaction_manager
        Supplies the single transaction the whole run executes in.
    dialect
        Selects per-engine SQL and the version-table locking statements.
    migrations
        Ordered history; defaults to the shipped ``MIGRATIONS``.
    table_name
        Outbox table the statements are rendered for.

    Example::

        manager = MigrationManager(tm, get_dialect("postgresql"))
        result = manager.migrate()
        print(f"schema at version {result.to_version}")
    """

    def __init__(
        self,
        transaction_manager: TransactionManager,
        dialect: Dialect,
        migrations: Sequence[Migration] = MIGRATIONS,
        *,
        table_name: str = OUTBOX_TABLE,
    ) -> None:
        self._tm = transaction_manager
        self._dialect = dialect
        self._migrations = sorted(migrations, key=lambda m: m.version)
        self._table = table_name

    @property
    def latest_version(self) -> int:
        return self._migrations[-1].version if self._migrations else 0

    def migrate(self) -> MigrationResult:
        """Apply every migration newer than the recorded version.

        Raises:
            MigrationError: Any step failed; nothing from this run is kept.
        """
        try:
            return self._tm.in_transaction(self._migrate)
        except Exception as e:
            version = e.context.migration_version if isinstance(e, MigrationError) else None
            logger.error(
                "migration.failed",
                dialect=self._dialect.name.value,
                version=version,
                error=str(e.__cause__ or e),
            )
            raise MigrationError("Migrations failed", cause=e).with_context(
                dialect=self._dialect.name.value, migration_version=version
            ) from e

    def current_version(self) -> int:
        """Read the recorded schema version (0 for a fresh database).

        Read-only: the version table is never created here.
        """
        return self._tm.in_transaction(self._peek_version)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _migrate(self, tx: Transaction) -> MigrationResult:
        current = self._read_version(tx)
        result = MigrationResult(from_version=current, to_version=current)

        for migration in self._migrations:
            if migration.version <= current:
                continue
            self._apply(tx, migration, result)
            result.to_version = migration.version

        if result.changed:
            logger.info(
                "migration.complete",
                from_version=result.from_version,
                to_version=result.to_version,
                applied=len(result.applied),
            )
        else:
            logger.debug("migration.up_to_date", version=current)
        return result

    def _read_version(self, tx: Transaction) -> int:
        conn = tx.connection
        conn.execute(self._dialect.create_version_table())
        if self._dialect.commit_ddl_before_dml:
            tx.checkpoint()
        lock = self._dialect.lock_version_table()
        if lock:
            conn.execute(lock)
        conn.execute(self._dialect.select_current_version())
        row = conn.fetchone()
        return int(row[0]) if row else 0

    def _peek_version(self, tx: Transaction) -> int:
        conn = tx.connection
        conn.execute(self._dialect.table_exists_query(), (VERSION_TABLE,))
        if conn.fetchone() is None:
            return 0
        conn.execute(f"SELECT version FROM {VERSION_TABLE}")
        row = conn.fetchone()
        return int(row[0]) if row else 0

    def _apply(self, tx: Transaction, migration: Migration, result: MigrationResult) -> None:
        conn = tx.connection
        sql = migration.sql_for(self._dialect, self._table)
        logger.info("migration.running", version=migration.version, name=migration.name)
        try:
            if sql.strip():
                conn.execute(sql)
                result.applied.append(migration.name)
            else:
                result.skipped.append(migration.name)
            self._record_version(conn, migration.version)
        except Exception as e:
            raise MigrationError(
                f"Migration {migration.version} ({migration.name}) failed",
                cause=e,
            ).with_context(
                migration_version=migration.version,
                dialect=self._dialect.name.value,
            ) from e

    def _record_version(self, conn, version: int) -> None:
        ph = self._dialect.placeholder(0)
        cursor = conn.execute(f"UPDATE {VERSION_TABLE} SET version = {ph}", (version,))
        if cursor.rowcount != 1:
            conn.execute(f"INSERT INTO {VERSION_TABLE} VALUES ({ph})", (version,))
