"""The ordered schema history of the outbox table.

Each :class:`Migration` is applied at most once per database, in version
order.  ``sql`` is the default statement; ``dialect_specific`` overrides it
per engine.  An override of ``""`` means "nothing to do on this engine"
and still advances the recorded version.

Statements are templates: ``{table}`` is replaced with the outbox table
name at apply time.  A callable ``sql`` receives the dialect so that
mechanical steps (add a column) can use the dialect's type mapping instead
of one override per engine.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from txoutbox.core.dialect import ColumnType, Dialect, DialectName

OUTBOX_TABLE = "TXNO_OUTBOX"

SqlSource = str | Callable[[Dialect], str]

_MYSQL = (DialectName.MY_SQL_5, DialectName.MY_SQL_8)


@dataclass(frozen=True)
class Migration:
    """One step of schema evolution."""

    version: int
    name: str
    sql: SqlSource
    dialect_specific: Mapping[DialectName, str] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def sql_for(self, dialect: Dialect, table: str = OUTBOX_TABLE) -> str:
        """Resolve the statement to run on ``dialect`` (may be empty)."""
        if dialect.name in self.dialect_specific:
            template = self.dialect_specific[dialect.name]
        elif callable(self.sql):
            template = self.sql(dialect)
        else:
            template = self.sql
        return template.format(table=table)


def _overrides(mapping: dict[DialectName, str]) -> Mapping[DialectName, str]:
    return MappingProxyType(mapping)


def _create_outbox_table(d: Dialect) -> str:
    return (
        "CREATE TABLE {table} (\n"
        f"    id {d.column_type(ColumnType.ID)} PRIMARY KEY,\n"
        f"    invocation {d.column_type(ColumnType.LONG_TEXT)},\n"
        f"    nextAttemptTime {d.column_type(ColumnType.TIMESTAMP)},\n"
        f"    attempts {d.column_type(ColumnType.INTEGER)},\n"
        f"    blacklisted {d.column_type(ColumnType.BOOLEAN)},\n"
        f"    version {d.column_type(ColumnType.INTEGER)}\n"
        ")"
    )


def _add(column: str, kind: ColumnType) -> Callable[[Dialect], str]:
    return lambda d: d.add_column("{table}", column, kind)


MIGRATIONS: tuple[Migration, ...] = (
    Migration(1, "Create outbox table", _create_outbox_table),
    Migration(
        2,
        "Add unique request id",
        "ALTER TABLE {table} ADD COLUMN uniqueRequestId VARCHAR(100) NULL UNIQUE",
        _overrides({
            # Unique index added in v9; a UNIQUE column here would reject multiple NULLs
            DialectName.SQL_SERVER: "ALTER TABLE {table} ADD uniqueRequestId VARCHAR(100)",
            # SQLite cannot add a UNIQUE column
            DialectName.SQLITE: "ALTER TABLE {table} ADD COLUMN uniqueRequestId VARCHAR(100)",
            DialectName.ORACLE: "ALTER TABLE {table} ADD uniqueRequestId VARCHAR2(100) NULL UNIQUE",
        }),
    ),
    Migration(3, "Add processed flag", _add("processed", ColumnType.BOOLEAN)),
    Migration(
        4,
        "Add flush index",
        "CREATE INDEX IX_{table}_1 ON {table} (processed, blacklisted, nextAttemptTime)",
    ),
    Migration(
        5,
        "Increase size of uniqueRequestId",
        "ALTER TABLE {table} MODIFY COLUMN uniqueRequestId VARCHAR(250)",
        _overrides({
            DialectName.POSTGRESQL: "ALTER TABLE {table} ALTER COLUMN uniqueRequestId TYPE VARCHAR(250)",
            DialectName.SQL_SERVER: "ALTER TABLE {table} ALTER COLUMN uniqueRequestId VARCHAR(250)",
            DialectName.ORACLE: "ALTER TABLE {table} MODIFY uniqueRequestId VARCHAR2(250)",
            # VARCHAR length is not enforced
            DialectName.SQLITE: "",
        }),
    ),
    Migration(
        6,
        "Rename column blacklisted to blocked",
        "ALTER TABLE {table} RENAME COLUMN blacklisted TO blocked",
        _overrides({
            **{d: "ALTER TABLE {table} CHANGE COLUMN blacklisted blocked BOOLEAN" for d in _MYSQL},
            DialectName.SQL_SERVER: "EXEC sp_rename '{table}.blacklisted', 'blocked', 'COLUMN'",
        }),
    ),
    Migration(
        7,
        "Add lastAttemptTime column to outbox",
        _add("lastAttemptTime", ColumnType.TIMESTAMP),
        _overrides({
            d: "ALTER TABLE {table} ADD COLUMN lastAttemptTime TIMESTAMP(6) NULL AFTER invocation"
            for d in _MYSQL
        }),
    ),
    Migration(
        8,
        "Update length of invocation column on outbox for MySQL dialects only",
        "ALTER TABLE {table} MODIFY COLUMN invocation MEDIUMTEXT",
        _overrides({
            DialectName.POSTGRESQL: "",
            DialectName.SQLITE: "",
            DialectName.SQL_SERVER: "",
            DialectName.ORACLE: "",
        }),
    ),
    Migration(
        9,
        "Add unique constraint that allows multiple nulls for uniqueRequestId",
        "",
        _overrides({
            DialectName.SQL_SERVER: (
                "CREATE UNIQUE INDEX UX_{table}_uniqueRequestId ON {table} (uniqueRequestId) "
                "WHERE uniqueRequestId IS NOT NULL"
            ),
            DialectName.SQLITE: "CREATE UNIQUE INDEX UX_{table}_uniqueRequestId ON {table} (uniqueRequestId)",
        }),
    ),
    Migration(10, "Add createdTime column to outbox", _add("createdTime", ColumnType.TIMESTAMP)),
)


__all__ = ["OUTBOX_TABLE", "Migration", "MIGRATIONS"]
