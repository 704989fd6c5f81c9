"""SQL dialect strategy for the outbox storage.

Provides a ``Dialect`` protocol and one stateless implementation per
supported engine.  The Migration Manager and the Persistor build every
statement through a ``Dialect`` so that the observable contract of each
operation is identical across engines while the SQL text differs.

Architecture::

    ┌──────────────────────────────────────────────────────────────────┐
    │                    Dialect Strategy (stateless)                   │
    └──────────────────────────────────────────────────────────────────┘

    MigrationManager / DefaultPersistor
    ┌────────────────────────────────────────────────────────────────┐
    │  sql = d.select_batch(table, cols, where, "nextAttemptTime", n) │
    │  conn.execute(sql, (d.timestamp_param(now),))                   │
    └────────────────────────────────────────────────────────────────┘
                              │
                              ▼
    ┌─────────┐ ┌────────────┐ ┌─────────┐ ┌────────────┐ ┌──────────┐
    │ SQLite  │ │ PostgreSQL │ │ MySQL   │ │ SQL Server │ │  Oracle  │
    │ ?       │ │ %s         │ │ %s      │ │ ?          │ │ :1, :2   │
    │ no lock │ │ SKIP LOCKED│ │ 5: FOR  │ │ READPAST   │ │ SKIP     │
    │ (BEGIN  │ │            │ │ UPDATE  │ │ UPDLOCK    │ │ LOCKED   │
    │ IMMED.) │ │            │ │ 8: SKIP │ │            │ │          │
    └─────────┘ └────────────┘ └─────────┘ └────────────┘ └──────────┘

Locking disciplines:
    - **PostgreSQL / MySQL 8 / Oracle:** ``FOR UPDATE SKIP LOCKED``; rows
      locked by a concurrent flush are left out of the batch.
    - **SQL Server:** ``WITH (UPDLOCK, ROWLOCK, READPAST)`` table hint.
    - **MySQL 5:** ``FOR UPDATE`` (no skip); concurrent flushes queue up and
      the optimistic version check on the claim drops the loser.
    - **SQLite:** no row locks; connections open with ``BEGIN IMMEDIATE`` so
      writers are serialized for the life of the transaction.

Examples:
    >>> from txoutbox.core.dialect import get_dialect
    >>> d = get_dialect("postgresql")
    >>> d.placeholders(2)
    '%s, %s'
    >>> d.commit_ddl_before_dml
    False

Tags:
    dialect, sql, portability, locking, skip-locked, migrations
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol, runtime_checkable

VERSION_TABLE = "TXNO_VERSION"


class DialectName(str, Enum):
    """Supported database engines."""

    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"
    MY_SQL_5 = "mysql5"
    MY_SQL_8 = "mysql8"
    SQL_SERVER = "sqlserver"
    ORACLE = "oracle"


class ColumnType(str, Enum):
    """Logical column types used by the outbox migrations."""

    ID = "id"
    LONG_TEXT = "long_text"
    TIMESTAMP = "timestamp"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    REQUEST_ID = "request_id"


@runtime_checkable
class Dialect(Protocol):
    """SQL dialect contract.

    Every method returns SQL text (or a bind value) valid for the target
    engine.  Implementations hold no state.
    """

    @property
    def name(self) -> DialectName:
        """Enumerated engine tag; keys per-dialect migration overrides."""
        ...

    @property
    def commit_ddl_before_dml(self) -> bool:
        """Whether newly created objects need a commit before DML sees them."""
        ...

    # -- Placeholders / bind values ----------------------------------------

    def placeholder(self, index: int) -> str:
        """Single positional placeholder (0-based index)."""
        ...

    def placeholders(self, count: int) -> str:
        """Comma-separated placeholder list."""
        ...

    def bool_param(self, value: bool) -> Any:
        """Bind value for a boolean column."""
        ...

    def timestamp_param(self, value: datetime | None) -> Any:
        """Bind value for a timestamp column (input is tz-aware UTC)."""
        ...

    def boolean_true(self) -> str:
        """Literal SQL value for boolean ``True``."""
        ...

    def boolean_false(self) -> str:
        """Literal SQL value for boolean ``False``."""
        ...

    # -- DDL ----------------------------------------------------------------

    def column_type(self, kind: ColumnType) -> str:
        """Engine type name for a logical column type."""
        ...

    def add_column(self, table: str, column: str, kind: ColumnType) -> str:
        """``ALTER TABLE`` statement adding a nullable column."""
        ...

    def create_version_table(self) -> str:
        """Create the schema version table if it does not exist."""
        ...

    def lock_version_table(self) -> str:
        """Statement run before reading the version, or ``""`` if not needed."""
        ...

    def select_current_version(self) -> str:
        """Read (and lock) the current schema version."""
        ...

    def table_exists_query(self) -> str:
        """Query returning a row if the table named by the single placeholder exists."""
        ...

    # -- Locking DML ----------------------------------------------------------

    def select_batch(
        self, table: str, columns: list[str], where: str, order_by: str, limit: int
    ) -> str:
        """Bounded, ordered selection skipping rows locked by other workers."""
        ...

    def lock_row(self, table: str, columns: list[str], where: str) -> str:
        """Select and pessimistically lock matching rows."""
        ...

    def delete_limited(self, table: str, where: str, limit: int) -> str:
        """Delete at most ``limit`` matching rows."""
        ...


# =========================================================================
# Shared conversions
# =========================================================================


def _naive_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(UTC).replace(tzinfo=None)
    return value


def read_timestamp(value: Any) -> datetime | None:
    """Convert a timestamp read from any engine to a tz-aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def read_bool(value: Any) -> bool:
    """Convert a boolean read from any engine (bool, 0/1, ``'1'``)."""
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "t", "y")
    return bool(value)


# =========================================================================
# Concrete Dialect Implementations
# =========================================================================


class SQLiteDialect:
    """SQLite dialect: ``?`` placeholders, text timestamps, no row locks.

    Timestamps are bound as fixed-width ``YYYY-MM-DD HH:MM:SS.ffffff`` UTC
    text so that lexical comparison matches chronological order.
    """

    _TYPES = {
        ColumnType.ID: "VARCHAR(36)",
        ColumnType.LONG_TEXT: "TEXT",
        ColumnType.TIMESTAMP: "TIMESTAMP(6)",
        ColumnType.INTEGER: "INT",
        ColumnType.BOOLEAN: "BOOLEAN",
        ColumnType.REQUEST_ID: "VARCHAR(250)",
    }

    @property
    def name(self) -> DialectName:
        return DialectName.SQLITE

    @property
    def commit_ddl_before_dml(self) -> bool:
        return False

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "?"

    def placeholders(self, count: int) -> str:
        return ", ".join("?" for _ in range(count))

    def bool_param(self, value: bool) -> Any:
        return 1 if value else 0

    def timestamp_param(self, value: datetime | None) -> Any:
        naive = _naive_utc(value)
        return naive.strftime("%Y-%m-%d %H:%M:%S.%f") if naive else None

    def boolean_true(self) -> str:
        return "1"

    def boolean_false(self) -> str:
        return "0"

    def column_type(self, kind: ColumnType) -> str:
        return self._TYPES[kind]

    def add_column(self, table: str, column: str, kind: ColumnType) -> str:
        return f"ALTER TABLE {table} ADD COLUMN {column} {self.column_type(kind)}"

    def create_version_table(self) -> str:
        return f"CREATE TABLE IF NOT EXISTS {VERSION_TABLE} (version INT)"

    def lock_version_table(self) -> str:
        return ""

    def select_current_version(self) -> str:
        return f"SELECT version FROM {VERSION_TABLE}"

    def table_exists_query(self) -> str:
        return "SELECT name FROM sqlite_master WHERE type='table' AND name = ?"

    def select_batch(
        self, table: str, columns: list[str], where: str, order_by: str, limit: int
    ) -> str:
        return (
            f"SELECT {', '.join(columns)} FROM {table} WHERE {where} "
            f"ORDER BY {order_by} LIMIT {int(limit)}"
        )

    def lock_row(self, table: str, columns: list[str], where: str) -> str:
        return f"SELECT {', '.join(columns)} FROM {table} WHERE {where}"

    def delete_limited(self, table: str, where: str, limit: int) -> str:
        return (
            f"DELETE FROM {table} WHERE id IN "
            f"(SELECT id FROM {table} WHERE {where} LIMIT {int(limit)})"
        )


class PostgreSQLDialect:
    """PostgreSQL dialect: ``%s`` placeholders (psycopg), ``SKIP LOCKED``."""

    _TYPES = {
        ColumnType.ID: "VARCHAR(36)",
        ColumnType.LONG_TEXT: "TEXT",
        ColumnType.TIMESTAMP: "TIMESTAMP(6)",
        ColumnType.INTEGER: "INT",
        ColumnType.BOOLEAN: "BOOLEAN",
        ColumnType.REQUEST_ID: "VARCHAR(250)",
    }

    @property
    def name(self) -> DialectName:
        return DialectName.POSTGRESQL

    @property
    def commit_ddl_before_dml(self) -> bool:
        return False

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "%s"

    def placeholders(self, count: int) -> str:
        return ", ".join("%s" for _ in range(count))

    def bool_param(self, value: bool) -> Any:
        return bool(value)

    def timestamp_param(self, value: datetime | None) -> Any:
        return _naive_utc(value)

    def boolean_true(self) -> str:
        return "TRUE"

    def boolean_false(self) -> str:
        return "FALSE"

    def column_type(self, kind: ColumnType) -> str:
        return self._TYPES[kind]

    def add_column(self, table: str, column: str, kind: ColumnType) -> str:
        return f"ALTER TABLE {table} ADD COLUMN {column} {self.column_type(kind)}"

    def create_version_table(self) -> str:
        return f"CREATE TABLE IF NOT EXISTS {VERSION_TABLE} (version INT)"

    def lock_version_table(self) -> str:
        # Row locks cannot serialize racers while the table is still empty
        return f"LOCK TABLE {VERSION_TABLE} IN EXCLUSIVE MODE"

    def select_current_version(self) -> str:
        return f"SELECT version FROM {VERSION_TABLE} FOR UPDATE"

    def table_exists_query(self) -> str:
        return (
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_schema = current_schema() AND lower(table_name) = lower(%s)"
        )

    def select_batch(
        self, table: str, columns: list[str], where: str, order_by: str, limit: int
    ) -> str:
        return (
            f"SELECT {', '.join(columns)} FROM {table} WHERE {where} "
            f"ORDER BY {order_by} LIMIT {int(limit)} FOR UPDATE SKIP LOCKED"
        )

    def lock_row(self, table: str, columns: list[str], where: str) -> str:
        return f"SELECT {', '.join(columns)} FROM {table} WHERE {where} FOR UPDATE"

    def delete_limited(self, table: str, where: str, limit: int) -> str:
        return (
            f"DELETE FROM {table} WHERE id IN "
            f"(SELECT id FROM {table} WHERE {where} LIMIT {int(limit)})"
        )


class MySQLDialect:
    """MySQL dialect: ``%s`` placeholders (PyMySQL / mysqlclient).

    MySQL 5 has no ``SKIP LOCKED``; pass ``skip_locked=False`` for it.
    The default migration SQL is written for MySQL, so this dialect has
    almost no overrides.
    """

    _TYPES = {
        ColumnType.ID: "VARCHAR(36)",
        ColumnType.LONG_TEXT: "MEDIUMTEXT",
        ColumnType.TIMESTAMP: "TIMESTAMP(6)",
        ColumnType.INTEGER: "INT",
        ColumnType.BOOLEAN: "BOOLEAN",
        ColumnType.REQUEST_ID: "VARCHAR(250)",
    }

    def __init__(self, *, skip_locked: bool = True) -> None:
        self._skip_locked = skip_locked

    @property
    def name(self) -> DialectName:
        return DialectName.MY_SQL_8 if self._skip_locked else DialectName.MY_SQL_5

    @property
    def commit_ddl_before_dml(self) -> bool:
        return False

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "%s"

    def placeholders(self, count: int) -> str:
        return ", ".join("%s" for _ in range(count))

    def bool_param(self, value: bool) -> Any:
        return bool(value)

    def timestamp_param(self, value: datetime | None) -> Any:
        return _naive_utc(value)

    def boolean_true(self) -> str:
        return "TRUE"

    def boolean_false(self) -> str:
        return "FALSE"

    def column_type(self, kind: ColumnType) -> str:
        return self._TYPES[kind]

    def add_column(self, table: str, column: str, kind: ColumnType) -> str:
        return f"ALTER TABLE {table} ADD COLUMN {column} {self.column_type(kind)} NULL"

    def create_version_table(self) -> str:
        return f"CREATE TABLE IF NOT EXISTS {VERSION_TABLE} (version INT)"

    def lock_version_table(self) -> str:
        return ""

    def select_current_version(self) -> str:
        return f"SELECT version FROM {VERSION_TABLE} FOR UPDATE"

    def table_exists_query(self) -> str:
        return (
            "SELECT TABLE_NAME FROM INFORMATION_SCHEMA.TABLES "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = %s"
        )

    def select_batch(
        self, table: str, columns: list[str], where: str, order_by: str, limit: int
    ) -> str:
        lock = "FOR UPDATE SKIP LOCKED" if self._skip_locked else "FOR UPDATE"
        return (
            f"SELECT {', '.join(columns)} FROM {table} WHERE {where} "
            f"ORDER BY {order_by} LIMIT {int(limit)} {lock}"
        )

    def lock_row(self, table: str, columns: list[str], where: str) -> str:
        return f"SELECT {', '.join(columns)} FROM {table} WHERE {where} FOR UPDATE"

    def delete_limited(self, table: str, where: str, limit: int) -> str:
        return f"DELETE FROM {table} WHERE {where} LIMIT {int(limit)}"


class SQLServerDialect:
    """SQL Server 2012+ dialect: ``?`` placeholders (pyodbc), table hints.

    SQL Server requires DDL to be committed before newly created objects
    can be referenced in DML, hence ``commit_ddl_before_dml``.
    """

    _TYPES = {
        ColumnType.ID: "VARCHAR(36)",
        ColumnType.LONG_TEXT: "NVARCHAR(MAX)",
        ColumnType.TIMESTAMP: "DATETIME2(6)",
        ColumnType.INTEGER: "INT",
        ColumnType.BOOLEAN: "BIT",
        ColumnType.REQUEST_ID: "VARCHAR(250)",
    }

    @property
    def name(self) -> DialectName:
        return DialectName.SQL_SERVER

    @property
    def commit_ddl_before_dml(self) -> bool:
        return True

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "?"

    def placeholders(self, count: int) -> str:
        return ", ".join("?" for _ in range(count))

    def bool_param(self, value: bool) -> Any:
        return bool(value)

    def timestamp_param(self, value: datetime | None) -> Any:
        return _naive_utc(value)

    def boolean_true(self) -> str:
        return "1"

    def boolean_false(self) -> str:
        return "0"

    def column_type(self, kind: ColumnType) -> str:
        return self._TYPES[kind]

    def add_column(self, table: str, column: str, kind: ColumnType) -> str:
        return f"ALTER TABLE {table} ADD {column} {self.column_type(kind)}"

    def create_version_table(self) -> str:
        return (
            f"IF NOT EXISTS (SELECT 1 FROM sys.tables WHERE name = '{VERSION_TABLE}') "
            f"CREATE TABLE {VERSION_TABLE} (version INT)"
        )

    def lock_version_table(self) -> str:
        return ""

    def select_current_version(self) -> str:
        return f"SELECT version FROM {VERSION_TABLE} WITH (UPDLOCK, HOLDLOCK, TABLOCKX)"

    def table_exists_query(self) -> str:
        return "SELECT name FROM sys.tables WHERE name = ?"

    def select_batch(
        self, table: str, columns: list[str], where: str, order_by: str, limit: int
    ) -> str:
        return (
            f"SELECT TOP ({int(limit)}) {', '.join(columns)} FROM {table} "
            f"WITH (UPDLOCK, ROWLOCK, READPAST) WHERE {where} ORDER BY {order_by}"
        )

    def lock_row(self, table: str, columns: list[str], where: str) -> str:
        return f"SELECT {', '.join(columns)} FROM {table} WITH (UPDLOCK, ROWLOCK) WHERE {where}"

    def delete_limited(self, table: str, where: str, limit: int) -> str:
        return f"DELETE TOP ({int(limit)}) FROM {table} WHERE {where}"


class OracleDialect:
    """Oracle dialect: ``:1, :2`` numbered placeholders (python-oracledb).

    Booleans are stored as ``NUMBER(1)`` and bound as 0/1.
    """

    _TYPES = {
        ColumnType.ID: "VARCHAR2(36)",
        ColumnType.LONG_TEXT: "CLOB",
        ColumnType.TIMESTAMP: "TIMESTAMP(6)",
        ColumnType.INTEGER: "NUMBER(10)",
        ColumnType.BOOLEAN: "NUMBER(1)",
        ColumnType.REQUEST_ID: "VARCHAR2(250)",
    }

    @property
    def name(self) -> DialectName:
        return DialectName.ORACLE

    @property
    def commit_ddl_before_dml(self) -> bool:
        return False

    def placeholder(self, index: int) -> str:
        return f":{index + 1}"

    def placeholders(self, count: int) -> str:
        return ", ".join(f":{i + 1}" for i in range(count))

    def bool_param(self, value: bool) -> Any:
        return 1 if value else 0

    def timestamp_param(self, value: datetime | None) -> Any:
        return _naive_utc(value)

    def boolean_true(self) -> str:
        return "1"

    def boolean_false(self) -> str:
        return "0"

    def column_type(self, kind: ColumnType) -> str:
        return self._TYPES[kind]

    def add_column(self, table: str, column: str, kind: ColumnType) -> str:
        return f"ALTER TABLE {table} ADD {column} {self.column_type(kind)}"

    def create_version_table(self) -> str:
        # ORA-00955: name is already used by an existing object
        return (
            "BEGIN EXECUTE IMMEDIATE "
            f"'CREATE TABLE {VERSION_TABLE} (version NUMBER(10))'; "
            "EXCEPTION WHEN OTHERS THEN IF SQLCODE != -955 THEN RAISE; END IF; END;"
        )

    def lock_version_table(self) -> str:
        return f"LOCK TABLE {VERSION_TABLE} IN EXCLUSIVE MODE"

    def select_current_version(self) -> str:
        return f"SELECT version FROM {VERSION_TABLE} FOR UPDATE"

    def table_exists_query(self) -> str:
        return "SELECT TABLE_NAME FROM USER_TABLES WHERE TABLE_NAME = UPPER(:1)"

    def select_batch(
        self, table: str, columns: list[str], where: str, order_by: str, limit: int
    ) -> str:
        # FETCH FIRST cannot be combined with FOR UPDATE (ORA-02014), and ROWNUM
        # is assigned before ORDER BY, so the oldest ids come from a sorted subquery
        oldest = (
            f"SELECT id FROM (SELECT id FROM {table} WHERE {where} ORDER BY {order_by}) "
            f"WHERE ROWNUM <= {int(limit)}"
        )
        return (
            f"SELECT {', '.join(columns)} FROM {table} WHERE id IN ({oldest}) "
            f"ORDER BY {order_by} FOR UPDATE SKIP LOCKED"
        )

    def lock_row(self, table: str, columns: list[str], where: str) -> str:
        return f"SELECT {', '.join(columns)} FROM {table} WHERE {where} FOR UPDATE"

    def delete_limited(self, table: str, where: str, limit: int) -> str:
        return f"DELETE FROM {table} WHERE {where} AND ROWNUM <= {int(limit)}"


# =========================================================================
# Registry / Factory
# =========================================================================

# Pre-instantiated singletons (dialects are stateless)
_DIALECTS: dict[str, Dialect] = {
    DialectName.SQLITE.value: SQLiteDialect(),
    DialectName.POSTGRESQL.value: PostgreSQLDialect(),
    DialectName.MY_SQL_5.value: MySQLDialect(skip_locked=False),
    DialectName.MY_SQL_8.value: MySQLDialect(),
    DialectName.SQL_SERVER.value: SQLServerDialect(),
    DialectName.ORACLE.value: OracleDialect(),
}

_ALIASES = {
    "postgres": DialectName.POSTGRESQL.value,
    "mysql": DialectName.MY_SQL_8.value,
    "mssql": DialectName.SQL_SERVER.value,
}


def get_dialect(name: str | DialectName) -> Dialect:
    """Get a dialect by engine name.

    Args:
        name: A :class:`DialectName` or one of its values; ``postgres``,
            ``mysql`` and ``mssql`` are accepted as aliases.

    Raises:
        ValueError: If ``name`` is not recognised.

    Example:
        >>> get_dialect(DialectName.SQL_SERVER).placeholder(0)
        '?'
    """
    key = name.value if isinstance(name, DialectName) else str(name).lower()
    key = _ALIASES.get(key, key)
    if key not in _DIALECTS:
        raise ValueError(
            f"Unknown dialect '{name}'. Supported: {sorted(_DIALECTS)}"
        )
    return _DIALECTS[key]


def register_dialect(name: str, dialect: Dialect) -> None:
    """Register a custom dialect implementation (third-party engines, test doubles)."""
    _DIALECTS[name.lower()] = dialect


def infer_dialect(url: str) -> DialectName:
    """Infer the engine from a database URL (``postgresql+psycopg://...``)."""
    if "://" not in url:
        # Bare file path or ":memory:"
        return DialectName.SQLITE
    scheme = url.split("://", 1)[0].split("+", 1)[0].lower()
    return get_dialect(scheme).name


__all__ = [
    "VERSION_TABLE",
    "DialectName",
    "ColumnType",
    "Dialect",
    "SQLiteDialect",
    "PostgreSQLDialect",
    "MySQLDialect",
    "SQLServerDialect",
    "OracleDialect",
    "read_timestamp",
    "read_bool",
    "get_dialect",
    "register_dialect",
    "infer_dialect",
]
