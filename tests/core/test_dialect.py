"""Tests for the per-engine SQL dialects."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest

from txoutbox.core.dialect import (
    ColumnType,
    Dialect,
    DialectName,
    MySQLDialect,
    get_dialect,
    infer_dialect,
    read_bool,
    read_timestamp,
    register_dialect,
)

ALL = [d.value for d in DialectName]


class TestRegistry:
    @pytest.mark.parametrize("name", ALL)
    def test_every_engine_resolves(self, name):
        d = get_dialect(name)
        assert isinstance(d, Dialect)
        assert d.name.value == name

    def test_enum_and_alias_lookup(self):
        assert get_dialect(DialectName.ORACLE).name is DialectName.ORACLE
        assert get_dialect("postgres").name is DialectName.POSTGRESQL
        assert get_dialect("MySQL").name is DialectName.MY_SQL_8
        assert get_dialect("mssql").name is DialectName.SQL_SERVER

    def test_unknown_raises(self):
        with pytest.raises(ValueError, match="Unknown dialect"):
            get_dialect("db2")

    def test_register_custom(self):
        custom = MySQLDialect(skip_locked=False)
        register_dialect("mariadb-test", custom)
        assert get_dialect("mariadb-test") is custom


class TestInferDialect:
    @pytest.mark.parametrize(
        "url,expected",
        [
            ("outbox.db", DialectName.SQLITE),
            (":memory:", DialectName.SQLITE),
            ("sqlite:///outbox.db", DialectName.SQLITE),
            ("postgresql+psycopg://u:p@host/db", DialectName.POSTGRESQL),
            ("postgres://host/db", DialectName.POSTGRESQL),
            ("mysql+pymysql://host/db", DialectName.MY_SQL_8),
            ("mssql+pyodbc://host/db", DialectName.SQL_SERVER),
            ("oracle+oracledb://host/db", DialectName.ORACLE),
        ],
    )
    def test_scheme(self, url, expected):
        assert infer_dialect(url) is expected

    def test_unknown_scheme(self):
        with pytest.raises(ValueError):
            infer_dialect("snowflake://account/db")


class TestPlaceholders:
    def test_qmark(self):
        assert get_dialect("sqlite").placeholders(3) == "?, ?, ?"
        assert get_dialect("sqlserver").placeholder(5) == "?"

    def test_format(self):
        assert get_dialect("postgresql").placeholders(2) == "%s, %s"
        assert get_dialect("mysql5").placeholder(0) == "%s"

    def test_numeric(self):
        d = get_dialect("oracle")
        assert d.placeholder(0) == ":1"
        assert d.placeholders(3) == ":1, :2, :3"


class TestBindValues:
    def test_sqlite_timestamp_is_sortable_text(self):
        d = get_dialect("sqlite")
        early = d.timestamp_param(datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC))
        late = d.timestamp_param(datetime(2026, 1, 2, 3, 4, 5, 7, tzinfo=UTC))
        assert early == "2026-01-02 03:04:05.000000"
        assert early < late

    def test_timestamp_converted_to_naive_utc(self):
        plus_two = timezone(timedelta(hours=2))
        value = get_dialect("postgresql").timestamp_param(datetime(2026, 1, 1, 12, tzinfo=plus_two))
        assert value == datetime(2026, 1, 1, 10)
        assert value.tzinfo is None

    def test_none_passes_through(self):
        for name in ALL:
            assert get_dialect(name).timestamp_param(None) is None

    def test_booleans(self):
        assert get_dialect("sqlite").bool_param(True) == 1
        assert get_dialect("oracle").bool_param(False) == 0
        assert get_dialect("postgresql").bool_param(True) is True
        assert get_dialect("postgresql").boolean_true() == "TRUE"
        assert get_dialect("sqlserver").boolean_false() == "0"


class TestReaders:
    def test_read_timestamp_from_text(self):
        value = read_timestamp("2026-01-02 03:04:05.000006")
        assert value == datetime(2026, 1, 2, 3, 4, 5, 6, tzinfo=UTC)

    def test_read_timestamp_naive_is_utc(self):
        assert read_timestamp(datetime(2026, 1, 1)).tzinfo is UTC

    def test_read_timestamp_none(self):
        assert read_timestamp(None) is None

    @pytest.mark.parametrize("raw,expected", [(1, True), (0, False), ("1", True), ("0", False), (True, True)])
    def test_read_bool(self, raw, expected):
        assert read_bool(raw) is expected


class TestLocking:
    def test_postgres_skips_locked(self):
        sql = get_dialect("postgresql").select_batch("T", ["id"], "x = 1", "nextAttemptTime", 10)
        assert sql.endswith("ORDER BY nextAttemptTime LIMIT 10 FOR UPDATE SKIP LOCKED")

    def test_mysql5_blocks_instead_of_skipping(self):
        sql = get_dialect("mysql5").select_batch("T", ["id"], "x = 1", "nextAttemptTime", 10)
        assert sql.endswith("LIMIT 10 FOR UPDATE")
        assert "SKIP LOCKED" not in sql

    def test_mysql8_skips_locked(self):
        sql = get_dialect("mysql8").select_batch("T", ["id"], "x = 1", "nextAttemptTime", 10)
        assert "FOR UPDATE SKIP LOCKED" in sql

    def test_sqlserver_readpast(self):
        sql = get_dialect("sqlserver").select_batch("T", ["id", "version"], "x = 1", "nextAttemptTime", 5)
        assert sql.startswith("SELECT TOP (5) id, version FROM T WITH (UPDLOCK, ROWLOCK, READPAST)")

    def test_oracle_limits_after_ordering(self):
        sql = get_dialect("oracle").select_batch("T", ["id", "version"], "x = :1", "nextAttemptTime", 5)
        assert sql == (
            "SELECT id, version FROM T WHERE id IN ("
            "SELECT id FROM (SELECT id FROM T WHERE x = :1 ORDER BY nextAttemptTime) "
            "WHERE ROWNUM <= 5) "
            "ORDER BY nextAttemptTime FOR UPDATE SKIP LOCKED"
        )
        assert sql.count(":1") == 1

    def test_sqlite_has_no_row_lock(self):
        sql = get_dialect("sqlite").select_batch("T", ["id"], "x = 1", "nextAttemptTime", 5)
        assert "FOR UPDATE" not in sql
        assert sql.endswith("LIMIT 5")

    def test_delete_limited(self):
        assert get_dialect("mysql8").delete_limited("T", "a = 1", 3) == "DELETE FROM T WHERE a = 1 LIMIT 3"
        assert get_dialect("sqlserver").delete_limited("T", "a = 1", 3) == "DELETE TOP (3) FROM T WHERE a = 1"
        assert "LIMIT 3)" in get_dialect("sqlite").delete_limited("T", "a = 1", 3)


class TestDDL:
    def test_only_sqlserver_commits_ddl_first(self):
        flagged = {name for name in ALL if get_dialect(name).commit_ddl_before_dml}
        assert flagged == {"sqlserver"}

    def test_column_types(self):
        assert get_dialect("oracle").column_type(ColumnType.LONG_TEXT) == "CLOB"
        assert get_dialect("sqlserver").column_type(ColumnType.BOOLEAN) == "BIT"
        assert get_dialect("mysql8").column_type(ColumnType.LONG_TEXT) == "MEDIUMTEXT"

    def test_add_column(self):
        assert (
            get_dialect("sqlserver").add_column("T", "c", ColumnType.TIMESTAMP)
            == "ALTER TABLE T ADD c DATETIME2(6)"
        )
        assert get_dialect("mysql8").add_column("T", "c", ColumnType.INTEGER).endswith("INT NULL")
