"""Tests for create_transaction_manager and the SQLAlchemy bridge."""

from __future__ import annotations

from pathlib import Path

import pytest

from txoutbox.core.connection import ConnectionInfo, _parse_url, create_transaction_manager
from txoutbox.core.orm.session import SAConnectionBridge, create_outbox_engine, rewrite_placeholders
from txoutbox.core.transactions import ConnectionTransactionManager, SessionTransactionManager


class TestParseUrl:
    @pytest.mark.parametrize(
        "db,expected",
        [
            (None, ("memory", ":memory:")),
            ("memory", ("memory", ":memory:")),
            ("sqlite://", ("memory", ":memory:")),
            ("sqlite:///:memory:", ("memory", ":memory:")),
            ("sqlite:///data/outbox.db", ("sqlite", "data/outbox.db")),
            ("./outbox.db", ("sqlite", "./outbox.db")),
            ("postgresql+psycopg://h/db", ("sqlalchemy", "postgresql+psycopg://h/db")),
        ],
    )
    def test_parse(self, db, expected):
        assert _parse_url(db) == expected


class TestSqliteBackends:
    def test_memory_shared_across_units_of_work(self):
        tm, info = create_transaction_manager("memory")
        assert info.persistent is False
        assert info.is_sqlite
        tm.in_transaction(lambda tx: tx.connection.execute("CREATE TABLE t (v INT)"))
        tm.in_transaction(lambda tx: tx.connection.execute("INSERT INTO t VALUES (1)"))

        def read(tx):
            tx.connection.execute("SELECT v FROM t")
            return tx.connection.fetchall()

        assert tm.in_transaction(read) == [(1,)]

    def test_memory_databases_are_isolated(self):
        first, _ = create_transaction_manager()
        second, _ = create_transaction_manager()
        first.in_transaction(lambda tx: tx.connection.execute("CREATE TABLE only_here (v INT)"))

        def exists(tx):
            tx.connection.execute("SELECT name FROM sqlite_master WHERE name = 'only_here'")
            return tx.connection.fetchone() is not None

        assert second.in_transaction(exists) is False

    def test_file(self, tmp_path: Path):
        tm, info = create_transaction_manager(f"sqlite:///{tmp_path}/nested/outbox.db")
        assert isinstance(tm, ConnectionTransactionManager)
        assert info.persistent is True
        assert info.resolved_path == str((tmp_path / "nested" / "outbox.db").resolve())
        assert (tmp_path / "nested").is_dir()

    def test_data_dir_for_relative_paths(self, tmp_path: Path):
        _, info = create_transaction_manager("outbox.db", data_dir=str(tmp_path))
        assert info.resolved_path == str((tmp_path / "outbox.db").resolve())

    def test_repr(self):
        info = ConnectionInfo(backend="sqlite", persistent=False, url=":memory:")
        assert repr(info) == "ConnectionInfo(backend='sqlite', persistent=False, url=':memory:')"


class TestSqlAlchemyBackend:
    def test_rewrite_placeholders(self):
        assert rewrite_placeholders("a = ? AND b = ?") == "a = :p0 AND b = :p1"
        assert rewrite_placeholders("a = %s") == "a = :p0"
        assert rewrite_placeholders("a = :1 AND b = :2") == "a = :p0 AND b = :p1"

    def test_session_bridge(self, tmp_path: Path):
        engine = create_outbox_engine(f"sqlite:///{tmp_path}/sa.db")
        tm = SessionTransactionManager(engine)
        tm.in_transaction(lambda tx: tx.connection.execute("CREATE TABLE t (v INT)"))

        def write(tx):
            assert isinstance(tx.connection, SAConnectionBridge)
            tx.connection.execute("INSERT INTO t VALUES (?)", (1,))
            tx.connection.execute("INSERT INTO t VALUES (?)", (2,))
            return tx.connection.execute("UPDATE t SET v = ? WHERE v = ?", (5, 2)).rowcount

        assert tm.in_transaction(write) == 1

        def read(tx):
            tx.connection.execute("SELECT v FROM t ORDER BY v")
            return tx.connection.fetchall()

        assert tm.in_transaction(read) == [(1,), (5,)]
        engine.dispose()

    def test_session_bridge_rollback(self, tmp_path: Path):
        engine = create_outbox_engine(f"sqlite:///{tmp_path}/sa.db")
        tm = SessionTransactionManager(engine)
        tm.in_transaction(lambda tx: tx.connection.execute("CREATE TABLE t (v INT)"))
        with pytest.raises(RuntimeError):
            with tm.transaction() as tx:
                tx.connection.execute("INSERT INTO t VALUES (?)", (1,))
                raise RuntimeError("abort")

        def count(tx):
            tx.connection.execute("SELECT COUNT(*) FROM t")
            return tx.connection.fetchone()[0]

        assert tm.in_transaction(count) == 0
        engine.dispose()
