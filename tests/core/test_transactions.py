"""Tests for transaction managers and the SQLite connection adapter."""

from __future__ import annotations

import threading

import pytest

from txoutbox.core.errors import NoTransactionActiveError
from txoutbox.core.sqlite_conn import SqliteConnection
from txoutbox.core.transactions import ConnectionTransactionManager


@pytest.fixture
def table(tm):
    tm.in_transaction(lambda tx: tx.connection.execute("CREATE TABLE t (v INT)"))
    return "t"


def _values(tm) -> list[int]:
    def work(tx):
        tx.connection.execute("SELECT v FROM t ORDER BY v")
        return [r[0] for r in tx.connection.fetchall()]

    return tm.in_transaction(work)


class TestSqliteConnection:
    def test_explicit_transactions(self, db_path):
        conn = SqliteConnection(str(db_path))
        conn.execute("CREATE TABLE t (v INT)")
        conn.begin()
        assert conn.in_transaction
        conn.execute("INSERT INTO t VALUES (?)", (1,))
        conn.rollback()
        conn.execute("SELECT COUNT(*) FROM t")
        assert conn.fetchone() == (0,)
        conn.close()

    def test_ddl_can_be_rolled_back(self, db_path):
        conn = SqliteConnection(str(db_path))
        conn.begin()
        conn.execute("CREATE TABLE t (v INT)")
        conn.rollback()
        conn.execute("SELECT name FROM sqlite_master WHERE name = 't'")
        assert conn.fetchone() is None
        conn.close()

    def test_rowcount(self, db_path):
        conn = SqliteConnection(str(db_path))
        conn.execute("CREATE TABLE t (v INT)")
        conn.executemany("INSERT INTO t VALUES (?)", [(1,), (2,), (2,)])
        assert conn.execute("UPDATE t SET v = 3 WHERE v = 2").rowcount == 2
        conn.close()


class TestTransactionManager:
    def test_commit(self, tm, table):
        tm.in_transaction(lambda tx: tx.connection.execute("INSERT INTO t VALUES (1)"))
        assert _values(tm) == [1]

    def test_rollback_on_error(self, tm, table):
        with pytest.raises(RuntimeError):
            with tm.transaction() as tx:
                tx.connection.execute("INSERT INTO t VALUES (1)")
                raise RuntimeError("abort")
        assert _values(tm) == []

    def test_current_inside_and_outside(self, tm):
        with pytest.raises(NoTransactionActiveError):
            tm.current()
        with tm.transaction() as tx:
            assert tm.current() is tx
        with pytest.raises(NoTransactionActiveError):
            tm.current()

    def test_current_is_per_thread(self, tm):
        seen = []
        with tm.transaction():

            def other():
                try:
                    tm.current()
                except NoTransactionActiveError:
                    seen.append("none")

            t = threading.Thread(target=other)
            t.start()
            t.join()
        assert seen == ["none"]


class TestHooks:
    def test_post_commit_hooks_run_after_commit(self, tm, table):
        observed = []
        with tm.transaction() as tx:
            tx.connection.execute("INSERT INTO t VALUES (7)")
            # Runs outside the transaction, so it can read the committed row
            tx.add_post_commit_hook(lambda: observed.append(_values(tm)))
            tx.add_post_rollback_hook(lambda: observed.append("rolled back"))
            assert observed == []
        assert observed == [[7]]

    def test_post_rollback_hooks(self, tm, table):
        observed = []
        with pytest.raises(ValueError):
            with tm.transaction() as tx:
                tx.add_post_commit_hook(lambda: observed.append("committed"))
                tx.add_post_rollback_hook(lambda: observed.append("rolled back"))
                raise ValueError("abort")
        assert observed == ["rolled back"]

    def test_hooks_run_with_transaction_closed(self, tm):
        inside = []
        with tm.transaction() as tx:
            tx.add_post_commit_hook(lambda: inside.append(_current_or_none(tm)))
        assert inside == [None]

    def test_checkpoint_commits_work_so_far(self, tm, table):
        with pytest.raises(RuntimeError):
            with tm.transaction() as tx:
                tx.connection.execute("INSERT INTO t VALUES (1)")
                tx.checkpoint()
                tx.connection.execute("INSERT INTO t VALUES (2)")
                raise RuntimeError("abort")
        assert _values(tm) == [1]


def _current_or_none(tm):
    try:
        return tm.current()
    except NoTransactionActiveError:
        return None


class TestConnectionFactory:
    def test_new_connection_per_unit_of_work(self, db_path):
        opened = []

        def connect():
            conn = SqliteConnection(str(db_path))
            opened.append(conn)
            return conn

        tm = ConnectionTransactionManager(connect)
        tm.in_transaction(lambda tx: None)
        tm.in_transaction(lambda tx: None)
        assert len(opened) == 2
        assert opened[0] is not opened[1]
