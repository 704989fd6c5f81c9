"""SQLite connection adapter.

Wraps a raw :class:`sqlite3.Connection` to satisfy the
:class:`~txoutbox.core.protocols.ManagedConnection` protocol.

The underlying connection runs in autocommit mode (``isolation_level=None``)
and transactions are opened explicitly by :meth:`SqliteConnection.begin`.
This matters for two reasons:

* the stdlib module only opens a transaction implicitly before DML, so
  DDL issued by the migration manager would otherwise autocommit and a
  failed migration could not be rolled back;
* ``BEGIN IMMEDIATE`` takes the database write lock up front, which is how
  concurrent flushes are serialized on an engine without row locks.

Usage::

    from txoutbox.core.sqlite_conn import SqliteConnection

    conn = SqliteConnection("outbox.db")
    conn.begin()
    conn.execute("INSERT INTO t VALUES (?)", (1,))
    conn.commit()
    conn.close()
"""

from __future__ import annotations

import sqlite3
from typing import Any


class SqliteConnection:
    """Adapter: ``sqlite3.Connection`` → ``ManagedConnection`` protocol.

    Maintains a single cursor so that ``execute`` / ``fetchone`` /
    ``fetchall`` operate on the same result set.
    """

    def __init__(
        self,
        path: str = ":memory:",
        *,
        begin_mode: str = "IMMEDIATE",
        timeout: float = 30.0,
        uri: bool = False,
    ) -> None:
        self._conn = sqlite3.connect(
            path,
            timeout=timeout,
            uri=uri,
            isolation_level=None,
            check_same_thread=False,
        )
        self._begin_mode = begin_mode
        self._cursor = self._conn.cursor()

    # -- Connection protocol -----------------------------------------------

    def execute(self, sql: str, params: tuple = ()) -> Any:
        self._cursor.execute(sql, params)
        return self._cursor

    def executemany(self, sql: str, params: list[tuple]) -> Any:
        self._cursor.executemany(sql, params)
        return self._cursor

    def fetchone(self) -> Any:
        return self._cursor.fetchone()

    def fetchall(self) -> list:
        return self._cursor.fetchall()

    def begin(self) -> None:
        if not self._conn.in_transaction:
            self._conn.execute(f"BEGIN {self._begin_mode}")

    def commit(self) -> None:
        if self._conn.in_transaction:
            self._conn.execute("COMMIT")

    def rollback(self) -> None:
        if self._conn.in_transaction:
            self._conn.execute("ROLLBACK")

    def close(self) -> None:
        self._conn.close()

    # -- convenience -------------------------------------------------------

    @property
    def raw(self) -> sqlite3.Connection:
        """Access the underlying ``sqlite3.Connection`` (e.g. for pragmas)."""
        return self._conn

    @property
    def in_transaction(self) -> bool:
        return self._conn.in_transaction

    def __repr__(self) -> str:
        return f"SqliteConnection({self._conn!r})"
