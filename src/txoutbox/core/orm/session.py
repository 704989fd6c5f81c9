"""SQLAlchemy engine factory, session class, and Connection bridge.

The outbox issues raw SQL built by a :class:`~txoutbox.core.dialect.Dialect`.
``SAConnectionBridge`` lets that SQL run through a SQLAlchemy ``Session`` so
any engine SQLAlchemy supports (psycopg, pymysql, pyodbc, oracledb) can back
the outbox without driver-specific code.

This module provides:

* ``create_outbox_engine``   -- Create a SA engine from a URL.
* ``OutboxSession``          -- Session with ``expire_on_commit=False``.
* ``outbox_session_factory`` -- ``sessionmaker`` producing ``OutboxSession``.
* ``SAConnectionBridge``     -- Wraps a ``Session`` to satisfy the
  ``txoutbox.core.protocols.ManagedConnection`` protocol.

Tags:
    orm, sqlalchemy, session, engine, bridge, connection
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import Any

from sqlalchemy import create_engine as _sa_create_engine
from sqlalchemy import event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

# ``?`` (qmark), ``%s`` (format) and ``:1`` (numeric) paramstyles
_PLACEHOLDER = re.compile(r"\?|%s|:\d+\b")


def create_outbox_engine(
    url: str = "sqlite:///outbox.db",
    *,
    echo: bool = False,
    pool_size: int | None = None,
    max_overflow: int | None = None,
    pool_timeout: int | None = None,
    **kwargs: Any,
) -> Engine:
    """Create a SQLAlchemy engine with sane defaults.

    Parameters
    ----------
    url:
        Database URL (``sqlite:///…``, ``postgresql+psycopg://…``, etc.)
    echo:
        If ``True``, log all SQL.
    pool_size, max_overflow, pool_timeout:
        Connection pool parameters (ignored for SQLite).
    **kwargs:
        Extra arguments forwarded to ``sqlalchemy.create_engine``.
    """
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        engine = _sa_create_engine(url, echo=echo, **kwargs)

        # pysqlite defers BEGIN until the first DML; take the write lock at
        # the start of each transaction instead so flushes serialize.
        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection: Any, _rec: Any) -> None:
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _begin_immediate(conn: Any) -> None:
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    pool_kwargs: dict[str, Any] = {}
    if pool_size is not None:
        pool_kwargs["pool_size"] = pool_size
    if max_overflow is not None:
        pool_kwargs["max_overflow"] = max_overflow
    if pool_timeout is not None:
        pool_kwargs["pool_timeout"] = pool_timeout

    return _sa_create_engine(url, echo=echo, **pool_kwargs, **kwargs)


class OutboxSession(Session):
    """Pre-configured session with ``expire_on_commit=False``."""

    def __init__(self, bind: Engine | None = None, **kwargs: Any) -> None:
        kwargs.setdefault("expire_on_commit", False)
        super().__init__(bind=bind, **kwargs)


def outbox_session_factory(engine: Engine) -> sessionmaker[OutboxSession]:
    """Return a ``sessionmaker`` bound to *engine* that produces ``OutboxSession`` instances."""
    return sessionmaker(bind=engine, class_=OutboxSession)


def rewrite_placeholders(sql: str) -> str:
    """Rewrite positional placeholders to ``:p0, :p1, ...`` for ``text()``.

    >>> rewrite_placeholders("UPDATE t SET a = %s WHERE id = %s")
    'UPDATE t SET a = :p0 WHERE id = :p1'
    """
    counter = iter(range(1_000_000))
    return _PLACEHOLDER.sub(lambda _m: f":p{next(counter)}", sql)


class SAConnectionBridge:
    """Adapter that makes a SQLAlchemy ``Session`` look like a ``ManagedConnection``.

    Implements: ``execute``, ``executemany``, ``fetchone``, ``fetchall``,
    ``begin``, ``commit``, ``rollback``, ``close``.  ``execute`` returns the
    bridge itself, whose ``rowcount`` reflects the last statement.
    """

    def __init__(self, session: Session) -> None:
        self._session = session
        self._last_result: Any = None

    # --- execute / executemany ---

    def execute(self, sql: str, parameters: Sequence[Any] | None = None) -> SAConnectionBridge:
        if parameters:
            mapping = {f"p{i}": v for i, v in enumerate(parameters)}
            self._last_result = self._session.execute(text(rewrite_placeholders(sql)), mapping)
        else:
            self._last_result = self._session.execute(text(sql))
        return self

    def executemany(self, sql: str, seq_of_parameters: Sequence[Sequence[Any]]) -> SAConnectionBridge:
        for params in seq_of_parameters:
            self.execute(sql, params)
        return self

    # --- fetch ---

    def fetchone(self) -> tuple[Any, ...] | None:
        if self._last_result is None or not self._last_result.returns_rows:
            return None
        row = self._last_result.fetchone()
        return tuple(row) if row is not None else None

    def fetchall(self) -> list[tuple[Any, ...]]:
        if self._last_result is None or not self._last_result.returns_rows:
            return []
        return [tuple(r) for r in self._last_result.fetchall()]

    @property
    def rowcount(self) -> int:
        if self._last_result is None:
            return -1
        return self._last_result.rowcount

    # --- transaction ---

    def begin(self) -> None:
        # Sessions autobegin on first execute
        pass

    def commit(self) -> None:
        self._session.commit()

    def rollback(self) -> None:
        self._session.rollback()

    def close(self) -> None:
        self._session.close()

    # --- properties ---

    @property
    def session(self) -> Session:
        """Access the underlying SA session (e.g., for ORM writes in a handler)."""
        return self._session
