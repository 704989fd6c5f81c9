"""Transaction-manager factory: build the outbox's database access from a URL.

This is the **single entry point** the CLI, the settings helpers and
``TransactionOutbox.from_settings`` use to reach a database.  Callers that
already own a connection pool pass their own ``TransactionManager`` to the
outbox directly instead.

Supported URLs
--------------
==========================  =============================================  ==================
Input                       Example                                        Backend
==========================  =============================================  ==================
``memory`` / ``:memory:``   ``memory``                                     SQLite (shared RAM)
``sqlite`` URL              ``sqlite:///path/to/outbox.db``                SQLite file
bare file path              ``./data/outbox.db``                           SQLite file
any SQLAlchemy URL          ``postgresql+psycopg://u:pw@host/db``          SQLAlchemy session
==========================  =============================================  ==================

Usage
-----
::

    from txoutbox.core.connection import create_transaction_manager

    tm, info = create_transaction_manager("sqlite:///outbox.db")
    print(info)
    # ConnectionInfo(backend='sqlite', persistent=True, path='/abs/outbox.db')
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from pathlib import Path

from txoutbox.core.dialect import DialectName, infer_dialect
from txoutbox.core.logging import get_logger
from txoutbox.core.sqlite_conn import SqliteConnection
from txoutbox.core.transactions import (
    ConnectionTransactionManager,
    SessionTransactionManager,
    ThreadLocalTransactionManager,
)

logger = get_logger(__name__)

_memory_ids = itertools.count(1)


# ── ConnectionInfo ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class ConnectionInfo:
    """Metadata about the database behind a transaction manager."""

    backend: str
    """Dialect value: ``"sqlite"``, ``"postgresql"``, ``"mysql8"``, etc."""

    persistent: bool
    """Whether data survives process exit."""

    url: str
    """The original URL or path."""

    resolved_path: str | None = None
    """For file-based SQLite, the resolved absolute path."""

    def __repr__(self) -> str:
        parts = [f"backend={self.backend!r}", f"persistent={self.persistent}"]
        if self.resolved_path:
            parts.append(f"path={self.resolved_path!r}")
        else:
            parts.append(f"url={self.url!r}")
        return f"ConnectionInfo({', '.join(parts)})"

    @property
    def is_sqlite(self) -> bool:
        return self.backend == DialectName.SQLITE.value


# ── URL parsing ──────────────────────────────────────────────────────────


def _parse_url(db: str | None) -> tuple[str, str]:
    """Parse a database URL into ``(scheme, target)``.

    ``scheme`` is one of ``"memory"``, ``"sqlite"`` or ``"sqlalchemy"``.
    """
    if db is None or db in ("", "memory", ":memory:"):
        return "memory", ":memory:"

    for prefix in ("sqlite:///", "sqlite://"):
        if db.startswith(prefix):
            path = db[len(prefix):]
            if not path or path == ":memory:":
                return "memory", ":memory:"
            return "sqlite", path

    if "://" in db:
        return "sqlalchemy", db

    # Bare file path
    return "sqlite", db


# ── Backends ─────────────────────────────────────────────────────────────


def _create_sqlite_memory() -> tuple[ThreadLocalTransactionManager, ConnectionInfo]:
    # Every unit of work opens a new connection, so the database is a
    # named shared-cache one kept alive by an anchor connection.
    uri = f"file:txoutbox-{next(_memory_ids)}?mode=memory&cache=shared"
    anchor = SqliteConnection(uri, uri=True)
    tm = ConnectionTransactionManager(lambda: SqliteConnection(uri, uri=True))
    tm._anchor = anchor  # type: ignore[attr-defined]
    return tm, ConnectionInfo(backend=DialectName.SQLITE.value, persistent=False, url=":memory:")


def _create_sqlite_file(path_str: str) -> tuple[ThreadLocalTransactionManager, ConnectionInfo]:
    path = Path(path_str)
    path.parent.mkdir(parents=True, exist_ok=True)
    resolved = str(path.resolve())
    tm = ConnectionTransactionManager(lambda: SqliteConnection(resolved))
    info = ConnectionInfo(
        backend=DialectName.SQLITE.value,
        persistent=True,
        url=path_str,
        resolved_path=resolved,
    )
    return tm, info


def _create_sqlalchemy(url: str) -> tuple[ThreadLocalTransactionManager, ConnectionInfo]:
    from txoutbox.core.orm.session import create_outbox_engine

    engine = create_outbox_engine(url)
    info = ConnectionInfo(backend=infer_dialect(url).value, persistent=True, url=url)
    return SessionTransactionManager(engine), info


# ── Main factory ─────────────────────────────────────────────────────────


def create_transaction_manager(
    db: str | None = None,
    *,
    data_dir: str | None = None,
) -> tuple[ThreadLocalTransactionManager, ConnectionInfo]:
    """Create a transaction manager from a URL, path, or keyword.

    Parameters
    ----------
    db:
        Database URL, file path, or ``"memory"`` (default).
    data_dir:
        For SQLite paths, resolve relative paths within this directory.

    Returns
    -------
    tuple[TransactionManager, ConnectionInfo]
    """
    scheme, target = _parse_url(db)

    if scheme == "memory":
        tm, info = _create_sqlite_memory()
    elif scheme == "sqlite":
        if data_dir and not Path(target).is_absolute():
            target = str(Path(data_dir) / target)
        tm, info = _create_sqlite_file(target)
    else:
        tm, info = _create_sqlalchemy(target)

    logger.debug("connection.created", backend=info.backend, persistent=info.persistent)
    return tm, info


__all__ = ["ConnectionInfo", "create_transaction_manager"]
