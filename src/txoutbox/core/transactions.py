"""Transaction abstraction consumed by the migration manager and the outbox.

The outbox never opens raw connections itself.  It asks a
:class:`~txoutbox.core.protocols.TransactionManager` to run a unit of work
and receives a :class:`Transaction` exposing the active connection plus
hooks that fire once the transaction has committed or rolled back.

Two implementations are provided:

``ConnectionTransactionManager``
    Opens a fresh connection from a factory for every unit of work, e.g.
    ``ConnectionTransactionManager(lambda: SqliteConnection("outbox.db"))``.

``SessionTransactionManager``
    Opens a SQLAlchemy session per unit of work and adapts it through
    :class:`~txoutbox.core.orm.session.SAConnectionBridge`.

Both keep a per-thread stack of open transactions so that code running
inside the host's business transaction can join it via ``current()``.
Every ``in_transaction`` call opens a *new* transaction: the dispatch
engine relies on that to isolate item processing from the business
transaction and from other items in the same batch.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, TypeVar

from txoutbox.core.errors import NoTransactionActiveError
from txoutbox.core.logging import get_logger
from txoutbox.core.protocols import ManagedConnection

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

logger = get_logger(__name__)

T = TypeVar("T")


class Transaction:
    """An open transaction: its connection plus post-completion hooks."""

    def __init__(self, connection: ManagedConnection) -> None:
        self.connection = connection
        self._on_commit: list[Callable[[], Any]] = []
        self._on_rollback: list[Callable[[], Any]] = []

    def add_post_commit_hook(self, hook: Callable[[], Any]) -> None:
        """Run ``hook`` after this transaction commits successfully."""
        self._on_commit.append(hook)

    def add_post_rollback_hook(self, hook: Callable[[], Any]) -> None:
        """Run ``hook`` after this transaction rolls back."""
        self._on_rollback.append(hook)

    def checkpoint(self) -> None:
        """Commit the work done so far and continue in a new transaction.

        Needed by engines that require DDL to be committed before DML can
        reference the new objects.
        """
        self.connection.commit()
        self.connection.begin()

    def _run_hooks(self, hooks: list[Callable[[], Any]]) -> None:
        for hook in hooks:
            hook()


class ThreadLocalTransactionManager:
    """Base class: per-thread transaction stack and commit/rollback protocol.

    Subclasses implement :meth:`_open` returning a ``ManagedConnection``.
    """

    def __init__(self) -> None:
        self._local = threading.local()

    def _open(self) -> ManagedConnection:
        raise NotImplementedError

    def _stack(self) -> list[Transaction]:
        stack = getattr(self._local, "stack", None)
        if stack is None:
            stack = self._local.stack = []
        return stack

    def current(self) -> Transaction:
        stack = self._stack()
        if not stack:
            raise NoTransactionActiveError(
                "No transaction is active on this thread; "
                "call this from inside in_transaction()"
            )
        return stack[-1]

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        connection = self._open()
        tx = Transaction(connection)
        stack = self._stack()
        stack.append(tx)
        try:
            connection.begin()
            yield tx
            connection.commit()
        except BaseException:
            stack.remove(tx)
            try:
                connection.rollback()
            except Exception:
                logger.exception("transaction.rollback_failed")
            finally:
                connection.close()
            tx._run_hooks(tx._on_rollback)
            raise
        stack.remove(tx)
        connection.close()
        tx._run_hooks(tx._on_commit)

    def in_transaction(self, work: Callable[[Transaction], T]) -> T:
        with self.transaction() as tx:
            return work(tx)


class ConnectionTransactionManager(ThreadLocalTransactionManager):
    """Transaction manager over a connection factory.

    Example:
        >>> tm = ConnectionTransactionManager(lambda: SqliteConnection("outbox.db"))
        >>> tm.in_transaction(lambda tx: tx.connection.execute("SELECT 1").fetchone())
        (1,)
    """

    def __init__(self, connect: Callable[[], ManagedConnection]) -> None:
        super().__init__()
        self._connect = connect

    def _open(self) -> ManagedConnection:
        return self._connect()


class SessionTransactionManager(ThreadLocalTransactionManager):
    """Transaction manager over a SQLAlchemy engine.

    Each unit of work gets its own session wrapped in an
    ``SAConnectionBridge``.
    """

    def __init__(self, engine: Engine) -> None:
        from txoutbox.core.orm.session import outbox_session_factory

        super().__init__()
        self.engine = engine
        self._session_factory = outbox_session_factory(engine)

    def _open(self) -> ManagedConnection:
        from txoutbox.core.orm.session import SAConnectionBridge

        return SAConnectionBridge(self._session_factory())


__all__ = [
    "Transaction",
    "ThreadLocalTransactionManager",
    "ConnectionTransactionManager",
    "SessionTransactionManager",
]
