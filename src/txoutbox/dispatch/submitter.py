"""Submitters decide where claimed entries are processed.

ARCHITECTURE
────────────
::

    Submitter protocol
      └── .submit(entry, process)   ─ run process(entry) somewhere

    DirectSubmitter                 ─ inline, on the calling thread
    ExecutorSubmitter(max_workers)  ─ ThreadPoolExecutor
      └── .shutdown(wait=True)      ─ drain pool

``process`` never raises for item-level failures (the engine turns them
into state transitions), so a submitter only has to run it.
"""

from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Protocol, runtime_checkable

from txoutbox.core.logging import get_logger
from txoutbox.dispatch.entry import OutboxEntry

logger = get_logger(__name__)

ProcessFn = Callable[[OutboxEntry], Any]


@runtime_checkable
class Submitter(Protocol):
    def submit(self, entry: OutboxEntry, process: ProcessFn) -> None: ...


class DirectSubmitter:
    """Processes entries synchronously on the calling thread."""

    def submit(self, entry: OutboxEntry, process: ProcessFn) -> None:
        process(entry)


class ExecutorSubmitter:
    """ThreadPoolExecutor-based submitter.

    Example:
        >>> submitter = ExecutorSubmitter(max_workers=4)
        >>> outbox = TransactionOutbox(tm, persistor, executor, submitter=submitter)
        >>> ...
        >>> submitter.shutdown()
    """

    def __init__(self, max_workers: int = 4, *, pool: ThreadPoolExecutor | None = None):
        self.pool = pool or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="txoutbox"
        )

    def submit(self, entry: OutboxEntry, process: ProcessFn) -> None:
        future = self.pool.submit(process, entry)
        future.add_done_callback(self._log_unexpected)

    @staticmethod
    def _log_unexpected(future: Any) -> None:
        if not future.cancelled() and future.exception() is not None:
            logger.error("submitter.process_crashed", error=str(future.exception()))

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work and optionally wait for queued entries."""
        self.pool.shutdown(wait=wait)

    def __enter__(self) -> ExecutorSubmitter:
        return self

    def __exit__(self, *args: Any) -> None:
        self.shutdown()


__all__ = ["Submitter", "ProcessFn", "DirectSubmitter", "ExecutorSubmitter"]
