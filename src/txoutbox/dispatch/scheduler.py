"""Background flush loop.

┌──────────────────────────────────────────────────────────────────────┐
│  FlushScheduler                                                       │
│                                                                       │
│   start()                                                             │
│      │                                                                │
│      ▼                                                                │
│   ┌──────────────── Daemon Thread (loop) ─────────────────────────┐   │
│   │   while not stop_event.wait(interval):                        │   │
│   │       tick_count += 1                                         │   │
│   │       outbox.flush()                                          │   │
│   │       outbox.purge_processed()     (when purge=True)          │   │
│   └───────────────────────────────────────────────────────────────┘   │
│                                                                       │
│   stop()  ─► stop_event.set(); thread.join(timeout)                   │
└──────────────────────────────────────────────────────────────────────┘

Run one scheduler per process; several processes may run against the
same database concurrently.
"""

from __future__ import annotations

import threading
from datetime import UTC, datetime
from typing import Any

from txoutbox.core.logging import get_logger
from txoutbox.dispatch.outbox import TransactionOutbox

logger = get_logger(__name__)


class FlushScheduler:
    """Calls :meth:`TransactionOutbox.flush` on a fixed interval.

    Example:
        >>> scheduler = FlushScheduler(outbox, interval_seconds=5.0)
        >>> scheduler.start()
        >>> # ... later ...
        >>> scheduler.stop()
    """

    name = "thread"

    def __init__(
        self,
        outbox: TransactionOutbox,
        interval_seconds: float = 10.0,
        *,
        purge: bool = True,
    ) -> None:
        self.outbox = outbox
        self.interval = interval_seconds
        self.purge = purge
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._tick_count = 0
        self._error_count = 0
        self._last_tick: datetime | None = None
        self._last_error: str | None = None
        self._lock = threading.Lock()

    def tick(self) -> bool:
        """Run one flush (and purge) cycle.  Returns whether work was found."""
        with self._lock:
            self._tick_count += 1
            self._last_tick = datetime.now(UTC)
        try:
            found = self.outbox.flush()
            if self.purge:
                self.outbox.purge_processed()
        except Exception as e:
            with self._lock:
                self._error_count += 1
                self._last_error = str(e)
            logger.exception("scheduler.tick_failed")
            return False
        self._last_error = None
        return found

    def start(self) -> None:
        """Start the loop in a daemon thread."""
        if self.is_running:
            logger.warning("scheduler.already_started")
            return

        self._stop_event.clear()

        def _loop() -> None:
            logger.info("scheduler.started", interval_seconds=self.interval)
            while not self._stop_event.wait(self.interval):
                # Drain backlog without waiting a full interval per batch
                while self.tick() and not self._stop_event.is_set():
                    pass
            logger.info("scheduler.stopped")

        self._thread = threading.Thread(target=_loop, daemon=True, name="txoutbox-flush")
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the loop, waiting up to ``timeout`` seconds for the current tick."""
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join(timeout=timeout)
        if self._thread.is_alive():
            logger.warning("scheduler.stop_timeout")
        self._thread = None

    def health(self) -> dict[str, Any]:
        """Return scheduler health status."""
        return {
            "healthy": self.is_running and self._last_error is None,
            "backend": self.name,
            "running": self.is_running,
            "tick_count": self._tick_count,
            "error_count": self._error_count,
            "last_tick": self._last_tick.isoformat() if self._last_tick else None,
            "last_error": self._last_error,
            "interval_seconds": self.interval,
        }

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def tick_count(self) -> int:
        return self._tick_count

    def __enter__(self) -> FlushScheduler:
        self.start()
        return self

    def __exit__(self, *args: Any) -> None:
        self.stop()


__all__ = ["FlushScheduler"]
