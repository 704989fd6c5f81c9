"""Outbox lifecycle hooks.

Subclass :class:`OutboxListener` and override the events of interest.
Listener calls are fire-and-forget: the engine logs and discards any
exception a listener raises, so a faulty listener never changes outbox
state.
"""

from __future__ import annotations

from typing import Any

from txoutbox.dispatch.entry import OutboxEntry


class OutboxListener:
    """No-op base listener."""

    def scheduled(self, entry: OutboxEntry) -> None:
        """The submitting transaction committed; ``entry`` is now durable."""

    def success(self, entry: OutboxEntry, result: Any) -> None:
        """``entry`` was processed; ``result`` is the handler's return value."""

    def failure(self, entry: OutboxEntry, error: BaseException) -> None:
        """An attempt failed and will be retried."""

    def blocked(self, entry: OutboxEntry, error: BaseException) -> None:
        """An attempt failed and ``entry`` reached the blocking threshold."""

    def unblocked(self, entry_id: str) -> None:
        """An operator unblocked ``entry_id``."""


class CompositeListener(OutboxListener):
    """Fans every event out to several listeners in order."""

    def __init__(self, *listeners: OutboxListener) -> None:
        self.listeners = list(listeners)

    def scheduled(self, entry: OutboxEntry) -> None:
        for listener in self.listeners:
            listener.scheduled(entry)

    def success(self, entry: OutboxEntry, result: Any) -> None:
        for listener in self.listeners:
            listener.success(entry, result)

    def failure(self, entry: OutboxEntry, error: BaseException) -> None:
        for listener in self.listeners:
            listener.failure(entry, error)

    def blocked(self, entry: OutboxEntry, error: BaseException) -> None:
        for listener in self.listeners:
            listener.blocked(entry, error)

    def unblocked(self, entry_id: str) -> None:
        for listener in self.listeners:
            listener.unblocked(entry_id)


__all__ = ["OutboxListener", "CompositeListener"]
