"""The outbox work item, one row of ``TXNO_OUTBOX``."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from txoutbox.dispatch.invocation import Invocation


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


class EntryStatus(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    BLOCKED = "blocked"


@dataclass
class OutboxEntry:
    """A pending side effect and its dispatch state.

    ``id``, ``invocation`` and ``created_time`` never change after insert.
    ``version`` is the optimistic-lock counter; the persistor bumps it on
    every successful update.
    """

    invocation: Invocation
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_time: datetime | None = field(default_factory=utcnow)
    next_attempt_time: datetime = field(default_factory=utcnow)
    last_attempt_time: datetime | None = None
    attempts: int = 0
    blocked: bool = False
    processed: bool = False
    unique_request_id: str | None = None
    version: int = 0

    @property
    def status(self) -> EntryStatus:
        if self.processed:
            return EntryStatus.PROCESSED
        if self.blocked:
            return EntryStatus.BLOCKED
        return EntryStatus.PENDING

    def description(self) -> str:
        """Short human-readable form for logs."""
        suffix = f" [{self.unique_request_id}]" if self.unique_request_id else ""
        return f"{self.invocation.describe()} id={self.id}{suffix}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "invocation": self.invocation.model_dump(),
            "status": self.status.value,
            "created_time": self.created_time.isoformat() if self.created_time else None,
            "next_attempt_time": self.next_attempt_time.isoformat(),
            "last_attempt_time": (
                self.last_attempt_time.isoformat() if self.last_attempt_time else None
            ),
            "attempts": self.attempts,
            "blocked": self.blocked,
            "processed": self.processed,
            "unique_request_id": self.unique_request_id,
            "version": self.version,
        }


__all__ = ["EntryStatus", "OutboxEntry", "utcnow"]
