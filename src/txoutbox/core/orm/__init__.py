"""SQLAlchemy integration for txoutbox.

Modules
-------
session     Engine factory, OutboxSession, SAConnectionBridge

Tags:
    orm, sqlalchemy
"""

from __future__ import annotations

from txoutbox.core.orm.session import (
    OutboxSession,
    SAConnectionBridge,
    create_outbox_engine,
    outbox_session_factory,
    rewrite_placeholders,
)

__all__ = [
    "OutboxSession",
    "SAConnectionBridge",
    "create_outbox_engine",
    "outbox_session_factory",
    "rewrite_placeholders",
]
