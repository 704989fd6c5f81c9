"""Dispatch: persisting, claiming and executing outbox entries.

Modules
-------
entry       OutboxEntry dataclass + EntryStatus
invocation  Invocation model, handler registry, executor
persistor   DefaultPersistor (dialect-portable SQL over TXNO_OUTBOX)
backoff     ExponentialBackoff / FixedBackoff
listener    OutboxListener lifecycle hooks
submitter   DirectSubmitter / ExecutorSubmitter
outbox      TransactionOutbox engine + SubmissionHandle
scheduler   FlushScheduler background loop
"""

from txoutbox.dispatch.backoff import BackoffPolicy, ExponentialBackoff, FixedBackoff
from txoutbox.dispatch.entry import EntryStatus, OutboxEntry
from txoutbox.dispatch.invocation import (
    Invocation,
    InvocationExecutor,
    InvocationRegistry,
    JsonInvocationSerializer,
    RegistryInvocationExecutor,
    get_default_registry,
    handler,
    reset_default_registry,
)
from txoutbox.dispatch.listener import CompositeListener, OutboxListener
from txoutbox.dispatch.outbox import SubmissionHandle, TransactionOutbox
from txoutbox.dispatch.persistor import DefaultPersistor, Persistor, StatusCounts
from txoutbox.dispatch.scheduler import FlushScheduler
from txoutbox.dispatch.submitter import DirectSubmitter, ExecutorSubmitter, Submitter

__all__ = [
    "BackoffPolicy",
    "ExponentialBackoff",
    "FixedBackoff",
    "EntryStatus",
    "OutboxEntry",
    "Invocation",
    "InvocationExecutor",
    "InvocationRegistry",
    "JsonInvocationSerializer",
    "RegistryInvocationExecutor",
    "get_default_registry",
    "handler",
    "reset_default_registry",
    "CompositeListener",
    "OutboxListener",
    "SubmissionHandle",
    "TransactionOutbox",
    "DefaultPersistor",
    "Persistor",
    "StatusCounts",
    "FlushScheduler",
    "DirectSubmitter",
    "ExecutorSubmitter",
    "Submitter",
]
