"""Transaction outbox dispatch engine.

Entries move through a small state machine:

    ::

        submit ──► PENDING ──(attempt ok)──────────────► PROCESSED (terminal)
                     │ ▲
                     │ └──(attempt failed, attempts < N)─┐
                     │                                   │
                     └──(attempt failed, attempts >= N)──► BLOCKED ──(unblock)──► PENDING

Lifecycle:
    1. ``submit`` inserts the entry inside the caller's business
       transaction.  After that transaction commits, the entry is handed
       to the submitter for immediate processing (unless delayed).
    2. ``flush`` claims due entries in one short transaction by pushing
       ``nextAttemptTime`` forward by ``attempt_frequency``, commits, then
       hands each claimed entry to the submitter.  A worker that dies after
       claiming leaves the entry to become due again when the claim lapses.
    3. Processing one entry opens its own transaction, re-locks the row at
       the claimed version, runs the invocation, and marks it processed.
       Failures are recorded in a separate transaction with backoff and,
       past ``block_after_attempts``, ``blocked = true``.

Item-level failures never escape ``flush``.  The database is the only
coordinator between concurrent workers.

Example:
    >>> tm, _ = create_transaction_manager("sqlite:///outbox.db")
    >>> outbox = TransactionOutbox(tm, DefaultPersistor(get_dialect("sqlite")))
    >>> outbox.initialize()
    >>> with tm.transaction() as tx:
    ...     tx.connection.execute("INSERT INTO orders ...")
    ...     outbox.submit(Invocation.of("orders.send_confirmation", 42),
    ...                   unique_request_id="order-42")
    >>> outbox.flush()
"""

from __future__ import annotations

import weakref
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import replace
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from txoutbox.core.dialect import get_dialect
from txoutbox.core.errors import (
    DuplicateRequestError,
    EntryBlockedError,
    InvalidConfigError,
    OptimisticLockError,
)
from txoutbox.core.logging import LogContext, get_logger
from txoutbox.core.migrations import MigrationResult
from txoutbox.dispatch.backoff import BackoffPolicy, ExponentialBackoff
from txoutbox.dispatch.entry import OutboxEntry, utcnow
from txoutbox.dispatch.invocation import (
    Invocation,
    InvocationExecutor,
    RegistryInvocationExecutor,
)
from txoutbox.dispatch.listener import OutboxListener
from txoutbox.dispatch.persistor import DefaultPersistor, Persistor, StatusCounts
from txoutbox.dispatch.submitter import DirectSubmitter, ExecutorSubmitter, Submitter

if TYPE_CHECKING:
    from txoutbox.core.protocols import TransactionManager
    from txoutbox.core.settings import OutboxSettings
    from txoutbox.core.transactions import Transaction

logger = get_logger(__name__)


class _LockLost(Exception):
    """The entry changed under this worker; its attempt is void."""


class _AttemptFailed(Exception):
    """An attempt that reached the executor and failed."""

    def __init__(self, error: Exception) -> None:
        super().__init__(str(error))
        self.error = error


class SubmissionHandle:
    """Returned by :meth:`TransactionOutbox.submit`.

    ``result()`` waits for this process to execute the entry and returns
    the handler's return value.  It raises :class:`EntryBlockedError` if
    the entry is blocked, and ``CancelledError`` if the submitting
    transaction rolled back.  Entries processed by another worker never
    resolve the handle.
    """

    def __init__(self, entry: OutboxEntry, future: Future) -> None:
        self.entry_id = entry.id
        self.unique_request_id = entry.unique_request_id
        self.future = future

    def result(self, timeout: float | None = None) -> Any:
        return self.future.result(timeout)

    def done(self) -> bool:
        return self.future.done()

    def cancelled(self) -> bool:
        return self.future.cancelled()

    def __repr__(self) -> str:
        return f"SubmissionHandle(entry_id={self.entry_id!r}, done={self.done()})"


class TransactionOutbox:
    """Submit, flush and process outbox entries.

    Parameters
    ----------
    transaction_manager
        Opens the processing and claim transactions, and supplies the
        caller's current transaction to ``submit``.
    persistor
        Storage for entries.
    executor
        Runs invocations; defaults to the global handler registry.
    submitter
        Where claimed entries run (inline by default).
    listener
        Lifecycle hooks.
    backoff
        Delay after a failed attempt.
    attempt_frequency
        Claim lease: how long a claimed or freshly submitted entry is
        invisible to ``flush``.
    block_after_attempts
        Failed attempts before an entry is blocked.
    flush_batch_size
        Maximum entries claimed per ``flush``.
    retention_threshold
        How long processed entries are kept (for dedup) before
        ``purge_processed`` may delete them.
    process_immediately
        Process non-delayed entries as soon as the submitting transaction
        commits.
    clock
        Returns the current tz-aware UTC time.
    """

    def __init__(
        self,
        transaction_manager: TransactionManager,
        persistor: Persistor,
        executor: InvocationExecutor | None = None,
        *,
        submitter: Submitter | None = None,
        listener: OutboxListener | None = None,
        backoff: BackoffPolicy | None = None,
        attempt_frequency: timedelta = timedelta(minutes=2),
        block_after_attempts: int = 5,
        flush_batch_size: int = 4096,
        retention_threshold: timedelta = timedelta(days=7),
        process_immediately: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if block_after_attempts < 1:
            raise InvalidConfigError("block_after_attempts", block_after_attempts)
        if flush_batch_size < 1:
            raise InvalidConfigError("flush_batch_size", flush_batch_size)
        if attempt_frequency <= timedelta(0):
            raise InvalidConfigError("attempt_frequency", attempt_frequency)

        self.transaction_manager = transaction_manager
        self.persistor = persistor
        self.executor = executor or RegistryInvocationExecutor()
        self.submitter = submitter or DirectSubmitter()
        self.listener = listener or OutboxListener()
        self.backoff = backoff or ExponentialBackoff()
        self.attempt_frequency = attempt_frequency
        self.block_after_attempts = block_after_attempts
        self.flush_batch_size = flush_batch_size
        self.retention_threshold = retention_threshold
        self.process_immediately = process_immediately
        self.clock = clock
        self._waiters: weakref.WeakValueDictionary[str, Future] = weakref.WeakValueDictionary()

    @classmethod
    def from_settings(
        cls,
        settings: OutboxSettings,
        transaction_manager: TransactionManager | None = None,
        executor: InvocationExecutor | None = None,
        *,
        listener: OutboxListener | None = None,
    ) -> TransactionOutbox:
        """Build an outbox from :class:`OutboxSettings`.

        Without ``transaction_manager`` one is created from
        ``settings.database_url``.
        """
        if transaction_manager is None:
            from txoutbox.core.connection import create_transaction_manager

            transaction_manager, _info = create_transaction_manager(settings.database_url)

        persistor = DefaultPersistor(
            get_dialect(settings.resolved_dialect()),
            table_name=settings.table_name,
            migrate=settings.migrate,
        )
        submitter: Submitter = (
            ExecutorSubmitter(settings.submitter_workers)
            if settings.submitter_workers > 0
            else DirectSubmitter()
        )
        return cls(
            transaction_manager,
            persistor,
            executor,
            submitter=submitter,
            listener=listener,
            backoff=ExponentialBackoff(
                base_delay=settings.backoff_base_seconds,
                multiplier=settings.backoff_multiplier,
                max_delay=settings.backoff_max_seconds,
            ),
            attempt_frequency=settings.attempt_frequency,
            block_after_attempts=settings.block_after_attempts,
            flush_batch_size=settings.flush_batch_size,
            retention_threshold=settings.retention_threshold,
            process_immediately=settings.process_immediately,
        )

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    def initialize(self) -> MigrationResult | None:
        """Run schema migrations (no-op when the persistor has them disabled).

        Raises:
            MigrationError: The schema could not be brought up to date.
        """
        return self.persistor.migrate(self.transaction_manager)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(
        self,
        invocation: Invocation,
        *,
        unique_request_id: str | None = None,
        delay: timedelta | None = None,
        transaction: Transaction | None = None,
    ) -> SubmissionHandle:
        """Record ``invocation`` in the caller's transaction.

        Raises:
            NoTransactionActiveError: No ``transaction`` given and none open.
            DuplicateRequestError: ``unique_request_id`` was already submitted
                (and not yet purged).  Nothing is inserted.
            PersistenceError: The insert failed.
        """
        tx = transaction or self.transaction_manager.current()
        now = self.clock()
        process_now = self.process_immediately and not delay
        if delay:
            next_attempt = now + delay
        elif process_now:
            next_attempt = now + self.attempt_frequency
        else:
            next_attempt = now

        entry = OutboxEntry(
            invocation=invocation,
            created_time=now,
            next_attempt_time=next_attempt,
            unique_request_id=unique_request_id,
        )

        if unique_request_id is not None and self.persistor.exists_unique(tx, unique_request_id):
            logger.info("outbox.entry.duplicate", unique_request_id=unique_request_id)
            raise DuplicateRequestError(
                f"Request {unique_request_id} already submitted"
            ).with_context(unique_request_id=unique_request_id)
        self.persistor.save(tx, entry)

        future: Future = Future()
        self._waiters[entry.id] = future
        handle = SubmissionHandle(entry, future)

        tx.add_post_commit_hook(lambda: self._on_committed(entry, process_now))
        tx.add_post_rollback_hook(lambda: self._resolve(entry.id, lambda f: f.cancel()))

        logger.debug(
            "outbox.entry.submitted",
            entry_id=entry.id,
            target=invocation.target,
            unique_request_id=unique_request_id,
        )
        return handle

    def _on_committed(self, entry: OutboxEntry, process_now: bool) -> None:
        self._notify("scheduled", entry)
        if process_now:
            self._hand_off(entry)

    # ------------------------------------------------------------------
    # Flush
    # ------------------------------------------------------------------

    def flush(self, now: datetime | None = None) -> bool:
        """Claim due entries and hand them to the submitter.

        Returns:
            True if any due entries were found.

        Raises:
            PersistenceError: The claim transaction failed.
        """
        now = now or self.clock()
        found, claimed = self.transaction_manager.in_transaction(
            lambda tx: self._claim_batch(tx, now)
        )
        if found:
            logger.info("outbox.flush", found=found, claimed=len(claimed))
        for entry in claimed:
            self._hand_off(entry)
        return found > 0

    def _claim_batch(self, tx: Transaction, now: datetime) -> tuple[int, list[OutboxEntry]]:
        due = self.persistor.select_batch(tx, self.flush_batch_size, now)
        claimed = []
        for entry in due:
            lease = replace(entry, next_attempt_time=now + self.attempt_frequency)
            try:
                self.persistor.update(tx, lease)
            except OptimisticLockError:
                logger.debug("outbox.entry.claim_lost", entry_id=entry.id)
                continue
            claimed.append(lease)
        return len(due), claimed

    def _hand_off(self, entry: OutboxEntry) -> None:
        try:
            self.submitter.submit(entry, self.process)
        except Exception:
            # Claim lapses after attempt_frequency and flush picks it up again
            logger.exception("outbox.entry.submit_rejected", entry_id=entry.id)

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def process(self, entry: OutboxEntry) -> None:
        """Attempt one claimed entry.  Never raises for item-level failures."""
        with LogContext(entry_id=entry.id):
            try:
                outcome = self.transaction_manager.in_transaction(
                    lambda tx: self._attempt(tx, entry)
                )
            except _LockLost:
                logger.info("outbox.entry.lock_lost", entry_id=entry.id)
                return
            except _AttemptFailed as e:
                self._record_failure(entry, e.error)
                return
            except Exception:
                # Not an attempt; the claim lapses and flush retries it
                logger.exception("outbox.entry.attempt_aborted", entry_id=entry.id)
                return

            if outcome is None:
                logger.debug("outbox.entry.already_taken", entry_id=entry.id)
                return
            done, result = outcome
            logger.info("outbox.entry.processed", attempts=done.attempts, target=done.invocation.target)
            self._resolve(done.id, lambda f: f.set_result(result))
            self._notify("success", done, result)

    def _attempt(self, tx: Transaction, entry: OutboxEntry) -> tuple[OutboxEntry, Any] | None:
        if not self.persistor.lock(tx, entry):
            return None
        try:
            result = self.executor.execute(entry.invocation, tx)
        except Exception as e:
            raise _AttemptFailed(e) from e
        now = self.clock()
        done = replace(
            entry,
            processed=True,
            attempts=entry.attempts + 1,
            last_attempt_time=now,
            next_attempt_time=now + self.retention_threshold,
        )
        try:
            self.persistor.update(tx, done)
        except OptimisticLockError as e:
            raise _LockLost() from e
        except Exception as e:
            raise _AttemptFailed(e) from e
        return done, result

    def _record_failure(self, entry: OutboxEntry, error: Exception) -> None:
        now = self.clock()
        attempts = entry.attempts + 1
        failed = replace(
            entry,
            attempts=attempts,
            last_attempt_time=now,
            next_attempt_time=now + self.backoff.delay(attempts),
            blocked=attempts >= self.block_after_attempts,
        )
        try:
            self.transaction_manager.in_transaction(lambda tx: self.persistor.update(tx, failed))
        except OptimisticLockError:
            logger.info("outbox.entry.failure_lock_lost", error=str(error))
            return
        except Exception:
            logger.exception("outbox.entry.failure_not_recorded", error=str(error))
            return

        if failed.blocked:
            logger.error(
                "outbox.entry.blocked",
                attempts=attempts,
                target=entry.invocation.target,
                error=str(error),
            )
            blocked_error = EntryBlockedError(
                f"Entry {entry.id} blocked after {attempts} attempts", cause=error
            ).with_context(entry_id=entry.id, unique_request_id=entry.unique_request_id)
            self._resolve(entry.id, lambda f: f.set_exception(blocked_error))
            self._notify("blocked", failed, error)
        else:
            logger.warning(
                "outbox.entry.failed",
                attempts=attempts,
                next_attempt_time=failed.next_attempt_time.isoformat(),
                target=entry.invocation.target,
                error=str(error),
            )
            self._notify("failure", failed, error)

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    def unblock(self, entry_id: str) -> bool:
        """Clear ``blocked`` and reset ``attempts``; False if not blocked."""
        unblocked = self.transaction_manager.in_transaction(
            lambda tx: self.persistor.unblock(tx, entry_id)
        )
        if unblocked:
            logger.info("outbox.entry.unblocked", entry_id=entry_id)
            self._notify("unblocked", entry_id)
        return unblocked

    def purge_processed(self, now: datetime | None = None) -> int:
        """Delete processed entries past retention, in batches.  Returns the count."""
        now = now or self.clock()
        total = 0
        while True:
            deleted = self.transaction_manager.in_transaction(
                lambda tx: self.persistor.delete_processed_and_expired(
                    tx, self.flush_batch_size, now
                )
            )
            total += deleted
            if deleted < self.flush_batch_size:
                break
        if total:
            logger.info("outbox.purged", deleted=total)
        return total

    def get(self, entry_id: str) -> OutboxEntry | None:
        return self.transaction_manager.in_transaction(lambda tx: self.persistor.get(tx, entry_id))

    def stats(self) -> StatusCounts:
        return self.transaction_manager.in_transaction(self.persistor.count_by_status)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _resolve(self, entry_id: str, settle: Callable[[Future], Any]) -> None:
        future = self._waiters.pop(entry_id, None)
        if future is not None and not future.done():
            settle(future)

    def _notify(self, event: str, *args: Any) -> None:
        try:
            getattr(self.listener, event)(*args)
        except Exception:
            logger.exception("outbox.listener_failed", listener_event=event)


__all__ = ["SubmissionHandle", "TransactionOutbox"]
