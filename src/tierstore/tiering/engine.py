"""
TieringEngine - Moves age-eligible records from the hot tier to the cold tier.

The engine runs in the background, scans the hot tier for records older
than the configured age threshold, and migrates each one through a strictly
ordered protocol:

    Copy -> Verify -> HotDelete

The hot copy is never removed before the cold copy has been independently
verified, so a crash at any point before HOT_DELETED leaves the record fully
readable from the hot tier. There is no transaction spanning both stores;
consistency comes from this ordering plus idempotent, ledger-tracked retries.

Responsibilities:
    - Scan the hot tier for eligible keys (restartable cursor, partitioned)
    - Create one migration task per eligible key
    - Claim tasks exclusively via compare-and-set in the ledger
    - Run copy, verify and hot-delete steps with bounded retries and backoff
    - Quarantine tasks that exhaust their attempts
    - Cancel migrations of records that callers delete mid-flight
    - Shut down gracefully between steps

Usage:
    >>> engine = TieringEngine(hot, cold, ledger, config=config)
    >>> report = await engine.run_once()
    >>>
    >>> # or in the background
    >>> await engine.start()
    >>> ...
    >>> await engine.stop()
"""

from __future__ import annotations

import asyncio
import logging
import os
import socket
import weakref
import zlib
from collections.abc import Awaitable, Callable
from dataclasses import replace
from datetime import timedelta
from typing import TypeVar
from uuid import uuid4

from tierstore.adapters.interface import ColdStore, HotStore
from tierstore.config import TierStoreConfig
from tierstore.exceptions import (
    InvalidTaskTransitionError,
    MigrationTaskNotFoundError,
    QuarantinedMigrationError,
    TaskConflictError,
    VerificationMismatchError,
)
from tierstore.observability import (
    ATTR_BATCH_SIZE,
    ATTR_MIGRATION_ATTEMPTS,
    ATTR_MIGRATION_STATE,
    ATTR_RECORD_KEY,
    ATTR_WORKER_ID,
    Tracer,
    create_tracer,
)
from tierstore.records import Record
from tierstore.retry import calculate_backoff, call_with_retry
from tierstore.scheduling import Clock, IntervalTrigger, SystemClock, Trigger
from tierstore.tiering.ledger import MigrationLedger
from tierstore.tiering.models import (
    MigrationState,
    MigrationTask,
    TieringRunReport,
    TieringStats,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def default_worker_id() -> str:
    """Build a worker identifier unique to this process."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid4().hex[:8]}"


def key_partition(key: str, partitions: int) -> int:
    """Stable partition of a record key (CRC32 modulo partition count)."""
    return zlib.crc32(key.encode("utf-8")) % partitions


class TieringEngine:
    """
    Background migration of records from the hot tier to the cold tier.

    Multiple engines may run against the same stores and ledger: each owns
    the keys of one partition (``worker_index`` of ``worker_count``), and a
    task is additionally claimed with a compare-and-set lease before any
    step runs, so two workers never act on the same task at once.

    Example:
        >>> engine = TieringEngine(
        ...     hot_store=hot,
        ...     cold_store=cold,
        ...     ledger=ledger,
        ...     config=TierStoreConfig(age_threshold=timedelta(days=90)),
        ...     clock=clock,
        ...     trigger=ManualTrigger(),
        ... )
        >>> await engine.start()

    Attributes:
        worker_id: Identifier written into task claims.
    """

    def __init__(
        self,
        hot_store: HotStore,
        cold_store: ColdStore,
        ledger: MigrationLedger,
        *,
        config: TierStoreConfig | None = None,
        clock: Clock | None = None,
        trigger: Trigger | None = None,
        worker_id: str | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the tiering engine.

        Args:
            hot_store: Hot tier adapter (source of migrations).
            cold_store: Cold tier adapter (target of migrations).
            ledger: Migration ledger holding task state.
            config: Tiering configuration (defaults if None).
            clock: Time source (system clock if None).
            trigger: Decides when background runs start. Defaults to an
                IntervalTrigger using ``config.scan_interval``.
            worker_id: Claim owner identifier (generated if None).
            tracer: Optional custom Tracer instance.
            enable_tracing: Whether to enable OpenTelemetry tracing.
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._hot = hot_store
        self._cold = cold_store
        self._ledger = ledger
        self._config = config or TierStoreConfig()
        self._clock = clock or SystemClock()
        self._trigger = trigger or IntervalTrigger(self._config.scan_interval)
        self.worker_id = worker_id or default_worker_id()

        self._stats = TieringStats()
        self._scan_cursor: str | None = None
        self._key_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

        # Lifecycle
        self._stop_event = asyncio.Event()
        self._stopping = False
        self._loop_task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Partitioning and adapter helpers
    # ------------------------------------------------------------------

    def owns_key(self, key: str) -> bool:
        """Check if this engine's partition includes a key."""
        if self._config.worker_count == 1:
            return True
        return key_partition(key, self._config.worker_count) == self._config.worker_index

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._key_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._key_locks[key] = lock
        return lock

    async def _hot_call(self, name: str, key: str | None, op: Callable[[], Awaitable[T]]) -> T:
        return await call_with_retry(
            op,
            tier="hot",
            operation_name=name,
            key=key,
            config=self._config.adapter_retry,
            timeout=self._config.adapter_timeout,
        )

    async def _cold_call(self, name: str, key: str, op: Callable[[], Awaitable[T]]) -> T:
        return await call_with_retry(
            op,
            tier="cold",
            operation_name=name,
            key=key,
            config=self._config.adapter_retry,
            timeout=self._config.cold_adapter_timeout,
        )

    # ------------------------------------------------------------------
    # Scan
    # ------------------------------------------------------------------

    async def scan(self) -> int:
        """
        Create PENDING tasks for hot records older than the age threshold.

        Keys are read page by page from the hot tier. The cursor survives an
        interrupted scan (shutdown or adapter failure), so the next scan
        resumes where this one stopped; a completed pass resets it.

        Returns:
            Number of tasks created.

        Raises:
            TransientIOError: If listing the hot tier keeps failing.
        """
        now = self._clock.now()
        cutoff = now - self._config.age_threshold
        batch_size = self._config.scan_batch_size
        created = 0

        with self._tracer.span(
            "tierstore.tiering.scan",
            {ATTR_WORKER_ID: self.worker_id, ATTR_BATCH_SIZE: batch_size},
        ):
            while not self._stopping:
                after = self._scan_cursor

                async def _page(after: str | None = after) -> list[str]:
                    return [
                        key
                        async for key in self._hot.list_older_than(
                            cutoff, after=after, limit=batch_size
                        )
                    ]

                keys = await self._hot_call("list_older_than", None, _page)

                for key in keys:
                    if not self.owns_key(key):
                        continue
                    self._stats.keys_scanned += 1
                    if await self._ledger.create(MigrationTask.new(key, now)):
                        created += 1
                        logger.debug("Created migration task for %s", key)

                if len(keys) < batch_size:
                    self._scan_cursor = None
                    break
                self._scan_cursor = keys[-1]

        self._stats.tasks_created += created
        if created:
            logger.info(
                "Scan created %d migration task(s)",
                created,
                extra={"worker_id": self.worker_id, "cutoff": cutoff.isoformat()},
            )
        return created

    # ------------------------------------------------------------------
    # Task processing
    # ------------------------------------------------------------------

    async def process(self, key: str) -> MigrationTask | None:
        """
        Advance one task as far as possible.

        Claims the task, then runs its remaining steps until it reaches a
        terminal state, a step fails, or shutdown is requested. Failures are
        recorded in the ledger and never raised to the caller.

        Args:
            key: Key of the task to process.

        Returns:
            The task as last stored, or None if another worker holds it.

        Raises:
            MigrationTaskNotFoundError: If no task exists for the key.
            QuarantinedMigrationError: If the task is quarantined.
        """
        task = await self._ledger.get(key)
        if task is None:
            raise MigrationTaskNotFoundError(key)
        if task.state == MigrationState.FAILED:
            raise QuarantinedMigrationError(key, task.attempts, task.last_error)
        if task.state.is_terminal:
            return task

        with self._tracer.span(
            "tierstore.tiering.process",
            {
                ATTR_RECORD_KEY: key,
                ATTR_MIGRATION_STATE: task.state.value,
                ATTR_MIGRATION_ATTEMPTS: task.attempts,
                ATTR_WORKER_ID: self.worker_id,
            },
        ):
            claimed = await self._claim(task)
            if claimed is None:
                return None
            task = claimed

            while task.state.is_active:
                if self._stopping:
                    await self._release(task)
                    break

                try:
                    async with self._lock_for(key):
                        current = await self._ledger.get(key)
                        if current is None or not self._still_ours(current, task):
                            # Superseded or taken over; nothing left for us to do.
                            return current
                        task = await self._run_step(current)
                except TaskConflictError:
                    self._stats.claim_conflicts += 1
                    logger.info("Lost claim on migration task %s", key)
                    return await self._ledger.get(key)
                except Exception as e:
                    task = await self._record_failure(task, e)
                    break

            return task

    def _still_ours(self, current: MigrationTask, held: MigrationTask) -> bool:
        return current.version == held.version and current.claimed_by == self.worker_id

    async def _claim(self, task: MigrationTask) -> MigrationTask | None:
        now = self._clock.now()
        if task.is_claimed(now) and task.claimed_by != self.worker_id:
            return None
        try:
            return await self._ledger.save(
                task.evolve(
                    claimed_by=self.worker_id,
                    claim_expires_at=now + self._config.claim_ttl,
                    updated_at=now,
                ),
                task.version,
            )
        except TaskConflictError:
            self._stats.claim_conflicts += 1
            logger.debug("Claim on %s lost to another worker", task.key)
            return None

    async def _release(self, task: MigrationTask) -> None:
        """Checkpoint the task and drop this worker's claim."""
        try:
            await self._ledger.save(
                task.evolve(claimed_by=None, claim_expires_at=None, updated_at=self._clock.now()),
                task.version,
            )
        except TaskConflictError:
            logger.debug("Task %s changed before release; leaving it as is", task.key)

    def _renewed(self, task: MigrationTask, **changes: object) -> MigrationTask:
        now = self._clock.now()
        return replace(
            task,
            updated_at=now,
            claim_expires_at=now + self._config.claim_ttl,
            **changes,  # type: ignore[arg-type]
        )

    async def _run_step(self, task: MigrationTask) -> MigrationTask:
        if task.state == MigrationState.PENDING:
            return await self._copy(task)
        if task.state == MigrationState.COPIED:
            return await self._verify(task)
        if task.state == MigrationState.VERIFIED:
            return await self._delete_hot(task)
        raise InvalidTaskTransitionError(task.key, task.state.value, "next step")

    async def _copy(self, task: MigrationTask) -> MigrationTask:
        """
        Copy step: read the hot record and write it to the cold tier.

        Overwriting the cold object with the same record is harmless, so
        the step can be repeated any number of times.
        """
        key = task.key
        with self._tracer.span("tierstore.tiering.copy", {ATTR_RECORD_KEY: key}):
            started_at = task.started_at or self._clock.now()
            record = await self._hot_call("get", key, lambda: self._hot.get(key))

            if record is None:
                return await self._copy_without_hot(task, started_at)

            await self._cold_call("put", key, lambda: self._cold.put(record))

            # A caller may have deleted the record while we were copying.
            # Its cold delete may already have run, so remove our copy.
            if not await self._hot_call("exists", key, lambda: self._hot.exists(key)):
                await self._cold_call("delete", key, lambda: self._cold.delete(key))
                return await self._finish_superseded(task, "deleted during copy")

            saved = await self._ledger.save(
                self._renewed(
                    task,
                    state=MigrationState.COPIED,
                    started_at=started_at,
                    size_bytes=record.size_bytes,
                    checksum=record.checksum,
                ),
                task.version,
            )
            logger.debug("Copied %s to cold tier (%d bytes)", key, record.size_bytes)
            return saved

    async def _copy_without_hot(self, task: MigrationTask, started_at: object) -> MigrationTask:
        """
        Handle a copy attempt whose hot record is gone.

        If an earlier attempt already produced a matching cold copy, the hot
        copy was removed by an earlier hot-delete whose outcome was not
        recorded; the migration continues from that copy. Otherwise the
        record was deleted by a caller.
        """
        key = task.key
        if task.checksum is not None:
            cold_record = await self._cold_call("get", key, lambda: self._cold.get(key))
            if cold_record is not None and cold_record.checksum == task.checksum:
                logger.info("Hot copy of %s already gone; continuing from cold copy", key)
                return await self._ledger.save(
                    self._renewed(task, state=MigrationState.COPIED, started_at=started_at),
                    task.version,
                )
        return await self._finish_superseded(task, "record no longer in hot tier")

    async def _verify(self, task: MigrationTask) -> MigrationTask:
        """Verify step: compare the cold copy against the size and checksum taken at copy time."""
        key = task.key
        with self._tracer.span("tierstore.tiering.verify", {ATTR_RECORD_KEY: key}):
            cold_record: Record | None = await self._cold_call(
                "get", key, lambda: self._cold.get(key)
            )
            if cold_record is None:
                raise VerificationMismatchError(key, task.size_bytes, None, task.checksum, None)
            if cold_record.size_bytes != task.size_bytes or cold_record.checksum != task.checksum:
                raise VerificationMismatchError(
                    key,
                    task.size_bytes,
                    cold_record.size_bytes,
                    task.checksum,
                    cold_record.checksum,
                )

            saved = await self._ledger.save(
                self._renewed(task, state=MigrationState.VERIFIED),
                task.version,
            )
            logger.debug("Verified cold copy of %s", key)
            return saved

    async def _delete_hot(self, task: MigrationTask) -> MigrationTask:
        """HotDelete step: runs only for VERIFIED tasks."""
        key = task.key
        if task.state != MigrationState.VERIFIED:
            raise InvalidTaskTransitionError(
                key, task.state.value, MigrationState.HOT_DELETED.value
            )

        with self._tracer.span("tierstore.tiering.delete_hot", {ATTR_RECORD_KEY: key}):
            existed = await self._hot_call("delete", key, lambda: self._hot.delete(key))
            if not existed:
                logger.info("Hot copy of %s was already gone at hot-delete", key)

            now = self._clock.now()
            saved = await self._ledger.save(
                task.evolve(
                    state=MigrationState.HOT_DELETED,
                    completed_at=now,
                    updated_at=now,
                    next_attempt_at=None,
                    claimed_by=None,
                    claim_expires_at=None,
                ),
                task.version,
            )
            self._stats.migrated += 1
            logger.info(
                "Migrated %s to cold tier",
                key,
                extra={"key": key, "attempts": task.attempts, "size_bytes": task.size_bytes},
            )
            return saved

    async def _finish_superseded(self, task: MigrationTask, reason: str) -> MigrationTask:
        now = self._clock.now()
        saved = await self._ledger.save(
            task.evolve(
                state=MigrationState.SUPERSEDED,
                completed_at=now,
                updated_at=now,
                last_error=reason,
                claimed_by=None,
                claim_expires_at=None,
            ),
            task.version,
        )
        self._stats.superseded += 1
        logger.info("Migration of %s superseded: %s", task.key, reason)
        return saved

    async def _record_failure(self, task: MigrationTask, error: Exception) -> MigrationTask:
        """
        Revert a task to PENDING with backoff, or quarantine it.

        The hot copy is untouched: every failure path happens before the
        hot delete has been recorded.
        """
        key = task.key
        current = await self._ledger.get(key)
        if current is None or not current.state.is_active:
            return current if current is not None else task
        if current.claimed_by is not None and current.claimed_by != self.worker_id:
            # Our lease lapsed and another worker owns the task now.
            return current

        now = self._clock.now()
        attempts = current.attempts + 1
        message = f"{type(error).__name__}: {error}"
        self._stats.failed_attempts += 1
        self._stats.last_error = message

        if attempts >= self._config.max_attempts:
            updated = current.evolve(
                state=MigrationState.FAILED,
                attempts=attempts,
                last_error=message,
                updated_at=now,
                next_attempt_at=None,
                claimed_by=None,
                claim_expires_at=None,
            )
        else:
            delay = calculate_backoff(attempts - 1, self._config.backoff)
            updated = current.evolve(
                state=MigrationState.PENDING,
                attempts=attempts,
                last_error=message,
                updated_at=now,
                next_attempt_at=now + timedelta(seconds=delay),
                claimed_by=None,
                claim_expires_at=None,
            )

        try:
            saved = await self._ledger.save(updated, current.version)
        except TaskConflictError:
            self._stats.claim_conflicts += 1
            return await self._ledger.get(key) or current

        if saved.state == MigrationState.FAILED:
            self._stats.quarantined += 1
            logger.error(
                "Migration of %s quarantined after %d attempts",
                key,
                attempts,
                extra={"key": key, "attempts": attempts, "error": message},
            )
        else:
            logger.warning(
                "Migration of %s failed (attempt %d/%d), retrying after %s",
                key,
                attempts,
                self._config.max_attempts,
                saved.next_attempt_at.isoformat() if saved.next_attempt_at else "now",
                extra={"key": key, "attempts": attempts, "error": message},
            )
        return saved

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    async def run_once(self) -> TieringRunReport:
        """
        Run one scan followed by processing of every due task in this partition.

        Migration failures are contained in the ledger. A scan failure is
        logged and processing of already known tasks still happens.

        Returns:
            Summary of the run.
        """
        started_at = self._clock.now()
        before = replace(self._stats)

        with self._tracer.span("tierstore.tiering.run", {ATTR_WORKER_ID: self.worker_id}):
            created = 0
            try:
                created = await self.scan()
            except Exception:
                logger.exception("Scan failed; processing known tasks only")

            processed = await self._process_due()

        self._stats.runs += 1
        self._stats.last_run_at = self._clock.now()

        report = TieringRunReport(
            started_at=started_at,
            tasks_created=created,
            tasks_processed=processed,
            migrated=self._stats.migrated - before.migrated,
            failed_attempts=self._stats.failed_attempts - before.failed_attempts,
            quarantined=self._stats.quarantined - before.quarantined,
            superseded=self._stats.superseded - before.superseded,
            interrupted=self._stopping,
        )
        logger.info(
            "Tiering run complete: %d created, %d processed, %d migrated",
            report.tasks_created,
            report.tasks_processed,
            report.migrated,
            extra={"worker_id": self.worker_id, "failed_attempts": report.failed_attempts},
        )
        return report

    async def _process_due(self) -> int:
        now = self._clock.now()
        semaphore = asyncio.Semaphore(self._config.max_concurrency)
        processed = 0
        after: str | None = None

        async def _guarded(key: str) -> None:
            async with semaphore:
                if self._stopping:
                    return
                try:
                    await self.process(key)
                except (MigrationTaskNotFoundError, QuarantinedMigrationError) as e:
                    logger.debug("Skipping %s: %s", key, e)
                except Exception:
                    # Usually the ledger itself failed; the task keeps its
                    # last recorded state and is retried on a later run.
                    self._stats.failed_attempts += 1
                    logger.exception(
                        "Processing of migration task %s failed",
                        key,
                        extra={"key": key, "worker_id": self.worker_id},
                    )

        while not self._stopping:
            page = await self._ledger.list_due(
                now, after=after, limit=self._config.scan_batch_size
            )
            if not page:
                break
            keys = [task.key for task in page if self.owns_key(task.key)]
            await asyncio.gather(*(_guarded(key) for key in keys))
            processed += len(keys)
            after = page[-1].key
            if len(page) < self._config.scan_batch_size:
                break

        return processed

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the background loop. Runs begin whenever the trigger fires."""
        if self._loop_task is not None and not self._loop_task.done():
            return
        self._stopping = False
        self._stop_event.clear()
        self._loop_task = asyncio.create_task(self._run_loop(), name=f"tiering-{self.worker_id}")
        logger.info("Tiering engine %s started", self.worker_id)

    async def _run_loop(self) -> None:
        while not self._stopping:
            if not await self._trigger.wait(self._stop_event):
                break
            try:
                await self.run_once()
            except Exception:
                logger.exception("Tiering run failed")

    async def stop(self, timeout: float = 30.0) -> None:
        """
        Stop the background loop gracefully.

        The in-flight step of every task is allowed to finish and its state
        is checkpointed in the ledger before the loop exits. If that takes
        longer than ``timeout`` the loop is cancelled; tasks then keep their
        last recorded state and their claims lapse after ``claim_ttl``.

        Args:
            timeout: Seconds to wait for in-flight steps.
        """
        self._stopping = True
        self._stop_event.set()
        if self._loop_task is None:
            self._stopping = False
            return

        try:
            await asyncio.wait_for(asyncio.shield(self._loop_task), timeout=timeout)
        except TimeoutError:
            logger.warning("Tiering engine did not stop within %.1fs; cancelling", timeout)
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
        finally:
            self._loop_task = None
            # The loop is gone; direct process() and run_once() calls work again.
            self._stopping = False
            logger.info("Tiering engine %s stopped", self.worker_id)

    @property
    def is_running(self) -> bool:
        """Check if the background loop is running."""
        return self._loop_task is not None and not self._loop_task.done()

    # ------------------------------------------------------------------
    # Operator and access-layer hooks
    # ------------------------------------------------------------------

    async def supersede(self, key: str) -> bool:
        """
        Cancel any active migration of a record that a caller deleted.

        Waits for the key's in-flight step to finish so that no cold write
        from this engine can land after the caller's cold delete.

        Args:
            key: Key of the deleted record.

        Returns:
            True if an active task was cancelled.
        """
        async with self._lock_for(key):
            for _ in range(3):
                task = await self._ledger.get(key)
                if task is None or not task.state.is_active:
                    return False
                try:
                    await self._finish_superseded(task, "record deleted by caller")
                    return True
                except TaskConflictError:
                    # A worker in another process wrote in between; re-read.
                    continue
            logger.warning("Could not supersede migration of %s after repeated conflicts", key)
            return False

    async def reset(self, key: str) -> MigrationTask:
        """
        Return a quarantined task to PENDING with its attempts cleared.

        Raises:
            MigrationTaskNotFoundError: If no task exists for the key.
            InvalidTaskTransitionError: If the task is not quarantined.
        """
        task = await self._ledger.get(key)
        if task is None:
            raise MigrationTaskNotFoundError(key)
        if task.state != MigrationState.FAILED:
            raise InvalidTaskTransitionError(key, task.state.value, MigrationState.PENDING.value)

        saved = await self._ledger.save(
            task.evolve(
                state=MigrationState.PENDING,
                attempts=0,
                last_error=None,
                next_attempt_at=None,
                updated_at=self._clock.now(),
            ),
            task.version,
        )
        logger.info("Migration task %s reset by operator", key)
        return saved

    async def quarantined(self) -> list[MigrationTask]:
        """List tasks that exhausted their retries and await inspection."""
        return await self._ledger.list_by_state(MigrationState.FAILED)

    async def purge(self, key: str) -> bool:
        """
        Remove the ledger entry of a finished migration.

        Only HOT_DELETED and SUPERSEDED tasks can be purged. Active tasks
        are still needed for recovery, and quarantined tasks block new
        tasks for their key until an operator resets them.

        Returns:
            True if a task was removed, False if none existed.

        Raises:
            InvalidTaskTransitionError: If the task is active or quarantined.
        """
        async with self._lock_for(key):
            task = await self._ledger.get(key)
            if task is None:
                return False
            if not task.state.is_terminal or task.state == MigrationState.FAILED:
                raise InvalidTaskTransitionError(key, task.state.value, "purged")
            removed = await self._ledger.delete(key)
        if removed:
            logger.info("Purged %s migration task %s", task.state.value, key)
        return removed

    @property
    def stats(self) -> TieringStats:
        """Cumulative counters for this engine."""
        return self._stats

    @property
    def config(self) -> TierStoreConfig:
        return self._config


__all__ = [
    "TieringEngine",
    "default_worker_id",
    "key_partition",
]
