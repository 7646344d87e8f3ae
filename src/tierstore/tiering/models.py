"""
Data models for record migration between tiers.

Models in this module:

Enums:
    - MigrationState: Lifecycle states of a migration task

Core Models:
    - MigrationTask: One record's pending or completed move hot -> cold
    - TieringRunReport: Outcome of one scan-and-migrate run
    - TieringStats: Cumulative engine counters
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any


class MigrationState(Enum):
    """
    Migration task lifecycle states.

    State machine transitions:
        PENDING -> COPIED -> VERIFIED -> HOT_DELETED
            |         |          |
            +---------+----------+--> PENDING     (failure, attempts + 1)
            +---------+----------+--> FAILED      (attempts exhausted)
            +---------+----------+--> SUPERSEDED  (record deleted by a caller)
        FAILED -> PENDING                         (manual reset)

    Attributes:
        PENDING: Eligible for copy; also the retry state after a failure.
        COPIED: Payload written to the cold tier, not yet verified.
        VERIFIED: Cold copy matches the original; hot copy may be deleted.
        HOT_DELETED: Hot copy removed. The record lives only in the cold tier.
        FAILED: Quarantined after exhausting retries. Record stays hot.
        SUPERSEDED: Record deleted by a caller while migration was in flight.
    """

    PENDING = "pending"
    """Eligible for copy; also the retry state after a failure."""

    COPIED = "copied"
    """Payload written to the cold tier, not yet verified."""

    VERIFIED = "verified"
    """Cold copy matches the original; hot copy may be deleted."""

    HOT_DELETED = "hot_deleted"
    """Hot copy removed. The record lives only in the cold tier."""

    FAILED = "failed"
    """Quarantined after exhausting retries. Record stays hot."""

    SUPERSEDED = "superseded"
    """Record deleted by a caller while migration was in flight."""

    @property
    def is_terminal(self) -> bool:
        """
        Check if automatic processing has finished for this state.

        FAILED is terminal for automatic processing but can be reset by an
        operator.
        """
        return self in (
            MigrationState.HOT_DELETED,
            MigrationState.FAILED,
            MigrationState.SUPERSEDED,
        )

    @property
    def is_active(self) -> bool:
        """Check if the task still has migration steps to run."""
        return not self.is_terminal

    @property
    def blocks_new_task(self) -> bool:
        """
        Check if a task in this state prevents a scan from creating a new one.

        Active tasks and quarantined tasks block; finished tasks do not,
        so a key written again after deletion can migrate again.
        """
        return self not in (MigrationState.HOT_DELETED, MigrationState.SUPERSEDED)

    def can_transition_to(self, target: MigrationState) -> bool:
        """
        Check if transition to target state is valid.

        Args:
            target: The state to transition to.

        Returns:
            True if the transition is valid.
        """
        return target in VALID_TRANSITIONS[self]


VALID_TRANSITIONS: dict[MigrationState, frozenset[MigrationState]] = {
    MigrationState.PENDING: frozenset(
        {
            MigrationState.PENDING,
            MigrationState.COPIED,
            MigrationState.FAILED,
            MigrationState.SUPERSEDED,
        }
    ),
    MigrationState.COPIED: frozenset(
        {
            MigrationState.COPIED,
            MigrationState.VERIFIED,
            MigrationState.PENDING,
            MigrationState.FAILED,
            MigrationState.SUPERSEDED,
        }
    ),
    MigrationState.VERIFIED: frozenset(
        {
            MigrationState.VERIFIED,
            MigrationState.HOT_DELETED,
            MigrationState.PENDING,
            MigrationState.FAILED,
            MigrationState.SUPERSEDED,
        }
    ),
    MigrationState.FAILED: frozenset({MigrationState.FAILED, MigrationState.PENDING}),
    MigrationState.HOT_DELETED: frozenset({MigrationState.HOT_DELETED}),
    MigrationState.SUPERSEDED: frozenset({MigrationState.SUPERSEDED}),
}


@dataclass(frozen=True)
class MigrationTask:
    """
    Tracks one record's move from the hot tier to the cold tier.

    Tasks are immutable values; every change produces a new task through
    ``evolve`` and is persisted with a compare-and-set on ``version``.

    Attributes:
        key: Key of the record being migrated.
        state: Current lifecycle state.
        attempts: Number of failed attempts so far.
        last_error: Message of the most recent failure.
        created_at: When the scan created the task.
        updated_at: When the task was last written.
        started_at: When the first copy attempt began.
        completed_at: When the task reached HOT_DELETED or SUPERSEDED.
        next_attempt_at: Earliest time the next attempt may run (backoff).
        size_bytes: Size of the payload read from the hot tier at copy time.
        checksum: SHA-256 of the payload read from the hot tier at copy time.
        claimed_by: Worker currently holding the task.
        claim_expires_at: When the current claim lapses.
        version: Optimistic concurrency counter, bumped on every write.
    """

    key: str
    created_at: datetime
    updated_at: datetime
    state: MigrationState = MigrationState.PENDING
    attempts: int = 0
    last_error: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    next_attempt_at: datetime | None = None
    size_bytes: int | None = None
    checksum: str | None = None
    claimed_by: str | None = None
    claim_expires_at: datetime | None = None
    version: int = 0

    @classmethod
    def new(cls, key: str, now: datetime) -> MigrationTask:
        """Create a PENDING task for a newly eligible record."""
        return cls(key=key, created_at=now, updated_at=now)

    def evolve(self, **changes: Any) -> MigrationTask:
        """Return a copy of this task with the given fields changed."""
        return replace(self, **changes)

    def is_claimed(self, now: datetime) -> bool:
        """Check if a worker holds an unexpired claim on this task."""
        return (
            self.claimed_by is not None
            and self.claim_expires_at is not None
            and self.claim_expires_at > now
        )

    def is_due(self, now: datetime) -> bool:
        """Check if the task is active, unclaimed, and past its backoff."""
        if not self.state.is_active or self.is_claimed(now):
            return False
        return self.next_attempt_at is None or self.next_attempt_at <= now

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging and inspection."""
        return {
            "key": self.key,
            "state": self.state.value,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "next_attempt_at": self.next_attempt_at.isoformat() if self.next_attempt_at else None,
            "size_bytes": self.size_bytes,
            "checksum": self.checksum,
            "claimed_by": self.claimed_by,
            "claim_expires_at": (
                self.claim_expires_at.isoformat() if self.claim_expires_at else None
            ),
            "version": self.version,
        }


@dataclass(frozen=True)
class TieringRunReport:
    """
    Outcome of one tiering run.

    Attributes:
        started_at: Clock time when the run began.
        tasks_created: Tasks created by the scan.
        tasks_processed: Tasks the run attempted to advance.
        migrated: Tasks that reached HOT_DELETED.
        failed_attempts: Attempts that failed and were scheduled for retry.
        quarantined: Tasks moved to FAILED.
        superseded: Tasks cancelled because the record was deleted.
        interrupted: True if shutdown stopped the run early.
    """

    started_at: datetime
    tasks_created: int = 0
    tasks_processed: int = 0
    migrated: int = 0
    failed_attempts: int = 0
    quarantined: int = 0
    superseded: int = 0
    interrupted: bool = False


@dataclass
class TieringStats:
    """
    Cumulative counters for a tiering engine.

    Attributes:
        runs: Completed runs.
        keys_scanned: Eligible keys seen by scans.
        tasks_created: Tasks created by scans.
        migrated: Tasks that reached HOT_DELETED.
        failed_attempts: Failed attempts (each increments a task's attempts).
        quarantined: Tasks moved to FAILED.
        superseded: Tasks cancelled because the record was deleted.
        claim_conflicts: Claims lost to another worker.
        last_run_at: Clock time of the last completed run.
        last_error: Most recent migration error message.
    """

    runs: int = 0
    keys_scanned: int = 0
    tasks_created: int = 0
    migrated: int = 0
    failed_attempts: int = 0
    quarantined: int = 0
    superseded: int = 0
    claim_conflicts: int = 0
    last_run_at: datetime | None = None
    last_error: str | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        """Convert stats to dictionary for serialization."""
        return {
            "runs": self.runs,
            "keys_scanned": self.keys_scanned,
            "tasks_created": self.tasks_created,
            "migrated": self.migrated,
            "failed_attempts": self.failed_attempts,
            "quarantined": self.quarantined,
            "superseded": self.superseded,
            "claim_conflicts": self.claim_conflicts,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_error": self.last_error,
        }
