"""
MigrationLedger - Durable record of migration task state.

The ledger is the single source of truth for where a migrating record is
guaranteed to be. Only the tiering engine writes to it; the access layer
never reads it.

Every write is a compare-and-set on the task's ``version``, which is how
concurrent workers claim tasks exclusively and how a stale worker is kept
from overwriting newer state.

Usage:
    >>> ledger = InMemoryMigrationLedger()
    >>> created = await ledger.create(MigrationTask.new("invoice-42", now))
    >>> task = await ledger.get("invoice-42")
    >>> task = await ledger.save(task.evolve(state=MigrationState.COPIED), task.version)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Protocol, runtime_checkable

from tierstore.exceptions import (
    InvalidTaskTransitionError,
    MigrationTaskNotFoundError,
    TaskConflictError,
)
from tierstore.tiering.models import MigrationState, MigrationTask

logger = logging.getLogger(__name__)


@runtime_checkable
class MigrationLedger(Protocol):
    """
    Protocol for migration task persistence.

    Implementations must make ``create`` and ``save`` atomic with respect to
    concurrent callers and must validate state transitions against the
    migration state machine.
    """

    async def create(self, task: MigrationTask) -> bool:
        """
        Create a task unless the key already has a blocking task.

        A blocking task is an active or quarantined one. A finished task
        (HOT_DELETED or SUPERSEDED) is replaced.

        Returns:
            True if the task was created, False if one already blocks it
        """
        ...

    async def get(self, key: str) -> MigrationTask | None:
        """Get the task for a key, or None."""
        ...

    async def save(self, task: MigrationTask, expected_version: int) -> MigrationTask:
        """
        Persist a new version of a task with compare-and-set.

        Args:
            task: The task with updated fields
            expected_version: Version the caller last read

        Returns:
            The stored task, with ``version`` set to expected_version + 1

        Raises:
            MigrationTaskNotFoundError: If no task exists for the key
            TaskConflictError: If the stored version differs
            InvalidTaskTransitionError: If the state change is not allowed
        """
        ...

    async def list_due(
        self,
        now: datetime,
        *,
        after: str | None = None,
        limit: int = 100,
    ) -> list[MigrationTask]:
        """
        List active, unclaimed tasks whose backoff has elapsed.

        Results are ordered by key; ``after`` resumes from a previous page.
        """
        ...

    async def list_by_state(self, state: MigrationState) -> list[MigrationTask]:
        """List all tasks in a state, ordered by key."""
        ...

    async def delete(self, key: str) -> bool:
        """Remove the task for a key. Returns True if one existed."""
        ...


def check_transition(stored: MigrationTask, updated: MigrationTask) -> None:
    """
    Validate a state change between the stored and the proposed task.

    Raises:
        InvalidTaskTransitionError: If the transition is not allowed
    """
    if not stored.state.can_transition_to(updated.state):
        raise InvalidTaskTransitionError(
            stored.key,
            stored.state.value,
            updated.state.value,
        )


class InMemoryMigrationLedger:
    """
    In-memory implementation of MigrationLedger for testing and development.

    Tasks are kept in a dictionary guarded by an asyncio.Lock. State is lost
    on process exit, so this ledger gives no crash recovery.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, MigrationTask] = {}
        self._lock = asyncio.Lock()

    async def create(self, task: MigrationTask) -> bool:
        async with self._lock:
            existing = self._tasks.get(task.key)
            if existing is not None and existing.state.blocks_new_task:
                return False
            self._tasks[task.key] = task.evolve(version=0)
            logger.debug("Created migration task for %s", task.key)
            return True

    async def get(self, key: str) -> MigrationTask | None:
        async with self._lock:
            return self._tasks.get(key)

    async def save(self, task: MigrationTask, expected_version: int) -> MigrationTask:
        async with self._lock:
            stored = self._tasks.get(task.key)
            if stored is None:
                raise MigrationTaskNotFoundError(task.key)
            if stored.version != expected_version:
                raise TaskConflictError(task.key, expected_version)
            check_transition(stored, task)

            saved = task.evolve(version=expected_version + 1)
            self._tasks[task.key] = saved
            return saved

    async def list_due(
        self,
        now: datetime,
        *,
        after: str | None = None,
        limit: int = 100,
    ) -> list[MigrationTask]:
        async with self._lock:
            due = [
                task
                for key, task in sorted(self._tasks.items())
                if (after is None or key > after) and task.is_due(now)
            ]
        return due[:limit]

    async def list_by_state(self, state: MigrationState) -> list[MigrationTask]:
        async with self._lock:
            return [task for _, task in sorted(self._tasks.items()) if task.state == state]

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._tasks.pop(key, None) is not None

    async def all_tasks(self) -> Sequence[MigrationTask]:
        """Snapshot of every task, ordered by key. Useful in tests."""
        async with self._lock:
            return [task for _, task in sorted(self._tasks.items())]

    def __repr__(self) -> str:
        return f"InMemoryMigrationLedger(tasks={len(self._tasks)})"


__all__ = [
    "MigrationLedger",
    "InMemoryMigrationLedger",
    "check_transition",
]
