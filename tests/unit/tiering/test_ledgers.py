"""
Conformance tests for MigrationLedger implementations.

Every test runs against both the in-memory ledger and the SQLAlchemy
ledger (SQLite via aiosqlite on a temporary file).

Tests cover:
- Task creation and the blocking-task rule
- Compare-and-set saves and conflicts
- State transition validation
- Due-task listing (backoff, claims, cursor)
- Listing by state and deletion
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
import pytest_asyncio

from tests.conftest import AIOSQLITE_AVAILABLE
from tierstore.exceptions import (
    InvalidTaskTransitionError,
    MigrationTaskNotFoundError,
    TaskConflictError,
)
from tierstore.tiering.ledger import InMemoryMigrationLedger, MigrationLedger
from tierstore.tiering.models import MigrationState, MigrationTask
from tierstore.tiering.sql_ledger import SQLAlchemyMigrationLedger

NOW = datetime(2024, 1, 1, 12, tzinfo=UTC)


@pytest_asyncio.fixture(params=["memory", "sqlalchemy"])
async def ledger(request: pytest.FixtureRequest, sqlite_path: str) -> AsyncGenerator[Any, None]:
    if request.param == "memory":
        yield InMemoryMigrationLedger()
        return

    if not AIOSQLITE_AVAILABLE:
        pytest.skip("aiosqlite not installed")

    from sqlalchemy.ext.asyncio import create_async_engine

    engine = create_async_engine(f"sqlite+aiosqlite:///{sqlite_path}")
    sql_ledger = SQLAlchemyMigrationLedger(engine, enable_tracing=False)
    await sql_ledger.initialize()
    yield sql_ledger
    await engine.dispose()


class TestProtocol:
    async def test_implements_protocol(self, ledger: MigrationLedger) -> None:
        assert isinstance(ledger, MigrationLedger)


class TestCreate:
    async def test_create_and_get(self, ledger: MigrationLedger) -> None:
        assert await ledger.create(MigrationTask.new("k", NOW)) is True

        task = await ledger.get("k")
        assert task is not None
        assert task.key == "k"
        assert task.state == MigrationState.PENDING
        assert task.version == 0
        assert task.created_at == NOW
        assert task.updated_at == NOW
        assert task.created_at.tzinfo is not None

    async def test_get_missing(self, ledger: MigrationLedger) -> None:
        assert await ledger.get("missing") is None

    async def test_active_task_blocks_create(self, ledger: MigrationLedger) -> None:
        assert await ledger.create(MigrationTask.new("k", NOW)) is True
        assert await ledger.create(MigrationTask.new("k", NOW + timedelta(days=1))) is False

        task = await ledger.get("k")
        assert task is not None
        assert task.created_at == NOW

    async def test_failed_task_blocks_create(self, ledger: MigrationLedger) -> None:
        await ledger.create(MigrationTask.new("k", NOW))
        task = await ledger.get("k")
        assert task is not None
        await ledger.save(task.evolve(state=MigrationState.FAILED, attempts=5), task.version)

        assert await ledger.create(MigrationTask.new("k", NOW)) is False

    async def test_finished_task_is_replaced(self, ledger: MigrationLedger) -> None:
        await ledger.create(MigrationTask.new("k", NOW))
        task = await ledger.get("k")
        assert task is not None
        await ledger.save(task.evolve(state=MigrationState.SUPERSEDED), task.version)

        later = NOW + timedelta(days=100)
        assert await ledger.create(MigrationTask.new("k", later)) is True
        replaced = await ledger.get("k")
        assert replaced is not None
        assert replaced.state == MigrationState.PENDING
        assert replaced.created_at == later
        assert replaced.version == 0

    async def test_concurrent_creates_make_one_task(self, ledger: MigrationLedger) -> None:
        results = await asyncio.gather(
            *(ledger.create(MigrationTask.new("k", NOW)) for _ in range(5))
        )
        assert results.count(True) == 1


class TestSave:
    async def test_save_bumps_version(self, ledger: MigrationLedger) -> None:
        await ledger.create(MigrationTask.new("k", NOW))
        task = await ledger.get("k")
        assert task is not None

        saved = await ledger.save(
            task.evolve(state=MigrationState.COPIED, size_bytes=3, checksum="abc"),
            task.version,
        )
        assert saved.version == 1

        stored = await ledger.get("k")
        assert stored == saved
        assert stored.size_bytes == 3
        assert stored.checksum == "abc"

    async def test_stale_version_conflicts(self, ledger: MigrationLedger) -> None:
        await ledger.create(MigrationTask.new("k", NOW))
        task = await ledger.get("k")
        assert task is not None
        await ledger.save(task.evolve(claimed_by="worker-a"), task.version)

        with pytest.raises(TaskConflictError):
            await ledger.save(task.evolve(claimed_by="worker-b"), task.version)

        stored = await ledger.get("k")
        assert stored is not None
        assert stored.claimed_by == "worker-a"

    async def test_save_missing_task(self, ledger: MigrationLedger) -> None:
        with pytest.raises(MigrationTaskNotFoundError):
            await ledger.save(MigrationTask.new("ghost", NOW), 0)

    async def test_invalid_transition_rejected(self, ledger: MigrationLedger) -> None:
        await ledger.create(MigrationTask.new("k", NOW))
        task = await ledger.get("k")
        assert task is not None

        with pytest.raises(InvalidTaskTransitionError):
            await ledger.save(task.evolve(state=MigrationState.HOT_DELETED), task.version)

        stored = await ledger.get("k")
        assert stored is not None
        assert stored.state == MigrationState.PENDING

    async def test_concurrent_claims_one_winner(self, ledger: MigrationLedger) -> None:
        await ledger.create(MigrationTask.new("k", NOW))
        task = await ledger.get("k")
        assert task is not None

        async def claim(worker: str) -> bool:
            try:
                await ledger.save(task.evolve(claimed_by=worker), task.version)
                return True
            except TaskConflictError:
                return False

        results = await asyncio.gather(*(claim(f"w{i}") for i in range(4)))
        assert results.count(True) == 1

    async def test_timestamps_round_trip(self, ledger: MigrationLedger) -> None:
        await ledger.create(MigrationTask.new("k", NOW))
        task = await ledger.get("k")
        assert task is not None
        when = NOW + timedelta(seconds=1, microseconds=250)

        await ledger.save(
            task.evolve(started_at=when, next_attempt_at=when, claim_expires_at=when),
            task.version,
        )
        stored = await ledger.get("k")
        assert stored is not None
        assert stored.started_at == when
        assert stored.next_attempt_at == when
        assert stored.claim_expires_at == when


class TestListing:
    async def _add(self, ledger: MigrationLedger, key: str, **changes: Any) -> MigrationTask:
        await ledger.create(MigrationTask.new(key, NOW))
        task = await ledger.get(key)
        assert task is not None
        if changes:
            task = await ledger.save(task.evolve(**changes), task.version)
        return task

    async def test_list_due(self, ledger: MigrationLedger) -> None:
        await self._add(ledger, "due")
        await self._add(ledger, "backoff", next_attempt_at=NOW + timedelta(seconds=30))
        await self._add(
            ledger, "claimed", claimed_by="w", claim_expires_at=NOW + timedelta(minutes=5)
        )
        await self._add(
            ledger, "lapsed", claimed_by="w", claim_expires_at=NOW - timedelta(seconds=1)
        )
        await self._add(ledger, "failed", state=MigrationState.FAILED)
        await self._add(ledger, "copied", state=MigrationState.COPIED)

        due = await ledger.list_due(NOW)
        assert [task.key for task in due] == ["copied", "due", "lapsed"]

        later = await ledger.list_due(NOW + timedelta(minutes=10))
        assert [task.key for task in later] == ["backoff", "claimed", "copied", "due", "lapsed"]

    async def test_list_due_pages(self, ledger: MigrationLedger) -> None:
        for key in ["a", "b", "c"]:
            await self._add(ledger, key)

        first = await ledger.list_due(NOW, limit=2)
        rest = await ledger.list_due(NOW, after=first[-1].key, limit=2)
        assert [t.key for t in first] == ["a", "b"]
        assert [t.key for t in rest] == ["c"]

    async def test_list_by_state(self, ledger: MigrationLedger) -> None:
        await self._add(ledger, "b", state=MigrationState.FAILED)
        await self._add(ledger, "a", state=MigrationState.FAILED)
        await self._add(ledger, "c")

        failed = await ledger.list_by_state(MigrationState.FAILED)
        assert [task.key for task in failed] == ["a", "b"]

    async def test_delete(self, ledger: MigrationLedger) -> None:
        await self._add(ledger, "k")
        assert await ledger.delete("k") is True
        assert await ledger.delete("k") is False
        assert await ledger.get("k") is None
