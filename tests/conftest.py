"""
Shared pytest fixtures for the tierstore tests.

This module provides:
- Time fixtures (start_time, clock) driven by ManualClock
- Store fixtures (hot_store, cold_store, ledger) using in-memory adapters
- Failure-injecting adapters (FlakyHotStore, FlakyColdStore)
- A fast configuration with millisecond retry delays
- Engine and access layer fixtures wired together
- SQLite fixtures backed by temporary files
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, AsyncIterator, Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio

from tierstore.access import TieredRecordStore
from tierstore.adapters.in_memory import InMemoryColdStore, InMemoryHotStore
from tierstore.config import TierStoreConfig
from tierstore.records import Record
from tierstore.retry import RetryConfig
from tierstore.scheduling import ManualClock, ManualTrigger
from tierstore.tiering.engine import TieringEngine
from tierstore.tiering.ledger import InMemoryMigrationLedger

# ============================================================================
# SQLite Availability Check
# ============================================================================

AIOSQLITE_AVAILABLE = False
try:
    import aiosqlite  # noqa: F401

    AIOSQLITE_AVAILABLE = True
except ImportError:
    pass


# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for tests."""
    config.addinivalue_line("markers", "sqlite: marks tests that require SQLite (aiosqlite)")


skip_if_no_aiosqlite = pytest.mark.skipif(not AIOSQLITE_AVAILABLE, reason="aiosqlite not installed")


# ============================================================================
# Failure-injecting adapters
# ============================================================================


class _FailureInjector:
    """Raise ConnectionError for the next N calls of chosen operations."""

    def __init__(self) -> None:
        self.failures: dict[str, int] = {}
        self.calls: list[tuple[str, str | None]] = []

    def fail(self, operation: str, times: int = 1_000_000) -> None:
        self.failures[operation] = times

    def heal(self) -> None:
        self.failures.clear()

    def check(self, operation: str, key: str | None = None) -> None:
        self.calls.append((operation, key))
        remaining = self.failures.get(operation, 0)
        if remaining > 0:
            self.failures[operation] = remaining - 1
            raise ConnectionError(f"injected {operation} failure")

    def count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)


class FlakyHotStore(InMemoryHotStore):
    """InMemoryHotStore whose operations can be made to fail on demand."""

    def __init__(self) -> None:
        super().__init__(enable_tracing=False)
        self.injector = _FailureInjector()

    async def get(self, key: str) -> Record | None:
        self.injector.check("get", key)
        return await super().get(key)

    async def put(self, record: Record) -> None:
        self.injector.check("put", record.key)
        await super().put(record)

    async def delete(self, key: str) -> bool:
        self.injector.check("delete", key)
        return await super().delete(key)

    async def exists(self, key: str) -> bool:
        self.injector.check("exists", key)
        return await super().exists(key)

    async def list_older_than(
        self,
        cutoff: datetime,
        *,
        after: str | None = None,
        limit: int | None = None,
    ) -> AsyncIterator[str]:
        self.injector.check("list_older_than")
        async for key in super().list_older_than(cutoff, after=after, limit=limit):
            yield key


class FlakyColdStore(InMemoryColdStore):
    """
    InMemoryColdStore whose operations can be made to fail on demand.

    With ``corrupt_reads`` set, ``get`` returns a record whose payload has
    been altered, which makes verification fail.
    """

    def __init__(self) -> None:
        super().__init__(enable_tracing=False)
        self.injector = _FailureInjector()
        self.corrupt_reads = False

    async def get(self, key: str) -> Record | None:
        self.injector.check("get", key)
        record = await super().get(key)
        if record is not None and self.corrupt_reads:
            return Record(key=key, payload=record.payload + b"!", created_at=record.created_at)
        return record

    async def put(self, record: Record) -> None:
        self.injector.check("put", record.key)
        await super().put(record)

    async def delete(self, key: str) -> bool:
        self.injector.check("delete", key)
        return await super().delete(key)

    async def exists(self, key: str) -> bool:
        self.injector.check("exists", key)
        return await super().exists(key)


# ============================================================================
# Time Fixtures
# ============================================================================


@pytest.fixture
def start_time() -> datetime:
    """Fixed starting point for simulated time."""
    return datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def clock(start_time: datetime) -> ManualClock:
    """Manual clock starting at start_time."""
    return ManualClock(start_time)


@pytest.fixture
def trigger() -> ManualTrigger:
    return ManualTrigger()


# ============================================================================
# Configuration Fixtures
# ============================================================================


FAST_RETRY = RetryConfig(max_retries=1, initial_delay=0.001, max_delay=0.005, jitter=0.0)


@pytest.fixture
def fast_config() -> TierStoreConfig:
    """
    Configuration with millisecond adapter retries and deterministic backoff.

    Migration backoff is 1s, 2s, 4s... with no jitter, measured on the
    manual clock.
    """
    return TierStoreConfig(
        max_attempts=3,
        backoff=RetryConfig(max_retries=0, initial_delay=1.0, max_delay=60.0, jitter=0.0),
        adapter_retry=FAST_RETRY,
        cold_delete_retry=RetryConfig(
            max_retries=2, initial_delay=0.001, max_delay=0.005, jitter=0.0
        ),
        adapter_timeout=1.0,
        cold_adapter_timeout=1.0,
        scan_batch_size=2,
    )


# ============================================================================
# Store Fixtures
# ============================================================================


@pytest.fixture
def hot_store() -> FlakyHotStore:
    return FlakyHotStore()


@pytest.fixture
def cold_store() -> FlakyColdStore:
    return FlakyColdStore()


@pytest.fixture
def ledger() -> InMemoryMigrationLedger:
    return InMemoryMigrationLedger()


@pytest.fixture
def make_record(start_time: datetime) -> Callable[..., Record]:
    """Factory for records created at (start_time - age)."""

    def _make(
        key: str = "rec-1",
        payload: bytes = b"payload",
        age: timedelta = timedelta(0),
    ) -> Record:
        return Record(key=key, payload=payload, created_at=start_time - age)

    return _make


@pytest.fixture
def engine(
    hot_store: FlakyHotStore,
    cold_store: FlakyColdStore,
    ledger: InMemoryMigrationLedger,
    fast_config: TierStoreConfig,
    clock: ManualClock,
    trigger: ManualTrigger,
) -> TieringEngine:
    """Tiering engine over the in-memory stores with manual time."""
    return TieringEngine(
        hot_store,
        cold_store,
        ledger,
        config=fast_config,
        clock=clock,
        trigger=trigger,
        worker_id="worker-a",
        enable_tracing=False,
    )


@pytest_asyncio.fixture
async def store(
    hot_store: FlakyHotStore,
    cold_store: FlakyColdStore,
    fast_config: TierStoreConfig,
    clock: ManualClock,
    engine: TieringEngine,
) -> AsyncGenerator[TieredRecordStore, None]:
    """Access layer wired to the engine as its migration canceller."""
    record_store = TieredRecordStore(
        hot_store,
        cold_store,
        config=fast_config,
        clock=clock,
        canceller=engine,
        enable_tracing=False,
    )
    yield record_store
    await record_store.aclose()


# ============================================================================
# SQLite Fixtures
# ============================================================================


@pytest.fixture
def sqlite_path(tmp_path: Path) -> str:
    """Path of a fresh SQLite database file."""
    return str(tmp_path / "tierstore.db")


@pytest_asyncio.fixture
async def sqlalchemy_engine(sqlite_path: str) -> AsyncGenerator[Any, None]:
    """Async SQLAlchemy engine over a temporary SQLite file."""
    if not AIOSQLITE_AVAILABLE:
        pytest.skip("aiosqlite not installed")

    from sqlalchemy.ext.asyncio import create_async_engine

    engine = create_async_engine(f"sqlite+aiosqlite:///{sqlite_path}")
    yield engine
    await engine.dispose()


__all__ = [
    "AIOSQLITE_AVAILABLE",
    "skip_if_no_aiosqlite",
    "FAST_RETRY",
    "FlakyHotStore",
    "FlakyColdStore",
]
