"""Unit tests for InMemoryHotStore and InMemoryColdStore."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from tierstore.adapters.in_memory import InMemoryColdStore, InMemoryHotStore
from tierstore.adapters.interface import ColdStore, HotStore
from tierstore.exceptions import RecordExistsError
from tierstore.records import Record

NOW = datetime(2024, 6, 1, tzinfo=UTC)


def _record(key: str, payload: bytes = b"v", age_days: int = 0) -> Record:
    return Record(key=key, payload=payload, created_at=NOW - timedelta(days=age_days))


class TestInMemoryHotStore:
    """Tests for the InMemoryHotStore implementation."""

    @pytest.fixture
    def store(self) -> InMemoryHotStore:
        return InMemoryHotStore(enable_tracing=False)

    def test_is_hot_store(self, store: InMemoryHotStore) -> None:
        assert isinstance(store, HotStore)

    async def test_put_and_get(self, store: InMemoryHotStore) -> None:
        record = _record("a", b"payload")
        await store.put(record)
        assert await store.get("a") == record
        assert store.record_count == 1

    async def test_get_missing_returns_none(self, store: InMemoryHotStore) -> None:
        assert await store.get("missing") is None

    async def test_identical_put_is_noop(self, store: InMemoryHotStore) -> None:
        original = _record("a", b"same")
        await store.put(original)
        await store.put(Record(key="a", payload=b"same", created_at=NOW + timedelta(days=1)))
        stored = await store.get("a")
        assert stored is not None
        assert stored.created_at == original.created_at

    async def test_different_payload_rejected(self, store: InMemoryHotStore) -> None:
        await store.put(_record("a", b"one"))
        with pytest.raises(RecordExistsError):
            await store.put(_record("a", b"two"))

    async def test_delete_reports_existence(self, store: InMemoryHotStore) -> None:
        await store.put(_record("a"))
        assert await store.delete("a") is True
        assert await store.delete("a") is False
        assert await store.exists("a") is False

    async def test_concurrent_deletes_only_one_wins(self, store: InMemoryHotStore) -> None:
        await store.put(_record("a"))
        results = await asyncio.gather(*(store.delete("a") for _ in range(5)))
        assert results.count(True) == 1

    async def test_list_older_than_is_sorted_and_filtered(self, store: InMemoryHotStore) -> None:
        for key, age in [("c", 100), ("a", 95), ("b", 10), ("d", 91)]:
            await store.put(_record(key, age_days=age))

        cutoff = NOW - timedelta(days=90)
        keys = [key async for key in store.list_older_than(cutoff)]
        assert keys == ["a", "c", "d"]

    async def test_list_older_than_pages_with_cursor(self, store: InMemoryHotStore) -> None:
        for key in ["a", "b", "c", "d", "e"]:
            await store.put(_record(key, age_days=100))
        cutoff = NOW - timedelta(days=90)

        first = [key async for key in store.list_older_than(cutoff, limit=2)]
        second = [key async for key in store.list_older_than(cutoff, after=first[-1], limit=2)]
        third = [key async for key in store.list_older_than(cutoff, after=second[-1], limit=2)]

        assert first == ["a", "b"]
        assert second == ["c", "d"]
        assert third == ["e"]

    async def test_clear(self, store: InMemoryHotStore) -> None:
        await store.put(_record("a"))
        await store.clear()
        assert store.record_count == 0


class TestInMemoryColdStore:
    """Tests for the InMemoryColdStore implementation."""

    @pytest.fixture
    def store(self) -> InMemoryColdStore:
        return InMemoryColdStore(enable_tracing=False)

    def test_is_cold_store(self, store: InMemoryColdStore) -> None:
        assert isinstance(store, ColdStore)

    async def test_put_overwrites(self, store: InMemoryColdStore) -> None:
        await store.put(_record("a", b"one"))
        await store.put(_record("a", b"one"))
        assert store.object_count == 1
        assert store.put_count == 2

    async def test_delete_is_idempotent(self, store: InMemoryColdStore) -> None:
        await store.put(_record("a"))
        assert await store.delete("a") is True
        assert await store.delete("a") is False
        assert await store.get("a") is None

    async def test_exists(self, store: InMemoryColdStore) -> None:
        assert await store.exists("a") is False
        await store.put(_record("a"))
        assert await store.exists("a") is True
