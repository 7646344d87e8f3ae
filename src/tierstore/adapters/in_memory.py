"""
In-memory hot and cold store implementations.

Provide simple stores for testing and development. All data is kept in
process memory and lost when the process ends.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from datetime import datetime

from tierstore.adapters.interface import ColdStore, HotStore
from tierstore.exceptions import RecordExistsError
from tierstore.observability import (
    ATTR_RECORD_KEY,
    ATTR_RECORD_SIZE,
    ATTR_TIER,
    Tracer,
    create_tracer,
)
from tierstore.records import Record

logger = logging.getLogger(__name__)


class InMemoryHotStore(HotStore):
    """
    In-memory implementation of HotStore for testing and development.

    Stores records in a dictionary keyed by record key, guarded by an
    asyncio.Lock.

    Example:
        >>> store = InMemoryHotStore()
        >>> await store.put(Record(key="k", payload=b"v", created_at=datetime.now(UTC)))
        >>> (await store.get("k")).payload
        b'v'
    """

    def __init__(
        self,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._records: dict[str, Record] = {}
        self._lock = asyncio.Lock()
        logger.debug("InMemoryHotStore initialized")

    async def get(self, key: str) -> Record | None:
        with self._tracer.span("tierstore.hot.get", {ATTR_RECORD_KEY: key, ATTR_TIER: "hot"}):
            async with self._lock:
                return self._records.get(key)

    async def put(self, record: Record) -> None:
        with self._tracer.span(
            "tierstore.hot.put",
            {
                ATTR_RECORD_KEY: record.key,
                ATTR_RECORD_SIZE: record.size_bytes,
                ATTR_TIER: "hot",
            },
        ):
            async with self._lock:
                existing = self._records.get(record.key)
                if existing is not None:
                    if existing.payload != record.payload:
                        raise RecordExistsError(record.key)
                    logger.debug("Record %s already stored, put is a no-op", record.key)
                    return
                self._records[record.key] = record
                logger.debug("Stored hot record %s (%d bytes)", record.key, record.size_bytes)

    async def delete(self, key: str) -> bool:
        with self._tracer.span("tierstore.hot.delete", {ATTR_RECORD_KEY: key, ATTR_TIER: "hot"}):
            async with self._lock:
                if self._records.pop(key, None) is None:
                    return False
                logger.debug("Deleted hot record %s", key)
                return True

    async def exists(self, key: str) -> bool:
        async with self._lock:
            return key in self._records

    async def list_older_than(
        self,
        cutoff: datetime,
        *,
        after: str | None = None,
        limit: int | None = None,
    ) -> AsyncIterator[str]:
        async with self._lock:
            keys = sorted(
                key
                for key, record in self._records.items()
                if record.created_at < cutoff and (after is None or key > after)
            )
        if limit is not None:
            keys = keys[:limit]
        for key in keys:
            yield key

    async def clear(self) -> None:
        """Remove all records. Useful for test cleanup."""
        async with self._lock:
            self._records.clear()

    @property
    def record_count(self) -> int:
        """Number of records currently stored."""
        return len(self._records)

    def __repr__(self) -> str:
        return f"InMemoryHotStore(records={len(self._records)})"


class InMemoryColdStore(ColdStore):
    """
    In-memory implementation of ColdStore for testing and development.

    ``put`` overwrites and ``delete`` is idempotent, matching object store
    semantics.
    """

    def __init__(
        self,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._objects: dict[str, Record] = {}
        self._lock = asyncio.Lock()
        self._put_count = 0
        logger.debug("InMemoryColdStore initialized")

    async def get(self, key: str) -> Record | None:
        with self._tracer.span("tierstore.cold.get", {ATTR_RECORD_KEY: key, ATTR_TIER: "cold"}):
            async with self._lock:
                return self._objects.get(key)

    async def put(self, record: Record) -> None:
        with self._tracer.span(
            "tierstore.cold.put",
            {
                ATTR_RECORD_KEY: record.key,
                ATTR_RECORD_SIZE: record.size_bytes,
                ATTR_TIER: "cold",
            },
        ):
            async with self._lock:
                self._objects[record.key] = record
                self._put_count += 1
                logger.debug("Stored cold object %s (%d bytes)", record.key, record.size_bytes)

    async def delete(self, key: str) -> bool:
        with self._tracer.span("tierstore.cold.delete", {ATTR_RECORD_KEY: key, ATTR_TIER: "cold"}):
            async with self._lock:
                return self._objects.pop(key, None) is not None

    async def exists(self, key: str) -> bool:
        async with self._lock:
            return key in self._objects

    async def clear(self) -> None:
        """Remove all objects. Useful for test cleanup."""
        async with self._lock:
            self._objects.clear()

    @property
    def object_count(self) -> int:
        """Number of objects currently stored."""
        return len(self._objects)

    @property
    def put_count(self) -> int:
        """Total number of put calls served, including overwrites."""
        return self._put_count

    def __repr__(self) -> str:
        return f"InMemoryColdStore(objects={len(self._objects)})"
