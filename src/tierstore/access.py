"""
TieredRecordStore - The caller-facing view over both tiers.

Callers see one key/value record service. Reads check the hot tier first
and fall back to the cold tier; writes go only to the hot tier; deletes fan
out to both tiers. Which tier served a record never changes the contract.

The access layer discovers where a record lives by asking the adapters. It
never reads the migration ledger, so reads are correct during a migration by
construction: before the hot delete both copies exist, afterwards the cold
copy does.

Usage:
    >>> store = TieredRecordStore(hot, cold, canceller=engine)
    >>> await store.put("invoice-42", payload)
    >>> await store.get("invoice-42")
    b'...'
    >>> await store.delete("invoice-42")
    True
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol, TypeVar, runtime_checkable

from tierstore.adapters.interface import ColdStore, HotStore
from tierstore.cache import LocatorCache
from tierstore.config import TierStoreConfig
from tierstore.exceptions import (
    LookupFailedError,
    RecordExistsError,
    RecordTooLargeError,
    TransientIOError,
    WriteError,
)
from tierstore.observability import (
    ATTR_CACHE_HINT,
    ATTR_FOUND,
    ATTR_RECORD_KEY,
    ATTR_RECORD_SIZE,
    ATTR_TIER,
    Tracer,
    create_tracer,
)
from tierstore.records import LookupResult, Record, Tier
from tierstore.retry import RetryConfig, call_with_retry
from tierstore.scheduling import Clock, SystemClock

logger = logging.getLogger(__name__)

T = TypeVar("T")


@runtime_checkable
class MigrationCanceller(Protocol):
    """
    Cancels an in-flight migration of a record that a caller deleted.

    ``TieringEngine`` satisfies this protocol.
    """

    async def supersede(self, key: str) -> bool: ...


class TieredRecordStore:
    """
    Read-with-fallback, hot-only writes and fan-out deletes over two tiers.

    Example:
        >>> store = TieredRecordStore(
        ...     hot_store=InMemoryHotStore(),
        ...     cold_store=InMemoryColdStore(),
        ...     clock=clock,
        ... )
        >>> record = await store.put("rec1", b"payload")
        >>> result = await store.lookup("rec1")
        >>> result.tier
        <Tier.HOT: 'hot'>
    """

    def __init__(
        self,
        hot_store: HotStore,
        cold_store: ColdStore,
        *,
        config: TierStoreConfig | None = None,
        clock: Clock | None = None,
        locator_cache: LocatorCache | None = None,
        canceller: MigrationCanceller | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the store.

        Args:
            hot_store: Hot tier adapter (the only writable tier).
            cold_store: Cold tier adapter.
            config: Store configuration (defaults if None).
            clock: Source of record creation times (system clock if None).
            locator_cache: Tier hint cache. Built from the config when None
                and ``config.locator_cache_enabled`` is set.
            canceller: Engine to notify when a record is deleted, so that a
                racing migration cannot bring the record back.
            tracer: Optional custom Tracer instance.
            enable_tracing: Whether to enable OpenTelemetry tracing.
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._hot = hot_store
        self._cold = cold_store
        self._config = config or TierStoreConfig()
        self._clock = clock or SystemClock()
        self._canceller = canceller

        if locator_cache is None and self._config.locator_cache_enabled:
            locator_cache = LocatorCache(
                ttl=self._config.locator_cache_ttl,
                max_entries=self._config.locator_cache_max_entries,
                clock=self._clock,
            )
        self._cache = locator_cache

        # Keys whose cold copy is still being deleted in the background.
        # Cold reads treat them as absent.
        self._pending_cold_deletes: dict[str, asyncio.Task[None]] = {}

    # ------------------------------------------------------------------
    # Adapter calls
    # ------------------------------------------------------------------

    async def _hot_call(self, name: str, key: str, op: Callable[[], Awaitable[T]]) -> T:
        return await call_with_retry(
            op,
            tier=Tier.HOT.value,
            operation_name=name,
            key=key,
            config=self._config.adapter_retry,
            timeout=self._config.adapter_timeout,
        )

    async def _cold_call(
        self,
        name: str,
        key: str,
        op: Callable[[], Awaitable[T]],
        retry: RetryConfig | None = None,
    ) -> T:
        return await call_with_retry(
            op,
            tier=Tier.COLD.value,
            operation_name=name,
            key=key,
            config=retry or self._config.adapter_retry,
            timeout=self._config.cold_adapter_timeout,
        )

    async def _read_hot(self, key: str) -> tuple[Record | None, TransientIOError | None]:
        try:
            return await self._hot_call("get", key, lambda: self._hot.get(key)), None
        except TransientIOError as e:
            logger.warning("Hot read of %s failed, trying cold tier", key, extra={"key": key})
            return None, e

    async def _read_cold(self, key: str) -> tuple[Record | None, TransientIOError | None]:
        if key in self._pending_cold_deletes:
            return None, None
        try:
            return await self._cold_call("get", key, lambda: self._cold.get(key)), None
        except TransientIOError as e:
            logger.warning("Cold read of %s failed", key, extra={"key": key})
            return None, e

    def _remember(self, key: str, tier: Tier) -> None:
        if self._cache is not None:
            self._cache.remember(key, tier)

    def _forget(self, key: str) -> None:
        if self._cache is not None:
            self._cache.forget(key)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def lookup(self, key: str) -> LookupResult:
        """
        Read a record from whichever tier holds it.

        The hot tier is read first. A cached COLD hint skips the hot read;
        if the cold tier then misses, the hint is dropped and the hot tier
        is read after all.

        Args:
            key: Record key.

        Returns:
            LookupResult with the record and serving tier, or an empty
            result when neither tier has the key.

        Raises:
            LookupFailedError: If a tier failed and the other tier did not
                produce the record, so "not found" cannot be confirmed.
        """
        hint = self._cache.hint(key) if self._cache is not None else None

        with self._tracer.span(
            "tierstore.lookup",
            {ATTR_RECORD_KEY: key, ATTR_CACHE_HINT: hint.value if hint else "none"},
        ):
            cold_error: TransientIOError | None = None

            if hint is Tier.COLD:
                record, cold_error = await self._read_cold(key)
                if record is not None:
                    return self._found(key, record, Tier.COLD)
                self._forget(key)

            record, hot_error = await self._read_hot(key)
            if record is not None:
                return self._found(key, record, Tier.HOT)

            if hint is not Tier.COLD:
                record, cold_error = await self._read_cold(key)
                if record is not None:
                    return self._found(key, record, Tier.COLD)

            if hot_error is not None or cold_error is not None:
                raise LookupFailedError(key, hot_error=hot_error, cold_error=cold_error)

            logger.debug("Record %s not found in either tier", key)
            return LookupResult()

    def _found(self, key: str, record: Record, tier: Tier) -> LookupResult:
        self._remember(key, tier)
        logger.debug(
            "Served %s from %s tier",
            key,
            tier.value,
            extra={ATTR_TIER: tier.value, ATTR_FOUND: True, ATTR_RECORD_SIZE: record.size_bytes},
        )
        return LookupResult(record=record, tier=tier)

    async def get(self, key: str) -> bytes | None:
        """
        Get a record payload.

        Returns:
            The payload, or None if the key is absent from both tiers.

        Raises:
            LookupFailedError: If absence cannot be confirmed.
        """
        return (await self.lookup(key)).payload

    async def exists(self, key: str) -> bool:
        """Check if a key is present in either tier."""
        return (await self.lookup(key)).found

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def put(self, key: str, payload: bytes) -> Record:
        """
        Write a new record to the hot tier.

        Records are append-only. Writing the same payload again is a no-op
        that returns the stored record; a different payload is rejected.
        The cold tier is never written, even when the hot tier fails.

        Args:
            key: Record key.
            payload: Record bytes.

        Returns:
            The stored record.

        Raises:
            RecordTooLargeError: If the payload exceeds ``max_record_bytes``.
            RecordExistsError: If the key holds a different payload.
            WriteError: If the hot tier write fails.
        """
        if len(payload) > self._config.max_record_bytes:
            raise RecordTooLargeError(key, len(payload), self._config.max_record_bytes)

        with self._tracer.span(
            "tierstore.put",
            {ATTR_RECORD_KEY: key, ATTR_RECORD_SIZE: len(payload), ATTR_TIER: Tier.HOT.value},
        ):
            pending = self._pending_cold_deletes.pop(key, None)
            if pending is not None:
                # The key is being written again after a delete; the new
                # record must not be hidden or removed by the old cleanup.
                pending.cancel()
            elif self._config.check_cold_on_put:
                archived = await self._archived_record(key)
                if archived is not None:
                    if archived.payload != payload:
                        raise RecordExistsError(key)
                    self._remember(key, Tier.COLD)
                    return archived

            record = Record(key=key, payload=payload, created_at=self._clock.now())
            try:
                await self._hot_call("put", key, lambda: self._hot.put(record))
            except TransientIOError as e:
                raise WriteError(key, str(e)) from e

            stored = await self._stored_hot_record(record)
            self._remember(key, Tier.HOT)
            logger.debug("Stored %s in hot tier (%d bytes)", key, len(payload))
            return stored

    async def _archived_record(self, key: str) -> Record | None:
        """Return the cold copy of a key, or None if absent or unreadable."""
        try:
            return await self._cold_call("get", key, lambda: self._cold.get(key))
        except TransientIOError:
            logger.warning(
                "Could not check cold tier for %s before put; writing to hot tier",
                key,
                extra={"key": key},
            )
            return None

    async def _stored_hot_record(self, record: Record) -> Record:
        # An idempotent re-put keeps the original creation time.
        try:
            stored = await self._hot_call("get", record.key, lambda: self._hot.get(record.key))
        except TransientIOError:
            return record
        return stored if stored is not None else record

    # ------------------------------------------------------------------
    # Deletes
    # ------------------------------------------------------------------

    async def delete(self, key: str) -> bool:
        """
        Delete a record from both tiers.

        The hot delete is authoritative and must succeed. Any migration of
        the key is then superseded (a failure to do so is logged, never
        raised), and the cold copy is deleted. A cold
        delete failure does not fail the call: it is retried in the
        background and cold reads treat the key as absent meanwhile.

        Args:
            key: Record key.

        Returns:
            True if a copy existed in either tier.

        Raises:
            WriteError: If the hot tier delete fails.
        """
        with self._tracer.span("tierstore.delete", {ATTR_RECORD_KEY: key}):
            try:
                existed_hot = await self._hot_call("delete", key, lambda: self._hot.delete(key))
            except TransientIOError as e:
                raise WriteError(key, str(e)) from e

            self._forget(key)

            if self._canceller is not None:
                try:
                    await self._canceller.supersede(key)
                except Exception:
                    # A copy in flight re-checks the hot tier after its cold
                    # write, so the delete stays final without the ledger.
                    logger.exception(
                        "Could not supersede migration of %s; deleting cold copy anyway",
                        key,
                        extra={"key": key},
                    )

            previous = self._pending_cold_deletes.pop(key, None)
            if previous is not None:
                previous.cancel()

            try:
                existed_cold = await self._cold_call(
                    "delete", key, lambda: self._cold.delete(key)
                )
            except TransientIOError:
                logger.warning(
                    "Cold delete of %s failed; retrying in background",
                    key,
                    extra={"key": key},
                )
                self._schedule_cold_delete(key)
                existed_cold = False

            logger.debug("Deleted %s (hot=%s, cold=%s)", key, existed_hot, existed_cold)
            return existed_hot or existed_cold

    def _schedule_cold_delete(self, key: str) -> None:
        task = asyncio.create_task(self._retry_cold_delete(key), name=f"cold-delete-{key}")
        self._pending_cold_deletes[key] = task

    async def _retry_cold_delete(self, key: str) -> None:
        try:
            await self._cold_call(
                "delete",
                key,
                lambda: self._cold.delete(key),
                retry=self._config.cold_delete_retry,
            )
        except TransientIOError:
            # The key stays hidden from cold reads until it is deleted or
            # written again.
            logger.error(
                "Giving up on background cold delete of %s",
                key,
                extra={"key": key},
            )
            return
        except Exception:
            logger.exception("Background cold delete of %s failed", key)
            return

        current = self._pending_cold_deletes.get(key)
        if current is asyncio.current_task():
            del self._pending_cold_deletes[key]
        logger.info("Background cold delete of %s succeeded", key)

    @property
    def pending_cold_deletes(self) -> frozenset[str]:
        """Keys whose cold copy has not been confirmed deleted yet."""
        return frozenset(self._pending_cold_deletes)

    @property
    def locator_cache(self) -> LocatorCache | None:
        return self._cache

    async def aclose(self) -> None:
        """Wait for background cold deletes to finish."""
        tasks = [task for task in self._pending_cold_deletes.values() if not task.done()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def __aenter__(self) -> TieredRecordStore:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


__all__ = [
    "MigrationCanceller",
    "TieredRecordStore",
]
