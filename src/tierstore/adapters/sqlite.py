"""
SQLite hot store implementation.

Provides an embedded, file-backed hot tier using the async aiosqlite driver.

This implementation is suitable for:
- Development and testing environments
- Single-instance deployments
- Edge deployments where the hot tier is local disk
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import UTC, datetime
from typing import TypeVar

from tierstore.adapters.interface import HotStore
from tierstore.exceptions import RecordExistsError, StoreUnavailableError
from tierstore.observability import (
    ATTR_DB_SYSTEM,
    ATTR_RECORD_KEY,
    ATTR_RECORD_SIZE,
    ATTR_TIER,
    Tracer,
    create_tracer,
)
from tierstore.records import Record

# Optional dependency handling
try:
    import aiosqlite

    SQLITE_AVAILABLE = True
except ImportError:
    SQLITE_AVAILABLE = False
    aiosqlite = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)

T = TypeVar("T")

HOT_RECORDS_SCHEMA = """
CREATE TABLE IF NOT EXISTS hot_records (
    key TEXT PRIMARY KEY,
    payload BLOB NOT NULL,
    size_bytes INTEGER NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_hot_records_created_at ON hot_records (created_at);
"""

_LIST_PAGE_SIZE = 500


def _format_timestamp(value: datetime) -> str:
    # Fixed-width UTC text so lexical order matches time order.
    return value.astimezone(UTC).isoformat(timespec="microseconds")


class SQLiteNotAvailableError(ImportError):
    """Raised when aiosqlite is not installed."""

    def __init__(self) -> None:
        super().__init__(
            "aiosqlite is required for SQLiteHotStore. Install it with: pip install aiosqlite"
        )


class SQLiteHotStore(HotStore):
    """
    SQLite implementation of HotStore.

    Each operation opens its own aiosqlite connection, so the store can be
    shared freely between tasks.

    Example:
        >>> store = SQLiteHotStore("hot.db")
        >>> await store.initialize()
        >>> await store.put(record)

    Note:
        - Call initialize() once to create the hot_records table
        - SQLite is single-writer; busy errors surface as StoreUnavailableError
          and are retried by callers
    """

    def __init__(
        self,
        database_path: str,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the SQLite hot store.

        Args:
            database_path: Path to the SQLite database file.
            tracer: Optional custom Tracer instance.
            enable_tracing: Whether to enable OpenTelemetry tracing (default True).

        Raises:
            SQLiteNotAvailableError: If aiosqlite is not installed.
        """
        if not SQLITE_AVAILABLE:
            raise SQLiteNotAvailableError()

        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._database_path = database_path
        logger.debug("SQLiteHotStore initialized with %s", database_path)

    async def initialize(self) -> None:
        """Create the hot_records table if it does not exist."""
        async def _create(conn: aiosqlite.Connection) -> None:
            await conn.executescript(HOT_RECORDS_SCHEMA)
            await conn.commit()

        await self._run(_create)

    async def _run(self, operation: Callable[[aiosqlite.Connection], Awaitable[T]]) -> T:
        try:
            async with aiosqlite.connect(self._database_path) as conn:
                return await operation(conn)
        except aiosqlite.OperationalError as e:
            raise StoreUnavailableError(f"SQLite hot store unavailable: {e}") from e

    async def get(self, key: str) -> Record | None:
        with self._tracer.span(
            "tierstore.hot.get",
            {ATTR_RECORD_KEY: key, ATTR_TIER: "hot", ATTR_DB_SYSTEM: "sqlite"},
        ):
            async def _get(conn: aiosqlite.Connection) -> aiosqlite.Row | None:
                conn.row_factory = aiosqlite.Row
                cursor = await conn.execute(
                    "SELECT key, payload, created_at FROM hot_records WHERE key = ?",
                    (key,),
                )
                return await cursor.fetchone()

            row = await self._run(_get)
            if row is None:
                return None
            return Record(
                key=row["key"],
                payload=bytes(row["payload"]),
                created_at=datetime.fromisoformat(row["created_at"]),
            )

    async def put(self, record: Record) -> None:
        with self._tracer.span(
            "tierstore.hot.put",
            {
                ATTR_RECORD_KEY: record.key,
                ATTR_RECORD_SIZE: record.size_bytes,
                ATTR_TIER: "hot",
                ATTR_DB_SYSTEM: "sqlite",
            },
        ):
            async def _put(conn: aiosqlite.Connection) -> bytes | None:
                cursor = await conn.execute(
                    """
                    INSERT OR IGNORE INTO hot_records (key, payload, size_bytes, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (
                        record.key,
                        record.payload,
                        record.size_bytes,
                        _format_timestamp(record.created_at),
                    ),
                )
                await conn.commit()
                if cursor.rowcount > 0:
                    return None
                cursor = await conn.execute(
                    "SELECT payload FROM hot_records WHERE key = ?",
                    (record.key,),
                )
                row = await cursor.fetchone()
                return bytes(row[0]) if row else None

            existing = await self._run(_put)
            if existing is not None and existing != record.payload:
                raise RecordExistsError(record.key)

            logger.debug("Stored hot record %s (%d bytes)", record.key, record.size_bytes)

    async def delete(self, key: str) -> bool:
        with self._tracer.span(
            "tierstore.hot.delete",
            {ATTR_RECORD_KEY: key, ATTR_TIER: "hot", ATTR_DB_SYSTEM: "sqlite"},
        ):
            async def _delete(conn: aiosqlite.Connection) -> bool:
                cursor = await conn.execute("DELETE FROM hot_records WHERE key = ?", (key,))
                await conn.commit()
                return cursor.rowcount > 0

            deleted = await self._run(_delete)
            if deleted:
                logger.debug("Deleted hot record %s", key)
            return deleted

    async def exists(self, key: str) -> bool:
        async def _exists(conn: aiosqlite.Connection) -> bool:
            cursor = await conn.execute(
                "SELECT EXISTS (SELECT 1 FROM hot_records WHERE key = ?)",
                (key,),
            )
            row = await cursor.fetchone()
            return bool(row[0]) if row else False

        return await self._run(_exists)

    async def list_older_than(
        self,
        cutoff: datetime,
        *,
        after: str | None = None,
        limit: int | None = None,
    ) -> AsyncIterator[str]:
        cutoff_text = _format_timestamp(cutoff)
        cursor_key = after
        remaining = limit

        while remaining is None or remaining > 0:
            page_size = _LIST_PAGE_SIZE if remaining is None else min(_LIST_PAGE_SIZE, remaining)

            async def _page(conn: aiosqlite.Connection) -> list[str]:
                if cursor_key is None:
                    cursor = await conn.execute(
                        """
                        SELECT key FROM hot_records
                        WHERE created_at < ?
                        ORDER BY key
                        LIMIT ?
                        """,
                        (cutoff_text, page_size),
                    )
                else:
                    cursor = await conn.execute(
                        """
                        SELECT key FROM hot_records
                        WHERE created_at < ? AND key > ?
                        ORDER BY key
                        LIMIT ?
                        """,
                        (cutoff_text, cursor_key, page_size),
                    )
                return [row[0] for row in await cursor.fetchall()]

            keys = await self._run(_page)
            for key in keys:
                yield key
            if len(keys) < page_size:
                return
            cursor_key = keys[-1]
            if remaining is not None:
                remaining -= len(keys)

    @property
    def database_path(self) -> str:
        """Get the database path."""
        return self._database_path
