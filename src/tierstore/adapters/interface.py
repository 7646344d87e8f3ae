"""
Hot and cold store adapter contracts.

The concrete storage engines behind each tier are external collaborators.
These abstract base classes are the contracts they must satisfy to be used
by the access layer and the tiering engine.

This module provides:
- HotStore: Contract for the low-latency key/value tier
- ColdStore: Contract for the low-cost object tier

Failure contract:
    Adapters raise ``StoreUnavailableError``, ``ConnectionError``,
    ``TimeoutError`` or ``OSError`` for transient backend problems. Callers
    retry those under a bounded policy. A missing key is never an error:
    ``get`` returns None.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from datetime import datetime

from tierstore.records import Record


class HotStore(ABC):
    """
    Abstract base class for the hot tier.

    The hot tier is the only writable tier for callers. It is append-only:
    ``put`` of an existing key succeeds only when the payload is identical.

    Implementations must provide:
    - get: Fetch a record by key
    - put: Insert a record
    - delete: Remove a record
    - list_older_than: Enumerate keys of records created before a cutoff

    See Also:
        - InMemoryHotStore: Testing/development implementation
        - SQLiteHotStore: Embedded SQLite implementation
    """

    @abstractmethod
    async def get(self, key: str) -> Record | None:
        """
        Get a record by key.

        Returns:
            The record if present, None otherwise
        """
        pass

    @abstractmethod
    async def put(self, record: Record) -> None:
        """
        Insert a record.

        Writing an identical payload under an existing key is a no-op.

        Raises:
            RecordExistsError: If the key exists with a different payload
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Delete a record.

        Returns:
            True if the record existed and was deleted, False otherwise.
            The return value is decided atomically by the backend.
        """
        pass

    async def exists(self, key: str) -> bool:
        """
        Check if a record exists.

        Default implementation uses get. Implementations may override for
        efficiency.
        """
        return await self.get(key) is not None

    @abstractmethod
    def list_older_than(
        self,
        cutoff: datetime,
        *,
        after: str | None = None,
        limit: int | None = None,
    ) -> AsyncIterator[str]:
        """
        Lazily enumerate keys of records created strictly before ``cutoff``.

        Keys are yielded in ascending order so that enumeration can be
        restarted from the last key seen.

        Args:
            cutoff: Only records with created_at < cutoff are listed
            after: Resume cursor; only keys > after are listed
            limit: Maximum number of keys to yield (None = all)
        """
        pass


class ColdStore(ABC):
    """
    Abstract base class for the cold tier.

    The cold tier is a migration target only. ``put`` overwrites, so a
    repeated copy of the same record leaves an identical object, and
    ``delete`` is idempotent.

    See Also:
        - InMemoryColdStore: Testing/development implementation
        - FileSystemColdStore: Local directory object store
    """

    @abstractmethod
    async def get(self, key: str) -> Record | None:
        """
        Get a record by key.

        Returns:
            The record if present, None otherwise
        """
        pass

    @abstractmethod
    async def put(self, record: Record) -> None:
        """Write a record, replacing any object stored under the same key."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Delete a record. Deleting a missing key succeeds.

        Returns:
            True if an object was removed, False if none existed
        """
        pass

    async def exists(self, key: str) -> bool:
        """Check if a record exists. Default implementation uses get."""
        return await self.get(key) is not None
