"""
Storage adapters for the hot and cold tiers.

Key Components:
    HotStore: Contract for the low-latency, writable tier.
    ColdStore: Contract for the low-cost archive tier.
    InMemoryHotStore / InMemoryColdStore: Testing/development implementations.

Backend Implementations:
    SQLiteHotStore: Embedded SQLite hot tier (requires aiosqlite).
    FileSystemColdStore: Local directory object store (requires aiofiles).
"""

from tierstore.adapters.filesystem import FileSystemColdStore
from tierstore.adapters.in_memory import InMemoryColdStore, InMemoryHotStore
from tierstore.adapters.interface import ColdStore, HotStore
from tierstore.adapters.sqlite import (
    SQLITE_AVAILABLE,
    SQLiteHotStore,
    SQLiteNotAvailableError,
)

__all__ = [
    "HotStore",
    "ColdStore",
    "InMemoryHotStore",
    "InMemoryColdStore",
    "SQLiteHotStore",
    "SQLiteNotAvailableError",
    "SQLITE_AVAILABLE",
    "FileSystemColdStore",
]
