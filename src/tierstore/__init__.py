"""
tierstore - Hot/cold tiered record storage for Python.

This library provides:
- A single key/value record API over a hot and a cold storage tier
- Read-with-fallback, hot-only writes and fan-out deletes
- A background tiering engine that migrates records by age with a
  copy, verify, then delete protocol
- A durable migration ledger (in-memory or SQLAlchemy)
- Reference adapters: in-memory, SQLite (hot) and local filesystem (cold)
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("tierstore")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from tierstore.access import MigrationCanceller, TieredRecordStore
from tierstore.adapters import (
    SQLITE_AVAILABLE,
    ColdStore,
    FileSystemColdStore,
    HotStore,
    InMemoryColdStore,
    InMemoryHotStore,
    SQLiteHotStore,
    SQLiteNotAvailableError,
)
from tierstore.cache import LocatorCache
from tierstore.config import DEFAULT_AGE_THRESHOLD, DEFAULT_MAX_RECORD_BYTES, TierStoreConfig
from tierstore.exceptions import (
    InvalidTaskTransitionError,
    LookupFailedError,
    MigrationError,
    MigrationTaskNotFoundError,
    QuarantinedMigrationError,
    RecordExistsError,
    RecordTooLargeError,
    StoreUnavailableError,
    TaskConflictError,
    TierStoreError,
    TransientIOError,
    VerificationMismatchError,
    WriteError,
)
from tierstore.records import LookupResult, Record, Tier, compute_checksum
from tierstore.retry import RetryConfig
from tierstore.scheduling import (
    Clock,
    IntervalTrigger,
    ManualClock,
    ManualTrigger,
    SystemClock,
    Trigger,
)
from tierstore.tiering import (
    InMemoryMigrationLedger,
    MigrationLedger,
    MigrationState,
    MigrationTask,
    SQLAlchemyMigrationLedger,
    TieringEngine,
    TieringRunReport,
    TieringStats,
)

__all__ = [
    "__version__",
    # Access
    "TieredRecordStore",
    "MigrationCanceller",
    "LocatorCache",
    # Records
    "Record",
    "LookupResult",
    "Tier",
    "compute_checksum",
    # Adapters
    "HotStore",
    "ColdStore",
    "InMemoryHotStore",
    "InMemoryColdStore",
    "SQLiteHotStore",
    "SQLiteNotAvailableError",
    "SQLITE_AVAILABLE",
    "FileSystemColdStore",
    # Tiering
    "TieringEngine",
    "TieringRunReport",
    "TieringStats",
    "MigrationTask",
    "MigrationState",
    "MigrationLedger",
    "InMemoryMigrationLedger",
    "SQLAlchemyMigrationLedger",
    # Configuration and scheduling
    "TierStoreConfig",
    "RetryConfig",
    "DEFAULT_AGE_THRESHOLD",
    "DEFAULT_MAX_RECORD_BYTES",
    "Clock",
    "SystemClock",
    "ManualClock",
    "Trigger",
    "IntervalTrigger",
    "ManualTrigger",
    # Exceptions
    "TierStoreError",
    "StoreUnavailableError",
    "TransientIOError",
    "LookupFailedError",
    "WriteError",
    "RecordExistsError",
    "RecordTooLargeError",
    "MigrationError",
    "VerificationMismatchError",
    "QuarantinedMigrationError",
    "MigrationTaskNotFoundError",
    "InvalidTaskTransitionError",
    "TaskConflictError",
]
