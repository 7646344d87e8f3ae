"""
Background migration of records from the hot tier to the cold tier.

Key Components:
    TieringEngine: Scans, claims and migrates age-eligible records.
    MigrationTask: Immutable state of one record's migration.
    MigrationState: Lifecycle states (PENDING -> COPIED -> VERIFIED -> HOT_DELETED).
    MigrationLedger: Protocol for task persistence.
    InMemoryMigrationLedger: Testing/development implementation.

Backend Implementations:
    SQLAlchemyMigrationLedger: Durable implementation over any async
        SQLAlchemy engine (SQLite via aiosqlite, PostgreSQL via asyncpg).

Example:
    Migrating on demand::

        from tierstore.tiering import InMemoryMigrationLedger, TieringEngine

        engine = TieringEngine(hot, cold, InMemoryMigrationLedger())
        report = await engine.run_once()
        print(report.migrated)
"""

from tierstore.tiering.engine import TieringEngine, default_worker_id, key_partition
from tierstore.tiering.ledger import (
    InMemoryMigrationLedger,
    MigrationLedger,
    check_transition,
)
from tierstore.tiering.models import (
    VALID_TRANSITIONS,
    MigrationState,
    MigrationTask,
    TieringRunReport,
    TieringStats,
)
from tierstore.tiering.sql_ledger import MIGRATION_TASKS_SCHEMA, SQLAlchemyMigrationLedger

__all__ = [
    # Engine
    "TieringEngine",
    "default_worker_id",
    "key_partition",
    # Models
    "MigrationState",
    "MigrationTask",
    "TieringRunReport",
    "TieringStats",
    "VALID_TRANSITIONS",
    # Ledger
    "MigrationLedger",
    "InMemoryMigrationLedger",
    "SQLAlchemyMigrationLedger",
    "MIGRATION_TASKS_SCHEMA",
    "check_transition",
]
