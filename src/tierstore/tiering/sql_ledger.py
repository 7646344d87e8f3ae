"""
SQLAlchemyMigrationLedger - SQL persistence for migration tasks.

Persists tasks in the ``migration_tasks`` table through an async SQLAlchemy
engine, so the ledger survives process restarts. Any backend with
read-after-write consistency works; SQLite (``sqlite+aiosqlite``) and
PostgreSQL (``postgresql+asyncpg``) are the tested targets.

Timestamps are stored as fixed-width UTC ISO-8601 text so that ordering
comparisons behave the same on every backend.

Usage:
    >>> from sqlalchemy.ext.asyncio import create_async_engine
    >>> engine = create_async_engine("sqlite+aiosqlite:///ledger.db")
    >>> ledger = SQLAlchemyMigrationLedger(engine)
    >>> await ledger.initialize()
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from tierstore.exceptions import MigrationTaskNotFoundError, TaskConflictError
from tierstore.observability import (
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_MIGRATION_STATE,
    ATTR_RECORD_KEY,
    Tracer,
    create_tracer,
)
from tierstore.tiering._connection import execute_with_connection
from tierstore.tiering.ledger import check_transition
from tierstore.tiering.models import MigrationState, MigrationTask

logger = logging.getLogger(__name__)

MIGRATION_TASKS_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS migration_tasks (
        record_key TEXT PRIMARY KEY,
        state VARCHAR(20) NOT NULL,
        attempts INTEGER NOT NULL DEFAULT 0,
        last_error TEXT,
        created_at VARCHAR(40) NOT NULL,
        updated_at VARCHAR(40) NOT NULL,
        started_at VARCHAR(40),
        completed_at VARCHAR(40),
        next_attempt_at VARCHAR(40),
        size_bytes BIGINT,
        checksum VARCHAR(64),
        claimed_by VARCHAR(255),
        claim_expires_at VARCHAR(40),
        version INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_migration_tasks_state
        ON migration_tasks (state, next_attempt_at)
    """,
)

_COLUMNS = (
    "record_key, state, attempts, last_error, created_at, updated_at, started_at, "
    "completed_at, next_attempt_at, size_bytes, checksum, claimed_by, claim_expires_at, version"
)

_ACTIVE_STATES = tuple(state.value for state in MigrationState if state.is_active)


def _to_text(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def _from_text(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _row_to_task(row: Mapping[str, Any]) -> MigrationTask:
    return MigrationTask(
        key=row["record_key"],
        state=MigrationState(row["state"]),
        attempts=row["attempts"],
        last_error=row["last_error"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
        started_at=_from_text(row["started_at"]),
        completed_at=_from_text(row["completed_at"]),
        next_attempt_at=_from_text(row["next_attempt_at"]),
        size_bytes=row["size_bytes"],
        checksum=row["checksum"],
        claimed_by=row["claimed_by"],
        claim_expires_at=_from_text(row["claim_expires_at"]),
        version=row["version"],
    )


def _task_params(task: MigrationTask, version: int) -> dict[str, Any]:
    return {
        "record_key": task.key,
        "state": task.state.value,
        "attempts": task.attempts,
        "last_error": task.last_error,
        "created_at": _to_text(task.created_at),
        "updated_at": _to_text(task.updated_at),
        "started_at": _to_text(task.started_at),
        "completed_at": _to_text(task.completed_at),
        "next_attempt_at": _to_text(task.next_attempt_at),
        "size_bytes": task.size_bytes,
        "checksum": task.checksum,
        "claimed_by": task.claimed_by,
        "claim_expires_at": _to_text(task.claim_expires_at),
        "version": version,
    }


class SQLAlchemyMigrationLedger:
    """
    SQL implementation of MigrationLedger.

    Example:
        >>> ledger = SQLAlchemyMigrationLedger(engine)
        >>> await ledger.initialize()
        >>> await ledger.create(MigrationTask.new("invoice-42", now))
        True
    """

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the ledger.

        Args:
            conn: Database connection or engine
            tracer: Optional custom Tracer instance.
            enable_tracing: Whether to enable OpenTelemetry tracing
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._conn = conn
        engine = conn if isinstance(conn, AsyncEngine) else conn.engine
        self._db_system = engine.dialect.name

    async def initialize(self) -> None:
        """Create the migration_tasks table and index if missing."""
        async with execute_with_connection(self._conn) as conn:
            for statement in MIGRATION_TASKS_SCHEMA:
                await conn.execute(text(statement))

    async def create(self, task: MigrationTask) -> bool:
        with self._tracer.span(
            "tierstore.ledger.create",
            {ATTR_RECORD_KEY: task.key, ATTR_DB_SYSTEM: self._db_system},
        ):
            try:
                async with execute_with_connection(self._conn) as conn:
                    result = await conn.execute(
                        text("SELECT state FROM migration_tasks WHERE record_key = :record_key"),
                        {"record_key": task.key},
                    )
                    row = result.first()
                    if row is not None:
                        if MigrationState(row[0]).blocks_new_task:
                            return False
                        await conn.execute(
                            text("DELETE FROM migration_tasks WHERE record_key = :record_key"),
                            {"record_key": task.key},
                        )

                    await conn.execute(
                        text(f"""
                            INSERT INTO migration_tasks ({_COLUMNS})
                            VALUES (
                                :record_key, :state, :attempts, :last_error, :created_at,
                                :updated_at, :started_at, :completed_at, :next_attempt_at,
                                :size_bytes, :checksum, :claimed_by, :claim_expires_at,
                                :version
                            )
                        """),
                        _task_params(task, version=0),
                    )
            except IntegrityError:
                # Another scanner inserted the same key first.
                logger.debug("Migration task for %s created concurrently", task.key)
                return False

            logger.debug("Created migration task for %s", task.key)
            return True

    async def get(self, key: str) -> MigrationTask | None:
        with self._tracer.span(
            "tierstore.ledger.get",
            {ATTR_RECORD_KEY: key, ATTR_DB_SYSTEM: self._db_system},
        ):
            async with execute_with_connection(self._conn, transactional=False) as conn:
                result = await conn.execute(
                    text(f"SELECT {_COLUMNS} FROM migration_tasks WHERE record_key = :record_key"),
                    {"record_key": key},
                )
                row = result.mappings().first()
            return _row_to_task(row) if row is not None else None

    async def save(self, task: MigrationTask, expected_version: int) -> MigrationTask:
        with self._tracer.span(
            "tierstore.ledger.save",
            {
                ATTR_RECORD_KEY: task.key,
                ATTR_MIGRATION_STATE: task.state.value,
                ATTR_DB_SYSTEM: self._db_system,
                ATTR_DB_OPERATION: "UPDATE",
            },
        ):
            async with execute_with_connection(self._conn) as conn:
                result = await conn.execute(
                    text(f"SELECT {_COLUMNS} FROM migration_tasks WHERE record_key = :record_key"),
                    {"record_key": task.key},
                )
                row = result.mappings().first()
                if row is None:
                    raise MigrationTaskNotFoundError(task.key)
                stored = _row_to_task(row)
                if stored.version != expected_version:
                    raise TaskConflictError(task.key, expected_version)
                check_transition(stored, task)

                params = _task_params(task, version=expected_version + 1)
                params["expected_version"] = expected_version
                result = await conn.execute(
                    text("""
                        UPDATE migration_tasks SET
                            state = :state,
                            attempts = :attempts,
                            last_error = :last_error,
                            updated_at = :updated_at,
                            started_at = :started_at,
                            completed_at = :completed_at,
                            next_attempt_at = :next_attempt_at,
                            size_bytes = :size_bytes,
                            checksum = :checksum,
                            claimed_by = :claimed_by,
                            claim_expires_at = :claim_expires_at,
                            version = :version
                        WHERE record_key = :record_key AND version = :expected_version
                    """),
                    params,
                )
                if result.rowcount == 0:
                    raise TaskConflictError(task.key, expected_version)

            return task.evolve(version=expected_version + 1)

    async def list_due(
        self,
        now: datetime,
        *,
        after: str | None = None,
        limit: int = 100,
    ) -> list[MigrationTask]:
        placeholders = ", ".join(f":state_{i}" for i in range(len(_ACTIVE_STATES)))
        params: dict[str, Any] = {f"state_{i}": s for i, s in enumerate(_ACTIVE_STATES)}
        params["now"] = _to_text(now)
        params["limit"] = limit

        after_clause = ""
        if after is not None:
            after_clause = "AND record_key > :after"
            params["after"] = after

        async with execute_with_connection(self._conn, transactional=False) as conn:
            result = await conn.execute(
                text(f"""
                    SELECT {_COLUMNS} FROM migration_tasks
                    WHERE state IN ({placeholders})
                      AND (next_attempt_at IS NULL OR next_attempt_at <= :now)
                      AND (claimed_by IS NULL
                           OR claim_expires_at IS NULL
                           OR claim_expires_at <= :now)
                      {after_clause}
                    ORDER BY record_key
                    LIMIT :limit
                """),
                params,
            )
            rows = result.mappings().all()
        return [_row_to_task(row) for row in rows]

    async def list_by_state(self, state: MigrationState) -> list[MigrationTask]:
        async with execute_with_connection(self._conn, transactional=False) as conn:
            result = await conn.execute(
                text(f"""
                    SELECT {_COLUMNS} FROM migration_tasks
                    WHERE state = :state
                    ORDER BY record_key
                """),
                {"state": state.value},
            )
            rows = result.mappings().all()
        return [_row_to_task(row) for row in rows]

    async def delete(self, key: str) -> bool:
        async with execute_with_connection(self._conn) as conn:
            result = await conn.execute(
                text("DELETE FROM migration_tasks WHERE record_key = :record_key"),
                {"record_key": key},
            )
            return result.rowcount > 0


__all__ = [
    "MIGRATION_TASKS_SCHEMA",
    "SQLAlchemyMigrationLedger",
]
