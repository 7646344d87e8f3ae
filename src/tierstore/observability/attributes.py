"""
Standard span attributes for tierstore.

Attribute constants shared by all components so spans are named and
labelled consistently. Database attributes follow OpenTelemetry semantic
conventions.
"""

# =============================================================================
# Record Attributes
# =============================================================================

ATTR_RECORD_KEY = "tierstore.record.key"
"""Key of the record being read, written or migrated (string)."""

ATTR_RECORD_SIZE = "tierstore.record.size_bytes"
"""Payload size of the record (integer)."""

ATTR_TIER = "tierstore.tier"
"""Storage tier involved in the operation ('hot' or 'cold')."""

ATTR_FOUND = "tierstore.found"
"""Whether a lookup found the record (boolean)."""

ATTR_CACHE_HINT = "tierstore.cache.hint"
"""Tier hint returned by the locator cache, if any (string)."""

# =============================================================================
# Migration Attributes
# =============================================================================

ATTR_MIGRATION_STATE = "tierstore.migration.state"
"""State of the migration task (string)."""

ATTR_MIGRATION_ATTEMPTS = "tierstore.migration.attempts"
"""Number of failed attempts recorded on the task (integer)."""

ATTR_WORKER_ID = "tierstore.worker.id"
"""Identifier of the tiering worker (string)."""

ATTR_BATCH_SIZE = "tierstore.batch.size"
"""Number of items in a batch operation (integer)."""

# =============================================================================
# Database Attributes (OTEL semantic conventions)
# =============================================================================

ATTR_DB_SYSTEM = "db.system"
"""Database system identifier (e.g., 'sqlite', 'postgresql')."""

ATTR_DB_OPERATION = "db.operation"
"""Database operation name (e.g., 'INSERT', 'UPDATE')."""
