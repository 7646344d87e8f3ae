"""
Observability utilities for tierstore.

Tracing is composition based: components accept a ``Tracer`` and default to
``create_tracer(__name__, enable_tracing)``. OpenTelemetry is optional; when
it is not installed every component falls back to ``NullTracer``.
"""

from tierstore.observability.attributes import (
    ATTR_BATCH_SIZE,
    ATTR_CACHE_HINT,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_FOUND,
    ATTR_MIGRATION_ATTEMPTS,
    ATTR_MIGRATION_STATE,
    ATTR_RECORD_KEY,
    ATTR_RECORD_SIZE,
    ATTR_TIER,
    ATTR_WORKER_ID,
)
from tierstore.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    Tracer,
    create_tracer,
)
from tierstore.observability.tracing import OTEL_AVAILABLE, get_tracer

__all__ = [
    "OTEL_AVAILABLE",
    "get_tracer",
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
    "ATTR_BATCH_SIZE",
    "ATTR_CACHE_HINT",
    "ATTR_DB_OPERATION",
    "ATTR_DB_SYSTEM",
    "ATTR_FOUND",
    "ATTR_MIGRATION_ATTEMPTS",
    "ATTR_MIGRATION_STATE",
    "ATTR_RECORD_KEY",
    "ATTR_RECORD_SIZE",
    "ATTR_TIER",
    "ATTR_WORKER_ID",
]
