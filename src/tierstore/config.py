"""
Configuration for the tiered record store.

This module provides:
- TierStoreConfig: Settings shared by the access layer and tiering engine

Configuration is supplied by the embedding application; nothing here reads
files or the environment.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta

from tierstore.retry import RetryConfig

DEFAULT_AGE_THRESHOLD = timedelta(days=90)
DEFAULT_MAX_RECORD_BYTES = 512 * 1024


@dataclass(frozen=True)
class TierStoreConfig:
    """
    Configuration for tiering and tiered access.

    Attributes:
        age_threshold: Records older than this are eligible for migration
        scan_interval: Interval between scheduled tiering runs
        scan_batch_size: Keys fetched per page while scanning the hot tier
        max_attempts: Failed attempts before a migration is quarantined
        backoff: Backoff between migration retries
        adapter_retry: Retry policy for individual adapter calls
        adapter_timeout: Per-attempt timeout for hot adapter calls (seconds)
        cold_adapter_timeout: Per-attempt timeout for cold adapter calls (seconds)
        cold_delete_retry: Retry policy for background cold deletions
        claim_ttl: Lease duration of a worker's claim on a migration task
        max_concurrency: Migrations processed concurrently by one engine
        worker_index: Partition owned by this engine (0-based)
        worker_count: Total number of engine partitions
        locator_cache_enabled: Whether the access layer keeps tier hints
        locator_cache_ttl: Lifetime of a tier hint
        locator_cache_max_entries: Maximum tier hints kept in memory
        max_record_bytes: Maximum payload size accepted by put
        check_cold_on_put: Reject puts of keys already archived with a different payload

    Example:
        >>> config = TierStoreConfig(
        ...     age_threshold=timedelta(days=30),
        ...     worker_count=4,
        ...     worker_index=2,
        ... )
    """

    # Eligibility and scheduling
    age_threshold: timedelta = DEFAULT_AGE_THRESHOLD
    scan_interval: timedelta = timedelta(hours=24)
    scan_batch_size: int = 500

    # Migration retries
    max_attempts: int = 5
    backoff: RetryConfig = field(
        default_factory=lambda: RetryConfig(
            max_retries=0,
            initial_delay=1.0,
            max_delay=300.0,
        )
    )

    # Adapter call policy
    adapter_retry: RetryConfig = field(default_factory=RetryConfig)
    adapter_timeout: float | None = 5.0
    cold_adapter_timeout: float | None = 30.0
    cold_delete_retry: RetryConfig = field(
        default_factory=lambda: RetryConfig(
            max_retries=8,
            initial_delay=0.5,
            max_delay=60.0,
        )
    )

    # Workers
    claim_ttl: timedelta = timedelta(minutes=10)
    max_concurrency: int = 8
    worker_index: int = 0
    worker_count: int = 1

    # Locator cache
    locator_cache_enabled: bool = True
    locator_cache_ttl: timedelta = timedelta(minutes=5)
    locator_cache_max_entries: int = 100_000

    # Records
    max_record_bytes: int = DEFAULT_MAX_RECORD_BYTES
    check_cold_on_put: bool = True

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.age_threshold <= timedelta(0):
            raise ValueError(f"age_threshold must be positive, got {self.age_threshold}.")

        if self.scan_interval <= timedelta(0):
            raise ValueError(f"scan_interval must be positive, got {self.scan_interval}.")

        if self.scan_batch_size < 1:
            raise ValueError(f"scan_batch_size must be positive, got {self.scan_batch_size}.")

        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}.")

        for name in ("adapter_timeout", "cold_adapter_timeout"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ValueError(f"{name} must be positive or None, got {value}.")

        if self.claim_ttl <= timedelta(0):
            raise ValueError(f"claim_ttl must be positive, got {self.claim_ttl}.")

        if self.max_concurrency < 1:
            raise ValueError(f"max_concurrency must be positive, got {self.max_concurrency}.")

        if self.worker_count < 1:
            raise ValueError(f"worker_count must be positive, got {self.worker_count}.")

        if not 0 <= self.worker_index < self.worker_count:
            raise ValueError(
                f"worker_index must be in [0, {self.worker_count}), got {self.worker_index}."
            )

        if self.locator_cache_ttl <= timedelta(0):
            raise ValueError(
                f"locator_cache_ttl must be positive, got {self.locator_cache_ttl}."
            )

        if self.locator_cache_max_entries < 1:
            raise ValueError(
                "locator_cache_max_entries must be positive, "
                f"got {self.locator_cache_max_entries}."
            )

        if self.max_record_bytes < 1:
            raise ValueError(f"max_record_bytes must be positive, got {self.max_record_bytes}.")


__all__ = [
    "DEFAULT_AGE_THRESHOLD",
    "DEFAULT_MAX_RECORD_BYTES",
    "TierStoreConfig",
]
