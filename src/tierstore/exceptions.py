"""
Library exceptions for the tierstore package.

Exception Hierarchy:
    TierStoreError (base)
    +-- StoreUnavailableError
    +-- TransientIOError
    |   +-- LookupFailedError
    +-- WriteError
    +-- RecordExistsError
    +-- RecordTooLargeError
    +-- MigrationError
        +-- VerificationMismatchError
        +-- QuarantinedMigrationError
        +-- MigrationTaskNotFoundError
        +-- InvalidTaskTransitionError
        +-- TaskConflictError

A missing record is never an exception: reads return ``None`` or an empty
``LookupResult`` instead.
"""

from __future__ import annotations


class TierStoreError(Exception):
    """Base exception for tierstore library."""

    pass


class StoreUnavailableError(TierStoreError):
    """
    Raised by adapters when their backend is temporarily unreachable.

    Treated as transient: adapter calls failing with this error are retried
    according to the configured policy.
    """

    pass


class TransientIOError(TierStoreError):
    """
    Raised when an adapter call keeps failing after its retry policy is exhausted.

    Attributes:
        operation: Adapter operation that failed (e.g., "get", "put")
        tier: Tier of the adapter ("hot" or "cold")
        key: Record key involved, if any
        attempts: Number of attempts made
        last_error: The last underlying exception
    """

    def __init__(
        self,
        operation: str,
        tier: str,
        key: str | None,
        attempts: int,
        last_error: BaseException | None = None,
        message: str | None = None,
    ) -> None:
        self.operation = operation
        self.tier = tier
        self.key = key
        self.attempts = attempts
        self.last_error = last_error
        if message is None:
            target = f" for key {key!r}" if key is not None else ""
            message = (
                f"{tier} store {operation}{target} failed after "
                f"{attempts} attempt(s): {last_error}"
            )
        super().__init__(message)


class LookupFailedError(TransientIOError):
    """
    Raised when a read cannot tell whether a record exists.

    This happens when one tier failed and the other tier did not produce the
    record, so answering "not found" could be wrong.

    Attributes:
        hot_error: Failure from the hot tier, if any
        cold_error: Failure from the cold tier, if any
    """

    def __init__(
        self,
        key: str,
        hot_error: TransientIOError | None = None,
        cold_error: TransientIOError | None = None,
    ) -> None:
        self.hot_error = hot_error
        self.cold_error = cold_error
        failed = hot_error or cold_error
        super().__init__(
            operation="get",
            tier="hot" if hot_error else "cold",
            key=key,
            attempts=failed.attempts if failed else 0,
            last_error=failed.last_error if failed else None,
            message=(
                f"Lookup failed for key {key!r}: "
                f"hot={'failed' if hot_error else 'ok'}, "
                f"cold={'failed' if cold_error else 'ok'}"
            ),
        )


class WriteError(TierStoreError):
    """Raised when a write or delete against the authoritative hot tier fails."""

    def __init__(self, key: str, reason: str) -> None:
        self.key = key
        self.reason = reason
        super().__init__(f"Write failed for key {key!r}: {reason}")


class RecordExistsError(TierStoreError):
    """Raised when a put would change the payload of an existing record."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Record {key!r} already exists with a different payload")


class RecordTooLargeError(TierStoreError):
    """Raised when a payload exceeds the configured maximum record size."""

    def __init__(self, key: str, size_bytes: int, limit: int) -> None:
        self.key = key
        self.size_bytes = size_bytes
        self.limit = limit
        super().__init__(
            f"Record {key!r} is {size_bytes} bytes, exceeding the limit of {limit} bytes"
        )


class MigrationError(TierStoreError):
    """Base exception for tiering engine and ledger errors."""

    pass


class VerificationMismatchError(MigrationError):
    """
    Raised when the cold copy of a record does not match the hot original.

    Handled by the tiering engine as a copy failure: the task is retried and
    the hot copy is never deleted.
    """

    def __init__(
        self,
        key: str,
        expected_size: int | None,
        actual_size: int | None,
        expected_checksum: str | None = None,
        actual_checksum: str | None = None,
    ) -> None:
        self.key = key
        self.expected_size = expected_size
        self.actual_size = actual_size
        self.expected_checksum = expected_checksum
        self.actual_checksum = actual_checksum
        if actual_size is None:
            detail = "cold copy is missing"
        elif expected_size != actual_size:
            detail = f"size {actual_size} != expected {expected_size}"
        else:
            detail = "checksum mismatch"
        super().__init__(f"Verification failed for key {key!r}: {detail}")


class QuarantinedMigrationError(MigrationError):
    """
    Raised when processing is requested for a task that exhausted its retries.

    The record stays in the hot tier until the task is reset manually.
    """

    def __init__(self, key: str, attempts: int, last_error: str | None) -> None:
        self.key = key
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Migration of {key!r} is quarantined after {attempts} attempts: {last_error}"
        )


class MigrationTaskNotFoundError(MigrationError):
    """Raised when a migration task is required but does not exist."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"No migration task for key {key!r}")


class InvalidTaskTransitionError(MigrationError):
    """Raised when a migration task state change violates the state machine."""

    def __init__(self, key: str, from_state: str, to_state: str) -> None:
        self.key = key
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Invalid migration transition for {key!r}: {from_state} -> {to_state}"
        )


class TaskConflictError(MigrationError):
    """Raised when a ledger compare-and-set loses against a concurrent writer."""

    def __init__(self, key: str, expected_version: int) -> None:
        self.key = key
        self.expected_version = expected_version
        super().__init__(
            f"Migration task {key!r} was modified concurrently "
            f"(expected version {expected_version})"
        )
