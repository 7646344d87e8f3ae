"""
Retry utilities for adapter calls.

Every call to a hot or cold adapter runs under a per-attempt timeout with a
bounded number of retries and exponential backoff with jitter. There are no
unbounded retry loops: when the policy is exhausted the failure surfaces as
``TransientIOError``.

This module provides:
- RetryConfig: Configuration for retry behavior
- TRANSIENT_EXCEPTIONS: Exception types treated as retryable
- calculate_backoff: Calculate delay with exponential backoff and jitter
- is_retryable_exception: Classify an exception
- call_with_retry: Run an adapter call under timeout and retry policy
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from tierstore.exceptions import StoreUnavailableError, TransientIOError

logger = logging.getLogger(__name__)

T = TypeVar("T")


# Common transient exceptions that should be retried
TRANSIENT_EXCEPTIONS: tuple[type[Exception], ...] = (
    StoreUnavailableError,
    ConnectionError,
    TimeoutError,
    OSError,  # Includes network and filesystem errors
)


@dataclass(frozen=True)
class RetryConfig:
    """
    Configuration for retry behavior.

    Attributes:
        max_retries: Maximum number of retry attempts (0 = no retries)
        initial_delay: Initial delay in seconds before first retry
        max_delay: Maximum delay in seconds between retries
        exponential_base: Base for exponential backoff calculation
        jitter: Fraction of delay to add as random jitter (0-1)

    Example:
        >>> config = RetryConfig(max_retries=3, initial_delay=0.05, max_delay=2.0)
    """

    max_retries: int = 3
    initial_delay: float = 0.05
    max_delay: float = 2.0
    exponential_base: float = 2.0
    jitter: float = 0.1

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.max_retries < 0:
            raise ValueError(
                f"max_retries must be >= 0, got {self.max_retries}. Use 0 for no retries."
            )

        if self.initial_delay <= 0:
            raise ValueError(f"initial_delay must be positive, got {self.initial_delay}.")

        if self.max_delay <= 0:
            raise ValueError(f"max_delay must be positive, got {self.max_delay}.")

        if self.max_delay < self.initial_delay:
            raise ValueError(
                f"max_delay ({self.max_delay}) must be >= initial_delay ({self.initial_delay})."
            )

        if self.exponential_base <= 1.0:
            raise ValueError(f"exponential_base must be > 1.0, got {self.exponential_base}.")

        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError(f"jitter must be between 0.0 and 1.0, got {self.jitter}.")


def calculate_backoff(
    attempt: int,
    config: RetryConfig,
) -> float:
    """
    Calculate backoff delay with exponential growth and jitter.

    Args:
        attempt: Current attempt number (0-based)
        config: Retry configuration

    Returns:
        Delay in seconds

    Example:
        >>> config = RetryConfig(initial_delay=1.0, max_delay=60.0, jitter=0.0)
        >>> calculate_backoff(3, config)
        8.0
    """
    delay = config.initial_delay * (config.exponential_base**attempt)
    delay = min(delay, config.max_delay)

    jitter_range = delay * config.jitter
    delay += random.uniform(-jitter_range, jitter_range)  # nosec B311 - not crypto

    return max(0.0, delay)


def is_retryable_exception(
    exception: BaseException,
    retryable_exceptions: tuple[type[Exception], ...] = TRANSIENT_EXCEPTIONS,
) -> bool:
    """
    Check if an exception is retryable.

    Args:
        exception: The exception to check
        retryable_exceptions: Tuple of exception types to retry

    Returns:
        True if the exception should be retried
    """
    return isinstance(exception, retryable_exceptions)


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    tier: str,
    operation_name: str,
    key: str | None = None,
    config: RetryConfig | None = None,
    timeout: float | None = None,
    retryable_exceptions: tuple[type[Exception], ...] = TRANSIENT_EXCEPTIONS,
) -> T:
    """
    Run an adapter call with a per-attempt timeout and bounded retries.

    Cancellation of the calling task propagates immediately; it is never
    retried.

    Args:
        operation: Zero-argument coroutine factory performing the call
        tier: Tier of the adapter ("hot" or "cold"), used in errors and logs
        operation_name: Adapter operation name (e.g., "get")
        key: Record key involved, if any
        config: Retry configuration (uses defaults if None)
        timeout: Per-attempt timeout in seconds (None disables)
        retryable_exceptions: Exception types to retry on

    Returns:
        Result of the successful call

    Raises:
        TransientIOError: If all attempts failed with retryable errors
        Exception: Non-retryable exceptions are raised immediately
    """
    config = config or RetryConfig()
    last_error: Exception | None = None
    attempts = 0

    for attempt in range(config.max_retries + 1):
        attempts += 1
        try:
            async with asyncio.timeout(timeout):
                result = await operation()

            if attempt > 0:
                logger.info(
                    "%s store %s succeeded after retry",
                    tier,
                    operation_name,
                    extra={"operation": operation_name, "tier": tier, "attempt": attempts},
                )
            return result

        except Exception as e:
            if not is_retryable_exception(e, retryable_exceptions):
                raise
            last_error = e

            if attempt < config.max_retries:
                delay = calculate_backoff(attempt, config)
                logger.warning(
                    "Retrying %s store %s after failure",
                    tier,
                    operation_name,
                    extra={
                        "operation": operation_name,
                        "tier": tier,
                        "key": key,
                        "attempt": attempts,
                        "max_retries": config.max_retries,
                        "delay_seconds": delay,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                )
                await asyncio.sleep(delay)

    logger.error(
        "All retries exhausted for %s store %s",
        tier,
        operation_name,
        extra={
            "operation": operation_name,
            "tier": tier,
            "key": key,
            "attempts": attempts,
            "error": str(last_error),
        },
    )
    raise TransientIOError(
        operation=operation_name,
        tier=tier,
        key=key,
        attempts=attempts,
        last_error=last_error,
    )


__all__ = [
    "RetryConfig",
    "TRANSIENT_EXCEPTIONS",
    "calculate_backoff",
    "is_retryable_exception",
    "call_with_retry",
]
