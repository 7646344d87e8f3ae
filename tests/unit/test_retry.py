"""
Unit tests for adapter retry utilities.

Tests cover:
- RetryConfig validation
- Backoff calculation
- Exception classification
- call_with_retry success, retry, exhaustion and timeout behavior
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from tierstore.exceptions import (
    RecordExistsError,
    StoreUnavailableError,
    TransientIOError,
)
from tierstore.retry import (
    RetryConfig,
    calculate_backoff,
    call_with_retry,
    is_retryable_exception,
)

FAST = RetryConfig(max_retries=2, initial_delay=0.001, max_delay=0.005, jitter=0.0)


class TestRetryConfig:
    def test_defaults(self) -> None:
        config = RetryConfig()
        assert config.max_retries == 3
        assert config.initial_delay == 0.05
        assert config.max_delay == 2.0

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_retries": -1},
            {"initial_delay": 0},
            {"max_delay": 0},
            {"initial_delay": 2.0, "max_delay": 1.0},
            {"exponential_base": 1.0},
            {"jitter": 1.5},
        ],
    )
    def test_invalid_values_rejected(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            RetryConfig(**kwargs)


class TestCalculateBackoff:
    def test_exponential_growth_without_jitter(self) -> None:
        config = RetryConfig(initial_delay=1.0, max_delay=60.0, jitter=0.0)
        assert calculate_backoff(0, config) == 1.0
        assert calculate_backoff(1, config) == 2.0
        assert calculate_backoff(3, config) == 8.0

    def test_capped_at_max_delay(self) -> None:
        config = RetryConfig(initial_delay=1.0, max_delay=10.0, jitter=0.0)
        assert calculate_backoff(10, config) == 10.0

    def test_jitter_stays_in_range(self) -> None:
        config = RetryConfig(initial_delay=1.0, max_delay=60.0, jitter=0.5)
        for _ in range(50):
            delay = calculate_backoff(2, config)
            assert 2.0 <= delay <= 6.0


class TestIsRetryableException:
    @pytest.mark.parametrize(
        "exc",
        [
            ConnectionError("reset"),
            TimeoutError(),
            OSError("disk"),
            StoreUnavailableError("busy"),
        ],
    )
    def test_transient_errors_are_retryable(self, exc: Exception) -> None:
        assert is_retryable_exception(exc) is True

    def test_domain_errors_are_not_retryable(self) -> None:
        assert is_retryable_exception(RecordExistsError("k")) is False
        assert is_retryable_exception(ValueError("bad")) is False


class TestCallWithRetry:
    async def test_returns_result_on_success(self) -> None:
        operation = AsyncMock(return_value="ok")
        result = await call_with_retry(operation, tier="hot", operation_name="get", config=FAST)
        assert result == "ok"
        assert operation.await_count == 1

    async def test_retries_transient_failure(self) -> None:
        operation = AsyncMock(side_effect=[ConnectionError("reset"), "ok"])
        result = await call_with_retry(operation, tier="cold", operation_name="put", config=FAST)
        assert result == "ok"
        assert operation.await_count == 2

    async def test_raises_transient_io_error_when_exhausted(self) -> None:
        operation = AsyncMock(side_effect=ConnectionError("down"))

        with pytest.raises(TransientIOError) as exc_info:
            await call_with_retry(
                operation, tier="cold", operation_name="get", key="k", config=FAST
            )

        error = exc_info.value
        assert error.tier == "cold"
        assert error.operation == "get"
        assert error.key == "k"
        assert error.attempts == 3
        assert isinstance(error.last_error, ConnectionError)
        assert operation.await_count == 3

    async def test_non_retryable_error_propagates_immediately(self) -> None:
        operation = AsyncMock(side_effect=RecordExistsError("k"))

        with pytest.raises(RecordExistsError):
            await call_with_retry(operation, tier="hot", operation_name="put", config=FAST)
        assert operation.await_count == 1

    async def test_custom_retryable_exceptions(self) -> None:
        operation = AsyncMock(side_effect=[KeyError("busy"), "ok"])
        result = await call_with_retry(
            operation,
            tier="cold",
            operation_name="get",
            config=FAST,
            retryable_exceptions=(KeyError,),
        )
        assert result == "ok"

        failing = AsyncMock(side_effect=ConnectionError("reset"))
        with pytest.raises(ConnectionError):
            await call_with_retry(
                failing,
                tier="cold",
                operation_name="get",
                config=FAST,
                retryable_exceptions=(KeyError,),
            )
        assert failing.await_count == 1

    async def test_timeout_counts_as_transient_failure(self) -> None:
        async def slow() -> str:
            await asyncio.sleep(1)
            return "late"

        with pytest.raises(TransientIOError) as exc_info:
            await call_with_retry(
                slow,
                tier="cold",
                operation_name="get",
                config=RetryConfig(max_retries=1, initial_delay=0.001, max_delay=0.001),
                timeout=0.01,
            )
        assert exc_info.value.attempts == 2
        assert isinstance(exc_info.value.last_error, TimeoutError)

    async def test_zero_retries_makes_one_attempt(self) -> None:
        operation = AsyncMock(side_effect=OSError("io"))
        config = RetryConfig(max_retries=0, initial_delay=0.001, max_delay=0.001)

        with pytest.raises(TransientIOError):
            await call_with_retry(operation, tier="hot", operation_name="get", config=config)
        assert operation.await_count == 1

    async def test_cancellation_is_not_retried(self) -> None:
        started = asyncio.Event()

        async def blocking() -> None:
            started.set()
            await asyncio.sleep(10)

        task = asyncio.create_task(
            call_with_retry(blocking, tier="hot", operation_name="get", config=FAST)
        )
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
