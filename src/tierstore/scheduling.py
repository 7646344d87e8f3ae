"""
Clock and trigger abstractions for the tiering engine.

The engine never reads the wall clock or sleeps on a timer directly. Both
are injected so that tests can advance simulated time and fire runs on
demand instead of waiting for a real schedule.

This module provides:
- Clock / SystemClock / ManualClock: Sources of "now"
- Trigger / IntervalTrigger / ManualTrigger: Decide when a tiering run starts
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class Clock(Protocol):
    """Source of the current time (timezone-aware UTC)."""

    def now(self) -> datetime:
        """Return the current time."""
        ...


class SystemClock:
    """Clock backed by the system wall clock."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class ManualClock:
    """
    Clock whose time only moves when told to.

    Example:
        >>> clock = ManualClock(datetime(2024, 1, 1, tzinfo=UTC))
        >>> clock.advance(timedelta(days=91))
        >>> clock.now()
        datetime.datetime(2024, 4, 1, 0, 0, tzinfo=datetime.timezone.utc)
    """

    def __init__(self, start: datetime | None = None) -> None:
        start = start or datetime.now(UTC)
        if start.tzinfo is None:
            raise ValueError("ManualClock start time must be timezone-aware")
        self._now = start.astimezone(UTC)

    def now(self) -> datetime:
        return self._now

    def advance(self, delta: timedelta) -> datetime:
        """
        Move the clock forward.

        Args:
            delta: Amount of time to advance (must not be negative)

        Returns:
            The new current time
        """
        if delta < timedelta(0):
            raise ValueError(f"Cannot move a clock backwards (delta={delta})")
        self._now += delta
        return self._now

    def set(self, when: datetime) -> None:
        """Jump to an absolute time."""
        if when.tzinfo is None:
            raise ValueError("ManualClock time must be timezone-aware")
        self._now = when.astimezone(UTC)


@runtime_checkable
class Trigger(Protocol):
    """
    Decides when the next tiering run starts.

    ``wait`` returns True when a run should start and False when ``stop``
    was set while waiting.
    """

    async def wait(self, stop: asyncio.Event) -> bool: ...


class IntervalTrigger:
    """
    Fires on a fixed interval, measured with the event loop's timer.

    Args:
        interval: Time between runs
        run_immediately: Fire once as soon as the engine starts
    """

    def __init__(self, interval: timedelta, *, run_immediately: bool = True) -> None:
        if interval <= timedelta(0):
            raise ValueError(f"interval must be positive, got {interval}")
        self._interval = interval.total_seconds()
        self._first = run_immediately

    async def wait(self, stop: asyncio.Event) -> bool:
        if stop.is_set():
            return False
        if self._first:
            self._first = False
            return True
        try:
            await asyncio.wait_for(stop.wait(), timeout=self._interval)
        except TimeoutError:
            return True
        return False


class ManualTrigger:
    """
    Fires only when ``fire()`` is called. Intended for tests and for
    operator-initiated runs.

    Example:
        >>> trigger = ManualTrigger()
        >>> engine = TieringEngine(..., trigger=trigger)
        >>> await engine.start()
        >>> trigger.fire()
    """

    def __init__(self) -> None:
        self._pending = 0
        self._event = asyncio.Event()

    def fire(self) -> None:
        """Request one run."""
        self._pending += 1
        self._event.set()

    @property
    def pending(self) -> int:
        """Number of requested runs not yet started."""
        return self._pending

    async def wait(self, stop: asyncio.Event) -> bool:
        while self._pending == 0:
            if stop.is_set():
                return False
            fired = asyncio.ensure_future(self._event.wait())
            stopped = asyncio.ensure_future(stop.wait())
            try:
                await asyncio.wait({fired, stopped}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                fired.cancel()
                stopped.cancel()
            self._event.clear()
        if stop.is_set():
            return False
        self._pending -= 1
        return True


__all__ = [
    "Clock",
    "SystemClock",
    "ManualClock",
    "Trigger",
    "IntervalTrigger",
    "ManualTrigger",
]
