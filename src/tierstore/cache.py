"""
Record locator cache.

Remembers which tier last served a key so that reads of known-cold keys can
skip a hot-tier miss. Entries are hints only: a stale or missing entry may
cost an extra adapter call but never changes the result of a read.

The cache is a plain ``OrderedDict`` touched only from synchronous code, so
no lock is held across an ``await`` and a cancelled read cannot leave it
locked.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta

from tierstore.records import Tier
from tierstore.scheduling import Clock, SystemClock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LocatorEntry:
    """A tier hint and the time after which it is ignored."""

    tier: Tier
    expires_at: datetime


class LocatorCache:
    """
    Bounded, expiring map of record key to tier hint.

    Least recently written entries are evicted first once ``max_entries``
    is reached.

    Example:
        >>> cache = LocatorCache(ttl=timedelta(minutes=5))
        >>> cache.remember("invoice-42", Tier.COLD)
        >>> cache.hint("invoice-42")
        <Tier.COLD: 'cold'>
    """

    def __init__(
        self,
        *,
        ttl: timedelta = timedelta(minutes=5),
        max_entries: int = 100_000,
        clock: Clock | None = None,
    ) -> None:
        if ttl <= timedelta(0):
            raise ValueError(f"ttl must be positive, got {ttl}")
        if max_entries < 1:
            raise ValueError(f"max_entries must be positive, got {max_entries}")
        self._ttl = ttl
        self._max_entries = max_entries
        self._clock = clock or SystemClock()
        self._entries: OrderedDict[str, LocatorEntry] = OrderedDict()
        self._hits = 0
        self._misses = 0

    def hint(self, key: str) -> Tier | None:
        """
        Get the tier hint for a key.

        Returns:
            The remembered tier, or None if unknown or expired
        """
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None
        if entry.expires_at <= self._clock.now():
            self._entries.pop(key, None)
            self._misses += 1
            return None
        self._hits += 1
        return entry.tier

    def remember(self, key: str, tier: Tier) -> None:
        """Record that a key was last served from ``tier``."""
        self._entries[key] = LocatorEntry(tier=tier, expires_at=self._clock.now() + self._ttl)
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Evicted locator hint for %s", evicted)

    def forget(self, key: str) -> None:
        """Drop any hint for a key."""
        self._entries.pop(key, None)

    def clear(self) -> None:
        """Drop all hints."""
        self._entries.clear()

    @property
    def hits(self) -> int:
        return self._hits

    @property
    def misses(self) -> int:
        return self._misses

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"LocatorCache(entries={len(self._entries)}, ttl={self._ttl})"


__all__ = [
    "LocatorCache",
    "LocatorEntry",
]
