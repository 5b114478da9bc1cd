"""Time-bounded in-process cache with LRU eviction.

Constructed once per process and passed by reference. Expiry is measured
against an injected Clock so TTL behaviour is testable without sleeping.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Generic, TypeVar

from .clock import Clock, SystemClock

logger = logging.getLogger(__name__)

V = TypeVar("V")


class TTLCache(Generic[V]):
    """Key/value cache whose entries expire after a fixed time-to-live.

    Example:
        ```python
        cache: TTLCache[InboundEvent] = TTLCache(ttl_seconds=600, max_size=10_000)
        cache.set(event.external_event_id, event)
        hit = cache.get(event.external_event_id)
        cache.invalidate(event.external_event_id)
        ```
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_size: int = 10_000,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the cache.

        Args:
            ttl_seconds: Lifetime of each entry. 0 disables caching.
            max_size: Maximum entries held; least recently used are evicted first.
            clock: Time source. Defaults to the system clock.
        """
        self._ttl = timedelta(seconds=ttl_seconds)
        self._max_size = max_size
        self._clock = clock or SystemClock()
        self._entries: OrderedDict[str, tuple[datetime, V]] = OrderedDict()
        self._hits = 0
        self._misses = 0

    @property
    def enabled(self) -> bool:
        return self._ttl > timedelta(0) and self._max_size > 0

    def get(self, key: str) -> V | None:
        """Return the cached value, or None if absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        expires_at, value = entry
        if self._clock.now() >= expires_at:
            del self._entries[key]
            self._misses += 1
            return None

        self._entries.move_to_end(key)
        self._hits += 1
        return value

    def set(self, key: str, value: V) -> None:
        """Store a value, evicting the least recently used entry when full."""
        if not self.enabled:
            return

        if key in self._entries:
            self._entries.move_to_end(key)
        elif len(self._entries) >= self._max_size:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Evicted cache entry %s (size=%d)", evicted, len(self._entries))

        self._entries[key] = (self._clock.now() + self._ttl, value)

    def invalidate(self, key: str) -> bool:
        """Drop one entry. Returns True if it was present."""
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def hit_rate(self) -> float:
        total = self._hits + self._misses
        return self._hits / total if total else 0.0
