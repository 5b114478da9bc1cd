"""Injectable time sources.

Everything that stamps records or decides whether a retry is due reads the
time from a Clock, so tests can move time forward without sleeping.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Source of the current UTC time."""

    def now(self) -> datetime:
        """Return the current time as an aware UTC datetime."""
        ...


class SystemClock:
    """Wall-clock time."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class ManualClock:
    """A clock that only moves when told to.

    Example:
        ```python
        clock = ManualClock()
        cache = TTLCache(ttl_seconds=60, clock=clock)
        cache.set("k", 1)
        clock.advance(seconds=61)
        assert cache.get("k") is None
        ```
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2024, 1, 1, tzinfo=UTC)

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float = 0.0, milliseconds: float = 0.0) -> datetime:
        """Move time forward and return the new current time."""
        self._now += timedelta(seconds=seconds, milliseconds=milliseconds)
        return self._now

    def set(self, when: datetime) -> None:
        self._now = when


def unix_seconds(when: datetime) -> int:
    """Whole seconds since the epoch for an aware datetime."""
    return int(when.timestamp())
