"""Tests for the TTL cache and manual clock."""

from datetime import UTC, datetime

from eventrelay.cache import TTLCache
from eventrelay.clock import ManualClock, SystemClock, unix_seconds


class TestManualClock:
    def test_starts_at_fixed_time(self):
        assert ManualClock().now() == datetime(2024, 1, 1, tzinfo=UTC)

    def test_advance(self):
        clock = ManualClock()
        start = clock.now()
        clock.advance(seconds=2, milliseconds=500)
        assert (clock.now() - start).total_seconds() == 2.5

    def test_set(self):
        clock = ManualClock()
        when = datetime(2030, 6, 1, tzinfo=UTC)
        clock.set(when)
        assert clock.now() == when

    def test_system_clock_is_aware(self):
        assert SystemClock().now().tzinfo is not None

    def test_unix_seconds(self):
        assert unix_seconds(datetime(1970, 1, 1, 0, 1, tzinfo=UTC)) == 60


class TestTTLCache:
    """Tests for TTLCache."""

    def test_set_and_get(self):
        cache: TTLCache[str] = TTLCache(ttl_seconds=60, clock=ManualClock())
        cache.set("k", "v")
        assert cache.get("k") == "v"
        assert len(cache) == 1

    def test_miss(self):
        cache: TTLCache[str] = TTLCache(ttl_seconds=60, clock=ManualClock())
        assert cache.get("absent") is None

    def test_expiry(self):
        """Entries vanish once the TTL has elapsed."""
        clock = ManualClock()
        cache: TTLCache[str] = TTLCache(ttl_seconds=60, clock=clock)
        cache.set("k", "v")

        clock.advance(seconds=59)
        assert cache.get("k") == "v"
        clock.advance(seconds=1)
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_lru_eviction(self):
        cache: TTLCache[int] = TTLCache(ttl_seconds=60, max_size=2, clock=ManualClock())
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)

        assert cache.get("a") == 1
        assert cache.get("b") is None
        assert cache.get("c") == 3

    def test_invalidate(self):
        cache: TTLCache[int] = TTLCache(ttl_seconds=60, clock=ManualClock())
        cache.set("a", 1)
        assert cache.invalidate("a") is True
        assert cache.invalidate("a") is False
        assert cache.get("a") is None

    def test_zero_ttl_disables(self):
        cache: TTLCache[int] = TTLCache(ttl_seconds=0, clock=ManualClock())
        assert not cache.enabled
        cache.set("a", 1)
        assert cache.get("a") is None

    def test_hit_rate_and_clear(self):
        cache: TTLCache[int] = TTLCache(ttl_seconds=60, clock=ManualClock())
        cache.set("a", 1)
        cache.get("a")
        cache.get("b")
        assert cache.hit_rate == 0.5

        cache.clear()
        assert len(cache) == 0
        assert cache.hit_rate == 0.0
