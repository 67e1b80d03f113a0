"""
PM-Fit Backend - TTL Cache Unit Tests

Tests for cache.py: expiry on read, has_expired, eviction when full.
"""

from pmfit.cache import TTLCache
from tests.conftest import FakeClock


class TestTTLCache:

    def test_get_returns_value_before_expiry(self):
        clock = FakeClock()
        cache = TTLCache(10, clock=clock)
        cache.set("reddit:idea", {"sentiment": 0.4})

        clock.advance(9.9)
        assert cache.get("reddit:idea") == {"sentiment": 0.4}
        assert "reddit:idea" in cache

    def test_get_returns_default_after_expiry(self):
        clock = FakeClock()
        cache = TTLCache(10, clock=clock)
        cache.set("reddit:idea", "cached")

        clock.advance(10)
        assert cache.get("reddit:idea", "missing") == "missing"
        assert len(cache) == 0

    def test_has_expired(self):
        clock = FakeClock()
        cache = TTLCache(5, clock=clock)
        assert cache.has_expired("never-set")

        cache.set("k", 1)
        assert not cache.has_expired("k")
        clock.advance(6)
        assert cache.has_expired("k")

    def test_per_entry_ttl_overrides_default(self):
        clock = FakeClock()
        cache = TTLCache(5, clock=clock)
        cache.set("short", 1, ttl_seconds=1)
        cache.set("long", 2)

        clock.advance(2)
        assert cache.get("short") is None
        assert cache.get("long") == 2

    def test_zero_ttl_stores_nothing(self):
        cache = TTLCache(0)
        cache.set("k", "v")
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_cached_none_is_distinguishable_via_contains(self):
        cache = TTLCache(60)
        cache.set("empty-result", None)
        assert "empty-result" in cache
        assert cache.get("empty-result", "default") is None

    def test_evicts_oldest_quarter_when_full(self):
        clock = FakeClock()
        cache = TTLCache(100, max_entries=8, clock=clock)
        for i in range(8):
            cache.set(f"k{i}", i)
            clock.advance(1)

        cache.set("k8", 8)

        assert len(cache) == 7
        assert "k0" not in cache
        assert "k1" not in cache
        assert "k2" in cache
        assert cache.get("k8") == 8

    def test_eviction_prefers_expired_entries(self):
        clock = FakeClock()
        cache = TTLCache(100, max_entries=2, clock=clock)
        cache.set("stale", 1, ttl_seconds=1)
        cache.set("fresh", 2)
        clock.advance(5)

        cache.set("new", 3)

        assert "fresh" in cache
        assert "new" in cache

    def test_overwrite_does_not_evict(self):
        cache = TTLCache(100, max_entries=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 3)
        assert cache.get("a") == 3
        assert cache.get("b") == 2

    def test_purge_and_clear(self):
        clock = FakeClock()
        cache = TTLCache(1, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2, ttl_seconds=10)
        clock.advance(2)

        assert cache.purge_expired() == 1
        cache.delete("missing")
        cache.clear()
        assert len(cache) == 0

    def test_store_drops_expired_entries(self):
        clock = FakeClock()
        cache = TTLCache(1, clock=clock)
        for i in range(50):
            cache.set(f"search:{i}", i)

        clock.advance(5)
        cache.set("search:fresh", "new")

        assert list(cache._entries) == ["search:fresh"]
