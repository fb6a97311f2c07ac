"""Tests for the in-memory cache."""

from __future__ import annotations

from dripline.cache import MemoryCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestMemoryCache:
    def test_set_get(self) -> None:
        cache = MemoryCache()
        cache.set("a", 1)
        assert cache.get("a") == 1
        assert cache.get("missing") is None
        assert cache.stats.hits == 1
        assert cache.stats.misses == 1

    def test_ttl_expiry(self) -> None:
        clock = FakeClock()
        cache = MemoryCache(default_ttl=10, clock=clock)
        cache.set("a", 1)
        clock.now += 9
        assert cache.exists("a")
        clock.now += 1
        assert not cache.exists("a")
        assert cache.get("a") is None

    def test_add_only_when_absent(self) -> None:
        clock = FakeClock()
        cache = MemoryCache(clock=clock)
        assert cache.add("k", ttl=5)
        assert not cache.add("k", ttl=5)
        clock.now += 5
        assert cache.add("k", ttl=5)

    def test_invalidate(self) -> None:
        cache = MemoryCache()
        cache.set("effect:s1:1", True)
        cache.set("effect:s1:2", True)
        cache.set("effect:s2:1", True)

        assert cache.invalidate("effect:s2:1")
        assert not cache.invalidate("effect:s2:1")
        assert cache.invalidate_prefix("effect:s1:") == 2
        assert cache.size == 0
        assert cache.stats.invalidations == 3

    def test_evicts_oldest_at_capacity(self) -> None:
        cache = MemoryCache(max_size=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)
        assert cache.get("a") is None
        assert cache.get("c") == 3
        assert cache.size == 2

    def test_clear_resets_stats(self) -> None:
        cache = MemoryCache()
        cache.set("a", 1)
        cache.get("a")
        cache.clear()
        assert cache.size == 0
        assert cache.stats.hits == 0
