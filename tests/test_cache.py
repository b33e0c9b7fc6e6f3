"""Tests for the cache module."""

import asyncio

import pytest

from docsmith.core.cache import DEFAULT_TTL, ResultCache


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestResultCache:
    """Tests for ResultCache class."""

    def test_init_defaults(self):
        """Test default initialization."""
        cache = ResultCache()
        assert cache.enabled is True
        assert cache.ttl == DEFAULT_TTL

    def test_set_and_get(self):
        """Test a stored value is returned with its provider label."""
        cache = ResultCache()
        cache.set(("search:q", 0), ["item"], "serpapi")

        entry = cache.get(("search:q", 0))

        assert entry.data == ["item"]
        assert entry.provider_label == "serpapi"
        assert ("search:q", 0) in cache

    def test_expired_entries_are_not_returned(self):
        """Test entries older than the TTL are treated as absent."""
        clock = FakeClock()
        cache = ResultCache(ttl=60, clock=clock)
        cache.set("k", 1, "p")

        clock.now += 59
        assert cache.get("k") is not None

        clock.now += 1
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_overwrite_replaces_entry(self):
        """Test writing a key replaces the whole entry."""
        cache = ResultCache()
        first = cache.set("k", 1, "a")
        second = cache.set("k", 2, "b")

        assert first is not second
        assert first.data == 1
        assert cache.get("k") is second

    def test_disabled_cache(self):
        """Test a disabled cache stores and returns nothing."""
        cache = ResultCache(enabled=False)
        assert cache.set("k", 1, "p") is None
        assert cache.get("k") is None

    def test_sweep(self):
        """Test sweeping removes only expired entries."""
        clock = FakeClock()
        cache = ResultCache(ttl=10, clock=clock)
        cache.set("old", 1, "p")
        clock.now += 5
        cache.set("new", 2, "p")
        clock.now += 6

        assert cache.sweep() == 1
        assert "new" in cache
        assert "old" not in cache

    def test_invalidate_and_clear(self):
        """Test entries can be removed singly or all at once."""
        cache = ResultCache()
        cache.set("a", 1, "p")
        cache.set("b", 2, "p")

        assert cache.invalidate("a") is True
        assert cache.invalidate("a") is False
        assert cache.clear() == 1
        assert len(cache) == 0

    def test_stats(self):
        """Test hit and miss counters."""
        cache = ResultCache()
        cache.set("k", 1, "p")
        cache.get("k")
        cache.get("missing")

        stats = cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate_percent"] == 50.0

    def test_generate_key(self):
        """Test generated keys are stable and argument order independent for kwargs."""
        first = ResultCache.generate_key("search", "stripe", limit=5, page=1)
        second = ResultCache.generate_key("search", "stripe", page=1, limit=5)
        assert first == second
        assert first.startswith("search:")
        assert first != ResultCache.generate_key("search", "paddle", limit=5, page=1)

    @pytest.mark.asyncio
    async def test_sweeper_task(self):
        """Test the background sweeper evicts entries and stops cleanly."""
        clock = FakeClock()
        cache = ResultCache(ttl=1, clock=clock)
        cache.set("k", 1, "p")
        clock.now += 2

        task = cache.start_sweeper(interval=0.01)
        await asyncio.sleep(0.05)
        await cache.stop_sweeper()

        assert task.done()
        assert len(cache) == 0
