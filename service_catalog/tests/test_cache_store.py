"""
Unit tests for the catalog cache store.
"""

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_catalog.app.caching.store import CacheStore, Freshness
from shared.metrics import MetricsCollector


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class TestCacheStore:
    """Test cases for CacheStore."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def store(self, clock):
        return CacheStore(stale_grace_seconds=3600, clock=clock)

    def test_fresh_hit(self, store, clock):
        """A value read back within its TTL is returned."""
        store.set("k", {"x": 1}, 10)
        clock.advance(5)

        assert store.get("k") == {"x": 1}
        stats = store.stats()
        assert stats.hits == 1
        assert stats.misses == 0
        assert stats.total_requests == 1

    def test_missing_key_is_miss(self, store):
        assert store.get("nope") is None
        assert store.stats().misses == 1

    def test_stale_entry_not_returned_by_get(self, store, clock):
        """Past the TTL get misses but the value stays available to get_stale."""
        store.set("k", "v", 10)
        clock.advance(11)

        assert store.get("k") is None
        assert store.get_stale("k") == "v"
        assert "k" in store

    def test_ttl_boundary_is_stale(self, store, clock):
        store.set("k", "v", 10)
        clock.advance(10)

        assert store.get("k") is None
        assert store.peek("k").freshness(clock(), 3600) is Freshness.STALE

    def test_get_stale_ignores_fresh_entries(self, store):
        store.set("k", "v", 10)
        assert store.get_stale("k") is None

    def test_expired_entry_removed_on_access(self, store, clock):
        """Past TTL plus grace the entry is deleted on first access."""
        store.set("k", "v", 10)
        clock.advance(10 + 3600)

        assert store.get("k") is None
        assert "k" not in store
        assert store.stats().evictions == 1

    def test_expired_entry_not_served_stale(self, store, clock):
        store.set("k", "v", 10)
        clock.advance(5000)

        assert store.get_stale("k") is None
        assert "k" not in store

    def test_overwrite_resets_write_time(self, store, clock):
        store.set("k", "old", 10)
        clock.advance(8)
        store.set("k", "new", 10)
        clock.advance(8)

        assert store.get("k") == "new"

    def test_is_fresh_does_not_count(self, store):
        store.set("k", "v", 10)

        assert store.is_fresh("k") is True
        assert store.is_fresh("other") is False
        assert store.stats().total_requests == 0

    def test_invalidate_by_prefix(self, store):
        """Only keys starting with the prefix are removed."""
        store.set("category:1:products:100:0", [1], 60)
        store.set("category:2:products:100:0", [2], 60)
        store.set("categories:all", [], 60)
        store.set("product:ABC", {}, 60)

        removed = store.invalidate("category:")

        assert removed == 2
        assert sorted(store.keys()) == ["categories:all", "product:ABC"]

    def test_invalidate_unknown_prefix(self, store):
        store.set("product:ABC", {}, 60)
        assert store.invalidate("availability:") == 0
        assert len(store) == 1

    def test_stats_counts_freshness_buckets(self, store, clock):
        """Stats bucket entries without evicting expired ones."""
        store.set("expired", "e", 1)
        clock.advance(4000)
        store.set("stale", "s", 1)
        clock.advance(2)
        store.set("fresh", "f", 100)

        stats = store.stats()

        assert stats.size == 3
        assert stats.freshness_buckets == {"fresh": 1, "stale": 1, "expired": 1}
        assert stats.memory_usage_estimate > 0
        assert len(store) == 3

    def test_hit_and_miss_counts_sequence(self, store, clock):
        """Miss, set, hit, hit, then a stale miss."""
        assert store.get("k") is None
        store.set("k", "v", 10)
        assert store.get("k") == "v"
        assert store.get("k") == "v"
        clock.advance(20)
        assert store.get("k") is None

        stats = store.stats()
        assert stats.hits == 2
        assert stats.misses == 2
        assert stats.total_requests == 4

    def test_clear_resets_everything(self, store):
        store.set("a", 1, 10)
        store.get("a")
        store.clear()

        stats = store.stats()
        assert stats.size == 0
        assert stats.hits == 0
        assert stats.total_requests == 0

    def test_capacity_evicts_expired_first(self, clock):
        store = CacheStore(stale_grace_seconds=10, max_entries=3, clock=clock)
        store.set("old", 1, 1)
        store.set("a", 2, 1000)
        store.set("b", 3, 1000)
        clock.advance(100)

        store.set("c", 4, 1000)

        assert sorted(store.keys()) == ["a", "b", "c"]

    def test_capacity_evicts_least_recently_read(self, clock):
        store = CacheStore(max_entries=3, clock=clock)
        store.set("a", 1, 1000)
        clock.advance(1)
        store.set("b", 2, 1000)
        clock.advance(1)
        store.set("c", 3, 1000)
        clock.advance(1)
        store.get("a")

        store.set("d", 4, 1000)

        assert sorted(store.keys()) == ["a", "c", "d"]
        assert store.stats().evictions == 1

    def test_overwrite_at_capacity_does_not_evict(self, clock):
        store = CacheStore(max_entries=2, clock=clock)
        store.set("a", 1, 1000)
        store.set("b", 2, 1000)
        store.set("a", 3, 1000)

        assert sorted(store.keys()) == ["a", "b"]

    def test_unserializable_value_still_cached(self, store):
        value = object()
        store.set("k", value, 10)
        assert store.get("k") is value

    def test_reports_metrics(self, clock):
        """Evictions and the entry gauge are exported to Prometheus."""
        metrics = MetricsCollector("catalog")
        store = CacheStore(clock=clock, metrics=metrics)
        store.set("product:A", {}, 10)
        store.set("product:B", {}, 10)
        store.invalidate("product:")

        registry = metrics.registry
        assert registry.get_sample_value("cache_entries") == 0
        assert registry.get_sample_value("cache_evictions_total", {"reason": "invalidated"}) == 2

    def test_delete_exact_key_only(self, store):
        store.set("product:ABC", 1, 60)
        store.set("product:ABC123", 2, 60)

        assert store.delete("product:ABC") is True
        assert store.delete("product:ABC") is False
        assert store.keys() == ["product:ABC123"]
        assert store.stats().evictions == 1
