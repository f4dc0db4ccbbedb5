"""Tests for BoundedCache eviction and pressure trimming."""
import pytest

from incidentfusion.utils.bounded_cache import BoundedCache, EvictionPolicy


class TestFIFO:
    def test_evicts_oldest_over_capacity(self):
        cache = BoundedCache(3)
        for i in range(5):
            cache.put(i, str(i))
        assert list(cache) == [2, 3, 4]
        assert cache.evictions == 2

    def test_get_does_not_refresh(self):
        cache = BoundedCache(2)
        cache.put("a", 1)
        cache.put("b", 2)
        assert cache.get("a") == 1
        cache.put("c", 3)
        assert "a" not in cache
        assert "b" in cache

    def test_overwrite_keeps_size(self):
        cache = BoundedCache(2)
        cache.put("a", 1)
        cache.put("a", 2)
        assert len(cache) == 1
        assert cache.get("a") == 2
        assert cache.evictions == 0


class TestLRU:
    def test_get_refreshes_entry(self):
        cache = BoundedCache(2, EvictionPolicy.LRU)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.get("a")
        cache.put("c", 3)
        assert "a" in cache
        assert "b" not in cache

    def test_missing_key_returns_default(self):
        cache = BoundedCache(2, EvictionPolicy.LRU)
        assert cache.get("missing", "x") == "x"


class TestTrim:
    def test_trim_to_pressure_size(self):
        cache = BoundedCache(10, pressure_entries=4)
        for i in range(10):
            cache.put(i, i)
        removed = cache.trim()
        assert removed == 6
        assert list(cache.values()) == [6, 7, 8, 9]
        assert cache.evictions == 6

    def test_trim_explicit_limit(self):
        cache = BoundedCache(10)
        for i in range(5):
            cache.put(i, i)
        assert cache.trim(0) == 5
        assert len(cache) == 0

    def test_trim_noop_when_small(self):
        cache = BoundedCache(10, pressure_entries=4)
        cache.put(1, 1)
        assert cache.trim() == 0

    def test_pressure_never_exceeds_capacity(self):
        assert BoundedCache(5, pressure_entries=50).pressure_entries == 5


def test_rejects_non_positive_capacity():
    with pytest.raises(ValueError):
        BoundedCache(0)
