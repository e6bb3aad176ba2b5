"""Unit tests for the quick query cache."""

import asyncio

import pytest
from unittest.mock import AsyncMock

from app.models.domain import QueryPoint
from app.services.quick_query_cache import QuickQueryCache, make_cache_key


class TestMakeCacheKey:
    """Test cache key construction."""

    def test_rounds_to_five_decimals(self):
        """Points closer than the key precision share a key."""
        a = QueryPoint(lat=-23.5505001, lng=-46.6333002, radius_m=1000)
        b = QueryPoint(lat=-23.5505004, lng=-46.6333004, radius_m=1000)

        assert make_cache_key(a) == make_cache_key(b) == "-23.55050,-46.63330,1000"

    def test_no_negative_zero_near_the_equator(self):
        """Tiny negative coordinates share the key of tiny positive ones."""
        south_west = QueryPoint(lat=-0.000001, lng=-0.000002, radius_m=1000)
        north_east = QueryPoint(lat=0.000001, lng=0.000002, radius_m=1000)

        assert make_cache_key(south_west) == make_cache_key(north_east) == "0.00000,0.00000,1000"

    def test_radius_and_segment_are_part_of_the_key(self):
        """Radius and (case-insensitive) segment distinguish entries."""
        base = QueryPoint(lat=1, lng=2, radius_m=500)

        assert make_cache_key(base) != make_cache_key(QueryPoint(lat=1, lng=2, radius_m=600))
        assert make_cache_key(QueryPoint(lat=1, lng=2, radius_m=500, segment="Academia")).endswith(",academia")


class TestQuickQueryCache:
    """Test TTL, capacity and fetch-through behaviour."""

    @pytest.mark.asyncio
    async def test_second_lookup_within_ttl_is_cached(self, cache, point):
        """The same point within the TTL fetches once."""
        fetch = AsyncMock(return_value="snapshot")

        first = await cache.get_or_fetch(point, fetch)
        second = await cache.get_or_fetch(point, fetch)

        assert first == ("snapshot", False)
        assert second == ("snapshot", True)
        fetch.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_expired_entry_is_refetched(self, cache, monotonic, point):
        """After the TTL the entry counts as absent."""
        fetch = AsyncMock(side_effect=["old", "new"])

        await cache.get_or_fetch(point, fetch)
        monotonic.advance(1200)
        value, cached = await cache.get_or_fetch(point, fetch)

        assert (value, cached) == ("new", False)
        assert fetch.await_count == 2

    @pytest.mark.asyncio
    async def test_entry_just_before_ttl_is_still_served(self, cache, monotonic, point):
        """An entry younger than the TTL is a hit."""
        fetch = AsyncMock(return_value="snapshot")

        await cache.get_or_fetch(point, fetch)
        monotonic.advance(1199)
        _, cached = await cache.get_or_fetch(point, fetch)

        assert cached is True

    def test_overflow_evicts_oldest_insertion(self, monotonic):
        """Inserting capacity + 1 keys evicts the first one."""
        cache = QuickQueryCache(ttl_seconds=60, max_entries=3, clock=monotonic)
        for key in ("a", "b", "c", "d"):
            cache.put(key, key.upper())

        assert len(cache) == 3
        assert cache.get("a") is None
        assert [cache.get(k) for k in ("b", "c", "d")] == ["B", "C", "D"]

    def test_reads_do_not_refresh_position(self, monotonic):
        """Eviction follows insertion order, not access order."""
        cache = QuickQueryCache(ttl_seconds=60, max_entries=2, clock=monotonic)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.get("a")
        cache.put("c", 3)

        assert "a" not in cache
        assert "b" in cache

    def test_reinsert_moves_key_to_newest(self, monotonic):
        """Re-putting a key makes it the newest insertion."""
        cache = QuickQueryCache(ttl_seconds=60, max_entries=2, clock=monotonic)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.put("a", 10)
        cache.put("c", 3)

        assert cache.get("a") == 10
        assert "b" not in cache

    @pytest.mark.asyncio
    async def test_disabled_cache_always_fetches(self, monotonic, point):
        """With the cache disabled every call re-fetches."""
        cache = QuickQueryCache(ttl_seconds=60, max_entries=10, enabled=False, clock=monotonic)
        fetch = AsyncMock(return_value="snapshot")

        await cache.get_or_fetch(point, fetch)
        _, cached = await cache.get_or_fetch(point, fetch)

        assert cached is False
        assert fetch.await_count == 2
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_non_cacheable_values_are_not_stored(self, cache, point):
        """Values rejected by ``cacheable`` are returned but not stored."""
        fetch = AsyncMock(return_value="synthetic")

        await cache.get_or_fetch(point, fetch, cacheable=lambda v: False)
        _, cached = await cache.get_or_fetch(point, fetch, cacheable=lambda v: False)

        assert cached is False
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_failed_fetch_stores_nothing(self, cache, point):
        """A raising fetch leaves the cache untouched."""
        fetch = AsyncMock(side_effect=RuntimeError("boom"))

        with pytest.raises(RuntimeError):
            await cache.get_or_fetch(point, fetch)

        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_cancelled_fetch_stores_nothing(self, cache, point):
        """A cancelled fetch leaves the cache untouched."""
        started = asyncio.Event()

        async def slow_fetch():
            started.set()
            await asyncio.sleep(10)
            return "late"

        task = asyncio.create_task(cache.get_or_fetch(point, slow_fetch))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert len(cache) == 0

    def test_rejects_zero_capacity(self):
        """A cache must hold at least one entry."""
        with pytest.raises(ValueError):
            QuickQueryCache(ttl_seconds=60, max_entries=0)
