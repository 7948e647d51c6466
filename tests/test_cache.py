"""
Unit tests for the Redis cache-aside layer.
"""
import json
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from rentals.infrastructure.cache import CacheAside, generate_cache_key, ttl_with_jitter


@pytest.fixture
def redis_client() -> AsyncMock:
    client = AsyncMock()
    client.get.return_value = None
    client.set.return_value = True
    client.delete.return_value = 1
    return client


@pytest.fixture
def cache(redis_client: AsyncMock) -> CacheAside:
    return CacheAside(redis_client, prefix="test", default_ttl=300, jitter=0.1)


class TestTTLJitter:
    """TTL randomization."""

    @pytest.mark.unit
    def test_stays_within_bounds(self) -> None:
        for _ in range(500):
            ttl = ttl_with_jitter(300, 0.1)
            assert 270 <= ttl <= 330

    @pytest.mark.unit
    def test_varies_across_calls(self) -> None:
        ttls = {ttl_with_jitter(3600, 0.1) for _ in range(200)}
        assert len(ttls) > 1

    @pytest.mark.unit
    def test_zero_jitter_returns_base(self) -> None:
        assert ttl_with_jitter(60, 0.0) == 60

    @pytest.mark.unit
    def test_never_below_one_second(self) -> None:
        assert ttl_with_jitter(1, 0.9) >= 1


class TestCacheKeys:
    """Deterministic key construction."""

    @pytest.mark.unit
    def test_parameter_order_does_not_matter(self) -> None:
        a = generate_cache_key("vehicles:list", {"limit": 6, "category": "suv"})
        b = generate_cache_key("vehicles:list", {"category": "suv", "limit": 6})
        assert a == b == 'vehicles:list:category="suv":limit=6'

    @pytest.mark.unit
    def test_none_values_are_dropped(self) -> None:
        assert generate_cache_key("vehicles:list", {"limit": None}) == "vehicles:list"
        assert generate_cache_key("vehicles:list") == "vehicles:list"


class TestCacheAside:
    """Read-through behaviour and failure handling."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_hit_skips_fetcher(self, cache: CacheAside, redis_client: AsyncMock) -> None:
        redis_client.get.return_value = json.dumps([{"id": "v1"}])
        fetcher = AsyncMock()

        result = await cache.get_or_set("vehicles:list", fetcher)

        assert result == [{"id": "v1"}]
        fetcher.assert_not_awaited()
        redis_client.get.assert_awaited_once_with("test:vehicles:list")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_miss_fetches_and_writes_in_background(
        self, cache: CacheAside, redis_client: AsyncMock
    ) -> None:
        fetcher = AsyncMock(return_value={"id": "v1", "name": "Camry"})

        result = await cache.get_or_set("vehicles:v1", fetcher, ttl=100)
        await cache.drain()

        assert result == {"id": "v1", "name": "Camry"}
        fetcher.assert_awaited_once()
        args, kwargs = redis_client.set.call_args
        assert args[0] == "test:vehicles:v1"
        assert json.loads(args[1]) == {"id": "v1", "name": "Camry"}
        assert 90 <= kwargs["ex"] <= 110

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_read_error_counts_as_miss(
        self, cache: CacheAside, redis_client: AsyncMock
    ) -> None:
        redis_client.get.side_effect = RedisConnectionError("down")
        fetcher = AsyncMock(return_value=["fresh"])

        result = await cache.get_or_set("vehicles:list", fetcher)
        await cache.drain()

        assert result == ["fresh"]
        fetcher.assert_awaited_once()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unreadable_entry_counts_as_miss(
        self, cache: CacheAside, redis_client: AsyncMock
    ) -> None:
        redis_client.get.return_value = "{not json"
        fetcher = AsyncMock(return_value=["fresh"])

        result = await cache.get_or_set("vehicles:list", fetcher)
        await cache.drain()

        assert result == ["fresh"]
        fetcher.assert_awaited_once()
        assert redis_client.set.call_args.args[0] == "test:vehicles:list"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_write_error_is_not_raised(
        self, cache: CacheAside, redis_client: AsyncMock
    ) -> None:
        redis_client.set.side_effect = RedisConnectionError("down")

        assert await cache.set("config:rates", {"a": 1}) is False

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_fetcher_error_propagates_and_nothing_cached(
        self, cache: CacheAside, redis_client: AsyncMock
    ) -> None:
        fetcher = AsyncMock(side_effect=RuntimeError("db down"))

        with pytest.raises(RuntimeError):
            await cache.get_or_set("vehicles:list", fetcher)
        await cache.drain()

        redis_client.set.assert_not_called()


class TestInvalidation:
    """Pattern deletes and target mapping."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_delete_pattern_walks_every_scan_page(
        self, cache: CacheAside, redis_client: AsyncMock
    ) -> None:
        redis_client.scan.side_effect = [
            (17, ["test:vehicles:1", "test:vehicles:2"]),
            (0, ["test:vehicles:3"]),
        ]
        redis_client.delete.side_effect = [2, 1]

        deleted = await cache.delete_pattern("vehicles:*")

        assert deleted == 3
        first_call = redis_client.scan.call_args_list[0]
        assert first_call.kwargs == {"cursor": 0, "match": "test:vehicles:*", "count": 100}
        assert redis_client.scan.call_args_list[1].kwargs["cursor"] == 17

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_delivery_locations_target(
        self, cache: CacheAside, redis_client: AsyncMock
    ) -> None:
        redis_client.scan.return_value = (0, [])

        await cache.invalidate_target("delivery-locations")

        redis_client.scan.assert_awaited_once_with(
            cursor=0, match="test:config:delivery-locations:*", count=100
        )

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_target_deletes_exact_key(
        self, cache: CacheAside, redis_client: AsyncMock
    ) -> None:
        await cache.invalidate_target("custom:key")

        redis_client.delete.assert_awaited_once_with("test:custom:key")
        redis_client.scan.assert_not_called()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_vehicle_invalidation_drops_detail_and_lists(
        self, cache: CacheAside, redis_client: AsyncMock
    ) -> None:
        redis_client.scan.return_value = (0, [])

        await cache.invalidate_vehicle_caches("v1")

        redis_client.delete.assert_any_await("test:vehicles:v1")
        patterns = [call.kwargs["match"] for call in redis_client.scan.call_args_list]
        assert "test:vehicles:list:*" in patterns

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_scan_failure_is_swallowed(
        self, cache: CacheAside, redis_client: AsyncMock
    ) -> None:
        redis_client.scan.side_effect = RedisConnectionError("down")

        assert await cache.delete_pattern("bookings:*") == 0
