"""
Redis cache-aside layer.

Reads check Redis first and fall back to the source of truth on a miss.
Writes happen in a background task so the response never waits on Redis,
and TTLs are jittered to spread out expiry of entries cached together.
Cache failures are never surfaced to callers: reads degrade to misses and
writes/deletes are logged.
"""
import asyncio
import json
import random
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set, TypeVar

import redis.asyncio as aioredis
import structlog

from rentals.config import get_settings
from rentals.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

T = TypeVar("T")

SCAN_COUNT = 100


class CacheNamespace(str, Enum):
    VEHICLES = "vehicles"
    BOOKINGS = "bookings"
    CUSTOMERS = "customers"
    CONFIG = "config"
    STATS = "stats"


def ttl_with_jitter(base_ttl: int, jitter: float = 0.1) -> int:
    """
    Randomize a TTL by up to ±jitter of its value.

    Args:
        base_ttl: TTL in seconds
        jitter: Fraction of base_ttl, e.g. 0.1 for ±10%

    Returns:
        int: TTL in [floor(base*(1-jitter)), floor(base*(1+jitter))], at least 1
    """
    spread = base_ttl * jitter
    return max(1, int(base_ttl + random.uniform(-spread, spread)))


def generate_cache_key(base: str, params: Optional[Dict[str, Any]] = None) -> str:
    """
    Build a key from a base name and query parameters.

    None values are dropped and keys sorted, so the same query with
    differently ordered parameters maps to one entry.

    Example:
        generate_cache_key("vehicles:list", {"limit": 6, "category": "suv"})
        -> 'vehicles:list:category="suv":limit=6'
    """
    if not params:
        return base
    parts = [
        f"{name}={json.dumps(params[name], sort_keys=True, default=str)}"
        for name in sorted(params)
        if params[name] is not None
    ]
    return f"{base}:{':'.join(parts)}" if parts else base


class CacheAside:
    """
    Cache-aside access to Redis with prefixed keys.

    Example:
        cache = CacheAside(get_redis())
        vehicles = await cache.get_or_set(
            generate_cache_key("vehicles:list", {"limit": 6}),
            load_vehicles,
            ttl=300,
        )
    """

    def __init__(
        self,
        redis_client: aioredis.Redis,
        prefix: Optional[str] = None,
        default_ttl: Optional[int] = None,
        jitter: Optional[float] = None,
    ):
        settings = get_settings()
        self.redis = redis_client
        self.prefix = prefix if prefix is not None else settings.cache_prefix
        self.default_ttl = default_ttl or settings.cache_default_ttl
        self.jitter = settings.cache_ttl_jitter if jitter is None else jitter
        self._pending_writes: Set[asyncio.Task[bool]] = set()

    def full_key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None on a miss, a Redis error or an unreadable entry."""
        full_key = self.full_key(key)
        try:
            raw = await self.redis.get(full_key)
        except Exception as e:
            metrics.record_cache_lookup("error")
            logger.warning("cache_get_failed", key=full_key, error=str(e))
            return None

        if raw is None:
            metrics.record_cache_lookup("miss")
            return None
        try:
            value = json.loads(raw)
        except ValueError as e:
            metrics.record_cache_lookup("error")
            logger.warning("cache_value_corrupt", key=full_key, error=str(e))
            return None
        metrics.record_cache_lookup("hit")
        return value

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Store a JSON-serializable value with a jittered TTL."""
        full_key = self.full_key(key)
        effective_ttl = ttl_with_jitter(int(ttl or self.default_ttl), self.jitter)
        try:
            await self.redis.set(full_key, json.dumps(value, default=str), ex=effective_ttl)
        except Exception as e:
            logger.warning("cache_set_failed", key=full_key, error=str(e))
            return False
        logger.debug("cache_set", key=full_key, ttl=effective_ttl)
        return True

    async def get_or_set(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[T]],
        ttl: Optional[int] = None,
    ) -> T:
        """
        Return the cached value or fetch it and cache it in the background.

        Fetcher exceptions propagate; nothing is cached in that case.
        """
        cached = await self.get(key)
        if cached is not None:
            return cached

        value = await fetcher()
        if value is not None:
            task = asyncio.create_task(self.set(key, value, ttl))
            self._pending_writes.add(task)
            task.add_done_callback(self._pending_writes.discard)
        return value

    async def drain(self) -> None:
        """Wait for background writes still in flight."""
        if self._pending_writes:
            await asyncio.gather(*self._pending_writes, return_exceptions=True)

    async def delete(self, key: str) -> bool:
        full_key = self.full_key(key)
        try:
            await self.redis.delete(full_key)
        except Exception as e:
            logger.warning("cache_delete_failed", key=full_key, error=str(e))
            return False
        logger.debug("cache_deleted", key=full_key)
        return True

    async def delete_pattern(self, pattern: str) -> int:
        """
        Delete every key under the prefix matching a glob pattern.

        Walks the keyspace with SCAN so Redis is never blocked by KEYS.

        Returns:
            int: Number of keys deleted
        """
        full_pattern = self.full_key(pattern)
        cursor = 0
        deleted = 0
        try:
            while True:
                cursor, keys = await self.redis.scan(
                    cursor=cursor, match=full_pattern, count=SCAN_COUNT
                )
                if keys:
                    deleted += await self.redis.delete(*keys)
                if cursor == 0:
                    break
        except Exception as e:
            logger.warning("cache_delete_pattern_failed", pattern=full_pattern, error=str(e))
            return deleted

        logger.info("cache_pattern_deleted", pattern=full_pattern, deleted=deleted)
        return deleted

    async def invalidate_target(self, target: str) -> None:
        """
        Invalidate a logical domain, or an exact key for unknown targets.

        Targets: vehicles, bookings, config, delivery-locations, customers, all.
        """
        dashboard = f"{CacheNamespace.STATS.value}:dashboard"
        match target:
            case "vehicles":
                await self.delete_pattern(f"{CacheNamespace.VEHICLES.value}:*")
                await self.delete(dashboard)
            case "bookings":
                await self.delete_pattern(f"{CacheNamespace.BOOKINGS.value}:*")
                await self.delete(dashboard)
            case "config":
                await self.delete_pattern(f"{CacheNamespace.CONFIG.value}:*")
            case "delivery-locations":
                await self.delete_pattern(f"{CacheNamespace.CONFIG.value}:delivery-locations:*")
            case "customers":
                await self.delete_pattern(f"{CacheNamespace.CUSTOMERS.value}:*")
                await self.delete(dashboard)
            case "all":
                await self.delete_pattern("*")
            case _:
                await self.delete(target)
        logger.info("cache_target_invalidated", target=target)

    async def invalidate_vehicle_caches(self, vehicle_id: Optional[str] = None) -> None:
        """Drop a vehicle's detail entry and every vehicle list."""
        if vehicle_id:
            await self.delete(f"{CacheNamespace.VEHICLES.value}:{vehicle_id}")
        await self.delete_pattern(f"{CacheNamespace.VEHICLES.value}:list:*")
        await self.delete_pattern(f"{CacheNamespace.STATS.value}:vehicles:*")

    async def invalidate_booking_caches(self, booking_id: Optional[str] = None) -> None:
        """Drop a booking's detail entry, booking lists and dashboard stats."""
        if booking_id:
            await self.delete(f"{CacheNamespace.BOOKINGS.value}:{booking_id}")
        await self.delete_pattern(f"{CacheNamespace.BOOKINGS.value}:list:*")
        await self.delete_pattern(f"{CacheNamespace.STATS.value}:bookings:*")
        await self.delete_pattern(f"{CacheNamespace.STATS.value}:dashboard*")
