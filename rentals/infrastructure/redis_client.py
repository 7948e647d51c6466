"""Shared Redis connection used by the cache and the rate limiter."""
import redis.asyncio as aioredis

from rentals.config import get_settings

_redis: aioredis.Redis | None = None


def get_redis() -> aioredis.Redis:
    """
    Get or create the process-wide Redis client.

    The client holds a connection pool and connects lazily on first command.

    Returns:
        aioredis.Redis: Client decoding responses to str
    """
    global _redis
    if _redis is None:
        _redis = aioredis.from_url(
            get_settings().redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
    return _redis


async def close_redis() -> None:
    """Close the shared client and its pool."""
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None
