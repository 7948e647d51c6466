"""Redis-backed infrastructure: cache-aside and rate limiting."""
from .cache import CacheAside, generate_cache_key, ttl_with_jitter
from .rate_limiter import LimitClass, RateLimiter, RateLimitExceededError, RateLimitResult
from .redis_client import close_redis, get_redis

__all__ = [
    "CacheAside",
    "LimitClass",
    "RateLimitExceededError",
    "RateLimitResult",
    "RateLimiter",
    "close_redis",
    "generate_cache_key",
    "get_redis",
    "ttl_with_jitter",
]
