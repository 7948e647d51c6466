"""
Sliding-window rate limiting backed by Redis sorted sets.

Each (limit class, identifier) pair owns one sorted set whose members are
request timestamps. Counters live only in Redis so every service instance
sees the same window. When Redis is unavailable the limiter fails open.
"""
import math
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, NamedTuple

import redis.asyncio as aioredis
import structlog

from rentals.config import get_settings
from rentals.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

MINUTE = 60
HOUR = 60 * MINUTE


class LimitClass(str, Enum):
    """Operation classes with their own limits."""

    BOOKING_CREATE = "booking_create"
    BOOKING_EXTEND = "booking_extend"
    # POS (workers)
    POS_TRANSACTION = "pos_transaction"
    VERIFICATION = "verification"


class RateLimit(NamedTuple):
    requests: int
    window_seconds: int


RATE_LIMITS: Dict[LimitClass, RateLimit] = {
    LimitClass.BOOKING_CREATE: RateLimit(10, HOUR),
    LimitClass.BOOKING_EXTEND: RateLimit(5, HOUR),
    LimitClass.POS_TRANSACTION: RateLimit(20, 15 * MINUTE),
    LimitClass.VERIFICATION: RateLimit(10, HOUR),
}


@dataclass
class RateLimitResult:
    """
    Outcome of one rate-limit check.

    `limited` is False when the backend could not be reached and the
    request was let through without counting.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_ms: int
    retry_after: int
    limited: bool = True

    @property
    def reset_at(self) -> str:
        return datetime.fromtimestamp(self.reset_ms / 1000, tz=timezone.utc).isoformat()

    def headers(self) -> Dict[str, str]:
        """X-RateLimit-* headers for the response."""
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": self.reset_at,
        }


def format_retry_time(seconds: int) -> str:
    if seconds < MINUTE:
        return f"{seconds} second{'s' if seconds != 1 else ''}"
    if seconds < HOUR:
        minutes = math.ceil(seconds / MINUTE)
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    hours = math.ceil(seconds / HOUR)
    return f"{hours} hour{'s' if hours != 1 else ''}"


class RateLimitExceededError(Exception):
    """Raised when a caller is over the limit for an operation class."""

    def __init__(self, result: RateLimitResult, message: str | None = None):
        self.result = result
        self.retry_after = result.retry_after
        self.limit = result.limit
        self.reset_at = result.reset_at
        self.message = message or (
            f"Too many requests. Please try again in {format_retry_time(result.retry_after)}."
        )
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, object]:
        return {
            "error": self.message,
            "code": "RATE_LIMITED",
            "retryAfter": self.retry_after,
            "limit": self.limit,
            "resetAt": self.reset_at,
        }

    def headers(self) -> Dict[str, str]:
        return {"Retry-After": str(self.retry_after), **self.result.headers()}


class SlidingWindowLimiter:
    """Sliding-window counter for a single limit class."""

    def __init__(self, redis_client: aioredis.Redis, limit_class: LimitClass, prefix: str):
        self.redis = redis_client
        self.limit_class = limit_class
        self.config = RATE_LIMITS[limit_class]
        self.prefix = f"{prefix}:ratelimit:{limit_class.value}"

    def key(self, identifier: str) -> str:
        return f"{self.prefix}:{identifier}"

    async def hit(self, identifier: str) -> RateLimitResult:
        """
        Count one request and decide whether it is allowed.

        Trimming, insertion, counting and expiry run in one MULTI/EXEC
        pipeline. A rejected request is removed again so it does not
        extend the block.

        Raises:
            redis.RedisError: If Redis is unreachable
        """
        key = self.key(identifier)
        window_ms = self.config.window_seconds * 1000
        now_ms = int(time.time() * 1000)
        member = f"{now_ms}:{uuid.uuid4().hex}"

        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.zremrangebyscore(key, 0, now_ms - window_ms)
            pipe.zadd(key, {member: now_ms})
            pipe.zcard(key)
            pipe.zrange(key, 0, 0, withscores=True)
            pipe.pexpire(key, window_ms)
            _, _, count, oldest, _ = await pipe.execute()

        oldest_ms = int(oldest[0][1]) if oldest else now_ms
        reset_ms = oldest_ms + window_ms
        allowed = count <= self.config.requests

        if not allowed:
            await self.redis.zrem(key, member)

        return RateLimitResult(
            allowed=allowed,
            limit=self.config.requests,
            remaining=max(0, self.config.requests - count),
            reset_ms=reset_ms,
            retry_after=0 if allowed else max(0, math.ceil((reset_ms - now_ms) / 1000)),
        )


class RateLimiter:
    """
    Entry point for rate-limit checks.

    Example:
        limiter = RateLimiter(get_redis())
        await limiter.enforce(LimitClass.BOOKING_CREATE, user_id)
    """

    def __init__(self, redis_client: aioredis.Redis, prefix: str | None = None):
        self.redis = redis_client
        self.prefix = prefix if prefix is not None else get_settings().cache_prefix
        self._limiters: Dict[LimitClass, SlidingWindowLimiter] = {}

    def _limiter(self, limit_class: LimitClass) -> SlidingWindowLimiter:
        limiter = self._limiters.get(limit_class)
        if limiter is None:
            limiter = SlidingWindowLimiter(self.redis, limit_class, self.prefix)
            self._limiters[limit_class] = limiter
        return limiter

    async def check(self, limit_class: LimitClass, identifier: str) -> RateLimitResult:
        """
        Count a request against the limit. Never raises.

        Returns:
            RateLimitResult: allowed=True with limited=False if Redis failed
        """
        try:
            result = await self._limiter(limit_class).hit(identifier)
        except Exception as e:
            metrics.record_rate_limit(limit_class.value, "fail_open")
            logger.error("rate_limit_check_failed", limit_class=limit_class.value, error=str(e))
            return RateLimitResult(
                allowed=True, limit=0, remaining=0, reset_ms=0, retry_after=0, limited=False
            )

        metrics.record_rate_limit(limit_class.value, "allowed" if result.allowed else "limited")
        logger.debug(
            "rate_limit_checked",
            limit_class=limit_class.value,
            identifier=identifier[:8],
            allowed=result.allowed,
            remaining=result.remaining,
        )
        return result

    async def enforce(self, limit_class: LimitClass, identifier: str) -> RateLimitResult:
        """
        Check the limit and raise when exceeded.

        Raises:
            RateLimitExceededError: If the caller is over the limit
        """
        result = await self.check(limit_class, identifier)
        if not result.allowed:
            logger.warning(
                "rate_limit_exceeded",
                limit_class=limit_class.value,
                identifier=identifier[:8],
                retry_after=result.retry_after,
            )
            raise RateLimitExceededError(result)
        return result
