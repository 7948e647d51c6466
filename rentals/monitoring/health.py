"""
Health checks for Kubernetes readiness/liveness probes.

Checks:
- Database connectivity
- Redis connectivity
- Stripe API reachability
"""
import asyncio
from typing import Any, Awaitable, Callable, Dict

import stripe
import structlog
from sqlalchemy import text

from rentals.config import get_settings
from rentals.database.connection import get_session_factory
from rentals.infrastructure.redis_client import get_redis

logger = structlog.get_logger(__name__)


class HealthCheckError(Exception):
    """Raised when health check fails."""

    pass


class HealthCheck:
    """Health check service for the database, Redis and Stripe."""

    def __init__(self) -> None:
        self.settings = get_settings()

    async def check_database(self) -> Dict[str, Any]:
        """
        Check database connectivity.

        Raises:
            HealthCheckError: If database check fails
        """
        try:
            async with get_session_factory()() as db:
                result = await db.execute(text("SELECT 1"))
                result.scalar()
        except Exception as e:
            logger.error("database_health_check_failed", error=str(e))
            raise HealthCheckError(f"Database health check failed: {e}") from e

        return {"status": "healthy", "service": "database"}

    async def check_redis(self) -> Dict[str, Any]:
        """
        Check Redis connectivity.

        Raises:
            HealthCheckError: If Redis check fails
        """
        try:
            await get_redis().ping()
        except Exception as e:
            logger.error("redis_health_check_failed", error=str(e))
            raise HealthCheckError(f"Redis health check failed: {e}") from e

        return {"status": "healthy", "service": "redis"}

    async def check_stripe(self) -> Dict[str, Any]:
        """
        Check Stripe API reachability with a minimal list call.

        Raises:
            HealthCheckError: If Stripe check fails
        """
        try:
            stripe.api_key = self.settings.stripe_secret_key
            await asyncio.get_running_loop().run_in_executor(
                None, lambda: stripe.terminal.Reader.list(limit=1)
            )
        except Exception as e:
            logger.error("stripe_health_check_failed", error=str(e))
            raise HealthCheckError(f"Stripe health check failed: {e}") from e

        return {
            "status": "healthy",
            "service": "stripe",
            "test_mode": self.settings.is_test_mode,
        }

    async def check_all(self) -> Dict[str, Any]:
        """Run all health checks and aggregate their status."""
        probes: Dict[str, Callable[[], Awaitable[Dict[str, Any]]]] = {
            "database": self.check_database,
            "redis": self.check_redis,
            "stripe": self.check_stripe,
        }
        checks: Dict[str, Any] = {}
        all_healthy = True

        for service, probe in probes.items():
            try:
                checks[service] = await probe()
            except HealthCheckError as e:
                checks[service] = {"status": "unhealthy", "service": service, "error": str(e)}
                all_healthy = False

        return {
            "status": "healthy" if all_healthy else "unhealthy",
            "checks": checks,
        }

    async def liveness(self) -> Dict[str, Any]:
        """Liveness probe. Does not check external dependencies."""
        return {"status": "alive"}

    async def readiness(self) -> Dict[str, Any]:
        """Readiness probe. Verifies all dependencies are available."""
        return await self.check_all()
