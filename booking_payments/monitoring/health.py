"""
Health checks for liveness/readiness probes.

Checks:
- Ledger store connectivity
- Redis connectivity (when the idempotency cache is configured)
"""
from typing import Any, Dict, Optional

import redis.asyncio as aioredis
import structlog

from booking_payments.database import LedgerStore

logger = structlog.get_logger(__name__)


class HealthCheckError(Exception):
    """Raised when health check fails."""

    pass


class HealthCheck:
    """Health check service for the service's dependencies."""

    def __init__(self, store: LedgerStore, redis_client: Optional[aioredis.Redis] = None):
        self.store = store
        self.redis_client = redis_client

    async def check_database(self) -> Dict[str, Any]:
        """
        Check ledger store connectivity.

        Raises:
            HealthCheckError: If database check fails
        """
        try:
            await self.store.ping()
            return {
                "status": "healthy",
                "service": "database",
                "message": "Database connection successful",
            }
        except Exception as e:
            logger.error("database_health_check_failed", error=str(e))
            raise HealthCheckError(f"Database health check failed: {str(e)}")

    async def check_redis(self) -> Dict[str, Any]:
        """
        Check Redis connectivity.

        Raises:
            HealthCheckError: If Redis check fails
        """
        if self.redis_client is None:
            return {
                "status": "healthy",
                "service": "redis",
                "message": "Redis not configured",
            }
        try:
            await self.redis_client.ping()
            return {
                "status": "healthy",
                "service": "redis",
                "message": "Redis connection successful",
            }
        except Exception as e:
            logger.error("redis_health_check_failed", error=str(e))
            raise HealthCheckError(f"Redis health check failed: {str(e)}")

    async def check_all(self) -> Dict[str, Any]:
        """Run all health checks."""
        checks: Dict[str, Any] = {}
        all_healthy = True

        for name, check in (("database", self.check_database), ("redis", self.check_redis)):
            try:
                checks[name] = await check()
            except HealthCheckError as e:
                checks[name] = {"status": "unhealthy", "service": name, "error": str(e)}
                all_healthy = False

        return {
            "status": "healthy" if all_healthy else "unhealthy",
            "checks": checks,
        }

    async def liveness(self) -> Dict[str, Any]:
        """
        Liveness probe.

        Does not check external dependencies.
        """
        return {
            "status": "alive",
            "message": "Application is running",
        }

    async def readiness(self) -> Dict[str, Any]:
        """Readiness probe: all dependencies must be reachable."""
        return await self.check_all()
