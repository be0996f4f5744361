"""
Health check endpoints for Kubernetes readiness/liveness probes.

Checks:
- Database connectivity
"""
from typing import Any, Dict

import structlog
from sqlalchemy import text

from arena_platform.config import get_settings
from arena_platform.database.connection import get_session_factory

logger = structlog.get_logger(__name__)


class HealthCheckError(Exception):
    """Raised when health check fails."""

    pass


class HealthCheck:
    """
    Health check service for monitoring system dependencies.

    Provides:
    - Database connectivity check
    - Overall system health status

    The payment gateway is not probed.
    """

    def __init__(self) -> None:
        """Initialize health check service."""
        self.settings = get_settings()

    async def check_database(self) -> Dict[str, Any]:
        """
        Check database connectivity.

        Returns:
            Dict[str, Any]: Database health status

        Raises:
            HealthCheckError: If database check fails
        """
        try:
            session_factory = get_session_factory()
            async with session_factory() as db:
                result = await db.execute(text("SELECT 1"))
                result.scalar()

                return {
                    "status": "healthy",
                    "service": "database",
                    "message": "Database connection successful",
                }

        except Exception as e:
            logger.error("database_health_check_failed", error=str(e))
            raise HealthCheckError(f"Database health check failed: {str(e)}")

    async def check_all(self) -> Dict[str, Any]:
        """
        Run every dependency check.

        Returns:
            Dict[str, Any]: Overall status plus per-service results
        """
        checks: Dict[str, Any] = {}
        healthy = True

        try:
            checks["database"] = await self.check_database()
        except HealthCheckError as e:
            healthy = False
            checks["database"] = {"status": "unhealthy", "error": str(e)}

        return {
            "status": "healthy" if healthy else "unhealthy",
            "checks": checks,
        }

    async def liveness(self) -> Dict[str, Any]:
        """Liveness only proves the process is serving requests."""
        return {"status": "healthy", "message": "Service is alive"}

    async def readiness(self) -> Dict[str, Any]:
        """Readiness requires the database."""
        return await self.check_all()
