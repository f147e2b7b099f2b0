"""Tenant fleet health check.

- healthy: database reachable, every tenant up to date
- degraded: some tenant has pending migrations or its status query failed
- unhealthy: database unreachable
"""

from __future__ import annotations

from enum import Enum
from typing import Any

import structlog
from sqlalchemy import text

from src.tenancy.services.manager import TenantManager

logger = structlog.get_logger(__name__)


class HealthStatus(str, Enum):
    healthy = "healthy"
    degraded = "degraded"
    unhealthy = "unhealthy"


class TenantHealthCheck:
    def __init__(self, manager: TenantManager) -> None:
        self.manager = manager

    async def check(self) -> dict[str, Any]:
        checks: dict[str, Any] = {"status": HealthStatus.healthy.value, "database": "ok"}

        try:
            async with self.manager.runner.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except Exception as e:
            logger.error("tenant_health_database_unreachable", error=str(e))
            checks["status"] = HealthStatus.unhealthy.value
            checks["database"] = "error"
            checks["database_error"] = str(e)
            return checks

        try:
            statuses = await self.manager.get_migration_status()
        except Exception as e:
            logger.error("tenant_health_enumeration_failed", error=str(e))
            checks["status"] = HealthStatus.unhealthy.value
            checks["tenants"] = "error"
            checks["tenants_error"] = str(e)
            return checks

        behind = [str(t) for t, s in statuses.items() if s.pending and s.error is None]
        failed = [str(t) for t, s in statuses.items() if s.error is not None]

        checks["tenant_count"] = len(statuses)
        checks["pending_migrations"] = sum(len(s.pending) for s in statuses.values() if s.error is None)
        if behind:
            checks["tenants_behind"] = behind
        if failed:
            checks["tenants_failed"] = failed
        if behind or failed:
            checks["status"] = HealthStatus.degraded.value
        return checks
