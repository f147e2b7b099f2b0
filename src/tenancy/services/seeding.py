"""Initial data for freshly provisioned tenants."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.tenancy.core.tenant import TenantContext, tenant_scope

logger = structlog.get_logger(__name__)


class TenantSeeder(Protocol):
    """Writes initial rows into a new tenant's schema.

    Seeders run in ascending ``order`` inside one session; the session is
    committed once after the last seeder.
    """

    order: int

    async def seed(self, session: AsyncSession, context: TenantContext) -> None: ...


async def run_seeders(
    seeders: Iterable[TenantSeeder],
    session_factory: async_sessionmaker[AsyncSession],
    context: TenantContext,
) -> int:
    """Run ``seeders`` against the tenant in ``context``. Returns how many ran."""
    ordered = sorted(seeders, key=lambda seeder: seeder.order)
    if not ordered:
        return 0

    with tenant_scope(context):
        async with session_factory() as session:
            for seeder in ordered:
                await seeder.seed(session, context)
                logger.debug(
                    "tenant_seeder_ran",
                    tenant_id=str(context.tenant_id),
                    seeder=type(seeder).__name__,
                )
            await session.commit()
    return len(ordered)
