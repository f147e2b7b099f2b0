"""Read-only migration status per tenant schema.

Each schema is queried on its own connection and any failure is recorded on
that schema's status, so a fleet report degrades per tenant instead of
failing as a whole.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine

from src.tenancy.migrations.history import read_applied_migrations
from src.tenancy.migrations.script import MigrationSource

logger = structlog.get_logger(__name__)


@dataclass
class TenantMigrationStatus:
    schema_name: str
    applied: list[str] = field(default_factory=list)
    pending: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def is_up_to_date(self) -> bool:
        return self.error is None and not self.pending


class MigrationTracker:
    """Compare each schema's history table with the known migrations."""

    def __init__(self, engine: AsyncEngine, source: MigrationSource) -> None:
        self.engine = engine
        self.source = source

    async def get_status(self, schema_name: str) -> TenantMigrationStatus:
        known = self.source.migration_ids()
        try:
            async with self.engine.connect() as conn:
                applied = await read_applied_migrations(conn, schema_name, self.source.history_table)
        except Exception as exc:
            logger.warning("migration_status_failed", schema=schema_name, error=str(exc))
            return TenantMigrationStatus(schema_name=schema_name, pending=known, error=str(exc))

        done = set(applied)
        return TenantMigrationStatus(
            schema_name=schema_name,
            applied=applied,
            pending=[migration_id for migration_id in known if migration_id not in done],
        )

    async def get_migration_status(self, schema_names: Iterable[str]) -> dict[str, TenantMigrationStatus]:
        """Status for every schema in ``schema_names``, keyed by schema."""
        statuses = {}
        for schema_name in schema_names:
            statuses[schema_name] = await self.get_status(schema_name)
        return statuses
