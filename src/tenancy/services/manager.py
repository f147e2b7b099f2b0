"""Tenant lifecycle orchestration.

Ties the strategy (schemas), the migration runner, the optional registry,
seeders and event publishing into the operations a management layer calls:
provision, delete, archive, restore, exists, list, migrate and status.

Registry ids are UUIDs. Tenant ids that already are UUIDs (or parse as
one) are used unchanged; any other id maps to a stable ``uuid5``.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.tenancy.config import Settings, get_settings
from src.tenancy.core.errors import TenantNotFoundError
from src.tenancy.core.tenant import TenantContext
from src.tenancy.events.publisher import TenantEventPublisher
from src.tenancy.events.schemas import (
    TenantArchived,
    TenantCreated,
    TenantDeleted,
    TenantEvent,
    TenantRestored,
)
from src.tenancy.migrations.runner import (
    FleetMigrationReport,
    MigrationResult,
    MigrationTarget,
    TenantMigrationRunner,
)
from src.tenancy.migrations.tracker import MigrationTracker, TenantMigrationStatus
from src.tenancy.registry.store import TenantRegistry
from src.tenancy.schemas.tenant import CreateTenantRequest, TenantStatus
from src.tenancy.services.seeding import TenantSeeder, run_seeders
from src.tenancy.services.strategy import SchemaPerTenantStrategy

logger = structlog.get_logger(__name__)

TENANT_ID_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "urn:tenancy:tenant")


def registry_id_for(tenant_id: Any) -> uuid.UUID:
    if isinstance(tenant_id, uuid.UUID):
        return tenant_id
    try:
        return uuid.UUID(str(tenant_id))
    except ValueError:
        return uuid.uuid5(TENANT_ID_NAMESPACE, str(tenant_id))


@dataclass(frozen=True)
class TenantInfo:
    """What the manager reports about a tenant."""

    tenant_id: Any
    schema_name: str
    status: TenantStatus | None = None
    slug: str | None = None


class TenantManager:
    """Full tenant lifecycle over one strategy, runner and optional registry."""

    def __init__(
        self,
        strategy: SchemaPerTenantStrategy,
        runner: TenantMigrationRunner,
        *,
        tracker: MigrationTracker | None = None,
        registry: TenantRegistry | None = None,
        publisher: TenantEventPublisher | None = None,
        seeders: Sequence[TenantSeeder] = (),
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        self.strategy = strategy
        self.runner = runner
        self.tracker = tracker or MigrationTracker(runner.engine, runner.source)
        self.registry = registry
        self.publisher = publisher
        self.seeders = list(seeders)
        self.session_factory = session_factory or async_sessionmaker(runner.engine, expire_on_commit=False)

    async def _publish(self, event: TenantEvent) -> None:
        if self.publisher is not None:
            await self.publisher.publish(event)

    # ── Provisioning ────────────────────────────────────────────────────

    async def provision_tenant(
        self, tenant_id: Any, request: CreateTenantRequest | None = None
    ) -> TenantInfo:
        """Create the schema, migrate it, seed it and register it as active.

        With a registry the record is created first, as ``PENDING``, so a
        duplicate id, slug or schema fails before any DDL runs. Any later
        failure removes the record and the schema created here, then
        re-raises.

        Raises:
            TenantAlreadyExistsError: schema or registry record already exists.
        """
        schema_name = self.strategy.schema_name_for(tenant_id)
        log = logger.bind(tenant_id=str(tenant_id), schema=schema_name)
        registry_id = registry_id_for(tenant_id)
        slug = request.slug if request else str(tenant_id)

        if self.registry is not None:
            request = (request or CreateTenantRequest(slug=slug, schema_name=schema_name)).model_copy(
                update={"schema_name": schema_name}
            )
            await self.registry.create_tenant(registry_id, request)

        schema_created = False
        try:
            await self.strategy.provision(tenant_id)
            schema_created = True
            await self.runner.migrate_tenant(tenant_id, schema_name)
            context = TenantContext(tenant_id=tenant_id, schema_name=schema_name, tenant_slug=slug)
            await run_seeders(self.seeders, self.session_factory, context)
            if self.registry is not None:
                await self.registry.update_status(registry_id, TenantStatus.ACTIVE)
        except BaseException:
            log.error("tenant_provision_failed")
            await self._rollback_provision(registry_id, schema_name, schema_created)
            raise

        log.info("tenant_provisioned")
        await self._publish(TenantCreated(tenant_id=str(tenant_id), schema_name=schema_name))
        return TenantInfo(tenant_id, schema_name, TenantStatus.ACTIVE, slug)

    async def _rollback_provision(self, registry_id: uuid.UUID, schema_name: str, schema_created: bool) -> None:
        if schema_created:
            try:
                await self.strategy.schema_manager.drop_schema(schema_name, cascade=True)
            except Exception:
                logger.warning("tenant_provision_rollback_failed", schema=schema_name, step="drop_schema")
        if self.registry is not None:
            try:
                await self.registry.delete_tenant(registry_id)
            except Exception:
                logger.warning("tenant_provision_rollback_failed", schema=schema_name, step="registry")

    # ── Removal ─────────────────────────────────────────────────────────

    async def delete_tenant(self, tenant_id: Any, *, hard: bool = False) -> None:
        """Hard: drop the schema and the record. Soft: flag the record for deletion.

        Without a registry there is no status to flip, so a soft delete
        moves the schema aside under a timestamped archive name instead.
        """
        registry_id = registry_id_for(tenant_id)
        if hard:
            try:
                await self.strategy.delete(tenant_id, hard=True)
            except TenantNotFoundError:
                # Schema already gone; the record alone is still removable.
                if self.registry is None or not await self.registry.delete_tenant(registry_id):
                    raise
                logger.warning("tenant_schema_missing", tenant_id=str(tenant_id))
            else:
                await self._delete_record(registry_id, tenant_id)
        elif self.registry is not None:
            if await self.registry.get_tenant(registry_id) is None:
                raise TenantNotFoundError(tenant_id)
            await self.registry.update_status(registry_id, TenantStatus.FLAGGED_FOR_DELETE)
        else:
            await self.strategy.delete(tenant_id, hard=False)

        logger.info("tenant_deleted", tenant_id=str(tenant_id), hard_delete=hard)
        await self._publish(TenantDeleted(tenant_id=str(tenant_id), hard_delete=hard))

    async def _delete_record(self, registry_id: uuid.UUID, tenant_id: Any) -> None:
        if self.registry is None:
            return
        try:
            await self.registry.delete_tenant(registry_id)
        except Exception:
            logger.warning("tenant_registry_delete_failed", tenant_id=str(tenant_id), exc_info=True)

    async def archive_tenant(self, tenant_id: Any) -> str:
        archived = await self.strategy.archive(tenant_id)
        await self._publish(TenantArchived(tenant_id=str(tenant_id), archived_schema=archived))
        return archived

    async def restore_tenant(self, tenant_id: Any) -> str:
        schema_name = await self.strategy.restore(tenant_id)
        await self._publish(TenantRestored(tenant_id=str(tenant_id), schema_name=schema_name))
        return schema_name

    # ── Queries ─────────────────────────────────────────────────────────

    async def tenant_exists(self, tenant_id: Any) -> bool:
        return await self.strategy.exists(tenant_id)

    async def list_tenants(self, statuses: Iterable[TenantStatus] | None = None) -> list[TenantInfo]:
        """Registered tenants (optionally by status), else discovered schemas."""
        if self.registry is not None:
            records = await self.registry.get_tenants(statuses)
            return [
                TenantInfo(
                    self.strategy.tenant_id_for_record(record), record.schema_name, record.status, record.slug
                )
                for record in records
            ]
        return [
            TenantInfo(tenant_id, self.strategy.schema_name_for(tenant_id))
            for tenant_id in await self.strategy.enumerate()
        ]

    # ── Migrations ──────────────────────────────────────────────────────

    async def migrate_tenant(self, tenant_id: Any) -> MigrationResult:
        if not await self.strategy.exists(tenant_id):
            raise TenantNotFoundError(tenant_id)
        return await self.runner.migrate_tenant(tenant_id)

    async def migrate_all_tenants(self) -> FleetMigrationReport:
        return await self.runner.migrate_all_tenants()

    async def get_migration_status(
        self, tenant_ids: Iterable[Any] | None = None
    ) -> dict[Any, TenantMigrationStatus]:
        """Applied/pending migrations per tenant; failures are reported per tenant."""
        if tenant_ids is None:
            targets = await self.runner.get_migratable_tenants()
        else:
            targets = [MigrationTarget(t, self.strategy.schema_name_for(t)) for t in tenant_ids]

        statuses = await self.tracker.get_migration_status([target.schema_name for target in targets])
        return {target.tenant_id: statuses[target.schema_name] for target in targets}


async def migrate_on_startup(manager: TenantManager, settings: Settings | None = None) -> FleetMigrationReport | None:
    """Apply pending migrations to every tenant when MIGRATE_ON_STARTUP is set."""
    settings = settings or get_settings()
    if not settings.MIGRATE_ON_STARTUP:
        return None
    logger.info("startup_migration_started")
    return await manager.migrate_all_tenants()
