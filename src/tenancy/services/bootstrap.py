"""Wire a TenantManager from settings."""

from __future__ import annotations

from collections.abc import Sequence

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from src.tenancy.config import Settings, get_settings
from src.tenancy.core.database import get_engine
from src.tenancy.core.security import FernetPasswordProtector, PasswordProtector
from src.tenancy.events.publisher import TenantEventPublisher
from src.tenancy.migrations.runner import MigrationOptions, TenantMigrationRunner
from src.tenancy.migrations.script import MigrationSource
from src.tenancy.migrations.tracker import MigrationTracker
from src.tenancy.registry.cache import CachedTenantRegistry
from src.tenancy.registry.store import SqlTenantRegistry, TenantRegistry
from src.tenancy.services.manager import TenantManager
from src.tenancy.services.schema_manager import SchemaManager
from src.tenancy.services.seeding import TenantSeeder
from src.tenancy.services.strategy import SchemaNamingOptions, SchemaPerTenantStrategy


def build_tenant_manager(
    *,
    engine: AsyncEngine | None = None,
    settings: Settings | None = None,
    use_registry: bool = False,
    redis: aioredis.Redis | None = None,
    protector: PasswordProtector | None = None,
    publisher: TenantEventPublisher | None = None,
    seeders: Sequence[TenantSeeder] = (),
) -> TenantManager:
    """Build the full object graph.

    With ``use_registry`` tenants are catalogued in the control schema; a
    ``redis`` client adds the caching decorator on top. A Fernet protector
    is created from CREDENTIAL_ENCRYPTION_KEY when one is configured.
    """
    settings = settings or get_settings()
    engine = engine or get_engine()
    sessions = async_sessionmaker(engine, expire_on_commit=False)

    registry: TenantRegistry | None = None
    if use_registry:
        if protector is None and settings.CREDENTIAL_ENCRYPTION_KEY:
            protector = FernetPasswordProtector(settings.CREDENTIAL_ENCRYPTION_KEY)
        registry = SqlTenantRegistry(sessions, protector=protector)
        if redis is not None:
            registry = CachedTenantRegistry(
                registry,
                redis,
                ttl=settings.REGISTRY_CACHE_TTL_SECONDS,
                prefix=settings.REGISTRY_CACHE_PREFIX,
            )

    strategy = SchemaPerTenantStrategy(SchemaManager(engine), SchemaNamingOptions.from_settings(settings))
    source = MigrationSource.from_settings(settings)
    runner = TenantMigrationRunner(
        engine,
        strategy,
        source,
        MigrationOptions.from_settings(settings),
        registry=registry,
        publisher=publisher,
    )
    return TenantManager(
        strategy,
        runner,
        tracker=MigrationTracker(engine, source),
        registry=registry,
        publisher=publisher,
        seeders=seeders,
        session_factory=sessions,
    )
