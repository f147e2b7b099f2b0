"""Per-tenant and fleet-wide migration execution.

One tenant migration attempt runs on a single AUTOCOMMIT connection:

1. take a session advisory lock keyed by the schema name;
2. create the schema and its history table (qualified, idempotent);
3. read the applied ids from ``"<schema>"."<history>"`` and compute the
   pending set in declared order;
4. render the generic script for the pending migrations, rewrite it for the
   schema and verify its shape;
5. execute it as one batch on the driver connection.

Attempts are bounded by a wall-clock timeout and retried with a fixed delay
when retry is enabled. Fleet runs bound concurrency with a semaphore and
apply the configured failure behavior.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)

from src.tenancy.config import FailureBehavior, Settings, get_settings
from src.tenancy.core.errors import (
    FleetMigrationError,
    InvalidIdentifierError,
    MigrationError,
    MigrationScriptFormatError,
    MigrationTimeoutError,
)
from src.tenancy.core.routing import SchemaRouter
from src.tenancy.core.tenant import TenantContext, tenant_scope
from src.tenancy.events.publisher import TenantEventPublisher
from src.tenancy.events.schemas import MigrationApplied
from src.tenancy.migrations.history import history_table_ddl, read_applied_migrations
from src.tenancy.migrations.rewriter import rewrite_for_schema, verify_rewritten
from src.tenancy.migrations.script import MigrationSource
from src.tenancy.registry.store import TenantRegistry
from src.tenancy.schemas.tenant import TenantStatus
from src.tenancy.services.strategy import SchemaPerTenantStrategy

logger = structlog.get_logger(__name__)

LOCK_NAMESPACE = "tenancy.migrate:"


@dataclass(frozen=True)
class MigrationOptions:
    """Execution policy for tenant migrations."""

    parallelism: int = 1
    failure_behavior: FailureBehavior = FailureBehavior.stop_all
    timeout: float = 300.0
    retry_enabled: bool = False
    retry_count: int = 3
    retry_delay: float = 5.0
    use_lock: bool = True
    default_schema: str = "public"
    migratable_statuses: tuple[TenantStatus, ...] = (TenantStatus.PENDING, TenantStatus.ACTIVE)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> MigrationOptions:
        settings = settings or get_settings()
        return cls(
            parallelism=settings.MIGRATION_PARALLELISM,
            failure_behavior=settings.MIGRATION_FAILURE_BEHAVIOR,
            timeout=settings.MIGRATION_TIMEOUT_SECONDS,
            retry_enabled=settings.MIGRATION_RETRY_ENABLED,
            retry_count=settings.MIGRATION_RETRY_COUNT,
            retry_delay=settings.MIGRATION_RETRY_DELAY_SECONDS,
            use_lock=settings.MIGRATION_LOCK_ENABLED,
            default_schema=settings.DEFAULT_SCHEMA,
            migratable_statuses=tuple(TenantStatus.parse(s) for s in settings.MIGRATABLE_STATUSES),
        )

    @property
    def max_attempts(self) -> int:
        return self.retry_count + 1 if self.retry_enabled else 1


@dataclass(frozen=True)
class MigrationTarget:
    """A tenant and the schema its migrations run in."""

    tenant_id: Any
    schema_name: str


@dataclass
class MigrationResult:
    tenant_id: Any
    schema_name: str
    applied: list[str] = field(default_factory=list)
    attempts: int = 1


@dataclass
class FleetMigrationReport:
    """Outcome of ``migrate_all_tenants``; failures only populated under skip."""

    results: dict[Any, MigrationResult] = field(default_factory=dict)
    failures: dict[Any, BaseException] = field(default_factory=dict)

    @property
    def succeeded(self) -> list[Any]:
        return list(self.results)


def is_retriable(exc: BaseException) -> bool:
    """Validation and script-shape failures are permanent; other errors are retried.

    Cancellation is never retried.
    """
    return isinstance(exc, Exception) and not isinstance(exc, (InvalidIdentifierError, MigrationScriptFormatError))


class TenantMigrationRunner:
    """Apply pending migrations to tenant schemas.

    Args:
        engine: Engine with the schema router installed.
        strategy: Maps tenant ids to schema names and discovers tenants.
        source: Known migrations and the history table for this group.
        options: Retry, timeout, concurrency and failure policy.
        registry: When given, fleet runs enumerate tenants from it.
        publisher: Receives one MigrationApplied event per applied migration.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        strategy: SchemaPerTenantStrategy,
        source: MigrationSource,
        options: MigrationOptions | None = None,
        *,
        registry: TenantRegistry | None = None,
        publisher: TenantEventPublisher | None = None,
    ) -> None:
        self.engine = engine
        self.strategy = strategy
        self.source = source
        self.options = options or MigrationOptions.from_settings()
        self.registry = registry
        self.publisher = publisher

    # ── Single tenant ───────────────────────────────────────────────────

    async def migrate_tenant(self, tenant_id: Any, schema_name: str | None = None) -> MigrationResult:
        """Bring one tenant schema up to date.

        Raises:
            InvalidIdentifierError: the schema name is not a safe identifier.
            MigrationError: the last attempt failed; the cause is chained.
        """
        schema_name = schema_name or self.strategy.schema_name_for(tenant_id)
        target = MigrationTarget(tenant_id=tenant_id, schema_name=schema_name)
        log = logger.bind(tenant_id=str(tenant_id), schema=schema_name)

        with tenant_scope(TenantContext(tenant_id=tenant_id, schema_name=schema_name)):
            applied, attempts = await self._run_with_retry(target)

        if applied:
            log.info("tenant_migrated", applied=applied, attempts=attempts)
        else:
            log.debug("tenant_up_to_date")

        if self.publisher is not None:
            for migration_id in applied:
                await self.publisher.publish(
                    MigrationApplied(
                        tenant_id=str(tenant_id),
                        schema_name=schema_name,
                        migration_id=migration_id,
                    )
                )
        return MigrationResult(tenant_id, schema_name, applied, attempts)

    async def _run_with_retry(self, target: MigrationTarget) -> tuple[list[str], int]:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.options.max_attempts),
            wait=wait_fixed(self.options.retry_delay),
            retry=retry_if_exception(is_retriable),
            before_sleep=self._log_retry,
            reraise=True,
        )
        applied: list[str] = []
        attempts = 0
        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    applied = await self._attempt(target)
        except (InvalidIdentifierError, MigrationError):
            raise
        except Exception as exc:
            raise MigrationError(
                f"Migration of {target.schema_name} failed after {attempts} attempt(s): {exc}",
                tenant_id=target.tenant_id,
                schema_name=target.schema_name,
            ) from exc
        return applied, attempts

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "tenant_migration_retry",
            attempt=retry_state.attempt_number,
            error=str(exc),
        )

    async def _attempt(self, target: MigrationTarget) -> list[str]:
        try:
            return await asyncio.wait_for(self._apply_pending(target), timeout=self.options.timeout)
        except asyncio.TimeoutError as exc:
            raise MigrationTimeoutError(
                f"Migration of {target.schema_name} exceeded {self.options.timeout}s",
                tenant_id=target.tenant_id,
                schema_name=target.schema_name,
            ) from exc

    async def _apply_pending(self, target: MigrationTarget) -> list[str]:
        """One attempt: lock, compute pending, rewrite, execute."""
        schema_name = target.schema_name
        history_table = self.source.history_table

        async with self.engine.connect() as conn:
            conn = await conn.execution_options(isolation_level="AUTOCOMMIT")
            try:
                if self.options.use_lock:
                    await self._lock(conn, schema_name)

                await self.strategy.schema_manager.create_schema(schema_name, connection=conn)
                await conn.execute(text(history_table_ddl(history_table, schema_name)))

                applied = await read_applied_migrations(conn, schema_name, history_table)
                pending = self.source.pending(applied)
                if not pending:
                    if self.options.use_lock:
                        await self._unlock(conn, schema_name)
                    return []

                pending_ids = [migration.id for migration in pending]
                script = rewrite_for_schema(
                    self.source.generate_script(pending),
                    schema_name,
                    history_table,
                    self.options.default_schema,
                )
                verify_rewritten(script, schema_name, history_table, pending_ids)
                await self._execute_script(conn, script)

                if self.options.use_lock:
                    await self._unlock(conn, schema_name)
                return pending_ids
            except BaseException:
                # Closing the connection releases the advisory lock and any
                # half-applied transaction.
                await conn.invalidate()
                raise

    async def _lock(self, conn: AsyncConnection, schema_name: str) -> None:
        await conn.execute(
            text("SELECT pg_advisory_lock(hashtext(:key))"), {"key": LOCK_NAMESPACE + schema_name}
        )

    async def _unlock(self, conn: AsyncConnection, schema_name: str) -> None:
        await conn.execute(
            text("SELECT pg_advisory_unlock(hashtext(:key))"), {"key": LOCK_NAMESPACE + schema_name}
        )

    async def _execute_script(self, conn: AsyncConnection, script: str) -> None:
        raw = await conn.get_raw_connection()
        await raw.driver_connection.execute(script)
        router = SchemaRouter.for_engine(self.engine)
        if router is not None:
            router.forget(raw.dbapi_connection)

    # ── Fleet ───────────────────────────────────────────────────────────

    async def get_migratable_tenants(self) -> list[MigrationTarget]:
        """Registry tenants in a migratable status, else every discovered schema."""
        if self.registry is not None:
            records = await self.registry.get_tenants(self.options.migratable_statuses)
            return [
                MigrationTarget(self.strategy.tenant_id_for_record(record), record.schema_name) for record in records
            ]

        targets = []
        for schema_name in await self.strategy.schema_manager.list_schemas(self.strategy.options.prefix):
            tenant_id = self.strategy.tenant_id_for(schema_name)
            if tenant_id is not None:
                targets.append(MigrationTarget(tenant_id, schema_name))
        return targets

    async def migrate_all_tenants(self) -> FleetMigrationReport:
        """Migrate every migratable tenant under the configured policy.

        Raises:
            MigrationError: first failure, under ``stop_all``.
            FleetMigrationError: every failure, under ``continue_others``.
        """
        targets = await self.get_migratable_tenants()
        behavior = self.options.failure_behavior
        semaphore = asyncio.Semaphore(max(1, self.options.parallelism))
        report = FleetMigrationReport()
        aborted = asyncio.Event()

        logger.info(
            "fleet_migration_started",
            tenants=len(targets),
            parallelism=self.options.parallelism,
            failure_behavior=behavior.value,
        )

        async def run(target: MigrationTarget) -> None:
            async with semaphore:
                if aborted.is_set():
                    return
                try:
                    report.results[target.tenant_id] = await self.migrate_tenant(
                        target.tenant_id, target.schema_name
                    )
                except Exception as exc:
                    if behavior == FailureBehavior.stop_all:
                        aborted.set()
                        raise
                    report.failures[target.tenant_id] = exc
                    logger.warning(
                        "tenant_migration_failed",
                        tenant_id=str(target.tenant_id),
                        schema=target.schema_name,
                        error=str(exc),
                    )

        tasks = [asyncio.create_task(run(target)) for target in targets]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        logger.info(
            "fleet_migration_finished",
            succeeded=len(report.results),
            failed=len(report.failures),
        )
        if report.failures and behavior == FailureBehavior.continue_others:
            raise FleetMigrationError(report.failures)
        return report
