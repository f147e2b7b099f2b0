"""Tests for per-command search_path routing, using fake DBAPI connections."""

from __future__ import annotations

from types import SimpleNamespace

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from src.tenancy.core.errors import InvalidIdentifierError
from src.tenancy.core.routing import SchemaRouter, connection_key
from src.tenancy.core.tenant import TenantContext, tenant_scope

ACME = TenantContext(tenant_id="acme", schema_name="tenant_acme")
GLOBEX = TenantContext(tenant_id="globex", schema_name="tenant_globex")


class FakeCursor:
    def __init__(self, log: list[str]) -> None:
        self._log = log
        self.closed = False

    def execute(self, statement: str) -> None:
        self._log.append(statement)

    def close(self) -> None:
        self.closed = True


class FakeDriverConnection:
    """Stands in for the asyncpg connection behind the adapter."""


class FakeDbapiConnection:
    """Stands in for SQLAlchemy's asyncpg adapter connection."""

    def __init__(self) -> None:
        self.driver_connection = FakeDriverConnection()
        self.executed: list[str] = []

    def cursor(self) -> FakeCursor:
        return FakeCursor(self.executed)


def sa_connection(dbapi: FakeDbapiConnection, *, invalidated=False, closed=False):
    """Minimal shape of the sqlalchemy Connection the event hooks receive."""
    return SimpleNamespace(
        connection=SimpleNamespace(dbapi_connection=dbapi),
        invalidated=invalidated,
        closed=closed,
    )


@pytest.fixture
def router() -> SchemaRouter:
    return SchemaRouter(default_schema="public")


class TestSearchPathStatement:
    def test_tenant_schema_falls_back_to_default(self, router):
        assert router.search_path_statement("tenant_acme") == 'SET search_path TO "tenant_acme", "public"'

    def test_default_schema_alone(self, router):
        assert router.search_path_statement("public") == 'SET search_path TO "public"'

    def test_invalid_schema_rejected(self, router):
        with pytest.raises(InvalidIdentifierError):
            router.search_path_statement("bad-schema")

    def test_invalid_default_rejected(self):
        with pytest.raises(InvalidIdentifierError):
            SchemaRouter(default_schema="1public")


class TestRoute:
    def test_no_context_routes_to_default(self, router):
        dbapi = FakeDbapiConnection()
        assert router.route(dbapi) is True
        assert dbapi.executed == ['SET search_path TO "public"']
        assert router.tracked_schema(dbapi) == "public"

    def test_context_routes_to_tenant(self, router):
        dbapi = FakeDbapiConnection()
        with tenant_scope(ACME):
            router.route(dbapi)
        assert dbapi.executed == ['SET search_path TO "tenant_acme", "public"']
        assert router.tracked_schema(dbapi) == "tenant_acme"

    def test_unchanged_schema_issues_nothing(self, router):
        dbapi = FakeDbapiConnection()
        with tenant_scope(ACME):
            assert router.route(dbapi) is True
            assert router.route(dbapi) is False
            assert router.route(dbapi) is False
        assert len(dbapi.executed) == 1

    def test_reused_connection_follows_each_tenant(self, router):
        dbapi = FakeDbapiConnection()
        with tenant_scope(ACME):
            router.route(dbapi)
        with tenant_scope(GLOBEX):
            router.route(dbapi)
        router.route(dbapi)
        assert dbapi.executed == [
            'SET search_path TO "tenant_acme", "public"',
            'SET search_path TO "tenant_globex", "public"',
            'SET search_path TO "public"',
        ]

    def test_tracking_is_per_connection(self, router):
        first, second = FakeDbapiConnection(), FakeDbapiConnection()
        with tenant_scope(ACME):
            router.route(first)
            router.route(second)
        assert len(first.executed) == 1
        assert len(second.executed) == 1

    def test_forget_forces_reissue(self, router):
        dbapi = FakeDbapiConnection()
        with tenant_scope(ACME):
            router.route(dbapi)
            router.forget(dbapi)
            assert router.tracked_schema(dbapi) is None
            router.route(dbapi)
        assert len(dbapi.executed) == 2

    def test_tracking_keyed_by_driver_connection(self, router):
        dbapi = FakeDbapiConnection()
        assert connection_key(dbapi) is dbapi.driver_connection
        with tenant_scope(ACME):
            router.route(dbapi)
        assert router.tracked_schema(SimpleNamespace(driver_connection=dbapi.driver_connection)) == "tenant_acme"

    def test_tracking_does_not_keep_connection_alive(self, router):
        dbapi = FakeDbapiConnection()
        router.route(dbapi)
        assert len(router._current) == 1
        del dbapi
        assert len(router._current) == 0


class TestEventHooks:
    def test_before_cursor_execute_routes(self, router):
        dbapi = FakeDbapiConnection()
        with tenant_scope(ACME):
            router.before_cursor_execute(sa_connection(dbapi), None, "SELECT 1", {}, None, False)
        assert dbapi.executed == ['SET search_path TO "tenant_acme", "public"']

    def test_rollback_forgets(self, router):
        dbapi = FakeDbapiConnection()
        router.route(dbapi)
        router._on_rollback(sa_connection(dbapi))
        assert router.tracked_schema(dbapi) is None

    def test_rollback_savepoint_forgets(self, router):
        dbapi = FakeDbapiConnection()
        router.route(dbapi)
        router._on_rollback_savepoint(sa_connection(dbapi), "sp_1", None)
        assert router.tracked_schema(dbapi) is None

    def test_rollback_on_invalidated_connection_is_ignored(self, router):
        dbapi = FakeDbapiConnection()
        router.route(dbapi)
        router._on_rollback(sa_connection(dbapi, invalidated=True))
        assert router.tracked_schema(dbapi) == "public"

    def test_checkout_and_reset_forget(self, router):
        dbapi = FakeDbapiConnection()
        router.route(dbapi)
        router._on_checkout(dbapi, None, None)
        assert router.tracked_schema(dbapi) is None

        router.route(dbapi)
        router._on_reset(dbapi, None, reset_state=None)
        assert router.tracked_schema(dbapi) is None


class TestInstall:
    def test_install_registers_router(self):
        engine = create_async_engine("postgresql+asyncpg://u:p@localhost/db")
        router = SchemaRouter().install(engine)
        assert SchemaRouter.for_engine(engine) is router
        assert SchemaRouter.for_engine(engine.sync_engine) is router

    def test_install_twice_rejected(self):
        engine = create_async_engine("postgresql+asyncpg://u:p@localhost/db")
        SchemaRouter().install(engine)
        with pytest.raises(RuntimeError, match="already installed"):
            SchemaRouter().install(engine)

    def test_engine_without_router(self):
        engine = create_async_engine("postgresql+asyncpg://u:p@localhost/db")
        assert SchemaRouter.for_engine(engine) is None
