"""Per-command search_path routing for pooled connections.

A pooled connection is opened once and then serves many tenants, so routing
on connect is not enough: the router hooks ``before_cursor_execute`` and, for
every statement, compares the ambient tenant's schema with the schema last
set on that physical connection. Only when they differ does it issue

    SET search_path TO "<tenant schema>", "<default schema>"

Without a tenant context the connection is pointed back at the default
schema, so a connection that served tenant A never resolves unqualified
names against A's schema for a context-less caller.

The last-set schema is tracked in a ``WeakKeyDictionary`` keyed by the
driver connection; the entry dies with the connection. Entries are dropped
whenever the server-side value may have changed behind our back: pool
checkout (``RESET ALL``), pool reset, transaction and savepoint rollback
(``SET`` is transactional in PostgreSQL), and explicit ``forget()`` after
raw scripts that set search_path themselves.
"""

from __future__ import annotations

import logging
import weakref
from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.ext.asyncio import AsyncEngine

from src.tenancy.core.identifiers import quote_identifier, validate_identifier
from src.tenancy.core.tenant import get_tenant_context

logger = logging.getLogger(__name__)

_routers: weakref.WeakKeyDictionary[Engine, SchemaRouter] = weakref.WeakKeyDictionary()


def connection_key(dbapi_connection: Any) -> Any:
    """Identity used for tracking: the driver connection behind an adapter."""
    return getattr(dbapi_connection, "driver_connection", None) or dbapi_connection


class SchemaRouter:
    """Keeps each physical connection's search_path in line with the tenant context."""

    def __init__(self, default_schema: str = "public") -> None:
        validate_identifier(default_schema)
        self.default_schema = default_schema
        self._current: weakref.WeakKeyDictionary[Any, str] = weakref.WeakKeyDictionary()

    # ── Installation ────────────────────────────────────────────────────

    def install(self, engine: AsyncEngine | Engine) -> SchemaRouter:
        """Attach the router's listeners to ``engine`` and its pool."""
        sync_engine = engine.sync_engine if isinstance(engine, AsyncEngine) else engine
        if sync_engine in _routers:
            raise RuntimeError("A schema router is already installed on this engine")

        event.listen(sync_engine, "before_cursor_execute", self.before_cursor_execute)
        event.listen(sync_engine, "rollback", self._on_rollback)
        event.listen(sync_engine, "rollback_savepoint", self._on_rollback_savepoint)
        event.listen(sync_engine.pool, "checkout", self._on_checkout)
        event.listen(sync_engine.pool, "reset", self._on_reset, named=True)
        _routers[sync_engine] = self
        return self

    @staticmethod
    def for_engine(engine: AsyncEngine | Engine) -> SchemaRouter | None:
        """Return the router installed on ``engine``, if any."""
        sync_engine = engine.sync_engine if isinstance(engine, AsyncEngine) else engine
        return _routers.get(sync_engine)

    # ── Routing ─────────────────────────────────────────────────────────

    def effective_schema(self) -> str:
        ctx = get_tenant_context()
        return ctx.schema_name if ctx is not None else self.default_schema

    def search_path_statement(self, schema: str) -> str:
        if schema == self.default_schema:
            return f"SET search_path TO {quote_identifier(schema)}"
        return f"SET search_path TO {quote_identifier(schema)}, {quote_identifier(self.default_schema)}"

    def tracked_schema(self, dbapi_connection: Any) -> str | None:
        return self._current.get(connection_key(dbapi_connection))

    def route(self, dbapi_connection: Any) -> bool:
        """Bring ``dbapi_connection`` onto the effective schema.

        Returns True when a SET statement was issued.
        """
        schema = self.effective_schema()
        key = connection_key(dbapi_connection)
        if self._current.get(key) == schema:
            return False

        statement = self.search_path_statement(schema)
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute(statement)
        finally:
            cursor.close()
        self._current[key] = schema
        logger.debug("search_path set to %s", schema)
        return True

    def forget(self, dbapi_connection: Any) -> None:
        """Drop tracking for a connection whose search_path may have changed."""
        self._current.pop(connection_key(dbapi_connection), None)

    # ── Event hooks ─────────────────────────────────────────────────────

    def before_cursor_execute(
        self, conn, cursor, statement, parameters, context, executemany
    ) -> None:
        self.route(conn.connection.dbapi_connection)

    def _on_rollback(self, conn) -> None:
        self._forget_connection(conn)

    def _on_rollback_savepoint(self, conn, name, context) -> None:
        self._forget_connection(conn)

    def _on_checkout(self, dbapi_connection, connection_record, connection_proxy) -> None:
        self.forget(dbapi_connection)

    def _on_reset(self, dbapi_connection, connection_record, **kw) -> None:
        self.forget(dbapi_connection)

    def _forget_connection(self, conn) -> None:
        if conn.invalidated or conn.closed:
            return
        self.forget(conn.connection.dbapi_connection)
