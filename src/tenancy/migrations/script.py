"""Tenant migrations: discovery and generic SQL generation.

Migrations are ordinary Alembic revision files (``op.create_table`` and
friends) in a versions directory. They are never run through Alembic's
online runner; each revision's ``upgrade()`` is rendered offline to
PostgreSQL text and wrapped into a generic script:

    DO $ensure_schema$ ... CREATE SCHEMA "tenant" ... $ensure_schema$;
    CREATE TABLE IF NOT EXISTS "__tenant_migrations" (...);

    BEGIN;
    <upgrade body, unqualified names>
    INSERT INTO "__tenant_migrations" ("MigrationId", "ProductVersion")
    VALUES ('001_create_users', '1.13.2');
    COMMIT;

The script targets no particular tenant. ``rewriter.rewrite_for_schema``
turns it into one that runs inside a given tenant's schema.
"""

from __future__ import annotations

import io
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import alembic
from alembic.operations import Operations
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory

from src.tenancy.config import Settings, get_settings
from src.tenancy.core.errors import ConfigurationError
from src.tenancy.core.identifiers import escape_identifier, validate_identifier
from src.tenancy.migrations.history import MIGRATION_ID_LENGTH, history_table_ddl

PRODUCT_VERSION = f"alembic-{alembic.__version__}"[:32]

ENSURE_SCHEMA_TEMPLATE = """DO $ensure_schema$
BEGIN
    IF NOT EXISTS(SELECT 1 FROM pg_namespace WHERE nspname = '{schema}') THEN
        CREATE SCHEMA "{quoted}";
    END IF;
END $ensure_schema$;
"""


@dataclass(frozen=True)
class Migration:
    """One known migration, in declared order."""

    id: str
    description: str
    module: Any = None


def _sql_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class MigrationSource:
    """The known migrations of one logical migration group.

    Args:
        directory: Alembic script directory (holding ``versions/``).
        history_table: History table name for this group.
        placeholder_schema: Schema the generic script claims to target.
    """

    def __init__(
        self,
        directory: str | Path,
        *,
        history_table: str = "__tenant_migrations",
        placeholder_schema: str = "tenant",
    ) -> None:
        validate_identifier(history_table, "Table")
        validate_identifier(placeholder_schema)
        directory = Path(directory)
        if not (directory / "versions").is_dir():
            raise ConfigurationError(f"No versions directory under {directory}")
        self.directory = directory
        self.history_table = history_table
        self.placeholder_schema = placeholder_schema
        self._scripts = ScriptDirectory(str(directory))

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> MigrationSource:
        settings = settings or get_settings()
        return cls(
            settings.MIGRATIONS_DIRECTORY,
            history_table=settings.MIGRATION_HISTORY_TABLE,
            placeholder_schema=settings.MIGRATION_PLACEHOLDER_SCHEMA,
        )

    # ── Discovery ───────────────────────────────────────────────────────

    def migrations(self) -> list[Migration]:
        """All known migrations, base first."""
        revisions = list(self._scripts.walk_revisions("base", "heads"))
        revisions.reverse()
        known = []
        for script in revisions:
            if len(script.revision) > MIGRATION_ID_LENGTH:
                raise ConfigurationError(
                    f"Migration id {script.revision!r} exceeds {MIGRATION_ID_LENGTH} characters"
                )
            known.append(
                Migration(id=script.revision, description=script.doc or "", module=script.module)
            )
        return known

    def migration_ids(self) -> list[str]:
        return [migration.id for migration in self.migrations()]

    def pending(self, applied: Iterable[str]) -> list[Migration]:
        """Known migrations missing from ``applied``, in declared order."""
        done = set(applied)
        return [migration for migration in self.migrations() if migration.id not in done]

    # ── Generation ──────────────────────────────────────────────────────

    def render_upgrade(self, migration: Migration) -> str:
        """Render a migration's ``upgrade()`` as offline PostgreSQL text."""
        buffer = io.StringIO()
        context = MigrationContext.configure(
            dialect_name="postgresql",
            opts={"as_sql": True, "output_buffer": buffer, "literal_binds": True},
        )
        with Operations.context(context):
            migration.module.upgrade()
        return buffer.getvalue().strip()

    def generate_script(self, migrations: Sequence[Migration] | None = None) -> str:
        """Generic script applying ``migrations`` (default: all) in order."""
        if migrations is None:
            migrations = self.migrations()

        parts = [
            ENSURE_SCHEMA_TEMPLATE.format(
                schema=self.placeholder_schema.replace("'", "''"),
                quoted=escape_identifier(self.placeholder_schema),
            ),
            history_table_ddl(self.history_table) + "\n",
        ]
        table = f'"{escape_identifier(self.history_table)}"'
        for migration in migrations:
            body = self.render_upgrade(migration)
            parts.append(
                "BEGIN;\n\n"
                + (f"{body}\n\n" if body else "")
                + f'INSERT INTO {table} ("MigrationId", "ProductVersion")\n'
                + f"VALUES ({_sql_literal(migration.id)}, {_sql_literal(PRODUCT_VERSION)});\n\n"
                + "COMMIT;\n"
            )
        return "\n".join(parts)
