"""Tests for migration discovery and generic script generation."""

from __future__ import annotations

from pathlib import Path

import pytest

from src.tenancy.core.errors import ConfigurationError, InvalidIdentifierError
from src.tenancy.migrations.history import history_table_ddl, qualified_history_table
from src.tenancy.migrations.rewriter import rewrite_for_schema, verify_rewritten
from src.tenancy.migrations.script import PRODUCT_VERSION, MigrationSource

ALL_IDS = ["001_create_widgets", "002_create_notes", "003_add_widget_color"]


class TestDiscovery:
    def test_declared_order(self, migration_source):
        assert migration_source.migration_ids() == ALL_IDS

    def test_descriptions_from_docstrings(self, migration_source):
        assert migration_source.migrations()[0].description.startswith("Create widgets")

    def test_pending_preserves_order(self, migration_source):
        pending = migration_source.pending(["002_create_notes"])
        assert [m.id for m in pending] == ["001_create_widgets", "003_add_widget_color"]

    def test_pending_ignores_unknown_applied_ids(self, migration_source):
        assert [m.id for m in migration_source.pending(ALL_IDS + ["999_gone"])] == []

    def test_missing_versions_directory(self, tmp_path):
        with pytest.raises(ConfigurationError, match="No versions directory"):
            MigrationSource(tmp_path)

    def test_history_table_name_validated(self, migrations_dir):
        with pytest.raises(InvalidIdentifierError):
            MigrationSource(migrations_dir, history_table="bad table")


class TestHistoryDdl:
    def test_unqualified(self):
        ddl = history_table_ddl("__tenant_migrations")
        assert ddl.startswith('CREATE TABLE IF NOT EXISTS "__tenant_migrations" (')
        assert '"MigrationId" character varying(150) NOT NULL' in ddl
        assert '"ProductVersion" character varying(32) NOT NULL' in ddl
        assert 'CONSTRAINT "pk___tenant_migrations" PRIMARY KEY ("MigrationId")' in ddl

    def test_qualified(self):
        ddl = history_table_ddl("__tenant_migrations", "tenant_acme")
        assert ddl.startswith('CREATE TABLE IF NOT EXISTS "tenant_acme"."__tenant_migrations" (')

    def test_qualified_name(self):
        assert qualified_history_table("tenant_acme", "hist") == '"tenant_acme"."hist"'


class TestGenerateScript:
    def test_render_upgrade_is_unqualified_postgres(self, migration_source):
        body = migration_source.render_upgrade(migration_source.migrations()[0])
        assert body.startswith("CREATE TABLE widgets")
        assert "tenant" not in body

    def test_script_shape(self, migration_source):
        script = migration_source.generate_script()

        assert script.startswith("DO $ensure_schema$")
        assert 'CREATE SCHEMA "tenant";' in script
        assert 'CREATE TABLE IF NOT EXISTS "__tenant_migrations" (' in script
        assert script.count("BEGIN;\n") == 3
        assert script.count("COMMIT;\n") == 3
        for migration_id in ALL_IDS:
            assert (
                'INSERT INTO "__tenant_migrations" ("MigrationId", "ProductVersion")\n'
                f"VALUES ('{migration_id}', '{PRODUCT_VERSION}');"
            ) in script

    def test_migrations_appear_in_order(self, migration_source):
        script = migration_source.generate_script()
        positions = [script.index(f"'{migration_id}'") for migration_id in ALL_IDS]
        assert positions == sorted(positions)
        assert script.index("CREATE TABLE widgets") < script.index("CREATE TABLE notes")
        assert script.index("CREATE TABLE notes") < script.index("ALTER TABLE widgets ADD COLUMN color")

    def test_subset(self, migration_source):
        script = migration_source.generate_script(migration_source.pending(ALL_IDS[:2]))
        assert "'003_add_widget_color'" in script
        assert "'001_create_widgets'" not in script
        assert "CREATE TABLE widgets" not in script

    def test_empty_subset_still_creates_history_table(self, migration_source):
        script = migration_source.generate_script([])
        assert 'CREATE TABLE IF NOT EXISTS "__tenant_migrations"' in script
        assert "BEGIN;" not in script

    def test_string_literals_survive_rendering(self, migration_source):
        script = migration_source.generate_script()
        assert "'it''s seeded'" in script

    def test_product_version_fits_history_column(self):
        assert 0 < len(PRODUCT_VERSION) <= 32


class TestShippedTenantMigrations:
    @pytest.fixture
    def source(self) -> MigrationSource:
        return MigrationSource(Path(__file__).resolve().parents[1] / "alembic")

    def test_ids(self, source):
        assert source.migration_ids() == ["001_create_users", "002_create_api_keys"]

    def test_rewrites_cleanly_for_a_tenant(self, source):
        script = rewrite_for_schema(source.generate_script(), "tenant_acme", source.history_table)
        verify_rewritten(script, "tenant_acme", source.history_table, source.migration_ids())
        assert "CREATE TABLE users" in script
        assert "CREATE TABLE api_keys" in script
        assert "REFERENCES users (id)" in script
