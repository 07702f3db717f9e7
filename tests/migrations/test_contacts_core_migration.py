"""Tests for the core_001 contacts schema migration."""

from __future__ import annotations

import asyncio
import importlib.util
import inspect
import shutil
from pathlib import Path

import pytest

from rolodex.testing.migration import (
    create_migration_db,
    current_revision,
    index_names,
    migration_db_name,
    table_exists,
)

ALEMBIC_DIR = Path(__file__).resolve().parent.parent.parent / "alembic"
CORE_MIGRATIONS_DIR = ALEMBIC_DIR / "versions" / "core"
MIGRATION_FILE = CORE_MIGRATIONS_DIR / "001_contacts_core.py"

TABLES = (
    "contacts",
    "contact_sources",
    "contact_sync_state",
    "contact_verification_queue",
)

docker_available = shutil.which("docker") is not None


def _load_migration():
    """Load the core_001 migration module dynamically."""
    spec = importlib.util.spec_from_file_location("migration_core_001", MIGRATION_FILE)
    assert spec is not None
    assert spec.loader is not None
    mod = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(mod)
    return mod


@pytest.mark.unit
class TestCore001MigrationFile:
    def test_migration_file_exists(self):
        assert MIGRATION_FILE.exists(), f"Migration file not found at {MIGRATION_FILE}"

    def test_revision_identifiers(self):
        mod = _load_migration()
        assert mod.revision == "core_001"
        assert mod.down_revision is None
        assert mod.branch_labels == ("core",)
        assert mod.depends_on is None

    def test_upgrade_creates_every_table(self):
        source = inspect.getsource(_load_migration().upgrade)
        for table in TABLES:
            assert f"CREATE TABLE IF NOT EXISTS {table}" in source

    def test_identity_and_open_item_uniqueness(self):
        source = inspect.getsource(_load_migration().upgrade)
        assert "UNIQUE (owner_id, email)" in source
        assert "uq_contact_verification_queue_open" in source
        assert "WHERE status = 'pending'" in source

    def test_downgrade_drops_tables_in_dependency_order(self):
        source = inspect.getsource(_load_migration().downgrade)
        positions = [source.index(f"DROP TABLE IF EXISTS {t}") for t in reversed(TABLES)]
        assert positions == sorted(positions)


@pytest.mark.integration
@pytest.mark.skipif(not docker_available, reason="Docker not available")
def test_upgrade_builds_schema(postgres_container):
    from rolodex.migrations import run_migrations

    db_url = create_migration_db(postgres_container, migration_db_name())
    asyncio.run(run_migrations(db_url))
    # A second run is a no-op once the chain is at head.
    asyncio.run(run_migrations(db_url))

    for table in TABLES:
        assert table_exists(db_url, table), f"{table} missing after upgrade"
    assert "uq_contact_verification_queue_open" in index_names(
        db_url, "contact_verification_queue"
    )
    assert "ix_contacts_tags" in index_names(db_url, "contacts")
    assert current_revision(db_url) == "core_001"
