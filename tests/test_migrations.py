"""
Tests for the Alembic migrations.

The initial migration must produce the same tables and indexes as the ORM
models, and must leave tables created by `init-db` alone.
"""

import importlib.util
import tempfile
import unittest
from pathlib import Path

import sqlalchemy as sa
from alembic.migration import MigrationContext
from alembic.operations import Operations

from defroster.api.database.models import Base


VERSIONS_DIR = Path(__file__).resolve().parents[1] / "alembic" / "versions"


def load_migration(name):
    spec = importlib.util.spec_from_file_location(name, VERSIONS_DIR / f"{name}.py")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def run_migration(engine, step):
    with engine.begin() as conn:
        context = MigrationContext.configure(conn)
        with Operations.context(context):
            step()


def schema(engine):
    inspector = sa.inspect(engine)
    return {
        table: sorted(index["name"] for index in inspector.get_indexes(table))
        for table in inspector.get_table_names()
    }


class TestInitialSchema(unittest.TestCase):
    """Test suite for the initial_schema migration"""

    def setUp(self):
        """Create an empty sqlite database"""
        self.temp_dir = tempfile.TemporaryDirectory()
        self.migration = load_migration("3f9c1d2e7a40_initial_schema")

    def tearDown(self):
        self.temp_dir.cleanup()

    def engine(self, name):
        engine = sa.create_engine(f"sqlite:///{Path(self.temp_dir.name) / name}")
        self.addCleanup(engine.dispose)
        return engine

    def test_revision_is_root(self):
        """Test the revision header"""
        self.assertEqual(self.migration.revision, "3f9c1d2e7a40")
        self.assertIsNone(self.migration.down_revision)

    def test_upgrade_matches_models(self):
        """Test that the migration and the ORM models agree on tables and indexes"""
        migrated = self.engine("migrated.db")
        run_migration(migrated, self.migration.upgrade)

        created = self.engine("created.db")
        Base.metadata.create_all(created)

        self.assertEqual(schema(migrated), schema(created))
        self.assertEqual(set(schema(migrated)), {"events", "subscriptions", "notifications", "watermarks"})

    def test_upgrade_skips_existing_tables(self):
        """Test that upgrading a database created by init-db is a no-op"""
        engine = self.engine("existing.db")
        Base.metadata.create_all(engine)
        before = schema(engine)
        run_migration(engine, self.migration.upgrade)
        self.assertEqual(schema(engine), before)

    def test_downgrade(self):
        """Test that downgrade removes every table"""
        engine = self.engine("downgrade.db")
        run_migration(engine, self.migration.upgrade)
        run_migration(engine, self.migration.downgrade)
        self.assertEqual(schema(engine), {})


if __name__ == "__main__":
    unittest.main()
