import os
import tempfile
import unittest
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect, text

from snippet_data.models.registry import metadata


class MigrationTests(unittest.TestCase):
    """Upgrade a scratch SQLite file to head and compare it with the models."""

    @classmethod
    def setUpClass(cls):
        cls.project_root = Path(__file__).resolve().parents[1]
        cls.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(cls.tmpdir.name, "migrations.db")

        # no ini file, so the test run keeps its own logging configuration
        cfg = Config()
        cfg.set_main_option("script_location", str(cls.project_root / "alembic"))
        cfg.set_main_option("sqlalchemy.url", f"sqlite+aiosqlite:///{db_path}")
        command.upgrade(cfg, "head")

        cls.engine = create_engine(f"sqlite:///{db_path}")
        cls.inspector = inspect(cls.engine)

    @classmethod
    def tearDownClass(cls):
        cls.engine.dispose()
        cls.tmpdir.cleanup()

    def test_upgrade_head_creates_every_model_table(self):
        tables = set(self.inspector.get_table_names())
        expected = set(metadata.tables)
        self.assertTrue(expected.issubset(tables), f"Missing tables: {expected - tables}")
        self.assertIn("alembic_version", tables)

    def test_columns_match_models(self):
        for name, table in metadata.tables.items():
            with self.subTest(table=name):
                migrated = {column["name"] for column in self.inspector.get_columns(name)}
                self.assertEqual(migrated, set(table.columns.keys()))

    def test_indexes_match_models(self):
        for name, table in metadata.tables.items():
            with self.subTest(table=name):
                migrated = {index["name"] for index in self.inspector.get_indexes(name)}
                declared = {index.name for index in table.indexes}
                self.assertTrue(declared.issubset(migrated), f"Missing indexes: {declared - migrated}")

    def test_alembic_version_is_set(self):
        with self.engine.connect() as conn:
            version = conn.execute(text("SELECT version_num FROM alembic_version")).scalar_one()
        self.assertEqual(version, "0001_init")
