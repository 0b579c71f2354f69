"""The hand-written initial migration must build the same tables the models declare."""
import importlib.util
from pathlib import Path

import sqlalchemy as sa
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlmodel import SQLModel

VERSIONS = Path(__file__).resolve().parents[1] / "alembic" / "versions"


def _load_migration(filename):
    module_spec = importlib.util.spec_from_file_location(filename[:-3], VERSIONS / filename)
    module = importlib.util.module_from_spec(module_spec)
    module_spec.loader.exec_module(module)
    return module


def test_initial_migration_matches_models():
    migration = _load_migration("001_initial_migration.py")
    engine = sa.create_engine("sqlite://")

    with engine.begin() as conn:
        with Operations.context(MigrationContext.configure(conn)):
            migration.upgrade()

        inspector = sa.inspect(conn)
        for table_name in ("tournament", "participant", "match"):
            migrated = {c["name"] for c in inspector.get_columns(table_name)}
            declared = set(SQLModel.metadata.tables[table_name].columns.keys())
            assert migrated == declared, table_name

        with Operations.context(MigrationContext.configure(conn)):
            migration.downgrade()
        assert sa.inspect(conn).get_table_names() == []
