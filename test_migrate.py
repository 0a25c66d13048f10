"""
Tests for the Alembic migrations: the revision chain builds the same
schema the models declare and tears it down again.
"""
from alembic import command
from sqlalchemy import create_engine, inspect

import migrate
from app.database.database import Base


def alembic_config(url):
    config = migrate.get_alembic_config(url)
    config.attributes["configure_logger"] = False
    return config


class TestMigrations:

    def test_upgrade_builds_every_model_table(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'migrated.db'}"
        command.upgrade(alembic_config(url), "head")

        engine = create_engine(url)
        try:
            inspector = inspect(engine)
            assert set(inspector.get_table_names()) == set(Base.metadata.tables) | {"alembic_version"}
            for table in Base.metadata.sorted_tables:
                columns = {column["name"] for column in inspector.get_columns(table.name)}
                assert columns == {column.name for column in table.columns}, table.name

            unique_names = {c["name"] for c in inspector.get_unique_constraints("receivable_records")}
            assert "uq_receivable_record_tenant_driver_date" in unique_names
        finally:
            engine.dispose()

    def test_downgrade_to_base_drops_ledger_tables(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'migrated.db'}"
        config = alembic_config(url)
        command.upgrade(config, "head")
        command.downgrade(config, "base")

        engine = create_engine(url)
        try:
            assert inspect(engine).get_table_names() == ["alembic_version"]
        finally:
            engine.dispose()
