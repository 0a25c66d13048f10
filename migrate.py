#!/usr/bin/env python3
"""
Database migrations (Alembic) and ledger maintenance for GasLedger.
"""
import sys
import logging
from pathlib import Path

root_dir = Path(__file__).parent
sys.path.insert(0, str(root_dir))

from alembic.config import Config
from alembic import command
from app.core.config import settings
from app.database.database import Database
from app.modules.receivables.recalculation import RecalculationEngine

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger("migrate")


def get_alembic_config(database_url: str = None) -> Config:
    alembic_cfg = Config(str(root_dir / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(root_dir / "migrations"))
    alembic_cfg.set_main_option("sqlalchemy.url", database_url or settings.database_url)
    return alembic_cfg


def create_migration(message: str):
    """Autogenerate a revision from the models."""
    command.revision(get_alembic_config(), autogenerate=True, message=message)
    print(f"Migration created: {message}")


def run_migrations(database_url: str = None):
    command.upgrade(get_alembic_config(database_url), "head")
    print("Migrations applied")


def rollback_migration(database_url: str = None):
    """Undo the latest revision."""
    command.downgrade(get_alembic_config(database_url), "-1")
    print("Rolled back one migration")


def show_history():
    command.history(get_alembic_config())


def show_current():
    command.current(get_alembic_config())


def recalculate_all():
    """Re-walk every tenant's receivable chains."""
    database = Database()
    db = database.session()
    try:
        result = RecalculationEngine(db).recalculate_all_tenants()
    finally:
        db.close()
        database.shutdown()
    stats = result.stats
    print(f"{stats.tenants_processed} tenants, {stats.drivers_processed} drivers, "
          f"{stats.updated_records}/{stats.total_records} records updated, {stats.errors} errors")


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage:")
        print("  python migrate.py create 'message'  # Autogenerate a migration")
        print("  python migrate.py upgrade            # Apply pending migrations")
        print("  python migrate.py downgrade          # Roll back one migration")
        print("  python migrate.py history            # Show history")
        print("  python migrate.py current            # Show current revision")
        print("  python migrate.py recalculate        # Recalculate every tenant's receivables")
        sys.exit(1)

    action = sys.argv[1]

    if action == "create":
        if len(sys.argv) < 3:
            print("Error: a message is required for the migration")
            sys.exit(1)
        create_migration(sys.argv[2])
    elif action == "upgrade":
        run_migrations()
    elif action == "downgrade":
        rollback_migration()
    elif action == "history":
        show_history()
    elif action == "current":
        show_current()
    elif action == "recalculate":
        recalculate_all()
    else:
        print(f"Unknown action: {action}")
        sys.exit(1)
