"""
Apply SQL migrations to the tracking database.

Connects with DATABASE_URL when set, otherwise through the Cloud SQL Python
Connector with IAM authentication.

Usage:
    python scripts/run_migration.py                        # all migrations
    python scripts/run_migration.py 001_tracking_orders.sql
    python scripts/run_migration.py --yes                  # skip confirmation
"""

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from google.cloud.sql.connector import Connector
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
INSTANCE_CONNECTION_NAME = os.getenv("INSTANCE_CONNECTION_NAME")
DB_NAME = os.getenv("DB_NAME", "docketsync")
DB_USER = os.getenv("DB_USER", "postgres")

MIGRATIONS_DIR = Path(__file__).parent.parent / "migrations"


def get_engine() -> tuple[Engine, Connector | None]:
    """Create an engine from DATABASE_URL or the Cloud SQL connector."""
    if DATABASE_URL:
        return create_engine(DATABASE_URL), None

    if not INSTANCE_CONNECTION_NAME:
        print("DATABASE_URL or INSTANCE_CONNECTION_NAME must be set")
        print("   INSTANCE_CONNECTION_NAME format: project:region:instance")
        sys.exit(1)

    connector = Connector()

    def getconn():
        return connector.connect(
            INSTANCE_CONNECTION_NAME,
            "pg8000",
            user=DB_USER,
            db=DB_NAME,
            enable_iam_auth=True,
        )

    return create_engine("postgresql+pg8000://", creator=getconn), connector


def run_migration(migration_file: Path, engine: Engine):
    """Run one migration file in its own transaction."""
    print(f"Running migration: {migration_file.name}")

    sql = migration_file.read_text()

    try:
        with engine.begin() as conn:
            conn.execute(text(sql))
        print(f"   {migration_file.name} applied")
    except Exception as e:
        print(f"   {migration_file.name} failed: {e}")
        sys.exit(1)


def list_migrations() -> list[Path]:
    """Migration files in name order, excluding rollbacks."""
    return [
        m for m in sorted(MIGRATIONS_DIR.glob("*.sql")) if "rollback" not in m.name.lower()
    ]


def resolve_migrations(names: list[str]) -> list[Path]:
    if not names:
        return list_migrations()

    migrations = []
    for name in names:
        path = Path(name)
        if not path.exists():
            path = MIGRATIONS_DIR / name
        if not path.exists():
            print(f"Migration file not found: {name}")
            sys.exit(1)
        migrations.append(path)
    return migrations


def main():
    args = [a for a in sys.argv[1:] if a != "--yes"]
    assume_yes = "--yes" in sys.argv[1:]

    if not MIGRATIONS_DIR.exists():
        print(f"Migrations directory not found: {MIGRATIONS_DIR}")
        sys.exit(1)

    migrations = resolve_migrations(args)
    if not migrations:
        print("No migrations found")
        sys.exit(0)

    print(f"Found {len(migrations)} migration(s):")
    for migration in migrations:
        print(f"  - {migration.name}")

    target = DATABASE_URL.rsplit("@", 1)[-1] if DATABASE_URL else f"{INSTANCE_CONNECTION_NAME}/{DB_NAME}"
    print(f"\nTarget: {target}")

    if not assume_yes:
        response = input("Proceed? (yes/no): ").strip().lower()
        if response not in ["yes", "y"]:
            print("Migration cancelled")
            sys.exit(0)

    engine, connector = get_engine()
    try:
        for migration in migrations:
            run_migration(migration, engine)
    finally:
        engine.dispose()
        if connector is not None:
            connector.close()

    print("All migrations applied")


if __name__ == "__main__":
    main()
