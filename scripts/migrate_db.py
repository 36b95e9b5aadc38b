#!/usr/bin/env python3
"""
Database Migration — Create the ledger, blacklist and search tables.

Usage:
    # Create missing tables:
    python scripts/migrate_db.py

    # Check status only (no changes):
    python scripts/migrate_db.py --check

    # Use a specific config file:
    python scripts/migrate_db.py --config config/settings.yaml
"""
import asyncio
import os
import sys
import argparse

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


def _list_tables_sql(dialect: str) -> str:
    if dialect == "postgresql":
        return "SELECT tablename FROM pg_tables WHERE schemaname = 'public'"
    if dialect == "mysql":
        return "SHOW TABLES"
    return "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'"


async def existing_tables(engine) -> list[str]:
    from sqlalchemy import text
    async with engine.connect() as conn:
        result = await conn.execute(text(_list_tables_sql(engine.dialect.name)))
        return [row[0] for row in result.fetchall()]


async def run_migration(check_only: bool = False, config_path: str = None) -> set[str]:
    """Returns the defined tables still missing after the run."""
    from config.settings import load_settings
    load_settings(config_path)

    from database.session import close_db, get_engine, init_db, redact_url
    from database.models import Base

    engine = get_engine()
    defined = set(Base.metadata.tables.keys())
    print(f"Database: {engine.dialect.name}")
    print(f"URL: {redact_url(str(engine.url))}")
    print(f"Tables defined: {', '.join(sorted(defined))}")

    try:
        if not check_only:
            print("Running database migration...")
            await init_db(engine)

        existing = await existing_tables(engine)
        print(f"Tables existing: {', '.join(sorted(existing)) or '(none)'}")

        missing = defined - set(existing)
        if missing:
            print(f"Tables MISSING: {', '.join(sorted(missing))}")
            print("Run without --check to create them.")
        else:
            print("All tables exist. ✓")
        return missing
    finally:
        await close_db()


def main():
    parser = argparse.ArgumentParser(description="Database migration")
    parser.add_argument("--check", action="store_true", help="Check status only")
    parser.add_argument("--config", default=None, help="Path to settings.yaml")
    args = parser.parse_args()

    missing = asyncio.run(run_migration(check_only=args.check, config_path=args.config))
    sys.exit(1 if missing else 0)


if __name__ == "__main__":
    main()
