#!/usr/bin/env python3
"""
Database setup — create runtime tables and import flow definitions.

Usage:
    # Create/verify tables in the configured database:
    python scripts/migrate_db.py

    # Report table status only (no changes):
    python scripts/migrate_db.py --check

    # Create tables, then import every *.json flow export in a directory:
    python scripts/migrate_db.py --import-flows ./flows_export

Flows with validation errors are reported and skipped; warnings are printed
but the flow is still imported.
"""
import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Optional

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


async def _existing_tables(conn, dialect: str) -> list[str]:
    from sqlalchemy import text

    if dialect == "postgresql":
        query = "SELECT tablename FROM pg_tables WHERE schemaname = 'public'"
    elif dialect == "mysql":
        query = "SHOW TABLES"
    else:  # sqlite
        query = "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'"
    result = await conn.execute(text(query))
    return [row[0] for row in result.fetchall()]


async def check_tables() -> bool:
    from database.models import Base
    from database.session import get_engine

    engine = get_engine()
    dialect = engine.dialect.name
    print(f"Database: {dialect}")
    print(f"URL: {engine.url}")  # password masked
    print(f"Tables defined: {', '.join(Base.metadata.tables.keys())}")

    async with engine.connect() as conn:
        existing = await _existing_tables(conn, dialect)
    print(f"Tables existing: {', '.join(existing) or '(none)'}")

    missing = set(Base.metadata.tables.keys()) - set(existing)
    if missing:
        print(f"Tables MISSING: {', '.join(sorted(missing))}")
        print("Run without --check to create them.")
        return False
    print("All tables exist.")
    return True


async def import_flows(directory: Path) -> int:
    """Load, validate and save every flow export in `directory`. Returns the number of failures."""
    from database.store import SqlRuntimeStore
    from flows.catalog import load_flow
    from flows.errors import FlowDefinitionError
    from flows.validation import has_errors, validate_flow

    store = SqlRuntimeStore()
    failures = 0
    for path in sorted(directory.glob("*.json")):
        try:
            with open(path) as f:
                flow = load_flow(json.load(f))
        except (OSError, json.JSONDecodeError, FlowDefinitionError) as e:
            print(f"  {path.name}: cannot load ({e})")
            failures += 1
            continue

        issues = validate_flow(flow)
        for issue in issues:
            where = f" [{issue.step_id}]" if issue.step_id else ""
            print(f"  {path.name}: {issue.severity}{where} {issue.message}")
        if has_errors(issues):
            print(f"  {path.name}: skipped")
            failures += 1
            continue

        await store.save_flow(flow)
        print(f"  {path.name}: imported flow '{flow.id}' ({len(flow.steps)} steps)")
    return failures


async def run_migration(check_only: bool = False, flows_dir: Optional[str] = None) -> int:
    from config.settings import load_settings
    load_settings()

    from database.session import close_db, init_db

    try:
        if check_only:
            return 0 if await check_tables() else 1

        print("Running database migration...")
        tables = await init_db()
        print(f"Tables created/verified: {', '.join(tables)}")

        if flows_dir:
            print(f"Importing flows from {flows_dir}...")
            failures = await import_flows(Path(flows_dir))
            if failures:
                print(f"{failures} flow file(s) failed.")
                return 1
        print("Migration complete.")
        return 0
    finally:
        await close_db()


def main():
    parser = argparse.ArgumentParser(description="Flow runtime database setup")
    parser.add_argument("--check", action="store_true", help="Check table status only")
    parser.add_argument("--import-flows", metavar="DIR", help="Import *.json flow exports from DIR")
    args = parser.parse_args()

    sys.exit(asyncio.run(run_migration(check_only=args.check, flows_dir=args.import_flows)))


if __name__ == "__main__":
    main()
