#!/usr/bin/env python3
"""Initialize the Proddy database.

Usage:
    python scripts/init_db.py              # Create tables (dev only)
    python scripts/init_db.py --migrate     # Run Alembic migrations (production)
    python scripts/init_db.py --reset       # Drop and recreate (DANGER)
"""

import argparse
import asyncio
import re
import sys

from sqlalchemy import text

from proddy.config import settings
from proddy.db.models import Base
from proddy.db.session import close_db, get_engine, init_db
from proddy.logging import configure_logging


async def drop_tables() -> None:
    """Drop all tables (DANGER)."""
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    print("✓ All tables dropped")


async def create_tables() -> None:
    """Create all tables from models (dev only)."""
    await init_db()
    print("✓ Tables created from models")


def run_migrations() -> None:
    """Run Alembic migrations (production)."""
    import alembic.command
    import alembic.config

    alembic_cfg = alembic.config.Config("alembic.ini")
    alembic.command.upgrade(alembic_cfg, "head")
    print("✓ Alembic migrations applied")


async def verify_connection() -> None:
    """Test database connection."""
    async with get_engine().connect() as conn:
        result = await conn.execute(text("SELECT 1"))
        result.scalar()
        print(f"✓ Connected ({conn.dialect.name})")


async def main() -> int:
    parser = argparse.ArgumentParser(description="Initialize Proddy database")
    parser.add_argument("--migrate", action="store_true", help="Run Alembic migrations")
    parser.add_argument("--reset", action="store_true", help="Drop and recreate tables (DANGER)")
    args = parser.parse_args()
    configure_logging()

    print(f"Database URL: {re.sub(r':[^:@/]+@', ':****@', settings.database_url)}")
    print()

    try:
        await verify_connection()
        print()

        if args.reset:
            print("⚠️  DANGER: Dropping all tables...")
            await drop_tables()
            print()

        if args.migrate:
            await asyncio.to_thread(run_migrations)
        else:
            await create_tables()

        print()
        print("✅ Database initialization complete!")
        return 0

    except Exception as e:
        print(f"❌ Error: {e}")
        return 1

    finally:
        await close_db()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
