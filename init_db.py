"""Initialize database schema for lead matching.

Creates the partner, category, inquiry and assignment tables.
Run this before starting the API server.
"""

import asyncio
import sys

from leads.config import settings
from leads.db import engine
from leads.logging_config import setup_logging
from leads.models import Base


async def init_database(drop: bool = True):
    """Create all database tables."""
    print(f"Initializing database: {settings.db.url}")

    async with engine.begin() as conn:
        if drop:
            await conn.run_sync(Base.metadata.drop_all)
            print("✓ Dropped existing tables")

        await conn.run_sync(Base.metadata.create_all)
        print("✓ Created all tables")

    print("\n✅ Database initialization complete!")
    print(f"Tables created: {', '.join(Base.metadata.tables.keys())}")


async def main():
    """Main entry point."""
    setup_logging(fmt="text")
    try:
        await init_database(drop="--keep" not in sys.argv)
    except Exception as e:
        print(f"\n❌ Error initializing database: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
