"""
create_tables.py
----------------
Create the registry schema: hierarchy, tenants and their access state,
tokens, batches and the removal audit trail.
Use this for quick setup. For production migrations, use Alembic instead.

Usage:
    python create_tables.py            # create missing tables
    python create_tables.py --reset    # drop everything first (local only)
"""

import asyncio
import sys

from sqlalchemy.ext.asyncio import AsyncEngine

from tokenscope.core.config import settings
from tokenscope.core.logging import configure_logging, get_logger
from tokenscope.db.session import engine
from tokenscope.models import Base  # Imports all models so metadata is populated

logger = get_logger(__name__)


async def create_all_tables(bind: AsyncEngine, reset: bool = False) -> list[str]:
    async with bind.begin() as conn:
        if reset:
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    return sorted(Base.metadata.tables)


async def main(argv: list[str]) -> int:
    configure_logging()
    reset = "--reset" in argv
    if reset and settings.APP_ENV == "production":
        logger.error("Refusing to drop tables in production")
        return 1
    try:
        tables = await create_all_tables(engine, reset=reset)
    finally:
        await engine.dispose()
    logger.info("Schema ready", tables=tables, reset=reset)
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main(sys.argv[1:])))
