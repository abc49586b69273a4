#!/usr/bin/env python3
"""Initialize database tables and seed levels, system funds and the pool."""

import asyncio
import sys

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from atlas.config.settings import settings
from atlas.models import Base
from atlas.repositories.funds_repository import SystemFundsRepository
from atlas.repositories.level_repository import LevelRepository
from atlas.utils.db_decorators import commit_on_success

logger.remove()
logger.add(sys.stderr, level="INFO")


@commit_on_success
async def seed_reference_data(session: AsyncSession) -> None:
    """Create the ten level rows and the ledger singletons if missing."""
    levels_created = await LevelRepository(session).seed()
    funds_created = await SystemFundsRepository(session).seed()
    logger.info(f"Seeded {levels_created} levels, ledger rows created: {funds_created}")


async def init_database(create_tables: bool = True) -> None:
    logger.info("Connecting to database...")
    engine = create_async_engine(settings.database_url, echo=False)

    if create_tables:
        async with engine.begin() as conn:
            logger.info("Creating tables (checkfirst=True)...")
            await conn.run_sync(Base.metadata.create_all, checkfirst=True)

    session_maker = async_sessionmaker(engine, expire_on_commit=False)
    async with session_maker() as session:
        await seed_reference_data(session)

    await engine.dispose()
    logger.success("Database initialized")


if __name__ == "__main__":
    # --seed-only after `alembic upgrade head`
    asyncio.run(init_database(create_tables="--seed-only" not in sys.argv))
