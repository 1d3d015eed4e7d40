"""
asyncpg pool factory and standalone pool context manager.
"""

from contextlib import asynccontextmanager
from typing import Optional

import asyncpg

from services.areas.config import settings


async def create_pool(database_url: Optional[str] = None) -> asyncpg.Pool:
    return await asyncpg.create_pool(
        database_url or settings.database_url,
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
    )


@asynccontextmanager
async def standalone_pool(database_url: Optional[str] = None):
    """
    For standalone jobs that run outside any service process.
    Closes the pool on exit to prevent connection leaks.
    """
    pool = await create_pool(database_url)
    try:
        yield pool
    finally:
        await pool.close()
