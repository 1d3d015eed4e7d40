"""
asyncpg database module.

Re-exports the pool factory and the area repository used by the tree jobs.
"""

from services.areas.db.pool import create_pool, standalone_pool
from services.areas.db.repository import (
    AreaRepository,
    PersistenceError,
    PostgresAreaRepository,
    record_to_area,
)

__all__ = [
    "create_pool",
    "standalone_pool",
    "AreaRepository",
    "PersistenceError",
    "PostgresAreaRepository",
    "record_to_area",
]
