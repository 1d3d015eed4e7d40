"""
Area repository: the tree updater's only view of the backing store.

Table layout (PostgreSQL):

    areas (
        id            text primary key,
        "pathTokens"  text[]  not null,   -- ancestor ids + own id, root child first
        children      text[]  not null default '{}',
        metadata      jsonb   not null,   -- {leaf, bbox, lnglat (GeoJSON Point), ...}
        "totalClimbs" integer not null default 0,
        density       double precision not null default 0,
        aggregate     jsonb,
        "updatedAt"   timestamptz
    )

Levels are streamed a page at a time with keyset pagination on id, so a
level with hundreds of thousands of rows is never materialised and no
transaction stays open across a phase. The page key is the immutable id,
so rows saved while a level is being paged are still visited once.

save merges the metadata it owns into the stored document; keys written
by other services are left alone. Every driver failure surfaces as
PersistenceError.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any, Optional, Protocol

import asyncpg

from services.areas.config import settings
from services.areas.tree.models import AreaNode

logger = logging.getLogger(__name__)

# Failures that mean "the store did not do what we asked"
_DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


class PersistenceError(Exception):
    """A read or write against the area store failed."""

    def __init__(
        self,
        message: str,
        *,
        area_id: Optional[str] = None,
        operation: Optional[str] = None,
    ):
        super().__init__(message)
        self.area_id = area_id
        self.operation = operation


class AreaRepository(Protocol):
    """What the tree updater needs from the area store."""

    def stream_by_depth(self, depth: int) -> AsyncIterator[AreaNode]:
        """Lazily yield every area whose pathTokens has `depth` entries."""
        ...

    async def fetch_children(self, node: AreaNode) -> list[AreaNode]:
        """Resolve node.children ids into full areas, in child order."""
        ...

    async def get(self, area_id: str) -> Optional[AreaNode]:
        ...

    async def save(self, node: AreaNode) -> None:
        """Persist every mutable statistics field of the node."""
        ...


# ---------------------------------------------------------------------------
# SQL
# ---------------------------------------------------------------------------

_AREA_COLUMNS = """id, "pathTokens", children, metadata, "totalClimbs", density, aggregate"""

_STREAM_BY_DEPTH_SQL = f"""
SELECT {_AREA_COLUMNS}
FROM areas
WHERE cardinality("pathTokens") = $1
  AND id > $2
ORDER BY id
LIMIT $3
"""

_FETCH_BY_IDS_SQL = f"""
SELECT {_AREA_COLUMNS}
FROM areas
WHERE id = ANY($1::text[])
"""

_GET_SQL = f"""
SELECT {_AREA_COLUMNS}
FROM areas
WHERE id = $1
"""

_SAVE_SQL = """
UPDATE areas
SET "totalClimbs" = $2,
    density       = $3,
    aggregate     = $4::jsonb,
    metadata      = metadata || $5::jsonb,
    "updatedAt"   = NOW()
WHERE id = $1
"""


def _decode_json(value: Any) -> Any:
    # asyncpg hands jsonb back as text unless a codec is registered
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


def record_to_area(record: Any) -> AreaNode:
    """Build an AreaNode from an asyncpg Record (or any mapping with the same keys)."""
    return AreaNode.model_validate({
        "id": record["id"],
        "pathTokens": list(record["pathTokens"] or []),
        "children": list(record["children"] or []),
        "metadata": _decode_json(record["metadata"]) or {},
        "totalClimbs": record["totalClimbs"] or 0,
        "density": record["density"] or 0.0,
        "aggregate": _decode_json(record["aggregate"]),
    })


class PostgresAreaRepository:
    """
    asyncpg-backed AreaRepository.

    Usage:
        repo = PostgresAreaRepository(pool)
        async for area in repo.stream_by_depth(2):
            ...
    """

    def __init__(self, pool: asyncpg.Pool, *, batch_size: Optional[int] = None):
        self.pool = pool
        self.batch_size = batch_size or settings.tree_update_batch_size

    async def stream_by_depth(self, depth: int) -> AsyncIterator[AreaNode]:
        last_id = ""
        pages = 0
        while True:
            try:
                async with self.pool.acquire() as conn:
                    records = await conn.fetch(
                        _STREAM_BY_DEPTH_SQL, depth, last_id, self.batch_size
                    )
            except _DB_ERRORS as exc:
                raise PersistenceError(
                    f"streaming areas at depth {depth} failed after {pages} pages: {exc}",
                    operation="stream_by_depth",
                ) from exc

            pages += 1
            for record in records:
                yield record_to_area(record)

            if len(records) < self.batch_size:
                break
            last_id = records[-1]["id"]

    async def fetch_children(self, node: AreaNode) -> list[AreaNode]:
        if not node.children:
            return []
        try:
            async with self.pool.acquire() as conn:
                records = await conn.fetch(_FETCH_BY_IDS_SQL, node.children)
        except _DB_ERRORS as exc:
            raise PersistenceError(
                f"fetching children of area {node.id} failed: {exc}",
                area_id=node.id,
                operation="fetch_children",
            ) from exc

        by_id = {record["id"]: record_to_area(record) for record in records}
        missing = [child_id for child_id in node.children if child_id not in by_id]
        if missing:
            logger.warning(
                "Area %s references %d missing children: %s",
                node.id,
                len(missing),
                ", ".join(missing[:5]),
            )
        return [by_id[child_id] for child_id in node.children if child_id in by_id]

    async def get(self, area_id: str) -> Optional[AreaNode]:
        try:
            async with self.pool.acquire() as conn:
                record = await conn.fetchrow(_GET_SQL, area_id)
        except _DB_ERRORS as exc:
            raise PersistenceError(
                f"loading area {area_id} failed: {exc}",
                area_id=area_id,
                operation="get",
            ) from exc
        return record_to_area(record) if record else None

    async def save(self, node: AreaNode) -> None:
        """Write the statistics fields. Metadata keys the model does not own are kept."""
        aggregate = node.aggregate.model_dump(by_alias=True) if node.aggregate else None
        try:
            async with self.pool.acquire() as conn:
                status = await conn.execute(
                    _SAVE_SQL,
                    node.id,
                    node.total_climbs,
                    node.density,
                    json.dumps(aggregate) if aggregate is not None else None,
                    json.dumps(node.metadata.model_dump(mode="json")),
                )
        except _DB_ERRORS as exc:
            raise PersistenceError(
                f"saving area {node.id} failed: {exc}",
                area_id=node.id,
                operation="save",
            ) from exc

        # asyncpg returns the command tag, e.g. "UPDATE 1"
        if status == "UPDATE 0":
            raise PersistenceError(
                f"saving area {node.id} failed: row not found",
                area_id=node.id,
                operation="save",
            )
