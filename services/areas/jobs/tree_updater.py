"""
Area tree statistics updater.

Recomputes totalClimbs, bbox, centroid, density and the grade/discipline
aggregate for every non-leaf area from the crags beneath it.

Traversal is post-order graph reduction, much like functools.reduce over
a tree: recurse to the crags, reduce each crag into an AggregationResult,
then reduce each list of child results into the parent, save it, and hand
the result to the grandparent.

Walking the whole world from the root at once kept too much of the tree
alive, so a run is split into two phases:
  1. For every depth-2 area (state / province) recursively update the
     whole subtree. Depth-2 roots are streamed and visited one at a time.
  2. For every depth-1 area (country) combine the already-updated
     depth-2 summaries. No recursion. A country that is itself a crag
     is read, never written.
Phase 2 never starts unless phase 1 finished cleanly.

Concurrency:
  - One asyncio.Semaphore bounds visitor work (children fetch, reduce +
    save) across the entire run, not per level.
  - A frame gives its slot back while it waits for its children, so a
    small limit cannot deadlock on a deep tree.
  - The first failing child cancels its still-running siblings and the
    error propagates to the run. Nothing is retried; re-running is safe
    because the reduction is deterministic.

Entry points:
    async def run_tree_update(pool, *, concurrency=None, batch_size=None)
    async def run_area_refresh(pool, area_id, *, concurrency=None)
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import aclosing, asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from services.areas.config import settings
from services.areas.db.repository import AreaRepository, PostgresAreaRepository
from services.areas.tree.models import AggregationResult, AreaNode
from services.areas.tree.reducers import leaf_reducer, nodes_reducer

logger = logging.getLogger(__name__)

# pathTokens length of the two levels the run is split on
COUNTRY_DEPTH = 1
SUBDIVISION_DEPTH = 2


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------

@dataclass
class TreeUpdateStats:
    """Summary of a tree update run."""
    status: str = "pending"  # pending | success | skipped | error
    phase1_roots: int = 0
    phase2_roots: int = 0
    nodes_updated: int = 0
    leaves_read: int = 0
    peak_in_flight: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    duration_ms: int = 0


# ---------------------------------------------------------------------------
# Updater
# ---------------------------------------------------------------------------

class TreeUpdater:
    """
    Post-order visitor plus the two-phase orchestrator.

    Usage:
        updater = TreeUpdater(PostgresAreaRepository(pool))
        stats = await updater.run()
    """

    def __init__(
        self,
        repository: AreaRepository,
        *,
        limiter: Optional[asyncio.Semaphore] = None,
        concurrency: Optional[int] = None,
        min_area_km2: Optional[float] = None,
    ):
        self.repository = repository
        if limiter is None:
            self.concurrency = concurrency or settings.tree_update_concurrency
            self.limiter = asyncio.Semaphore(self.concurrency)
        else:
            # A shared limiter is sized by its owner
            self.concurrency = concurrency
            self.limiter = limiter
        self.min_area_km2 = (
            settings.density_min_area_km2 if min_area_km2 is None else min_area_km2
        )
        self.stats = TreeUpdateStats()
        self._in_flight = 0

    @asynccontextmanager
    async def _slot(self):
        async with self.limiter:
            self._in_flight += 1
            self.stats.peak_in_flight = max(self.stats.peak_in_flight, self._in_flight)
            try:
                yield
            finally:
                self._in_flight -= 1

    async def _reduce_into(
        self,
        results: list[AggregationResult],
        node: AreaNode,
    ) -> AggregationResult:
        async with self._slot():
            result = await nodes_reducer(
                results, node, self.repository, min_area_km2=self.min_area_km2
            )
        self.stats.nodes_updated += 1
        return result

    async def visit(self, node: AreaNode) -> AggregationResult:
        """Recompute `node` and everything below it. Crags are read, never written."""
        if node.metadata.leaf:
            self.stats.leaves_read += 1
            return leaf_reducer(node)

        async with self._slot():
            children = await self.repository.fetch_children(node)

        tasks = [asyncio.create_task(self.visit(child)) for child in children]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

        return await self._reduce_into(list(results), node)

    async def _roll_up(self, node: AreaNode) -> AggregationResult:
        """Reduce `node` from its children's stored (already current) statistics."""
        if node.metadata.leaf:
            self.stats.leaves_read += 1
            return leaf_reducer(node)

        async with self._slot():
            children = await self.repository.fetch_children(node)
        self.stats.leaves_read += len(children)
        return await self._reduce_into([leaf_reducer(child) for child in children], node)

    async def _run_phase1(self) -> None:
        async with aclosing(self.repository.stream_by_depth(SUBDIVISION_DEPTH)) as roots:
            async for root in roots:
                await self.visit(root)
                self.stats.phase1_roots += 1
                logger.debug("tree_update: phase 1 finished subtree %s", root.id)

    async def _run_phase2(self) -> None:
        async with aclosing(self.repository.stream_by_depth(COUNTRY_DEPTH)) as countries:
            async for country in countries:
                await self._roll_up(country)
                self.stats.phase2_roots += 1

    async def run(self) -> TreeUpdateStats:
        """Update every area in the tree. Raises on the first unrecovered error."""
        self.stats = TreeUpdateStats(started_at=datetime.now(timezone.utc))
        start_ts = time.monotonic()
        logger.info(
            "tree_update: starting (concurrency=%s)",
            self.concurrency if self.concurrency is not None else "shared limiter",
        )

        for phase, step in ((1, self._run_phase1), (2, self._run_phase2)):
            try:
                await step()
            except Exception as exc:
                self._finish("error", start_ts)
                logger.error(
                    "tree_update: phase %d failed after %dms: %s",
                    phase,
                    self.stats.duration_ms,
                    exc,
                    exc_info=True,
                )
                raise
            logger.info(
                "tree_update: phase %d complete subdivisions=%d countries=%d nodes_updated=%d",
                phase,
                self.stats.phase1_roots,
                self.stats.phase2_roots,
                self.stats.nodes_updated,
            )

        self._finish("success", start_ts)
        logger.info(
            "tree_update: complete nodes_updated=%d leaves_read=%d peak_in_flight=%d duration_ms=%d",
            self.stats.nodes_updated,
            self.stats.leaves_read,
            self.stats.peak_in_flight,
            self.stats.duration_ms,
        )
        return self.stats

    async def refresh_area(self, area_id: str) -> Optional[AggregationResult]:
        """
        Update one area's subtree, then bubble the change up through its
        ancestors (nearest first). Returns the area's result, or None if
        the area does not exist.
        """
        self.stats = TreeUpdateStats(started_at=datetime.now(timezone.utc))
        start_ts = time.monotonic()

        try:
            node = await self.repository.get(area_id)
            if node is None:
                logger.warning("tree_update: area %s not found, nothing to refresh", area_id)
                self._finish("skipped", start_ts)
                return None

            result = await self.visit(node)

            for ancestor_id in reversed(node.ancestor_ids):
                ancestor = await self.repository.get(ancestor_id)
                if ancestor is None:
                    logger.warning(
                        "tree_update: ancestor %s of %s not found, stopping roll-up",
                        ancestor_id,
                        area_id,
                    )
                    break
                await self._roll_up(ancestor)
        except Exception as exc:
            self._finish("error", start_ts)
            logger.error(
                "tree_update: refresh of %s failed after %dms: %s",
                area_id,
                self.stats.duration_ms,
                exc,
                exc_info=True,
            )
            raise

        self._finish("success", start_ts)
        logger.info(
            "tree_update: refreshed %s nodes_updated=%d duration_ms=%d",
            area_id,
            self.stats.nodes_updated,
            self.stats.duration_ms,
        )
        return result

    def _finish(self, status: str, start_ts: float) -> None:
        self.stats.status = status
        self.stats.finished_at = datetime.now(timezone.utc)
        self.stats.duration_ms = int((time.monotonic() - start_ts) * 1000)


# ---------------------------------------------------------------------------
# Public API (matches other job entry point patterns)
# ---------------------------------------------------------------------------

async def run_tree_update(
    pool: Any,
    *,
    concurrency: Optional[int] = None,
    batch_size: Optional[int] = None,
) -> TreeUpdateStats:
    """
    Recompute statistics for the whole area tree.

    Args:
        pool:        asyncpg connection pool.
        concurrency: Max in-flight visitor work (default settings.tree_update_concurrency).
        batch_size:  Rows per page when streaming a level (default settings.tree_update_batch_size).
    """
    repository = PostgresAreaRepository(pool, batch_size=batch_size)
    return await TreeUpdater(repository, concurrency=concurrency).run()


async def run_area_refresh(
    pool: Any,
    area_id: str,
    *,
    concurrency: Optional[int] = None,
) -> Optional[AggregationResult]:
    """Recompute one area's subtree and its ancestors."""
    repository = PostgresAreaRepository(pool)
    return await TreeUpdater(repository, concurrency=concurrency).refresh_area(area_id)


# ---------------------------------------------------------------------------
# Standalone entry point
# ---------------------------------------------------------------------------

async def main() -> None:
    """Standalone entry point for running from cron or a Cloud Run Job."""
    import argparse
    import os
    import sys

    from services.areas.db.pool import standalone_pool

    parser = argparse.ArgumentParser(
        description="Recompute rolled-up statistics for the area tree"
    )
    parser.add_argument("--database-url", default=os.environ.get("DATABASE_URL"))
    parser.add_argument(
        "--area-id",
        default=None,
        help="Only refresh this area's subtree and its ancestors",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=settings.tree_update_concurrency,
        help=f"Max in-flight visitor work (default {settings.tree_update_concurrency})",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=settings.tree_update_batch_size,
        help=f"Rows per level page (default {settings.tree_update_batch_size})",
    )
    parser.add_argument("--verbose", "-v", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if not args.database_url:
        logger.error("DATABASE_URL not set")
        sys.exit(1)

    async with standalone_pool(args.database_url) as pool:
        try:
            if args.area_id:
                result = await run_area_refresh(
                    pool, args.area_id, concurrency=args.concurrency
                )
                print(f"tree_update refresh complete: {result}")
            else:
                stats = await run_tree_update(
                    pool, concurrency=args.concurrency, batch_size=args.batch_size
                )
                print(f"tree_update complete: {stats}")
        except Exception:
            sys.exit(1)


def cli() -> None:
    """Console script wrapper."""
    asyncio.run(main())


if __name__ == "__main__":
    cli()
