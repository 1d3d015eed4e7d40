"""
Shared fixtures for the area tree test suite.

Provides an in-memory AreaRepository that behaves like the Postgres one
(fresh copies on every read, one write per save), with hooks to inject
save failures and to observe concurrency, plus factory helpers for crags
and intermediate areas.
"""

import asyncio
from typing import Any, AsyncIterator, Optional

import pytest

from services.areas.db.repository import PersistenceError
from services.areas.tree.models import (
    Aggregate,
    AreaMetadata,
    AreaNode,
    DisciplineStats,
    GradeBands,
)


# ---------------------------------------------------------------------------
# Fake repository
# ---------------------------------------------------------------------------

class InMemoryAreaRepository:
    """Dict-backed AreaRepository. Stored nodes are never handed out directly."""

    def __init__(self, nodes: Optional[list[AreaNode]] = None):
        self.nodes: dict[str, AreaNode] = {}
        for node in nodes or []:
            self.add(node)
        self.saved: list[str] = []
        self.streamed_depths: list[int] = []
        self.fail_on_save: set[str] = set()
        self.in_flight = 0
        self.peak_in_flight = 0

    def add(self, node: AreaNode) -> None:
        self.nodes[node.id] = node.model_copy(deep=True)

    def snapshot(self) -> dict[str, dict[str, Any]]:
        return {
            area_id: node.model_dump(mode="json", by_alias=True)
            for area_id, node in self.nodes.items()
        }

    async def _io(self) -> None:
        # Yield to the loop so concurrent visitors actually interleave
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
        finally:
            self.in_flight -= 1

    async def stream_by_depth(self, depth: int) -> AsyncIterator[AreaNode]:
        self.streamed_depths.append(depth)
        ids = sorted(area_id for area_id, node in self.nodes.items() if node.depth == depth)
        for area_id in ids:
            await asyncio.sleep(0)
            yield self.nodes[area_id].model_copy(deep=True)

    async def fetch_children(self, node: AreaNode) -> list[AreaNode]:
        await self._io()
        return [
            self.nodes[child_id].model_copy(deep=True)
            for child_id in node.children
            if child_id in self.nodes
        ]

    async def get(self, area_id: str) -> Optional[AreaNode]:
        await self._io()
        node = self.nodes.get(area_id)
        return node.model_copy(deep=True) if node else None

    async def save(self, node: AreaNode) -> None:
        await self._io()
        if node.id in self.fail_on_save:
            raise PersistenceError(
                f"saving area {node.id} failed: injected",
                area_id=node.id,
                operation="save",
            )
        self.nodes[node.id] = node.model_copy(deep=True)
        self.saved.append(node.id)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

def make_aggregate(
    bands: Optional[dict[str, int]] = None,
    grades: Optional[dict[str, int]] = None,
    disciplines: Optional[dict[str, int]] = None,
) -> Aggregate:
    """Aggregate whose discipline entries all share the same band counts."""
    band_model = GradeBands(**(bands or {}))
    return Aggregate(
        by_grade=dict(grades or {}),
        by_discipline={
            name: DisciplineStats(total=total, bands=band_model.model_copy())
            for name, total in (disciplines or {}).items()
        },
        by_grade_band=band_model,
    )


def make_crag(
    area_id: str,
    path: list[str],
    total: int,
    bbox: tuple[float, float, float, float],
    lnglat: tuple[float, float],
    *,
    band: str = "intermediate",
    grade: str = "5.10a",
    discipline: str = "sport",
) -> AreaNode:
    """Leaf area whose climbs all fall in one band / grade / discipline."""
    return AreaNode(
        id=area_id,
        path_tokens=path,
        metadata=AreaMetadata(leaf=True, bbox=bbox, lnglat=lnglat),
        total_climbs=total,
        aggregate=make_aggregate(
            bands={band: total},
            grades={grade: total} if total else {},
            disciplines={discipline: total} if total else {},
        ),
    )


def make_area(
    area_id: str,
    path: list[str],
    children: list[str],
    *,
    lnglat: tuple[float, float] = (0.0, 0.0),
) -> AreaNode:
    """Non-leaf area with stale (zeroed) statistics."""
    return AreaNode(
        id=area_id,
        path_tokens=path,
        children=children,
        metadata=AreaMetadata(leaf=False, lnglat=lnglat),
    )


def build_world() -> list[AreaNode]:
    """
    Two countries:

        usa ─┬─ nv ─┬─ red-rocks ─┬─ calico (crag, 5)
             │      │             └─ kraft (crag, 0, unset point)
             │      └─ mt-charleston (crag, 3)
             └─ ca ── yosemite ── el-cap (crag, 7)
        can ── bc ── squamish (crag, 4)
    """
    return [
        make_area("usa", ["usa"], ["nv", "ca"]),
        make_area("can", ["can"], ["bc"]),
        make_area("nv", ["usa", "nv"], ["red-rocks", "mt-charleston"]),
        make_area("ca", ["usa", "ca"], ["yosemite"], lnglat=(-119.5, 37.2)),
        make_area("red-rocks", ["usa", "nv", "red-rocks"], ["calico", "kraft"]),
        make_area("yosemite", ["usa", "ca", "yosemite"], ["el-cap"]),
        make_area("bc", ["can", "bc"], ["squamish"]),
        make_crag(
            "calico", ["usa", "nv", "red-rocks", "calico"], 5,
            (-115.45, 36.15, -115.40, 36.18), (-115.42, 36.16),
            band="beginner", grade="5.7", discipline="sport",
        ),
        make_crag(
            "kraft", ["usa", "nv", "red-rocks", "kraft"], 0,
            (-115.50, 36.10, -115.48, 36.12), (0.0, 0.0),
        ),
        make_crag(
            "mt-charleston", ["usa", "nv", "mt-charleston"], 3,
            (-115.70, 36.25, -115.60, 36.30), (-115.65, 36.27),
            band="advanced", grade="5.12a", discipline="sport",
        ),
        make_crag(
            "el-cap", ["usa", "ca", "yosemite", "el-cap"], 7,
            (-119.65, 37.72, -119.62, 37.74), (-119.64, 37.73),
            band="expert", grade="5.13a", discipline="trad",
        ),
        make_crag(
            "squamish", ["can", "bc", "squamish"], 4,
            (-123.16, 49.67, -123.13, 49.70), (-123.15, 49.68),
            band="intermediate", grade="5.10a", discipline="trad",
        ),
    ]


@pytest.fixture
def world_repo() -> InMemoryAreaRepository:
    return InMemoryAreaRepository(build_world())
