"""
Leaf and node reducers for the area tree.

leaf_reducer reads an area's stored statistics as-is. It serves real
leaves (crags) and also any area whose statistics are already known to be
current, e.g. states when rolling up a country.

nodes_reducer folds a list of child results into one, writes it onto the
parent, saves the parent, and returns the result to the caller.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from services.areas.tree.aggregate import (
    MalformedAggregateError,
    empty_aggregate,
    merge_aggregates,
)
from services.areas.tree.geo import (
    DEFAULT_MIN_AREA_KM2,
    area_density,
    centroid_of,
    is_unset,
    union_bounding_boxes,
)
from services.areas.tree.models import (
    UNSET_LNGLAT,
    WORLD_BBOX,
    AggregationResult,
    AreaNode,
)

if TYPE_CHECKING:
    from services.areas.db.repository import AreaRepository

logger = logging.getLogger(__name__)


def leaf_reducer(node: AreaNode) -> AggregationResult:
    """Current statistics of a crag (or an already-aggregated area). No writes."""
    return AggregationResult(
        area_id=node.id,
        total_climbs=node.total_climbs,
        bbox=node.metadata.bbox,
        lnglat=node.metadata.lnglat,
        density=node.density,
        aggregate=node.aggregate if node.aggregate is not None else empty_aggregate(),
    )


def reduce_results(
    results: list[AggregationResult],
    area_id: str,
    *,
    min_area_km2: float = DEFAULT_MIN_AREA_KM2,
) -> AggregationResult:
    """
    Fold child results left to right into the result for `area_id`.

    An empty list yields zero climbs, the whole-earth box and an unset
    centroid; an area may legitimately have no children for a while.
    """
    total_climbs = 0
    bbox = WORLD_BBOX
    aggregate = empty_aggregate()

    for index, child in enumerate(results):
        total_climbs += child.total_climbs
        bbox = child.bbox if index == 0 else union_bounding_boxes([bbox, child.bbox])
        try:
            aggregate = merge_aggregates(aggregate, child.aggregate)
        except MalformedAggregateError as exc:
            raise MalformedAggregateError(
                f"area {child.area_id} (child of {area_id}): {exc}"
            ) from exc

    points = [child.lnglat for child in results if not is_unset(child.lnglat)]
    lnglat = centroid_of(points) if points else UNSET_LNGLAT

    return AggregationResult(
        area_id=area_id,
        total_climbs=total_climbs,
        bbox=bbox,
        lnglat=lnglat,
        density=area_density(bbox, total_climbs, min_area_km2=min_area_km2),
        aggregate=aggregate,
    )


async def nodes_reducer(
    results: list[AggregationResult],
    parent: AreaNode,
    repository: AreaRepository,
    *,
    min_area_km2: float = DEFAULT_MIN_AREA_KM2,
) -> AggregationResult:
    """
    Combine child results, write them onto `parent` and save it.

    The parent's lnglat is only filled in while it is still unset, so a
    hand-placed location survives re-runs. The returned result always
    carries the freshly computed centroid.
    """
    result = reduce_results(results, parent.id, min_area_km2=min_area_km2)

    if is_unset(parent.metadata.lnglat):
        parent.metadata.lnglat = result.lnglat
    parent.total_climbs = result.total_climbs
    parent.metadata.bbox = result.bbox
    parent.density = result.density
    parent.aggregate = result.aggregate

    await repository.save(parent)

    logger.debug(
        "Reduced area %s: children=%d total_climbs=%d density=%.4f",
        parent.id,
        len(results),
        result.total_climbs,
        result.density,
    )
    return result
