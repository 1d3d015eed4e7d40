"""
Area tree statistics: models, geometry, aggregate merging and reducers.
"""

from services.areas.tree.aggregate import (
    MalformedAggregateError,
    empty_aggregate,
    merge_aggregates,
    validate_aggregate,
)
from services.areas.tree.geo import (
    area_density,
    bbox_area_km2,
    centroid_of,
    is_unset,
    union_bounding_boxes,
)
from services.areas.tree.models import (
    UNSET_LNGLAT,
    WORLD_BBOX,
    Aggregate,
    AggregationResult,
    AreaMetadata,
    AreaNode,
    DisciplineStats,
    GradeBands,
)
from services.areas.tree.reducers import leaf_reducer, nodes_reducer, reduce_results

__all__ = [
    "MalformedAggregateError",
    "empty_aggregate",
    "merge_aggregates",
    "validate_aggregate",
    "area_density",
    "bbox_area_km2",
    "centroid_of",
    "is_unset",
    "union_bounding_boxes",
    "UNSET_LNGLAT",
    "WORLD_BBOX",
    "Aggregate",
    "AggregationResult",
    "AreaMetadata",
    "AreaNode",
    "DisciplineStats",
    "GradeBands",
    "leaf_reducer",
    "nodes_reducer",
    "reduce_results",
]
