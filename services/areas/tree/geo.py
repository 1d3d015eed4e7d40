"""
Geometry helpers for area statistics.

Pure math on lng/lat degrees, no external GIS libs. Areas use a spherical
Earth, which is plenty for a density figure that only has to rank areas
against each other.
"""

from __future__ import annotations

import math
from collections.abc import Sequence

from services.areas.tree.models import UNSET_LNGLAT, WORLD_BBOX, BBox, LngLat

# Mean Earth radius in meters
EARTH_RADIUS_M = 6_371_008.8

# Boxes smaller than this are treated as this size when computing density
DEFAULT_MIN_AREA_KM2 = 5.0


def is_unset(point: LngLat) -> bool:
    """True when a point is still the (0, 0) placeholder."""
    return point[0] == 0 and point[1] == 0


def union_bounding_boxes(boxes: Sequence[BBox]) -> BBox:
    """Smallest box containing every input box. Empty input -> whole earth."""
    if not boxes:
        return WORLD_BBOX
    min_lng, min_lat, max_lng, max_lat = boxes[0]
    for box in boxes[1:]:
        min_lng = min(min_lng, box[0])
        min_lat = min(min_lat, box[1])
        max_lng = max(max_lng, box[2])
        max_lat = max(max_lat, box[3])
    return (min_lng, min_lat, max_lng, max_lat)


def bbox_area_km2(bbox: BBox) -> float:
    """
    Surface area of a lng/lat rectangle in km^2.

    Spherical zone formula: R^2 * d_lambda * (sin(phi2) - sin(phi1)).
    Inverted or zero-width boxes have zero area.
    """
    min_lng, min_lat, max_lng, max_lat = bbox
    d_lng = min(max(max_lng - min_lng, 0.0), 360.0)
    lat_lo = max(min_lat, -90.0)
    lat_hi = min(max_lat, 90.0)
    if d_lng == 0.0 or lat_hi <= lat_lo:
        return 0.0
    area_m2 = (
        EARTH_RADIUS_M ** 2
        * math.radians(d_lng)
        * (math.sin(math.radians(lat_hi)) - math.sin(math.radians(lat_lo)))
    )
    return area_m2 / 1_000_000


def area_density(
    bbox: BBox,
    total_climbs: int,
    *,
    min_area_km2: float = DEFAULT_MIN_AREA_KM2,
) -> float:
    """
    Climbs per km^2 of the bounding box.

    Degenerate (zero-area) boxes have density 0.0. Tiny boxes are floored
    at min_area_km2 so a single boulder does not dwarf a whole region.
    """
    area_km2 = bbox_area_km2(bbox)
    if area_km2 <= 0.0:
        return 0.0
    return total_climbs / max(area_km2, min_area_km2)


def centroid_of(points: Sequence[LngLat]) -> LngLat:
    """Mean position of the points, or the unset placeholder if there are none."""
    if not points:
        return UNSET_LNGLAT
    lng = sum(p[0] for p in points) / len(points)
    lat = sum(p[1] for p in points) / len(points)
    return (lng, lat)
