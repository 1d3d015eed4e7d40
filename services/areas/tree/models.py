"""
Area tree data models.

AreaNode mirrors one row of the `areas` table. The jsonb columns
(metadata, aggregate) are parsed into pydantic models and dumped back in
their camelCase wire form so a node round-trips through the repository
without loss.

AggregationResult is the transient per-subtree summary passed up through
the post-order traversal. It is never persisted on its own.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

# (min_lng, min_lat, max_lng, max_lat)
BBox = tuple[float, float, float, float]

# (lng, lat)
LngLat = tuple[float, float]

WORLD_BBOX: BBox = (-180.0, -90.0, 180.0, 90.0)

# (0, 0) means "no location recorded yet"
UNSET_LNGLAT: LngLat = (0.0, 0.0)

GRADE_BANDS = ("unknown", "beginner", "intermediate", "advanced", "expert")


# ---------------------------------------------------------------------------
# Aggregate breakdowns
# ---------------------------------------------------------------------------

class GradeBands(BaseModel):
    """Climb counts per difficulty band."""
    unknown: int = 0
    beginner: int = 0
    intermediate: int = 0
    advanced: int = 0
    expert: int = 0

    def total(self) -> int:
        return sum(getattr(self, band) for band in GRADE_BANDS)


class DisciplineStats(BaseModel):
    """Counts for one discipline (sport, trad, bouldering, ...)."""
    total: int = 0
    bands: GradeBands = Field(default_factory=GradeBands)


class Aggregate(BaseModel):
    """
    Three parallel breakdowns of an area's climbs:
      - by_grade:      exact grade label -> count
      - by_discipline: discipline -> total + band counts
      - by_grade_band: fixed five difficulty bands
    """
    model_config = ConfigDict(populate_by_name=True)

    by_grade: dict[str, int] = Field(default_factory=dict, alias="byGrade")
    by_discipline: dict[str, DisciplineStats] = Field(default_factory=dict, alias="byDiscipline")
    by_grade_band: GradeBands = Field(default_factory=GradeBands, alias="byGradeBand")

    @field_validator("by_grade", mode="before")
    @classmethod
    def _grade_list_to_mapping(cls, v: Any) -> Any:
        # Older documents store byGrade as [{"label": "5.10a", "count": 3}, ...]
        if isinstance(v, list):
            mapping: dict[str, int] = {}
            for item in v:
                label = item["label"]
                mapping[label] = mapping.get(label, 0) + item["count"]
            return mapping
        return v


# ---------------------------------------------------------------------------
# Area node
# ---------------------------------------------------------------------------

class AreaMetadata(BaseModel):
    # Other services keep their own keys here (isDestination, mp_id, ...)
    model_config = ConfigDict(extra="allow")

    leaf: bool = False
    bbox: BBox = WORLD_BBOX
    lnglat: LngLat = UNSET_LNGLAT

    @field_validator("bbox", mode="before")
    @classmethod
    def _empty_bbox_is_world(cls, v: Any) -> Any:
        if v is None or (isinstance(v, (list, tuple)) and len(v) == 0):
            return WORLD_BBOX
        return v

    @field_validator("lnglat", mode="before")
    @classmethod
    def _lnglat_from_geojson(cls, v: Any) -> Any:
        """Accept a GeoJSON Point, a bare [lng, lat] pair, or nothing."""
        if v is None:
            return UNSET_LNGLAT
        if isinstance(v, dict):
            return tuple(v.get("coordinates") or UNSET_LNGLAT)
        return v

    @field_serializer("lnglat")
    def _lnglat_to_geojson(self, v: LngLat) -> dict[str, Any]:
        return {"type": "Point", "coordinates": [v[0], v[1]]}


class AreaNode(BaseModel):
    """One node of the geographic area tree (country, region, ..., crag)."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    path_tokens: list[str] = Field(default_factory=list, alias="pathTokens")
    children: list[str] = Field(default_factory=list)
    metadata: AreaMetadata = Field(default_factory=AreaMetadata)
    total_climbs: int = Field(default=0, alias="totalClimbs")
    density: float = 0.0
    aggregate: Aggregate | None = None

    @property
    def depth(self) -> int:
        """1 = country (child of the global root), 2 = state/province, ..."""
        return len(self.path_tokens)

    @property
    def ancestor_ids(self) -> list[str]:
        return self.path_tokens[:-1]


@dataclass
class AggregationResult:
    """Reduced statistics for one subtree."""
    area_id: str
    total_climbs: int
    bbox: BBox
    lnglat: LngLat
    density: float
    aggregate: Aggregate
