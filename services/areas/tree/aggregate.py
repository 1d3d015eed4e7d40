"""
Aggregate merging.

merge_aggregates is a commutative monoid over Aggregate with
empty_aggregate() as identity, so children can be folded in any order.
Counts are summed per key; a key missing on one side counts as zero.
"""

from __future__ import annotations

from services.areas.tree.models import (
    GRADE_BANDS,
    Aggregate,
    DisciplineStats,
    GradeBands,
)


class MalformedAggregateError(ValueError):
    """Raised when an aggregate carries counts that cannot be merged."""
    pass


def empty_aggregate() -> Aggregate:
    return Aggregate()


def _check_bands(bands: GradeBands, where: str) -> None:
    for band in GRADE_BANDS:
        count = getattr(bands, band)
        if count < 0:
            raise MalformedAggregateError(f"negative count {count} for {where}.{band}")


def validate_aggregate(aggregate: Aggregate) -> None:
    """Raise MalformedAggregateError on any negative count. Never clamps."""
    for label, count in aggregate.by_grade.items():
        if count < 0:
            raise MalformedAggregateError(f"negative count {count} for byGrade[{label!r}]")
    for discipline, stats in aggregate.by_discipline.items():
        if stats.total < 0:
            raise MalformedAggregateError(
                f"negative total {stats.total} for byDiscipline[{discipline!r}]"
            )
        _check_bands(stats.bands, f"byDiscipline[{discipline!r}].bands")
    _check_bands(aggregate.by_grade_band, "byGradeBand")


def _merge_bands(lhs: GradeBands, rhs: GradeBands) -> GradeBands:
    return GradeBands(**{band: getattr(lhs, band) + getattr(rhs, band) for band in GRADE_BANDS})


def merge_aggregates(lhs: Aggregate, rhs: Aggregate) -> Aggregate:
    """Sum two aggregates bucket by bucket. Neither operand is modified."""
    validate_aggregate(lhs)
    validate_aggregate(rhs)

    by_grade = dict(lhs.by_grade)
    for label, count in rhs.by_grade.items():
        by_grade[label] = by_grade.get(label, 0) + count

    by_discipline = {
        name: stats.model_copy(deep=True) for name, stats in lhs.by_discipline.items()
    }
    for name, stats in rhs.by_discipline.items():
        current = by_discipline.get(name)
        if current is None:
            by_discipline[name] = stats.model_copy(deep=True)
        else:
            by_discipline[name] = DisciplineStats(
                total=current.total + stats.total,
                bands=_merge_bands(current.bands, stats.bands),
            )

    return Aggregate(
        by_grade=by_grade,
        by_discipline=by_discipline,
        by_grade_band=_merge_bands(lhs.by_grade_band, rhs.by_grade_band),
    )
