"""Aggregator: ask the data source for totals instead of summing raw samples.

Used when per-sample records are unreliable, fragmented across apps, or only
partially readable.  Every metric is gated on the read permission of the
record kind that owns it; a metric without permission is silently dropped,
and with nothing permitted the aggregator returns an empty summary without
querying the source at all.

Rounding policy: calories, steps, distance and floors are truncated toward
zero.  Rounding to nearest would over-report when the same day is aggregated
again on a later run.
"""

from __future__ import annotations

import logging
import math
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Iterable

from src.health_sync.base import (
    METRIC_RECORD_KIND,
    AggregateMetric,
    AggregateSummary,
    RecordKind,
)
from src.health_sync.exceptions import AggregationError
from src.health_sync.reader import RecordReader
from src.health_sync.source import RecordSource

logger = logging.getLogger("healthsync.aggregator")

WORKOUT_METRICS: tuple[AggregateMetric, ...] = (
    AggregateMetric.DISTANCE_TOTAL,
    AggregateMetric.ACTIVE_CALORIES_TOTAL,
)

ACTIVITY_DAY_METRICS: tuple[AggregateMetric, ...] = (
    AggregateMetric.TOTAL_CALORIES,
    AggregateMetric.ACTIVE_CALORIES_TOTAL,
    AggregateMetric.BASAL_CALORIES_TOTAL,
    AggregateMetric.STEPS_TOTAL,
    AggregateMetric.DISTANCE_TOTAL,
    AggregateMetric.FLOORS_CLIMBED_TOTAL,
    AggregateMetric.EXERCISE_DURATION_TOTAL,
)


def floor_or_none(value: float | None) -> float | None:
    """Truncate toward zero, passing None through."""
    if value is None:
        return None
    return float(math.floor(value)) if value >= 0 else float(math.ceil(value))


def reconcile_calories(
    total: float | None, active: float | None, basal: float | None
) -> tuple[float | None, float | None, float | None]:
    """Derive the missing calorie field when exactly two of three are known.

    ``active = total - basal`` or ``basal = total - active``.  Total is never
    derived, and nothing is overwritten when all three are present.

    Returns:
        ``(total, active, basal)``.
    """
    if total is not None and basal is not None and active is None:
        active = total - basal
    elif total is not None and active is not None and basal is None:
        basal = total - active
    return total, active, basal


def day_bounds(day: date, tz: tzinfo) -> tuple[datetime, datetime]:
    """Return local midnight-to-midnight for ``day`` as absolute UTC instants."""
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


class RecordAggregator:
    """Permission-aware wrapper over the source's native aggregation."""

    def __init__(self, source: RecordSource, reader: RecordReader) -> None:
        self._source = source
        self._reader = reader

    async def permitted_metrics(
        self, requested: Iterable[tuple[RecordKind, AggregateMetric]]
    ) -> set[AggregateMetric]:
        """Intersect ``(record kind, metric)`` pairs with granted permissions."""
        granted = await self._reader.granted()
        permitted = {metric for kind, metric in requested if kind in granted}
        return permitted

    async def aggregate(
        self, start: datetime, end: datetime, metrics: Iterable[AggregateMetric]
    ) -> AggregateSummary:
        """Query totals for ``metrics`` over ``[start, end)``.

        Metrics whose owning record kind lacks permission are dropped.  The
        returned values are truncated per the rounding policy; exercise
        duration is reported in whole minutes.

        Raises:
            AggregationError: The source failed to aggregate.
        """
        permitted = await self.permitted_metrics(
            (METRIC_RECORD_KIND[m], m) for m in metrics
        )
        if not permitted:
            logger.debug("No permitted metrics for [%s, %s); skipping query", start, end)
            return AggregateSummary()

        try:
            raw = await self._source.aggregate(start, end, permitted)
        except Exception as exc:
            raise AggregationError(f"Aggregation over [{start}, {end}) failed: {exc}") from exc

        def _keep(metric: AggregateMetric, value):
            return value if metric in permitted else None

        exercise = _keep(AggregateMetric.EXERCISE_DURATION_TOTAL, raw.exercise_minutes)
        return AggregateSummary(
            distance_m=floor_or_none(_keep(AggregateMetric.DISTANCE_TOTAL, raw.distance_m)),
            active_calories_kcal=floor_or_none(
                _keep(AggregateMetric.ACTIVE_CALORIES_TOTAL, raw.active_calories_kcal)
            ),
            basal_calories_kcal=floor_or_none(
                _keep(AggregateMetric.BASAL_CALORIES_TOTAL, raw.basal_calories_kcal)
            ),
            total_calories_kcal=floor_or_none(
                _keep(AggregateMetric.TOTAL_CALORIES, raw.total_calories_kcal)
            ),
            steps=floor_or_none(_keep(AggregateMetric.STEPS_TOTAL, raw.steps)),
            floors_climbed=floor_or_none(
                _keep(AggregateMetric.FLOORS_CLIMBED_TOTAL, raw.floors_climbed)
            ),
            exercise_minutes=int(exercise) if exercise is not None else None,
        )

    async def aggregate_workout_summary(
        self, start: datetime, end: datetime
    ) -> AggregateSummary:
        """Distance and active calories for an exercise session window."""
        return await self.aggregate(start, end, WORKOUT_METRICS)

    async def aggregate_activity_day_summary(
        self, day: date, tz: tzinfo
    ) -> AggregateSummary:
        """Day-level activity totals for ``day`` in time zone ``tz``.

        The missing calorie field is derived when exactly two are known.
        """
        start, end = day_bounds(day, tz)
        summary = await self.aggregate(start, end, ACTIVITY_DAY_METRICS)
        total, active, basal = reconcile_calories(
            summary.total_calories_kcal,
            summary.active_calories_kcal,
            summary.basal_calories_kcal,
        )
        summary.total_calories_kcal = total
        summary.active_calories_kcal = active
        summary.basal_calories_kcal = basal
        return summary
