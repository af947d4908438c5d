"""Processor: normalize raw record lists into resource-shaped results.

Each ``process_*`` function is a pure function of its record lists (plus a
time zone for Activity).  Inputs are re-sorted internally, so the order in
which a reader or the change feed delivered records never changes the
output.  Missing inputs produce a partial or empty result rather than an
error.

``PROCESSORS`` maps every syncable resource to a function taking a
``RecordBatch`` and a ``ProcessingContext``.  The backfill path and the change
reconciler both go through ``process_resource()``, so no normalization rule
exists in only one of them.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import date, timezone, tzinfo
from typing import Callable, Iterable, Sequence

from src.health_sync.aggregator import floor_or_none, reconcile_calories
from src.health_sync.base import (
    ActivityDay,
    ActivitySummary,
    AggregateSummary,
    BloodPressureRecord,
    BloodPressureSample,
    BodySummary,
    ExerciseSessionRecord,
    NormalizedSample,
    ProcessedResourceData,
    ProfileSummary,
    RawRecord,
    RecordBatch,
    RecordKind,
    Resource,
    SleepItem,
    SleepSessionRecord,
    SleepStageRecord,
    SleepSummary,
    Summary,
    TimeSeries,
    WorkoutItem,
    WorkoutSummary,
)
from src.health_sync.exceptions import InvalidResourceStateError

logger = logging.getLogger("healthsync.processor")

# Source stage names -> canonical stage
_STAGE_ALIASES: dict[str, str] = {
    "awake": "awake",
    "in_bed": "awake",
    "light": "light",
    "core": "light",
    "sleeping": "light",
    "asleep": "light",
    "deep": "deep",
    "rem": "rem",
    "out_of_bed": "out_of_bed",
}

ASLEEP_STAGES: frozenset[str] = frozenset({"light", "deep", "rem"})

# Height unit -> multiplier to centimeters
_HEIGHT_TO_CM: dict[str, float] = {"m": 100.0, "cm": 1.0, "in": 2.54, "ft": 30.48}


@dataclass
class ProcessingContext:
    """Parameters shared by every resource processed in one attempt.

    Attributes:
        time_zone:       Zone used to bucket Activity into calendar days.
        fallback_device: Device id used when a record carries none.
    """

    time_zone: tzinfo = timezone.utc
    fallback_device: str = "unknown"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _ordered(records: Iterable[RawRecord]) -> list[RawRecord]:
    return sorted(records, key=lambda r: (r.start, r.end, r.record_id))


def _device(record: RawRecord, fallback: str) -> str:
    return record.source_device or fallback


def _to_sample(record: RawRecord, fallback_device: str) -> NormalizedSample:
    return NormalizedSample(
        timestamp=record.start,
        value=record.value,
        unit=record.unit,
        source_device=_device(record, fallback_device),
        end=None if record.is_instant else record.end,
    )


def _latest(records: Sequence[RawRecord]) -> RawRecord | None:
    ordered = _ordered(records)
    return ordered[-1] if ordered else None


def _sum(records: Sequence[RawRecord]) -> float | None:
    return sum(r.value for r in records) if records else None


def _dominant_device(records: Iterable[RawRecord], fallback: str) -> str:
    counts = Counter(_device(r, fallback) for r in records)
    if not counts:
        return fallback
    return counts.most_common(1)[0][0]


def normalize_stage(stage: str) -> str:
    """Map a source stage name onto the canonical stage vocabulary."""
    key = stage.strip().lower().replace(" ", "_").replace("-", "_")
    return _STAGE_ALIASES.get(key, "unknown")


# ---------------------------------------------------------------------------
# Summary resources
# ---------------------------------------------------------------------------


def process_profile(heights: Sequence[RawRecord]) -> ProfileSummary:
    """Reduce height records to the most recent reading, in centimeters."""
    latest = _latest(heights)
    if latest is None:
        return ProfileSummary()
    factor = _HEIGHT_TO_CM.get(latest.unit.lower())
    if factor is None:
        logger.warning("Unknown height unit %r; passing value through", latest.unit)
        factor = 1.0
    return ProfileSummary(height_cm=latest.value * factor, measured_at=latest.start)


def process_body(
    weights: Sequence[RawRecord],
    body_fats: Sequence[RawRecord],
    fallback_device: str,
) -> BodySummary:
    """Most recent weight and most recent body fat; either may be absent."""
    weight = _latest(weights)
    body_fat = _latest(body_fats)
    return BodySummary(
        weight=_to_sample(weight, fallback_device) if weight else None,
        body_fat=_to_sample(body_fat, fallback_device) if body_fat else None,
    )


def process_workouts(
    sessions: Sequence[RawRecord], fallback_device: str
) -> WorkoutSummary:
    """One ``WorkoutItem`` per exercise session; duration from session bounds."""
    workouts = []
    for session in _ordered(sessions):
        exercise_type = "other"
        title = None
        if isinstance(session, ExerciseSessionRecord):
            exercise_type = session.exercise_type
            title = session.title
        workouts.append(
            WorkoutItem(
                workout_id=session.record_id,
                exercise_type=exercise_type,
                title=title,
                start=session.start,
                end=session.end,
                duration_seconds=int((session.end - session.start).total_seconds()),
                source_device=_device(session, fallback_device),
            )
        )
    return WorkoutSummary(workouts=workouts)


def process_activity(
    active_energy: Sequence[RawRecord],
    basal_metabolic_rate: Sequence[RawRecord],
    floors_climbed: Sequence[RawRecord],
    distance: Sequence[RawRecord],
    steps: Sequence[RawRecord],
    vo2_max: Sequence[RawRecord],
    time_zone: tzinfo,
    fallback_device: str,
    total_calories: Sequence[RawRecord] = (),
) -> ActivitySummary:
    """Combine activity inputs into one ``ActivityDay`` per local calendar date.

    Records are bucketed by the local date of their start in ``time_zone``.
    Totals are truncated toward zero, the calorie derivation rule is applied
    per day, and VO2 max is the latest reading of the day.
    """
    inputs: dict[str, Sequence[RawRecord]] = {
        "active": active_energy,
        "basal": basal_metabolic_rate,
        "total": total_calories,
        "floors": floors_climbed,
        "distance": distance,
        "steps": steps,
        "vo2": vo2_max,
    }
    by_day: dict[date, dict[str, list[RawRecord]]] = defaultdict(lambda: defaultdict(list))
    for name, records in inputs.items():
        for record in records:
            by_day[record.start.astimezone(time_zone).date()][name].append(record)

    days = []
    for day in sorted(by_day):
        bucket = by_day[day]
        total, active, basal = reconcile_calories(
            floor_or_none(_sum(bucket["total"])),
            floor_or_none(_sum(bucket["active"])),
            floor_or_none(_sum(bucket["basal"])),
        )
        vo2 = _latest(bucket["vo2"])
        days.append(
            ActivityDay(
                date=day,
                source_device=_dominant_device(
                    (r for records in bucket.values() for r in _ordered(records)),
                    fallback_device,
                ),
                active_calories_kcal=active,
                basal_calories_kcal=basal,
                total_calories_kcal=total,
                steps=floor_or_none(_sum(bucket["steps"])),
                distance_m=floor_or_none(_sum(bucket["distance"])),
                floors_climbed=floor_or_none(_sum(bucket["floors"])),
                vo2_max_ml_kg_min=vo2.value if vo2 else None,
            )
        )
    return ActivitySummary(days=days)


def activity_day_from_summary(
    day: date,
    summary: AggregateSummary,
    source_device: str,
    vo2_max_ml_kg_min: float | None = None,
) -> ActivityDay | None:
    """Build an ``ActivityDay`` from an aggregate summary.

    Produces the same shape as ``process_activity`` so the aggregate and raw
    record data paths are interchangeable.  Returns None for an empty summary.
    """
    if summary.is_empty and vo2_max_ml_kg_min is None:
        return None
    total, active, basal = reconcile_calories(
        summary.total_calories_kcal,
        summary.active_calories_kcal,
        summary.basal_calories_kcal,
    )
    return ActivityDay(
        date=day,
        source_device=source_device,
        active_calories_kcal=active,
        basal_calories_kcal=basal,
        total_calories_kcal=total,
        steps=summary.steps,
        distance_m=summary.distance_m,
        floors_climbed=summary.floors_climbed,
        exercise_minutes=summary.exercise_minutes,
        vo2_max_ml_kg_min=vo2_max_ml_kg_min,
    )


def process_sleep(
    sessions: Sequence[RawRecord],
    stages_by_session: dict[str, list[SleepStageRecord]],
    fallback_device: str,
) -> SleepSummary:
    """Combine sleep sessions with their stage segments.

    Args:
        sessions:          Sleep session records.
        stages_by_session: Session record id -> its stage records.
        fallback_device:   Device id for records without one.

    Returns:
        SleepSummary with total duration and seconds per canonical stage.
    """
    items = []
    for session in _ordered(sessions):
        stages: dict[str, int] = {}
        for stage in _ordered(stages_by_session.get(session.record_id, [])):
            name = normalize_stage(stage.stage) if isinstance(stage, SleepStageRecord) else "unknown"
            seconds = int((stage.end - stage.start).total_seconds())
            stages[name] = stages.get(name, 0) + seconds
        items.append(
            SleepItem(
                session_id=session.record_id,
                start=session.start,
                end=session.end,
                duration_seconds=int((session.end - session.start).total_seconds()),
                source_device=_device(session, fallback_device),
                title=session.title if isinstance(session, SleepSessionRecord) else None,
                stages=stages,
                asleep_seconds=sum(v for k, v in stages.items() if k in ASLEEP_STAGES),
            )
        )
    return SleepSummary(sessions=items)


def group_stages_by_session(
    stages: Iterable[RawRecord],
) -> dict[str, list[SleepStageRecord]]:
    """Key stage records by the id of the session they belong to."""
    grouped: dict[str, list[SleepStageRecord]] = defaultdict(list)
    for stage in stages:
        if isinstance(stage, SleepStageRecord) and stage.session_id:
            grouped[stage.session_id].append(stage)
    return dict(grouped)


# ---------------------------------------------------------------------------
# Time series resources
# ---------------------------------------------------------------------------


def process_samples(
    records: Sequence[RawRecord], fallback_device: str
) -> list[NormalizedSample]:
    """Map each record to one ``NormalizedSample`` ordered by timestamp."""
    return [_to_sample(r, fallback_device) for r in _ordered(records)]


def process_blood_pressure(
    records: Sequence[RawRecord], fallback_device: str
) -> list[BloodPressureSample]:
    """Map each blood pressure record to a systolic/diastolic pair."""
    samples = []
    for record in _ordered(records):
        if not isinstance(record, BloodPressureRecord):
            logger.warning("Skipping blood pressure record %r without diastolic", record.record_id)
            continue
        samples.append(
            BloodPressureSample(
                timestamp=record.start,
                systolic=record.systolic,
                diastolic=record.diastolic,
                unit=record.unit or "mmHg",
                source_device=_device(record, fallback_device),
            )
        )
    return samples


# ---------------------------------------------------------------------------
# Dispatch table
# ---------------------------------------------------------------------------

ResourceProcessorFn = Callable[[RecordBatch, ProcessingContext], ProcessedResourceData]


def _kind(batch: RecordBatch, kind: RecordKind) -> list[RawRecord]:
    return list(batch.get(kind, []))


def _profile(batch: RecordBatch, ctx: ProcessingContext) -> ProcessedResourceData:
    return Summary(process_profile(_kind(batch, RecordKind.HEIGHT)))


def _body(batch: RecordBatch, ctx: ProcessingContext) -> ProcessedResourceData:
    return Summary(
        process_body(
            _kind(batch, RecordKind.WEIGHT),
            _kind(batch, RecordKind.BODY_FAT),
            ctx.fallback_device,
        )
    )


def _workout(batch: RecordBatch, ctx: ProcessingContext) -> ProcessedResourceData:
    return Summary(
        process_workouts(_kind(batch, RecordKind.EXERCISE_SESSION), ctx.fallback_device)
    )


def _activity(batch: RecordBatch, ctx: ProcessingContext) -> ProcessedResourceData:
    return Summary(
        process_activity(
            active_energy=_kind(batch, RecordKind.ACTIVE_CALORIES),
            basal_metabolic_rate=_kind(batch, RecordKind.BASAL_METABOLIC_RATE),
            floors_climbed=_kind(batch, RecordKind.FLOORS_CLIMBED),
            distance=_kind(batch, RecordKind.DISTANCE),
            steps=_kind(batch, RecordKind.STEPS),
            vo2_max=_kind(batch, RecordKind.VO2_MAX),
            total_calories=_kind(batch, RecordKind.TOTAL_CALORIES),
            time_zone=ctx.time_zone,
            fallback_device=ctx.fallback_device,
        )
    )


def _sleep(batch: RecordBatch, ctx: ProcessingContext) -> ProcessedResourceData:
    return Summary(
        process_sleep(
            _kind(batch, RecordKind.SLEEP_SESSION),
            group_stages_by_session(_kind(batch, RecordKind.SLEEP_STAGE)),
            ctx.fallback_device,
        )
    )


def _time_series(kind: RecordKind) -> ResourceProcessorFn:
    def _process(batch: RecordBatch, ctx: ProcessingContext) -> ProcessedResourceData:
        return TimeSeries(process_samples(_kind(batch, kind), ctx.fallback_device))

    return _process


def _blood_pressure(batch: RecordBatch, ctx: ProcessingContext) -> ProcessedResourceData:
    return TimeSeries(
        process_blood_pressure(_kind(batch, RecordKind.BLOOD_PRESSURE), ctx.fallback_device)
    )


PROCESSORS: dict[Resource, ResourceProcessorFn] = {
    Resource.PROFILE: _profile,
    Resource.BODY: _body,
    Resource.WORKOUT: _workout,
    Resource.ACTIVITY: _activity,
    Resource.SLEEP: _sleep,
    Resource.GLUCOSE: _time_series(RecordKind.BLOOD_GLUCOSE),
    Resource.BLOOD_PRESSURE: _blood_pressure,
    Resource.HEART_RATE: _time_series(RecordKind.HEART_RATE),
    Resource.HEART_RATE_VARIABILITY: _time_series(RecordKind.HEART_RATE_VARIABILITY),
    Resource.WATER: _time_series(RecordKind.HYDRATION),
}


def process_resource(
    resource: Resource, batch: RecordBatch, context: ProcessingContext
) -> ProcessedResourceData:
    """Normalize ``batch`` for ``resource`` via the dispatch table.

    Raises:
        InvalidResourceStateError: ``resource`` is a sub-resource alias or has
            no processor.  Callers must remap before processing.
    """
    if resource.is_sub_resource:
        raise InvalidResourceStateError(
            f"Unexpected resource post remapped(): {resource.value}"
        )
    try:
        fn = PROCESSORS[resource]
    except KeyError:
        raise InvalidResourceStateError(
            f"No processor registered for resource '{resource.value}'"
        ) from None
    return fn(batch, context)
