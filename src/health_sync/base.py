"""Canonical data model for the health sync core.

Raw records coming out of a local data source, aggregate summaries computed by
the source itself, and the normalized results handed to an uploader are all
defined here.  Every other module in the package (reader, aggregator,
processor, change reconciler, orchestrator) speaks only these types; concrete
platform record classes never leak past a ``RecordSource`` implementation.

All timestamps are timezone-aware.  Naive datetimes are rejected at record
construction so that half-open window comparisons are never ambiguous.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Iterable, Mapping


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------


class Resource(str, Enum):
    """Logical health resource synced as a unit.

    ``ACTIVE_ENERGY_BURNED``, ``BASAL_ENERGY_BURNED`` and ``STEPS`` are
    sub-resources: callers may name them, but they always fold into
    ``ACTIVITY`` (see ``remapped()``).
    """

    PROFILE = "profile"
    BODY = "body"
    WORKOUT = "workout"
    ACTIVITY = "activity"
    SLEEP = "sleep"
    GLUCOSE = "glucose"
    BLOOD_PRESSURE = "blood_pressure"
    HEART_RATE = "heart_rate"
    HEART_RATE_VARIABILITY = "heart_rate_variability"
    WATER = "water"

    ACTIVE_ENERGY_BURNED = "active_energy_burned"
    BASAL_ENERGY_BURNED = "basal_energy_burned"
    STEPS = "steps"

    @property
    def is_sub_resource(self) -> bool:
        return self in SUB_RESOURCES

    def remapped(self) -> "Resource":
        """Return the resource this one is synced as."""
        return Resource.ACTIVITY if self in SUB_RESOURCES else self


SUB_RESOURCES: frozenset[Resource] = frozenset(
    {Resource.ACTIVE_ENERGY_BURNED, Resource.BASAL_ENERGY_BURNED, Resource.STEPS}
)

#: Resources that produce their own payload, in the default visiting order.
SYNCABLE_RESOURCES: tuple[Resource, ...] = tuple(
    r for r in Resource if r not in SUB_RESOURCES
)

#: Resources whose summary is uploaded even when it carries no data.
ALWAYS_UPLOADED: frozenset[Resource] = frozenset({Resource.PROFILE, Resource.BODY})


def remap_resources(resources: Iterable[Resource]) -> list[Resource]:
    """Remap sub-resources onto their parent and drop duplicates.

    Order of first appearance is preserved so each resource is visited
    exactly once per attempt.
    """
    seen: dict[Resource, None] = {}
    for resource in resources:
        seen.setdefault(resource.remapped(), None)
    return list(seen)


# ---------------------------------------------------------------------------
# Raw records
# ---------------------------------------------------------------------------


class RecordKind(str, Enum):
    """Concrete raw record kinds a data source can return."""

    DISTANCE = "distance"
    ACTIVE_CALORIES = "active_calories"
    BASAL_METABOLIC_RATE = "basal_metabolic_rate"
    TOTAL_CALORIES = "total_calories"
    STEPS = "steps"
    FLOORS_CLIMBED = "floors_climbed"
    HEART_RATE = "heart_rate"
    HEART_RATE_VARIABILITY = "heart_rate_variability"
    BLOOD_GLUCOSE = "blood_glucose"
    BLOOD_PRESSURE = "blood_pressure"
    HEIGHT = "height"
    WEIGHT = "weight"
    BODY_FAT = "body_fat"
    SLEEP_SESSION = "sleep_session"
    SLEEP_STAGE = "sleep_stage"
    HYDRATION = "hydration"
    EXERCISE_SESSION = "exercise_session"
    VO2_MAX = "vo2_max"


#: Record kinds each syncable resource consumes.  Both the backfill read path
#: and the change reconciler select inputs from this one table.
RESOURCE_RECORD_KINDS: dict[Resource, tuple[RecordKind, ...]] = {
    Resource.PROFILE: (RecordKind.HEIGHT,),
    Resource.BODY: (RecordKind.WEIGHT, RecordKind.BODY_FAT),
    Resource.WORKOUT: (RecordKind.EXERCISE_SESSION,),
    Resource.ACTIVITY: (
        RecordKind.ACTIVE_CALORIES,
        RecordKind.BASAL_METABOLIC_RATE,
        RecordKind.TOTAL_CALORIES,
        RecordKind.FLOORS_CLIMBED,
        RecordKind.DISTANCE,
        RecordKind.STEPS,
        RecordKind.VO2_MAX,
    ),
    Resource.SLEEP: (RecordKind.SLEEP_SESSION, RecordKind.SLEEP_STAGE),
    Resource.GLUCOSE: (RecordKind.BLOOD_GLUCOSE,),
    Resource.BLOOD_PRESSURE: (RecordKind.BLOOD_PRESSURE,),
    Resource.HEART_RATE: (RecordKind.HEART_RATE,),
    Resource.HEART_RATE_VARIABILITY: (RecordKind.HEART_RATE_VARIABILITY,),
    Resource.WATER: (RecordKind.HYDRATION,),
}


@dataclass(frozen=True)
class RawRecord:
    """A raw measurement from the local data source.

    Attributes:
        kind:          Concrete record kind.
        start:         Start of the measurement (tz-aware).
        end:           End of the measurement; equal to ``start`` for
                       instantaneous records.
        value:         Numeric value in ``unit``.
        unit:          Unit string (e.g. 'kcal', 'm', 'bpm', 'mg/dL').
        source_device: Identifier of the device that produced the record.
        record_id:     Stable identifier assigned by the source.
    """

    kind: RecordKind
    start: datetime
    end: datetime
    value: float = 0.0
    unit: str = ""
    source_device: str = ""
    record_id: str = ""

    def __post_init__(self) -> None:
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValueError(
                f"{self.kind.value} record {self.record_id!r} has a naive timestamp"
            )
        if self.end < self.start:
            raise ValueError(
                f"{self.kind.value} record {self.record_id!r} ends before it starts"
            )

    @property
    def is_instant(self) -> bool:
        return self.start == self.end


@dataclass(frozen=True)
class BloodPressureRecord(RawRecord):
    """Blood pressure reading.  ``value`` holds the systolic pressure."""

    diastolic: float = 0.0

    @property
    def systolic(self) -> float:
        return self.value


@dataclass(frozen=True)
class SleepSessionRecord(RawRecord):
    """A sleep session.  Its stages are separate ``SleepStageRecord``s."""

    title: str | None = None


@dataclass(frozen=True)
class SleepStageRecord(RawRecord):
    """One stage segment belonging to the sleep session ``session_id``."""

    stage: str = "unknown"
    session_id: str = ""


@dataclass(frozen=True)
class ExerciseSessionRecord(RawRecord):
    """An exercise session (workout)."""

    exercise_type: str = "other"
    title: str | None = None


RecordBatch = Mapping[RecordKind, list[RawRecord]]


def group_by_kind(records: Iterable[RawRecord]) -> dict[RecordKind, list[RawRecord]]:
    """Group records by their concrete kind, preserving input order."""
    grouped: dict[RecordKind, list[RawRecord]] = defaultdict(list)
    for record in records:
        grouped[record.kind].append(record)
    return dict(grouped)


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------


class AggregateMetric(str, Enum):
    """Totals the data source can compute natively."""

    DISTANCE_TOTAL = "distance_total"
    ACTIVE_CALORIES_TOTAL = "active_calories_total"
    BASAL_CALORIES_TOTAL = "basal_calories_total"
    TOTAL_CALORIES = "total_calories"
    STEPS_TOTAL = "steps_total"
    FLOORS_CLIMBED_TOTAL = "floors_climbed_total"
    EXERCISE_DURATION_TOTAL = "exercise_duration_total"


#: The record kind whose read permission owns each metric.
METRIC_RECORD_KIND: dict[AggregateMetric, RecordKind] = {
    AggregateMetric.DISTANCE_TOTAL: RecordKind.DISTANCE,
    AggregateMetric.ACTIVE_CALORIES_TOTAL: RecordKind.ACTIVE_CALORIES,
    AggregateMetric.BASAL_CALORIES_TOTAL: RecordKind.BASAL_METABOLIC_RATE,
    AggregateMetric.TOTAL_CALORIES: RecordKind.TOTAL_CALORIES,
    AggregateMetric.STEPS_TOTAL: RecordKind.STEPS,
    AggregateMetric.FLOORS_CLIMBED_TOTAL: RecordKind.FLOORS_CLIMBED,
    AggregateMetric.EXERCISE_DURATION_TOTAL: RecordKind.EXERCISE_SESSION,
}


@dataclass
class AggregateSummary:
    """Totals for a window.  A field is None when its metric was not granted
    or the source reported nothing for it.

    Attributes:
        distance_m:          Distance in meters.
        active_calories_kcal: Active energy burned.
        basal_calories_kcal: Basal energy burned.
        total_calories_kcal: Total energy burned.
        steps:               Step count.
        floors_climbed:      Floors climbed.
        exercise_minutes:    Total exercise duration in whole minutes.
    """

    distance_m: float | None = None
    active_calories_kcal: float | None = None
    basal_calories_kcal: float | None = None
    total_calories_kcal: float | None = None
    steps: float | None = None
    floors_climbed: float | None = None
    exercise_minutes: int | None = None

    @property
    def is_empty(self) -> bool:
        return all(
            v is None
            for v in (
                self.distance_m,
                self.active_calories_kcal,
                self.basal_calories_kcal,
                self.total_calories_kcal,
                self.steps,
                self.floors_climbed,
                self.exercise_minutes,
            )
        )


# ---------------------------------------------------------------------------
# Normalized output
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NormalizedSample:
    """One scalar output measurement.

    ``end`` is set only for samples taken over an interval (e.g. hydration).
    """

    timestamp: datetime
    value: float
    unit: str
    source_device: str
    end: datetime | None = None


@dataclass(frozen=True)
class BloodPressureSample:
    """A systolic/diastolic pair."""

    timestamp: datetime
    systolic: float
    diastolic: float
    unit: str
    source_device: str


@dataclass
class ProfileSummary:
    height_cm: float | None = None
    measured_at: datetime | None = None

    @property
    def is_empty(self) -> bool:
        return self.height_cm is None


@dataclass
class BodySummary:
    """Most recent weight and body fat readings in the window."""

    weight: NormalizedSample | None = None
    body_fat: NormalizedSample | None = None

    @property
    def is_empty(self) -> bool:
        return self.weight is None and self.body_fat is None


@dataclass
class WorkoutItem:
    """One exercise session.

    Attributes:
        workout_id:       Source record id of the session.
        exercise_type:    Exercise type slug.
        title:            Optional user-facing title.
        start:            Session start.
        end:              Session end.
        duration_seconds: Whole seconds between start and end.
        source_device:    Device that recorded the session.
        distance_m:       Distance, if known.
        calories_kcal:    Active calories, if known.
    """

    workout_id: str
    exercise_type: str
    title: str | None
    start: datetime
    end: datetime
    duration_seconds: int
    source_device: str
    distance_m: float | None = None
    calories_kcal: float | None = None


@dataclass
class WorkoutSummary:
    workouts: list[WorkoutItem] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.workouts


@dataclass
class ActivityDay:
    """Day-level activity totals for one local calendar date.

    Calorie, step, distance and floor totals are truncated toward zero.
    """

    date: date
    source_device: str
    active_calories_kcal: float | None = None
    basal_calories_kcal: float | None = None
    total_calories_kcal: float | None = None
    steps: float | None = None
    distance_m: float | None = None
    floors_climbed: float | None = None
    exercise_minutes: int | None = None
    vo2_max_ml_kg_min: float | None = None


@dataclass
class ActivitySummary:
    days: list[ActivityDay] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.days


@dataclass
class SleepItem:
    """One sleep session with its stage breakdown.

    Attributes:
        session_id:       Source record id of the session.
        start:            Session start.
        end:              Session end.
        duration_seconds: Whole seconds between start and end.
        source_device:    Device that recorded the session.
        title:            Optional title.
        stages:           Stage name -> total seconds spent in that stage.
        asleep_seconds:   Seconds in light, deep or REM sleep.
    """

    session_id: str
    start: datetime
    end: datetime
    duration_seconds: int
    source_device: str
    title: str | None = None
    stages: dict[str, int] = field(default_factory=dict)
    asleep_seconds: int = 0


@dataclass
class SleepSummary:
    sessions: list[SleepItem] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.sessions


SummaryPayloadData = (
    ProfileSummary | BodySummary | WorkoutSummary | ActivitySummary | SleepSummary
)


class ProcessedResourceData(ABC):
    """Tagged union of processing results: ``TimeSeries`` or ``Summary``."""

    @property
    @abstractmethod
    def is_empty(self) -> bool:
        """True when there is nothing to upload."""


@dataclass
class TimeSeries(ProcessedResourceData):
    """Independently timestamped readings, ordered by timestamp."""

    samples: list[NormalizedSample | BloodPressureSample] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.samples


@dataclass
class Summary(ProcessedResourceData):
    """One summary payload for the window."""

    payload: SummaryPayloadData

    @property
    def is_empty(self) -> bool:
        return self.payload.is_empty


# ---------------------------------------------------------------------------
# Sync status
# ---------------------------------------------------------------------------


class SyncStatus(str, Enum):
    """Per-resource progress state, emitted as events and never persisted."""

    NOTHING_TO_SYNC = "nothingToSync"
    SYNCING = "syncing"
    SYNCED = "synced"


@dataclass(frozen=True)
class SyncProgress:
    """A status transition for one resource."""

    resource: Resource
    status: SyncStatus

    def to_json(self) -> dict:
        return {"resource": self.resource.value, "status": self.status.value}


@dataclass
class SyncAttemptResult:
    """Outcome of one sync attempt.

    Attributes:
        succeeded:    True when every requested resource completed.
        statuses:     Final status per visited resource.
        error:        Failure message when ``succeeded`` is False.
        change_token: Token persisted by this attempt, if any.
    """

    succeeded: bool
    statuses: dict[Resource, SyncStatus] = field(default_factory=dict)
    error: str | None = None
    change_token: str | None = None

    def to_json(self) -> dict:
        return {
            "succeeded": self.succeeded,
            "statuses": {r.value: s.value for r, s in self.statuses.items()},
            "error": self.error,
        }
