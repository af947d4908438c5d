"""Pydantic models for the payloads handed to the uploader.

Each model has a ``from_*`` constructor that converts the sync core's
normalized dataclasses, so the core itself never depends on the wire shape.
"""

from __future__ import annotations

from datetime import date, datetime

from pydantic import Field

from src.health_sync.base import (
    ActivityDay,
    BloodPressureSample,
    BodySummary,
    NormalizedSample,
    ProfileSummary,
    SleepItem,
    WorkoutItem,
)
from src.models.base import HealthSyncBase


# ---------- Samples ----------

class QuantitySamplePayload(HealthSyncBase):
    value: float
    unit: str
    start_date: datetime
    end_date: datetime
    device_model: str | None = None

    @classmethod
    def from_sample(cls, sample: NormalizedSample) -> "QuantitySamplePayload":
        return cls(
            value=sample.value,
            unit=sample.unit,
            start_date=sample.timestamp,
            end_date=sample.end or sample.timestamp,
            device_model=sample.source_device,
        )


class BloodPressureSamplePayload(HealthSyncBase):
    systolic: QuantitySamplePayload
    diastolic: QuantitySamplePayload

    @classmethod
    def from_sample(cls, sample: BloodPressureSample) -> "BloodPressureSamplePayload":
        def _part(value: float) -> QuantitySamplePayload:
            return QuantitySamplePayload(
                value=value,
                unit=sample.unit,
                start_date=sample.timestamp,
                end_date=sample.timestamp,
                device_model=sample.source_device,
            )

        return cls(systolic=_part(sample.systolic), diastolic=_part(sample.diastolic))


# ---------- Summaries ----------

class ProfilePayload(HealthSyncBase):
    height_cm: float | None = Field(default=None, ge=0)

    @classmethod
    def from_summary(cls, summary: ProfileSummary) -> "ProfilePayload":
        return cls(height_cm=summary.height_cm)


class BodyPayload(HealthSyncBase):
    weight: list[QuantitySamplePayload] = Field(default_factory=list)
    fat: list[QuantitySamplePayload] = Field(default_factory=list)

    @classmethod
    def from_summary(cls, summary: BodySummary) -> "BodyPayload":
        return cls(
            weight=[QuantitySamplePayload.from_sample(summary.weight)] if summary.weight else [],
            fat=[QuantitySamplePayload.from_sample(summary.body_fat)] if summary.body_fat else [],
        )


class WorkoutPayload(HealthSyncBase):
    id: str
    start_date: datetime
    end_date: datetime
    sport: str
    title: str | None = None
    duration_seconds: int = Field(ge=0)
    distance_m: float | None = None
    calories_kcal: float | None = None
    device_model: str | None = None

    @classmethod
    def from_item(cls, item: WorkoutItem) -> "WorkoutPayload":
        return cls(
            id=item.workout_id,
            start_date=item.start,
            end_date=item.end,
            sport=item.exercise_type,
            title=item.title,
            duration_seconds=item.duration_seconds,
            distance_m=item.distance_m,
            calories_kcal=item.calories_kcal,
            device_model=item.source_device,
        )


class ActivityPayload(HealthSyncBase):
    date: date
    active_calories_kcal: float | None = None
    basal_calories_kcal: float | None = None
    total_calories_kcal: float | None = None
    steps: int | None = None
    distance_m: float | None = None
    floors_climbed: int | None = None
    exercise_minutes: int | None = None
    vo2_max_ml_kg_min: float | None = None
    device_model: str | None = None

    @classmethod
    def from_day(cls, day: ActivityDay) -> "ActivityPayload":
        return cls(
            date=day.date,
            active_calories_kcal=day.active_calories_kcal,
            basal_calories_kcal=day.basal_calories_kcal,
            total_calories_kcal=day.total_calories_kcal,
            steps=int(day.steps) if day.steps is not None else None,
            distance_m=day.distance_m,
            floors_climbed=int(day.floors_climbed) if day.floors_climbed is not None else None,
            exercise_minutes=day.exercise_minutes,
            vo2_max_ml_kg_min=day.vo2_max_ml_kg_min,
            device_model=day.source_device,
        )


class SleepPayload(HealthSyncBase):
    id: str
    start_date: datetime
    end_date: datetime
    duration_seconds: int = Field(ge=0)
    asleep_seconds: int = Field(ge=0)
    stages: dict[str, int] = Field(default_factory=dict)
    title: str | None = None
    device_model: str | None = None

    @classmethod
    def from_item(cls, item: SleepItem) -> "SleepPayload":
        return cls(
            id=item.session_id,
            start_date=item.start,
            end_date=item.end,
            duration_seconds=item.duration_seconds,
            asleep_seconds=item.asleep_seconds,
            stages=dict(item.stages),
            title=item.title,
            device_model=item.source_device,
        )


# ---------- Envelopes ----------

class _Envelope(HealthSyncBase):
    provider: str
    start_date: datetime
    end_date: datetime
    time_zone: str | None = None


class TimeseriesPayload(_Envelope):
    data: list[QuantitySamplePayload] | list[BloodPressureSamplePayload]


class SummaryPayload(_Envelope):
    data: (
        ProfilePayload
        | BodyPayload
        | list[WorkoutPayload]
        | list[ActivityPayload]
        | list[SleepPayload]
    )
