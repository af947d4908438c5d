"""Tests for the Apple Health export source — parsing of a realistic export.xml."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from src.health_sync.adapters.apple_health import HRV_SDNN_UNIT, AppleHealthExportSource
from src.health_sync.base import (
    BloodPressureRecord,
    ExerciseSessionRecord,
    RecordKind,
    Resource,
    SleepSessionRecord,
    SleepStageRecord,
)
from src.health_sync.processor import ProcessingContext, process_resource

EXPORT_XML = b"""<?xml version="1.0" encoding="UTF-8"?>
<HealthData locale="en_US">
  <Record type="HKQuantityTypeIdentifierStepCount" sourceName="Apple Watch" unit="count"
          startDate="2026-02-23 09:00:00 -0800" endDate="2026-02-23 09:10:00 -0800" value="1204"/>
  <Record type="HKQuantityTypeIdentifierDistanceWalkingRunning" sourceName="iPhone" unit="km"
          startDate="2026-02-23 09:00:00 -0800" endDate="2026-02-23 09:10:00 -0800" value="0.85"/>
  <Record type="HKQuantityTypeIdentifierBodyMass" sourceName="Withings" unit="lb"
          startDate="2026-02-23 07:00:00 -0800" endDate="2026-02-23 07:00:00 -0800" value="160"/>
  <Record type="HKQuantityTypeIdentifierBodyFatPercentage" sourceName="Withings" unit="%"
          startDate="2026-02-23 07:00:00 -0800" endDate="2026-02-23 07:00:00 -0800" value="0.182"/>
  <Record type="HKQuantityTypeIdentifierHeartRate" sourceName="Apple Watch" unit="count/min"
          startDate="2026-02-23 10:00:00 -0800" endDate="2026-02-23 10:00:00 -0800" value="64"/>
  <Record type="HKQuantityTypeIdentifierAppleStandTime" sourceName="Apple Watch" unit="min"
          startDate="2026-02-23 10:00:00 -0800" endDate="2026-02-23 10:05:00 -0800" value="5"/>
  <Record type="HKQuantityTypeIdentifierHeartRate" sourceName="Apple Watch" unit="count/min"
          startDate="not a date" endDate="not a date" value="70"/>
  <Record type="HKCategoryTypeIdentifierSleepAnalysis" sourceName="Apple Watch"
          startDate="2026-02-22 23:00:00 -0800" endDate="2026-02-23 01:00:00 -0800"
          value="HKCategoryValueSleepAnalysisAsleepCore"/>
  <Record type="HKCategoryTypeIdentifierSleepAnalysis" sourceName="Apple Watch"
          startDate="2026-02-23 01:10:00 -0800" endDate="2026-02-23 02:00:00 -0800"
          value="HKCategoryValueSleepAnalysisAsleepDeep"/>
  <Record type="HKCategoryTypeIdentifierSleepAnalysis" sourceName="Apple Watch"
          startDate="2026-02-23 14:00:00 -0800" endDate="2026-02-23 14:40:00 -0800"
          value="HKCategoryValueSleepAnalysisAsleepUnspecified"/>
  <Correlation type="HKCorrelationTypeIdentifierBloodPressure" sourceName="Omron"
               startDate="2026-02-23 08:00:00 -0800" endDate="2026-02-23 08:00:00 -0800">
    <Record type="HKQuantityTypeIdentifierBloodPressureSystolic" unit="mmHg" value="121"
            startDate="2026-02-23 08:00:00 -0800" endDate="2026-02-23 08:00:00 -0800"/>
    <Record type="HKQuantityTypeIdentifierBloodPressureDiastolic" unit="mmHg" value="79"
            startDate="2026-02-23 08:00:00 -0800" endDate="2026-02-23 08:00:00 -0800"/>
  </Correlation>
  <Workout workoutActivityType="HKWorkoutActivityTypeRunning" sourceName="Apple Watch"
           startDate="2026-02-23 17:00:00 -0800" endDate="2026-02-23 17:42:00 -0800"/>
  <Workout workoutActivityType="HKWorkoutActivityTypeCurling" sourceName="Apple Watch"
           startDate="2026-02-23 19:00:00 -0800" endDate="2026-02-23 20:00:00 -0800"/>
</HealthData>
"""


@pytest.fixture
def export_source() -> AppleHealthExportSource:
    return AppleHealthExportSource.from_xml(EXPORT_XML)


def _of(source: AppleHealthExportSource, kind: RecordKind) -> list:
    return sorted((r for r in source.records if r.kind == kind), key=lambda r: r.start)


class TestQuantityRecords:
    def test_steps_parsed_with_offset(self, export_source: AppleHealthExportSource) -> None:
        (steps,) = _of(export_source, RecordKind.STEPS)
        assert steps.value == 1204
        assert steps.start == datetime(2026, 2, 23, 17, 0, tzinfo=timezone.utc)
        assert steps.end - steps.start == timedelta(minutes=10)
        assert steps.source_device == "Apple Watch"

    def test_distance_converted_to_meters(self, export_source: AppleHealthExportSource) -> None:
        (distance,) = _of(export_source, RecordKind.DISTANCE)
        assert distance.unit == "m"
        assert distance.value == pytest.approx(850.0)

    def test_weight_converted_to_kg(self, export_source: AppleHealthExportSource) -> None:
        (weight,) = _of(export_source, RecordKind.WEIGHT)
        assert weight.unit == "kg"
        assert weight.value == pytest.approx(72.57, abs=0.01)

    def test_body_fat_fraction_becomes_percent(self, export_source: AppleHealthExportSource) -> None:
        (body_fat,) = _of(export_source, RecordKind.BODY_FAT)
        assert body_fat.value == pytest.approx(18.2)

    def test_unknown_types_and_bad_dates_skipped(self, export_source: AppleHealthExportSource) -> None:
        assert len(_of(export_source, RecordKind.HEART_RATE)) == 1

    def test_blood_pressure_from_correlation(self, export_source: AppleHealthExportSource) -> None:
        (reading,) = _of(export_source, RecordKind.BLOOD_PRESSURE)
        assert isinstance(reading, BloodPressureRecord)
        assert reading.systolic == 121
        assert reading.diastolic == 79
        assert reading.source_device == "Omron"


class TestWorkouts:
    def test_workout_types(self, export_source: AppleHealthExportSource) -> None:
        workouts = _of(export_source, RecordKind.EXERCISE_SESSION)
        assert all(isinstance(w, ExerciseSessionRecord) for w in workouts)
        assert [w.exercise_type for w in workouts] == ["running", "other"]
        assert workouts[0].end - workouts[0].start == timedelta(minutes=42)


class TestSleep:
    def test_segments_grouped_into_sessions(self, export_source: AppleHealthExportSource) -> None:
        sessions = _of(export_source, RecordKind.SLEEP_SESSION)
        assert len(sessions) == 2
        assert all(isinstance(s, SleepSessionRecord) for s in sessions)
        night = sessions[0]
        assert night.end - night.start == timedelta(hours=3)

    @pytest.mark.asyncio
    async def test_stages_linked_to_session(self, export_source: AppleHealthExportSource) -> None:
        night = _of(export_source, RecordKind.SLEEP_SESSION)[0]

        stages = await export_source.read_sleep_stages(night)

        assert all(isinstance(s, SleepStageRecord) for s in stages)
        assert sorted(s.stage for s in stages) == ["core", "deep"]


class TestExportSource:
    def test_record_ids_stable_across_imports(self) -> None:
        first = {r.record_id for r in AppleHealthExportSource.from_xml(EXPORT_XML).records}
        second = {r.record_id for r in AppleHealthExportSource.from_xml(EXPORT_XML).records}
        assert first == second
        assert "" not in first

    def test_invalid_xml_raises_value_error(self) -> None:
        with pytest.raises(ValueError, match="Invalid Apple Health XML"):
            AppleHealthExportSource.from_xml(b"<HealthData><Record")

    @pytest.mark.asyncio
    async def test_every_kind_granted(self, export_source: AppleHealthExportSource) -> None:
        assert set(RecordKind) <= await export_source.granted_permissions()


IN_BED_XML = b"""<?xml version="1.0" encoding="UTF-8"?>
<HealthData locale="en_US">
  <Record type="HKCategoryTypeIdentifierSleepAnalysis" sourceName="Apple Watch"
          startDate="2026-02-22 22:00:00 +0000" endDate="2026-02-23 06:00:00 +0000"
          value="HKCategoryValueSleepAnalysisInBed"/>
  <Record type="HKCategoryTypeIdentifierSleepAnalysis" sourceName="Apple Watch"
          startDate="2026-02-22 22:30:00 +0000" endDate="2026-02-23 05:30:00 +0000"
          value="HKCategoryValueSleepAnalysisAsleepCore"/>
  <Record type="HKQuantityTypeIdentifierHeartRateVariabilitySDNN" sourceName="Apple Watch"
          unit="ms" startDate="2026-02-23 04:00:00 +0000" endDate="2026-02-23 04:00:00 +0000"
          value="48"/>
</HealthData>
"""


class TestInBedAndHrv:
    def test_in_bed_segments_skipped(self) -> None:
        source = AppleHealthExportSource.from_xml(IN_BED_XML)

        stages = _of(source, RecordKind.SLEEP_STAGE)
        sessions = _of(source, RecordKind.SLEEP_SESSION)

        assert [s.stage for s in stages] == ["core"]
        assert len(sessions) == 1
        assert sessions[0].end - sessions[0].start == timedelta(hours=7)

    @pytest.mark.asyncio
    async def test_stage_totals_within_session(self) -> None:
        source = AppleHealthExportSource.from_xml(IN_BED_XML)
        context = ProcessingContext(time_zone=timezone.utc, fallback_device="Pixel 8")
        session = _of(source, RecordKind.SLEEP_SESSION)[0]
        batch = {
            RecordKind.SLEEP_SESSION: [session],
            RecordKind.SLEEP_STAGE: await source.read_sleep_stages(session),
        }

        item = process_resource(Resource.SLEEP, batch, context).payload.sessions[0]

        assert sum(item.stages.values()) <= item.duration_seconds
        assert "awake" not in item.stages
        assert item.stages == {"light": 7 * 3600}

    def test_sdnn_marked_by_unit(self) -> None:
        source = AppleHealthExportSource.from_xml(IN_BED_XML)

        [reading] = _of(source, RecordKind.HEART_RATE_VARIABILITY)

        assert reading.value == 48
        assert reading.unit == HRV_SDNN_UNIT == "ms_sdnn"
