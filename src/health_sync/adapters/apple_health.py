"""Apple Health export adapter.

Apple does not provide a server-side API; data is exported from the device
(``export.xml`` from the Health app) and uploaded.  This adapter turns that
export into raw records and serves them through ``InMemoryRecordSource``.

Handled elements:
    Record       — quantity and category samples (HK*TypeIdentifier*)
    Correlation  — blood pressure (systolic + diastolic pair)
    Workout      — exercise sessions

Sleep analysis samples are stage segments.  Consecutive segments from the
same source, with gaps no larger than ``SLEEP_SESSION_GAP``, are grouped into
one synthetic sleep session.  InBed samples are skipped.

HealthKit only exports HRV as SDNN.  Those samples are imported with the
unit ``ms_sdnn`` so the platform can tell them apart from RMSSD readings.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import replace
from datetime import datetime, timedelta
from xml.etree import ElementTree as ET

from src.health_sync.adapters.memory import InMemoryRecordSource
from src.health_sync.base import (
    BloodPressureRecord,
    ExerciseSessionRecord,
    RawRecord,
    RecordKind,
    SleepSessionRecord,
    SleepStageRecord,
)

logger = logging.getLogger("healthsync.adapters.apple_health")

_HK_SLEEP_ANALYSIS = "HKCategoryTypeIdentifierSleepAnalysis"
_HK_IN_BED = "HKCategoryValueSleepAnalysisInBed"
_HK_BLOOD_PRESSURE = "HKCorrelationTypeIdentifierBloodPressure"
_HK_SYSTOLIC = "HKQuantityTypeIdentifierBloodPressureSystolic"
_HK_DIASTOLIC = "HKQuantityTypeIdentifierBloodPressureDiastolic"

# HKQuantityTypeIdentifier → record kind
_HK_RECORD_KINDS: dict[str, RecordKind] = {
    "HKQuantityTypeIdentifierStepCount": RecordKind.STEPS,
    "HKQuantityTypeIdentifierDistanceWalkingRunning": RecordKind.DISTANCE,
    "HKQuantityTypeIdentifierActiveEnergyBurned": RecordKind.ACTIVE_CALORIES,
    "HKQuantityTypeIdentifierBasalEnergyBurned": RecordKind.BASAL_METABOLIC_RATE,
    "HKQuantityTypeIdentifierFlightsClimbed": RecordKind.FLOORS_CLIMBED,
    "HKQuantityTypeIdentifierHeartRate": RecordKind.HEART_RATE,
    "HKQuantityTypeIdentifierHeartRateVariabilitySDNN": RecordKind.HEART_RATE_VARIABILITY,
    "HKQuantityTypeIdentifierBloodGlucose": RecordKind.BLOOD_GLUCOSE,
    "HKQuantityTypeIdentifierHeight": RecordKind.HEIGHT,
    "HKQuantityTypeIdentifierBodyMass": RecordKind.WEIGHT,
    "HKQuantityTypeIdentifierBodyFatPercentage": RecordKind.BODY_FAT,
    "HKQuantityTypeIdentifierDietaryWater": RecordKind.HYDRATION,
    "HKQuantityTypeIdentifierVO2Max": RecordKind.VO2_MAX,
}

# Sleep stage values from HealthKit
_SLEEP_STAGE_MAP: dict[str, str] = {
    "HKCategoryValueSleepAnalysisAsleepUnspecified": "asleep",
    "HKCategoryValueSleepAnalysisAsleep": "asleep",
    "HKCategoryValueSleepAnalysisAsleepCore": "core",
    "HKCategoryValueSleepAnalysisAsleepDeep": "deep",
    "HKCategoryValueSleepAnalysisAsleepREM": "rem",
    "HKCategoryValueSleepAnalysisAwake": "awake",
}

# HKWorkoutActivityType → canonical exercise type
_WORKOUT_TYPE_MAP: dict[str, str] = {
    "HKWorkoutActivityTypeRunning": "running",
    "HKWorkoutActivityTypeCycling": "cycling",
    "HKWorkoutActivityTypeSwimming": "swimming",
    "HKWorkoutActivityTypeWalking": "walking",
    "HKWorkoutActivityTypeTraditionalStrengthTraining": "strength_training",
    "HKWorkoutActivityTypeHighIntensityIntervalTraining": "hiit",
    "HKWorkoutActivityTypeYoga": "yoga",
    "HKWorkoutActivityTypeRowing": "rowing",
    "HKWorkoutActivityTypeElliptical": "elliptical",
    "HKWorkoutActivityTypeStairClimbing": "stair_climbing",
    "HKWorkoutActivityTypeHiking": "hiking",
    "HKWorkoutActivityTypePilates": "pilates",
}

HRV_SDNN_UNIT = "ms_sdnn"

# (unit, multiplier) conversions applied on import
_UNIT_CONVERSIONS: dict[tuple[RecordKind, str], tuple[str, float]] = {
    (RecordKind.DISTANCE, "km"): ("m", 1000.0),
    (RecordKind.DISTANCE, "mi"): ("m", 1609.344),
    (RecordKind.WEIGHT, "lb"): ("kg", 0.45359237),
    (RecordKind.BODY_FAT, "%"): ("%", 100.0),  # exported as a 0–1 fraction
    (RecordKind.HYDRATION, "L"): ("mL", 1000.0),
    (RecordKind.ACTIVE_CALORIES, "kJ"): ("kcal", 1 / 4.184),
    (RecordKind.BASAL_METABOLIC_RATE, "kJ"): ("kcal", 1 / 4.184),
    (RecordKind.HEART_RATE_VARIABILITY, "ms"): (HRV_SDNN_UNIT, 1.0),
}

SLEEP_SESSION_GAP = timedelta(minutes=30)

_HK_DATE_FORMAT = "%Y-%m-%d %H:%M:%S %z"


def _parse_hk_datetime(value: str | None) -> datetime | None:
    """Parse an export timestamp such as '2026-02-22 23:00:00 -0800'."""
    if not value:
        return None
    try:
        return datetime.strptime(value, _HK_DATE_FORMAT)
    except ValueError:
        logger.warning("Could not parse Apple Health datetime: %r", value)
        return None


def _record_id(*parts: object) -> str:
    """Deterministic id so re-importing the same export yields the same records."""
    digest = hashlib.sha256("|".join(str(p) for p in parts).encode()).hexdigest()
    return digest[:24]


def _safe_float(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class AppleHealthExportSource(InMemoryRecordSource):
    """RecordSource backed by a parsed Apple Health XML export."""

    @classmethod
    def from_xml(cls, xml_bytes: bytes) -> "AppleHealthExportSource":
        """Parse an Apple Health ``export.xml``.

        Raises:
            ValueError: The document is not valid XML.
        """
        try:
            root = ET.fromstring(xml_bytes)
        except ET.ParseError as exc:
            logger.error("Apple Health XML parse error: %s", exc)
            raise ValueError(f"Invalid Apple Health XML: {exc}") from exc

        records: list[RawRecord] = []
        sleep_segments: list[SleepStageRecord] = []

        for element in root.findall("Record"):
            rec_type = element.get("type", "")
            if rec_type == _HK_SLEEP_ANALYSIS:
                segment = _parse_sleep_segment(element)
                if segment is not None:
                    sleep_segments.append(segment)
                continue
            record = _parse_quantity(element)
            if record is not None:
                records.append(record)

        for element in root.findall("Correlation"):
            if element.get("type") == _HK_BLOOD_PRESSURE:
                record = _parse_blood_pressure(element)
                if record is not None:
                    records.append(record)

        for element in root.findall("Workout"):
            record = _parse_workout(element)
            if record is not None:
                records.append(record)

        sessions, stages = _group_sleep_sessions(sleep_segments)
        records.extend(sessions)
        records.extend(stages)

        logger.info(
            "Apple Health XML: parsed %d records (%d sleep sessions)",
            len(records), len(sessions),
        )
        return cls(records)


def _parse_quantity(element: ET.Element) -> RawRecord | None:
    kind = _HK_RECORD_KINDS.get(element.get("type", ""))
    start = _parse_hk_datetime(element.get("startDate"))
    end = _parse_hk_datetime(element.get("endDate"))
    value = _safe_float(element.get("value"))
    if kind is None or start is None or end is None or value is None:
        return None

    unit = element.get("unit", "")
    if (kind, unit) in _UNIT_CONVERSIONS:
        unit, factor = _UNIT_CONVERSIONS[(kind, unit)]
        value *= factor

    device = element.get("sourceName", "")
    return RawRecord(
        kind=kind,
        start=start,
        end=max(start, end),
        value=value,
        unit=unit,
        source_device=device,
        record_id=_record_id(kind.value, start.isoformat(), end.isoformat(), value, device),
    )


def _parse_blood_pressure(element: ET.Element) -> BloodPressureRecord | None:
    values: dict[str, float] = {}
    unit = "mmHg"
    for child in element.findall("Record"):
        value = _safe_float(child.get("value"))
        if value is not None:
            values[child.get("type", "")] = value
            unit = child.get("unit", unit)
    start = _parse_hk_datetime(element.get("startDate"))
    if start is None or _HK_SYSTOLIC not in values or _HK_DIASTOLIC not in values:
        return None
    device = element.get("sourceName", "")
    return BloodPressureRecord(
        kind=RecordKind.BLOOD_PRESSURE,
        start=start,
        end=start,
        value=values[_HK_SYSTOLIC],
        unit=unit,
        source_device=device,
        record_id=_record_id("bp", start.isoformat(), values[_HK_SYSTOLIC], values[_HK_DIASTOLIC]),
        diastolic=values[_HK_DIASTOLIC],
    )


def _parse_workout(element: ET.Element) -> ExerciseSessionRecord | None:
    start = _parse_hk_datetime(element.get("startDate"))
    end = _parse_hk_datetime(element.get("endDate"))
    if start is None or end is None or end < start:
        return None
    activity_type = element.get("workoutActivityType", "")
    device = element.get("sourceName", "")
    return ExerciseSessionRecord(
        kind=RecordKind.EXERCISE_SESSION,
        start=start,
        end=end,
        source_device=device,
        record_id=_record_id("workout", activity_type, start.isoformat(), end.isoformat()),
        exercise_type=_WORKOUT_TYPE_MAP.get(activity_type, "other"),
    )


def _parse_sleep_segment(element: ET.Element) -> SleepStageRecord | None:
    start = _parse_hk_datetime(element.get("startDate"))
    end = _parse_hk_datetime(element.get("endDate"))
    if start is None or end is None or end <= start:
        return None
    value = element.get("value", "")
    # InBed spans the whole night and overlaps the Asleep*/Awake segments
    if value == _HK_IN_BED:
        return None
    device = element.get("sourceName", "")
    return SleepStageRecord(
        kind=RecordKind.SLEEP_STAGE,
        start=start,
        end=end,
        source_device=device,
        record_id=_record_id("sleep", value, start.isoformat(), end.isoformat(), device),
        stage=_SLEEP_STAGE_MAP.get(value, "unknown"),
    )


def _group_sleep_sessions(
    segments: list[SleepStageRecord],
) -> tuple[list[SleepSessionRecord], list[SleepStageRecord]]:
    """Group stage segments into sessions and stamp each with its session id."""
    sessions: list[SleepSessionRecord] = []
    stamped: list[SleepStageRecord] = []

    by_device: dict[str, list[SleepStageRecord]] = {}
    for segment in segments:
        by_device.setdefault(segment.source_device, []).append(segment)

    for device, device_segments in by_device.items():
        device_segments.sort(key=lambda s: s.start)
        group: list[SleepStageRecord] = []
        for segment in device_segments:
            if group and segment.start - max(s.end for s in group) > SLEEP_SESSION_GAP:
                sessions.append(_close_session(device, group, stamped))
                group = []
            group.append(segment)
        if group:
            sessions.append(_close_session(device, group, stamped))

    return sessions, stamped


def _close_session(
    device: str, group: list[SleepStageRecord], stamped: list[SleepStageRecord]
) -> SleepSessionRecord:
    start = min(s.start for s in group)
    end = max(s.end for s in group)
    session_id = _record_id("sleep-session", device, start.isoformat(), end.isoformat())
    stamped.extend(replace(s, session_id=session_id) for s in group)
    return SleepSessionRecord(
        kind=RecordKind.SLEEP_SESSION,
        start=start,
        end=end,
        source_device=device,
        record_id=session_id,
    )
