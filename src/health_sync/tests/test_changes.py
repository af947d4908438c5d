"""Tests for change feed reconciliation."""

from __future__ import annotations

import logging
from datetime import timedelta, timezone

import pytest

from src.health_sync.adapters.memory import InMemoryRecordSource
from src.health_sync.base import (
    RESOURCE_RECORD_KINDS,
    RecordKind,
    Resource,
    SleepSessionRecord,
    SleepStageRecord,
)
from src.health_sync.changes import merge_change_sets, reconcile_changes
from src.health_sync.exceptions import InvalidResourceStateError
from src.health_sync.processor import ProcessingContext, process_resource
from src.health_sync.reader import RecordReader
from src.health_sync.source import ChangeSet
from src.health_sync.tests.conftest import WINDOW_END, WINDOW_START, at, make_record


@pytest.fixture
def context() -> ProcessingContext:
    return ProcessingContext(time_zone=timezone.utc, fallback_device="Pixel 8")


class TestReconcileChanges:
    def test_steps_alias_routes_into_activity(self, context: ProcessingContext) -> None:
        changes = ChangeSet(upsertions=[make_record(RecordKind.STEPS, at(9), minutes=10, value=640)])

        result = reconcile_changes(Resource.STEPS, changes, context)

        assert result.payload.days[0].steps == 640

    def test_standalone_sub_resource_rejected_after_remap(self, context: ProcessingContext) -> None:
        with pytest.raises(InvalidResourceStateError):
            process_resource(Resource.STEPS, {}, context)

    def test_cutoff_is_exclusive(self, context: ProcessingContext) -> None:
        cutoff = at(12)
        changes = ChangeSet(upsertions=[
            make_record(RecordKind.HEART_RATE, cutoff - timedelta(seconds=1), value=60),
            make_record(RecordKind.HEART_RATE, cutoff, value=70),
            make_record(RecordKind.HEART_RATE, cutoff + timedelta(minutes=1), value=80),
        ])

        result = reconcile_changes(Resource.HEART_RATE, changes, context, cutoff=cutoff)

        assert [s.value for s in result.samples] == [60]

    def test_no_cutoff_keeps_everything(self, context: ProcessingContext) -> None:
        changes = ChangeSet(upsertions=[
            make_record(RecordKind.HEART_RATE, at(h), value=60 + h) for h in range(3)
        ])

        result = reconcile_changes(Resource.HEART_RATE, changes, context)

        assert len(result.samples) == 3

    def test_unrelated_kinds_dropped_and_logged(
        self, context: ProcessingContext, caplog: pytest.LogCaptureFixture
    ) -> None:
        changes = ChangeSet(
            upsertions=[
                make_record(RecordKind.HYDRATION, at(9), value=250, unit="mL"),
                make_record(RecordKind.WEIGHT, at(9), value=71.0, unit="kg"),
            ],
            deletions=["gone-1"],
        )

        with caplog.at_level(logging.DEBUG, logger="healthsync.changes"):
            result = reconcile_changes(Resource.WATER, changes, context)

        assert [s.value for s in result.samples] == [250]
        assert "dropped unrelated kinds" in caplog.text
        assert "Ignoring 1 deletions" in caplog.text

    def test_empty_feed_gives_empty_result(self, context: ProcessingContext) -> None:
        assert reconcile_changes(Resource.SLEEP, ChangeSet(), context).is_empty


class TestMergeChangeSets:
    def test_latest_version_wins_and_last_token_kept(self) -> None:
        first = make_record(RecordKind.WEIGHT, at(8), value=70.0, record_id="w-1")
        updated = make_record(RecordKind.WEIGHT, at(8), value=70.4, record_id="w-1")
        other = make_record(RecordKind.WEIGHT, at(9), value=71.0, record_id="w-2")

        merged = merge_change_sets([
            ChangeSet(upsertions=[first], next_token="2", has_more=True),
            ChangeSet(upsertions=[updated, other], deletions=["w-0"], next_token="5"),
        ])

        assert sorted(r.value for r in merged.upsertions) == [70.4, 71.0]
        assert merged.deletions == ["w-0"]
        assert merged.next_token == "5"
        assert merged.has_more is False


class TestBackfillEquivalence:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "resource",
        [Resource.ACTIVITY, Resource.SLEEP, Resource.HEART_RATE, Resource.BODY, Resource.WORKOUT],
    )
    async def test_change_feed_matches_direct_read(
        self, resource: Resource, context: ProcessingContext
    ) -> None:
        records = [
            make_record(RecordKind.STEPS, at(9), minutes=30, value=812.7),
            make_record(RecordKind.ACTIVE_CALORIES, at(9), minutes=30, value=95.3),
            make_record(RecordKind.TOTAL_CALORIES, at(0), minutes=60, value=1900.9),
            make_record(RecordKind.HEART_RATE, at(10), value=64),
            make_record(RecordKind.HEART_RATE, at(7), value=58),
            make_record(RecordKind.WEIGHT, at(7), value=72.0, unit="kg"),
            make_record(RecordKind.EXERCISE_SESSION, at(17), minutes=35),
            make_record(
                RecordKind.SLEEP_SESSION, at(1), minutes=300,
                record_id="night-1", cls=SleepSessionRecord,
            ),
            make_record(
                RecordKind.SLEEP_STAGE, at(1), minutes=200,
                cls=SleepStageRecord, stage="core", session_id="night-1",
            ),
            make_record(
                RecordKind.SLEEP_STAGE, at(4, 20), minutes=100,
                cls=SleepStageRecord, stage="rem", session_id="night-1",
            ),
        ]
        source = InMemoryRecordSource(records)
        reader = RecordReader(source)

        batch: dict[RecordKind, list] = {}
        for kind in RESOURCE_RECORD_KINDS[resource]:
            if kind != RecordKind.SLEEP_STAGE:
                batch[kind] = await reader.read(kind, WINDOW_START, WINDOW_END)
        if resource == Resource.SLEEP:
            batch[RecordKind.SLEEP_STAGE] = [
                stage
                for session in batch[RecordKind.SLEEP_SESSION]
                for stage in await reader.read_sleep_stages(session)
            ]
        from_read = process_resource(resource, batch, context)

        from_feed = reconcile_changes(resource, await source.changes("0"), context)

        assert from_feed == from_read
        assert not from_feed.is_empty
