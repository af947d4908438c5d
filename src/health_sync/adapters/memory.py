"""List-backed RecordSource.

Keeps records in memory together with an append-only change log, so the same
instance serves both backfill reads and the incremental change feed.  Used by
the export importers and throughout the test suite.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable

from src.health_sync.base import (
    METRIC_RECORD_KIND,
    AggregateMetric,
    AggregateSummary,
    RawRecord,
    RecordKind,
    SleepSessionRecord,
    SleepStageRecord,
)
from src.health_sync.reader import in_window
from src.health_sync.source import ChangeSet, RecordSource

logger = logging.getLogger("healthsync.adapters.memory")

# Metric -> AggregateSummary attribute
_METRIC_FIELDS: dict[AggregateMetric, str] = {
    AggregateMetric.DISTANCE_TOTAL: "distance_m",
    AggregateMetric.ACTIVE_CALORIES_TOTAL: "active_calories_kcal",
    AggregateMetric.BASAL_CALORIES_TOTAL: "basal_calories_kcal",
    AggregateMetric.TOTAL_CALORIES: "total_calories_kcal",
    AggregateMetric.STEPS_TOTAL: "steps",
    AggregateMetric.FLOORS_CLIMBED_TOTAL: "floors_climbed",
}


class InMemoryRecordSource(RecordSource):
    """RecordSource over an in-memory record list.

    Args:
        records:   Initial records (also written to the change log).
        granted:   Granted record kinds; None grants every kind.
        page_size: Maximum log entries returned per ``changes()`` page.
    """

    def __init__(
        self,
        records: Iterable[RawRecord] = (),
        granted: Iterable[RecordKind] | None = None,
        page_size: int = 500,
    ) -> None:
        self._records: dict[tuple[RecordKind, str], RawRecord] = {}
        self._anonymous: list[RawRecord] = []
        self._log: list[tuple[str, RawRecord | str]] = []
        self._granted = set(RecordKind) if granted is None else set(granted)
        self._page_size = page_size
        self.add(records)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add(self, records: Iterable[RawRecord]) -> None:
        """Insert or replace records and append them to the change log."""
        for record in records:
            if record.record_id:
                self._records[(record.kind, record.record_id)] = record
            else:
                self._anonymous.append(record)
            self._log.append(("upsert", record))

    def delete(self, kind: RecordKind, record_id: str) -> None:
        """Remove a record and log the deletion."""
        if self._records.pop((kind, record_id), None) is not None:
            self._log.append(("delete", record_id))

    def grant(self, *kinds: RecordKind) -> None:
        self._granted.update(kinds)

    def revoke(self, *kinds: RecordKind) -> None:
        self._granted.difference_update(kinds)

    @property
    def records(self) -> list[RawRecord]:
        return [*self._records.values(), *self._anonymous]

    # ------------------------------------------------------------------
    # RecordSource interface
    # ------------------------------------------------------------------

    async def granted_permissions(self) -> set[RecordKind]:
        return set(self._granted)

    async def read(
        self, kind: RecordKind, start: datetime, end: datetime
    ) -> list[RawRecord]:
        return [
            r for r in self.records
            if r.kind == kind and r.end >= start and r.start < end
        ]

    async def read_sleep_stages(
        self, session: SleepSessionRecord
    ) -> list[SleepStageRecord]:
        return [
            r for r in self.records
            if isinstance(r, SleepStageRecord) and r.session_id == session.record_id
        ]

    async def aggregate(
        self, start: datetime, end: datetime, metrics: set[AggregateMetric]
    ) -> AggregateSummary:
        summary = AggregateSummary()
        for metric in metrics:
            kind = METRIC_RECORD_KIND[metric]
            records = [r for r in self.records if r.kind == kind and in_window(r, start, end)]
            if not records:
                continue
            if metric == AggregateMetric.EXERCISE_DURATION_TOTAL:
                seconds = sum((r.end - r.start).total_seconds() for r in records)
                summary.exercise_minutes = int(seconds // 60)
            else:
                setattr(summary, _METRIC_FIELDS[metric], sum(r.value for r in records))
        return summary

    async def changes_token(self) -> str:
        return str(len(self._log))

    async def changes(self, token: str) -> ChangeSet:
        try:
            offset = int(token)
        except ValueError:
            raise ValueError(f"Invalid change token: {token!r}") from None

        page = self._log[offset:offset + self._page_size]
        next_offset = offset + len(page)
        change_set = ChangeSet(
            next_token=str(next_offset),
            has_more=next_offset < len(self._log),
        )
        for op, item in page:
            if op == "upsert":
                change_set.upsertions.append(item)  # type: ignore[arg-type]
            else:
                change_set.deletions.append(item)  # type: ignore[arg-type]
        logger.debug(
            "Change page %s→%s: %d upserts, %d deletes",
            token, change_set.next_token,
            len(change_set.upsertions), len(change_set.deletions),
        )
        return change_set
