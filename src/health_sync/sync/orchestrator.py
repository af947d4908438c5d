"""Sync orchestrator: drive one sync attempt over a set of resources.

Per resource, strictly in order:

    syncing → read or reconcile → process → upload → synced
                                          ↘ (empty)  → nothingToSync

Profile and Body always upload and always end ``synced``.  Every status
event is followed by a short fixed pause so listeners can tell consecutive
transitions apart.

An exception from any resource aborts the rest of the attempt and produces a
failed ``SyncAttemptResult``; the change token is written only after every
requested resource completed.  ``InvalidResourceStateError`` (a caller bug)
and ``asyncio.CancelledError`` are not converted and propagate unchanged,
also leaving the token untouched.

Usage::

    orchestrator = SyncOrchestrator(source, uploader, token_store)
    result = await orchestrator.run("user-123", [Resource.SLEEP, Resource.STEPS])
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Awaitable, Callable, Iterable

from src.health_sync.aggregator import RecordAggregator
from src.health_sync.base import (
    ALWAYS_UPLOADED,
    RESOURCE_RECORD_KINDS,
    ActivitySummary,
    ProcessedResourceData,
    RawRecord,
    RecordKind,
    Resource,
    SleepSessionRecord,
    Summary,
    SyncAttemptResult,
    SyncProgress,
    SyncStatus,
    WorkoutSummary,
    remap_resources,
)
from src.health_sync.changes import merge_change_sets, reconcile_changes
from src.health_sync.config_loader import SyncConfig, get_sync_config
from src.health_sync.exceptions import InvalidResourceStateError, ReadError
from src.health_sync.processor import (
    ProcessingContext,
    activity_day_from_summary,
    process_resource,
)
from src.health_sync.reader import RecordReader
from src.health_sync.source import ChangeSet, RecordSource
from src.health_sync.sync.cursor import ChangeTokenStore
from src.health_sync.upload.base import Uploader, upload_resource

logger = logging.getLogger("healthsync.sync.orchestrator")

StatusSink = Callable[[SyncProgress], Awaitable[None]]
ResourceLoader = Callable[[Resource], Awaitable[ProcessedResourceData]]


def time_zone_id(tz: tzinfo) -> str | None:
    """IANA name of ``tz`` when it has one, else its abbreviation ('UTC')."""
    key = getattr(tz, "key", None)
    if key:
        return key
    return tz.tzname(None)


class SyncOrchestrator:
    """Runs backfill and incremental sync attempts for one data source.

    All collaborators are passed in; nothing is looked up globally except the
    YAML config when ``config`` is omitted.

    Args:
        source:       Local data source.
        uploader:     Destination for processed payloads.
        token_store:  Persistence for the per-account change token.
        config:       Sync config; defaults to the bundled ``sync_config.yaml``.
        status_sink:  Async callable receiving every ``SyncProgress`` event.
        time_zone:    Zone used for Activity day buckets and reported upstream.
        device_name:  Fallback device id for records without one.
        sleep:        Awaitable pause used after each status event.
    """

    def __init__(
        self,
        source: RecordSource,
        uploader: Uploader,
        token_store: ChangeTokenStore,
        config: SyncConfig | None = None,
        status_sink: StatusSink | None = None,
        time_zone: tzinfo = timezone.utc,
        device_name: str = "unknown",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._source = source
        self._uploader = uploader
        self._token_store = token_store
        self._config = config or get_sync_config()
        self._status_sink = status_sink
        self._time_zone = time_zone
        self._sleep = sleep
        self._reader = RecordReader(source)
        self._aggregator = RecordAggregator(source, self._reader)
        self._context = ProcessingContext(time_zone=time_zone, fallback_device=device_name)

    @property
    def reader(self) -> RecordReader:
        return self._reader

    @property
    def aggregator(self) -> RecordAggregator:
        return self._aggregator

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def run(
        self,
        user_id: str,
        resources: Iterable[Resource] | None = None,
        now: datetime | None = None,
    ) -> SyncAttemptResult:
        """Incremental sync when a token is stored, otherwise a default backfill."""
        targets = list(resources) if resources is not None else list(self._config.default_resources)
        cursor = await self._token_store.load(user_id)
        if cursor is not None and cursor.change_token:
            return await self.sync_changes(user_id, targets, now=now)

        end = now or datetime.now(timezone.utc)
        start = end - timedelta(days=self._config.backfill.default_days)
        logger.info("No change token for %s; backfilling %s → %s", user_id, start, end)
        return await self.backfill(user_id, targets, start, end)

    async def backfill(
        self,
        user_id: str,
        resources: Iterable[Resource],
        start: datetime,
        end: datetime,
    ) -> SyncAttemptResult:
        """Read, process and upload every resource over ``[start, end)``.

        The change token is captured before the first read, so anything
        written while the backfill runs is delivered again by the next
        incremental attempt.

        Raises:
            InvalidResourceStateError: The window is empty or too long.
        """
        if end <= start:
            raise InvalidResourceStateError(f"Backfill window [{start}, {end}) is empty")
        if end - start > timedelta(days=self._config.backfill.max_days):
            raise InvalidResourceStateError(
                f"Backfill window exceeds {self._config.backfill.max_days} days"
            )

        self._reader.invalidate_permissions()
        try:
            token = await self._source.changes_token()
        except Exception as exc:
            logger.exception("Could not capture change token for %s", user_id)
            return SyncAttemptResult(succeeded=False, error=str(exc))

        async def load(resource: Resource) -> ProcessedResourceData:
            batch = await self._read_batch(resource, start, end)
            return process_resource(resource, batch, self._context)

        return await self._run_attempt(user_id, resources, start, end, load, token)

    async def sync_changes(
        self,
        user_id: str,
        resources: Iterable[Resource],
        now: datetime | None = None,
        cutoff: datetime | None = None,
    ) -> SyncAttemptResult:
        """Reconcile the change feed since the stored token and upload it.

        Args:
            user_id:   Account whose token is read and advanced.
            resources: Requested resources; sub-resources fold into Activity.
            now:       End of the reported upload window (default: current time).
            cutoff:    Records ending at or after this instant are skipped.

        Raises:
            LookupError: No change token is stored for ``user_id``.
        """
        cursor = await self._token_store.load(user_id)
        if cursor is None or not cursor.change_token:
            raise LookupError(f"No change token stored for {user_id}; run a backfill first")

        end = now or datetime.now(timezone.utc)
        start = min(cursor.updated_at or end, end)

        self._reader.invalidate_permissions()
        try:
            changes = await self._drain_changes(cursor.change_token)
        except Exception as exc:
            logger.exception("Reading the change feed failed for %s", user_id)
            return SyncAttemptResult(succeeded=False, error=str(exc))

        async def load(resource: Resource) -> ProcessedResourceData:
            return reconcile_changes(resource, changes, self._context, cutoff=cutoff)

        return await self._run_attempt(
            user_id, resources, start, end, load, changes.next_token or cursor.change_token
        )

    # ------------------------------------------------------------------
    # Attempt
    # ------------------------------------------------------------------

    async def _run_attempt(
        self,
        user_id: str,
        resources: Iterable[Resource],
        start: datetime,
        end: datetime,
        load: ResourceLoader,
        token: str,
    ) -> SyncAttemptResult:
        targets = remap_resources(resources)
        statuses: dict[Resource, SyncStatus] = {}
        tz_id = time_zone_id(self._time_zone)

        try:
            for resource in targets:
                await self._emit(resource, SyncStatus.SYNCING, statuses)

                data = await load(resource)
                data = await self._post_process(resource, data)

                if data.is_empty and resource not in ALWAYS_UPLOADED:
                    await self._emit(resource, SyncStatus.NOTHING_TO_SYNC, statuses)
                    continue

                await upload_resource(
                    self._uploader, resource, user_id, start, end, tz_id, data
                )
                await self._emit(resource, SyncStatus.SYNCED, statuses)

            await self._token_store.save(user_id, token)
        except InvalidResourceStateError:
            raise
        except Exception as exc:
            logger.exception("Sync attempt for %s failed", user_id)
            return SyncAttemptResult(succeeded=False, statuses=statuses, error=str(exc))

        logger.info(
            "Sync attempt for %s succeeded: %d resources, token %s",
            user_id, len(statuses), token,
        )
        return SyncAttemptResult(succeeded=True, statuses=statuses, change_token=token)

    async def _emit(
        self, resource: Resource, status: SyncStatus, statuses: dict[Resource, SyncStatus]
    ) -> None:
        statuses[resource] = status
        logger.info("%s: %s", resource.value, status.value)
        if self._status_sink is not None:
            await self._status_sink(SyncProgress(resource=resource, status=status))
        await self._sleep(self._config.status_delay_seconds)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    async def _read_batch(
        self, resource: Resource, start: datetime, end: datetime
    ) -> dict[RecordKind, list[RawRecord]]:
        """Read every record kind ``resource`` consumes.

        Sleep stages are read per session rather than by window, matching how
        they arrive through the change feed.
        """
        if resource not in RESOURCE_RECORD_KINDS:
            raise InvalidResourceStateError(f"Unknown resource '{resource.value}'")

        batch: dict[RecordKind, list[RawRecord]] = {}
        for kind in RESOURCE_RECORD_KINDS[resource]:
            if kind == RecordKind.SLEEP_STAGE:
                continue
            batch[kind] = await self._reader.read_permitted(kind, start, end)

        if resource == Resource.SLEEP:
            stages: list[RawRecord] = []
            for session in batch.get(RecordKind.SLEEP_SESSION, []):
                if isinstance(session, SleepSessionRecord):
                    stages.extend(await self._reader.read_sleep_stages(session))
            batch[RecordKind.SLEEP_STAGE] = stages
        return batch

    async def _drain_changes(self, token: str) -> ChangeSet:
        """Follow ``has_more`` up to the configured page limit."""
        pages: list[ChangeSet] = []
        current = token
        for _ in range(self._config.changes.max_pages):
            try:
                page = await self._source.changes(current)
            except Exception as exc:
                raise ReadError(f"Reading changes since {current!r} failed: {exc}") from exc
            pages.append(page)
            current = page.next_token or current
            if not page.has_more:
                break
        else:
            logger.warning(
                "Change feed still has more after %d pages; continuing next run",
                self._config.changes.max_pages,
            )
        merged = merge_change_sets(pages)
        logger.debug(
            "Drained %d change pages: %d upserts, %d deletions",
            len(pages), len(merged.upsertions), len(merged.deletions),
        )
        return merged

    # ------------------------------------------------------------------
    # Aggregate-backed post-processing (shared by both paths)
    # ------------------------------------------------------------------

    async def _post_process(
        self, resource: Resource, data: ProcessedResourceData
    ) -> ProcessedResourceData:
        if not isinstance(data, Summary):
            return data
        if isinstance(data.payload, ActivitySummary) and self._config.activity.uses_aggregates:
            return Summary(await self._activity_from_aggregates(data.payload))
        if isinstance(data.payload, WorkoutSummary) and self._config.enrich_workouts:
            return Summary(await self._enrich_workouts(data.payload))
        return data

    async def _activity_from_aggregates(self, summary: ActivitySummary) -> ActivitySummary:
        """Replace record-summed day totals with the source's own aggregates.

        A day the source cannot aggregate (no permission, no data) keeps its
        record-derived totals.
        """
        days = []
        for day in summary.days:
            totals = await self._aggregator.aggregate_activity_day_summary(
                day.date, self._time_zone
            )
            replaced = activity_day_from_summary(
                day.date, totals, day.source_device, day.vo2_max_ml_kg_min
            )
            days.append(day if totals.is_empty or replaced is None else replaced)
        return ActivitySummary(days=days)

    async def _enrich_workouts(self, summary: WorkoutSummary) -> WorkoutSummary:
        for workout in summary.workouts:
            if workout.distance_m is not None and workout.calories_kcal is not None:
                continue
            totals = await self._aggregator.aggregate_workout_summary(workout.start, workout.end)
            if workout.distance_m is None:
                workout.distance_m = totals.distance_m
            if workout.calories_kcal is None:
                workout.calories_kcal = totals.active_calories_kcal
        return summary
