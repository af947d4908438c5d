"""Shared fixtures and record builders for health sync tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from src.health_sync.adapters.memory import InMemoryRecordSource
from src.health_sync.base import RawRecord, RecordKind, Resource, SyncProgress
from src.health_sync.config_loader import SyncConfig, load_sync_config
from src.health_sync.exceptions import UploadError
from src.health_sync.sync.cursor import InMemoryChangeTokenStore
from src.health_sync.sync.orchestrator import SyncOrchestrator
from src.health_sync.upload.base import Uploader

UTC = timezone.utc

# Canonical test account and window
TEST_USER_ID = "user-123"
WINDOW_START = datetime(2026, 2, 23, tzinfo=UTC)
WINDOW_END = datetime(2026, 2, 24, tzinfo=UTC)


def at(hour: int, minute: int = 0, day: int = 23) -> datetime:
    """A UTC instant on February ``day``, 2026."""
    return datetime(2026, 2, day, hour, minute, tzinfo=UTC)


def make_record(
    kind: RecordKind,
    start: datetime,
    minutes: float = 0,
    value: float = 0.0,
    unit: str = "",
    device: str = "Apple Watch",
    record_id: str | None = None,
    cls: type[RawRecord] = RawRecord,
    **extra,
) -> RawRecord:
    """Build a record of ``kind`` lasting ``minutes`` from ``start``.

    The default id includes ``extra`` so two stages sharing a start time stay
    distinct in ``InMemoryRecordSource``.
    """
    return cls(
        kind=kind,
        start=start,
        end=start + timedelta(minutes=minutes),
        value=value,
        unit=unit,
        source_device=device,
        record_id=record_id or "-".join(
            [kind.value, start.isoformat(), *(str(v) for v in extra.values())]
        ),
        **extra,
    )


# ---------------------------------------------------------------------------
# Uploader double
# ---------------------------------------------------------------------------


class RecordingUploader(Uploader):
    """Uploader that keeps every payload in memory.

    Args:
        fail_on: Resource whose upload raises ``UploadError``.
    """

    def __init__(self, fail_on: Resource | None = None) -> None:
        self.calls: list[tuple[Resource, str, object]] = []
        self.fail_on = fail_on

    @property
    def resources(self) -> list[Resource]:
        return [resource for resource, _, _ in self.calls]

    def payload(self, resource: Resource) -> object:
        return next(p for r, _, p in self.calls if r == resource)

    async def _record(self, resource: Resource, user_id: str, payload: object) -> None:
        if resource == self.fail_on:
            raise UploadError(f"{resource.value} rejected", status_code=503)
        self.calls.append((resource, user_id, payload))

    async def upload_profile(self, user_id, start, end, time_zone_id, payload) -> None:
        await self._record(Resource.PROFILE, user_id, payload)

    async def upload_body(self, user_id, start, end, time_zone_id, payload) -> None:
        await self._record(Resource.BODY, user_id, payload)

    async def upload_workouts(self, user_id, start, end, time_zone_id, payload) -> None:
        await self._record(Resource.WORKOUT, user_id, payload)

    async def upload_activities(self, user_id, start, end, time_zone_id, payload) -> None:
        await self._record(Resource.ACTIVITY, user_id, payload)

    async def upload_sleeps(self, user_id, start, end, time_zone_id, payload) -> None:
        await self._record(Resource.SLEEP, user_id, payload)

    async def upload_blood_pressure(self, user_id, start, end, time_zone_id, payload) -> None:
        await self._record(Resource.BLOOD_PRESSURE, user_id, payload)

    async def upload_quantity_samples(
        self, resource, user_id, start, end, time_zone_id, payload
    ) -> None:
        await self._record(resource, user_id, payload)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sync_config() -> SyncConfig:
    """The bundled sync config with the status pause switched off."""
    config = load_sync_config()
    config.status_delay_ms = 0
    return config


@pytest.fixture
def source() -> InMemoryRecordSource:
    return InMemoryRecordSource()


@pytest.fixture
def token_store() -> InMemoryChangeTokenStore:
    return InMemoryChangeTokenStore()


@pytest.fixture
def uploader() -> RecordingUploader:
    return RecordingUploader()


@pytest.fixture
def events() -> list[SyncProgress]:
    return []


@pytest.fixture
def orchestrator(
    source: InMemoryRecordSource,
    uploader: RecordingUploader,
    token_store: InMemoryChangeTokenStore,
    sync_config: SyncConfig,
    events: list[SyncProgress],
) -> SyncOrchestrator:
    """Orchestrator wired to in-memory collaborators; events land in ``events``."""

    async def sink(progress: SyncProgress) -> None:
        events.append(progress)

    return SyncOrchestrator(
        source,
        uploader,
        token_store,
        config=sync_config,
        status_sink=sink,
        device_name="Pixel 8",
        sleep=AsyncMock(),
    )
