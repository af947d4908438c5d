"""Tests for the sync API routes (FastAPI TestClient, in-memory collaborators)."""

from __future__ import annotations

import asyncio
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from src.dependencies import (
    _user_locks,
    discard_user_lock,
    get_token_store,
    get_uploader,
    get_user_lock,
)
from src.health_sync.base import Resource
from src.health_sync.config_loader import SyncConfig, get_sync_config
from src.health_sync.sync.cursor import InMemoryChangeTokenStore
from src.health_sync.tests.conftest import RecordingUploader
from src.main import app

EXPORT_XML = b"""<?xml version="1.0" encoding="UTF-8"?>
<HealthData locale="en_US">
  <Record type="HKQuantityTypeIdentifierBodyMass" sourceName="Withings" unit="kg"
          startDate="2026-02-23 07:00:00 +0000" endDate="2026-02-23 07:00:00 +0000" value="71.8"/>
  <Record type="HKQuantityTypeIdentifierStepCount" sourceName="Apple Watch" unit="count"
          startDate="2026-02-23 09:00:00 +0000" endDate="2026-02-23 09:10:00 +0000" value="1204"/>
</HealthData>
"""

WINDOW = {
    "start_date": "2026-02-23T00:00:00+00:00",
    "end_date": "2026-02-24T00:00:00+00:00",
}


@pytest.fixture
def fake_uploader() -> RecordingUploader:
    return RecordingUploader()


@pytest.fixture
def fake_token_store() -> InMemoryChangeTokenStore:
    return InMemoryChangeTokenStore()


@pytest.fixture
def client(
    fake_uploader: RecordingUploader,
    fake_token_store: InMemoryChangeTokenStore,
    sync_config: SyncConfig,
) -> Iterator[TestClient]:
    async def _uploader():
        yield fake_uploader

    app.dependency_overrides[get_uploader] = _uploader
    app.dependency_overrides[get_token_store] = lambda: fake_token_store
    app.dependency_overrides[get_sync_config] = lambda: sync_config
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _backfill(client: TestClient, user_id: str = "user-123", xml: bytes = EXPORT_XML, **form):
    return client.post(
        f"/api/v1/sync/{user_id}/backfill",
        files={"file": ("export.xml", xml, "application/xml")},
        data={**WINDOW, **form},
    )


class TestHealth:
    def test_health(self, client: TestClient) -> None:
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestResources:
    def test_lists_resources_and_aliases(self, client: TestClient) -> None:
        body = client.get("/api/v1/sync/resources").json()
        assert len(body["resources"]) == 10
        assert "steps" not in body["resources"]
        assert body["sub_resources"]["steps"] == "activity"


class TestBackfillEndpoint:
    def test_backfill_reports_events_and_uploads(
        self, client: TestClient, fake_uploader: RecordingUploader
    ) -> None:
        response = _backfill(client, resources="water,body,steps")

        assert response.status_code == 200
        body = response.json()
        assert body["result"]["succeeded"] is True
        assert body["events"] == [
            {"resource": "water", "status": "syncing"},
            {"resource": "water", "status": "nothingToSync"},
            {"resource": "body", "status": "syncing"},
            {"resource": "body", "status": "synced"},
            {"resource": "activity", "status": "syncing"},
            {"resource": "activity", "status": "synced"},
        ]
        assert fake_uploader.resources == [Resource.BODY, Resource.ACTIVITY]

    def test_cursor_stored_after_success(self, client: TestClient) -> None:
        assert client.get("/api/v1/sync/user-123/cursor").status_code == 404

        _backfill(client, resources="body")

        cursor = client.get("/api/v1/sync/user-123/cursor")
        assert cursor.status_code == 200
        assert cursor.json()["change_token"] == "2"

        assert client.delete("/api/v1/sync/user-123/cursor").status_code == 204
        assert client.get("/api/v1/sync/user-123/cursor").status_code == 404

    def test_upload_failure_returns_502(
        self, client: TestClient, fake_uploader: RecordingUploader
    ) -> None:
        fake_uploader.fail_on = Resource.BODY

        response = _backfill(client, resources="body")

        assert response.status_code == 502
        assert response.json()["result"]["succeeded"] is False
        assert client.get("/api/v1/sync/user-123/cursor").status_code == 404

    def test_unknown_resource(self, client: TestClient) -> None:
        response = _backfill(client, resources="mood")
        assert response.status_code == 400
        assert "Unknown resource" in response.json()["detail"]

    def test_invalid_xml(self, client: TestClient) -> None:
        response = _backfill(client, xml=b"<HealthData><Record")
        assert response.status_code == 400

    def test_unknown_time_zone(self, client: TestClient) -> None:
        response = _backfill(client, time_zone="Mars/Olympus_Mons")
        assert response.status_code == 400

    def test_empty_window(self, client: TestClient) -> None:
        response = _backfill(
            client,
            start_date="2026-02-24T00:00:00+00:00",
            end_date="2026-02-23T00:00:00+00:00",
        )
        assert response.status_code == 400

    def test_busy_user_gets_409(self, client: TestClient) -> None:
        lock = get_user_lock("busy-user")
        asyncio.run(lock.acquire())
        try:
            response = _backfill(client, user_id="busy-user")
        finally:
            lock.release()
        assert response.status_code == 409


class TestUserLocks:
    def test_lock_dropped_after_backfill(self, client: TestClient) -> None:
        _backfill(client, user_id="short-lived", resources="body")
        _backfill(client, user_id="short-lived", resources="mood")

        assert "short-lived" not in _user_locks

    def test_held_lock_kept(self) -> None:
        lock = get_user_lock("holder")
        asyncio.run(lock.acquire())
        try:
            discard_user_lock("holder", lock)
            assert _user_locks["holder"] is lock
        finally:
            lock.release()
        discard_user_lock("holder", lock)
        assert "holder" not in _user_locks
