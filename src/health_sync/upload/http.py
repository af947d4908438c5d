"""HTTP uploader for the remote health platform.

Endpoints used:
    POST /summary/{resource}/{user_id}     — profile, body, workouts, activity, sleep
    POST /timeseries/{user_id}/{resource}  — glucose, blood pressure, heart rate, HRV, water

Requests carry the API key in the ``x-api-key`` header.  Any non-2xx response
or transport error raises ``UploadError``; the orchestrator treats that as an
attempt-level failure and leaves the change token untouched.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import httpx

from src.health_sync.base import Resource
from src.health_sync.exceptions import UploadError
from src.health_sync.upload.base import Uploader
from src.models.payloads import (
    ActivityPayload,
    BloodPressureSamplePayload,
    BodyPayload,
    ProfilePayload,
    QuantitySamplePayload,
    SleepPayload,
    SummaryPayload,
    TimeseriesPayload,
    WorkoutPayload,
)

logger = logging.getLogger("healthsync.upload.http")

# Resource -> URL path segment
_SUMMARY_PATHS: dict[Resource, str] = {
    Resource.PROFILE: "profile",
    Resource.BODY: "body",
    Resource.WORKOUT: "workouts",
    Resource.ACTIVITY: "activity",
    Resource.SLEEP: "sleep",
}

_TIMESERIES_PATHS: dict[Resource, str] = {
    Resource.GLUCOSE: "glucose",
    Resource.BLOOD_PRESSURE: "blood_pressure",
    Resource.HEART_RATE: "heartrate",
    Resource.HEART_RATE_VARIABILITY: "heartrate_variability",
    Resource.WATER: "water",
}


class HttpUploader(Uploader):
    """Uploader backed by ``httpx.AsyncClient``.

    The client is injected (or created lazily) rather than held as a
    process-wide singleton, so tests can pass a mock and callers control its
    lifetime.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        provider: str = "apple_health_kit",
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the uploader.

        Args:
            base_url:    Platform API root, e.g. 'https://api.example.com/v2'.
            api_key:     Team API key sent as ``x-api-key``.
            provider:    Provider slug reported with every payload.
            http_client: Optional pre-configured httpx client (for testing).
            timeout:     Request timeout in seconds for a lazily created client.
        """
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._provider = provider
        self._http_client = http_client
        self._timeout = timeout

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def _post(self, url: str, body: dict[str, Any]) -> None:
        try:
            response = await self._client().post(
                url, json=body, headers={"x-api-key": self._api_key}
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise UploadError(
                f"Upload to {url} rejected with HTTP {exc.response.status_code}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise UploadError(f"Upload to {url} failed: {exc}") from exc
        logger.debug("Uploaded to %s", url)

    async def _post_summary(
        self, resource: Resource, user_id: str, start: datetime, end: datetime,
        time_zone_id: str | None, data: Any,
    ) -> None:
        envelope = SummaryPayload(
            provider=self._provider,
            start_date=start,
            end_date=end,
            time_zone=time_zone_id,
            data=data,
        )
        url = f"{self._base_url}/summary/{_SUMMARY_PATHS[resource]}/{user_id}"
        await self._post(url, envelope.model_dump(mode="json"))

    async def _post_timeseries(
        self, resource: Resource, user_id: str, start: datetime, end: datetime,
        time_zone_id: str | None, data: list,
    ) -> None:
        envelope = TimeseriesPayload(
            provider=self._provider,
            start_date=start,
            end_date=end,
            time_zone=time_zone_id,
            data=data,
        )
        url = f"{self._base_url}/timeseries/{user_id}/{_TIMESERIES_PATHS[resource]}"
        await self._post(url, envelope.model_dump(mode="json"))

    # ------------------------------------------------------------------
    # Uploader interface
    # ------------------------------------------------------------------

    async def upload_profile(
        self, user_id: str, start: datetime, end: datetime,
        time_zone_id: str | None, payload: ProfilePayload,
    ) -> None:
        await self._post_summary(Resource.PROFILE, user_id, start, end, time_zone_id, payload)

    async def upload_body(
        self, user_id: str, start: datetime, end: datetime,
        time_zone_id: str | None, payload: BodyPayload,
    ) -> None:
        await self._post_summary(Resource.BODY, user_id, start, end, time_zone_id, payload)

    async def upload_workouts(
        self, user_id: str, start: datetime, end: datetime,
        time_zone_id: str | None, payload: list[WorkoutPayload],
    ) -> None:
        await self._post_summary(Resource.WORKOUT, user_id, start, end, time_zone_id, payload)

    async def upload_activities(
        self, user_id: str, start: datetime, end: datetime,
        time_zone_id: str | None, payload: list[ActivityPayload],
    ) -> None:
        await self._post_summary(Resource.ACTIVITY, user_id, start, end, time_zone_id, payload)

    async def upload_sleeps(
        self, user_id: str, start: datetime, end: datetime,
        time_zone_id: str | None, payload: list[SleepPayload],
    ) -> None:
        await self._post_summary(Resource.SLEEP, user_id, start, end, time_zone_id, payload)

    async def upload_blood_pressure(
        self, user_id: str, start: datetime, end: datetime,
        time_zone_id: str | None, payload: list[BloodPressureSamplePayload],
    ) -> None:
        await self._post_timeseries(
            Resource.BLOOD_PRESSURE, user_id, start, end, time_zone_id, payload
        )

    async def upload_quantity_samples(
        self, resource: Resource, user_id: str, start: datetime, end: datetime,
        time_zone_id: str | None, payload: list[QuantitySamplePayload],
    ) -> None:
        await self._post_timeseries(resource, user_id, start, end, time_zone_id, payload)
