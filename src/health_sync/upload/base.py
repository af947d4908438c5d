"""Uploader interface and the resource -> upload call dispatch.

The uploader is an external collaborator: the sync core hands it one payload
per resource and treats any exception as an upstream failure.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime

from src.health_sync.base import (
    ActivitySummary,
    BloodPressureSample,
    BodySummary,
    NormalizedSample,
    ProcessedResourceData,
    ProfileSummary,
    Resource,
    SleepSummary,
    Summary,
    TimeSeries,
    WorkoutSummary,
)
from src.health_sync.exceptions import InvalidResourceStateError
from src.models.payloads import (
    ActivityPayload,
    BloodPressureSamplePayload,
    BodyPayload,
    ProfilePayload,
    QuantitySamplePayload,
    SleepPayload,
    WorkoutPayload,
)

logger = logging.getLogger("healthsync.upload")


class Uploader(ABC):
    """Pushes normalized payloads to the remote platform.

    Every method takes ``(user_id, start, end, time_zone_id, payload)`` and
    raises on failure (``UploadError`` for platform rejections).
    """

    @abstractmethod
    async def upload_profile(
        self, user_id: str, start: datetime, end: datetime,
        time_zone_id: str | None, payload: ProfilePayload,
    ) -> None: ...

    @abstractmethod
    async def upload_body(
        self, user_id: str, start: datetime, end: datetime,
        time_zone_id: str | None, payload: BodyPayload,
    ) -> None: ...

    @abstractmethod
    async def upload_workouts(
        self, user_id: str, start: datetime, end: datetime,
        time_zone_id: str | None, payload: list[WorkoutPayload],
    ) -> None: ...

    @abstractmethod
    async def upload_activities(
        self, user_id: str, start: datetime, end: datetime,
        time_zone_id: str | None, payload: list[ActivityPayload],
    ) -> None: ...

    @abstractmethod
    async def upload_sleeps(
        self, user_id: str, start: datetime, end: datetime,
        time_zone_id: str | None, payload: list[SleepPayload],
    ) -> None: ...

    @abstractmethod
    async def upload_blood_pressure(
        self, user_id: str, start: datetime, end: datetime,
        time_zone_id: str | None, payload: list[BloodPressureSamplePayload],
    ) -> None: ...

    @abstractmethod
    async def upload_quantity_samples(
        self, resource: Resource, user_id: str, start: datetime, end: datetime,
        time_zone_id: str | None, payload: list[QuantitySamplePayload],
    ) -> None:
        """Upload scalar samples for glucose, heart rate, HRV or water."""

    # Per-resource shortcuts for the scalar time series

    async def upload_glucose(self, user_id, start, end, time_zone_id, payload) -> None:
        await self.upload_quantity_samples(
            Resource.GLUCOSE, user_id, start, end, time_zone_id, payload
        )

    async def upload_heart_rate(self, user_id, start, end, time_zone_id, payload) -> None:
        await self.upload_quantity_samples(
            Resource.HEART_RATE, user_id, start, end, time_zone_id, payload
        )

    async def upload_heart_rate_variability(
        self, user_id, start, end, time_zone_id, payload
    ) -> None:
        await self.upload_quantity_samples(
            Resource.HEART_RATE_VARIABILITY, user_id, start, end, time_zone_id, payload
        )

    async def upload_water(self, user_id, start, end, time_zone_id, payload) -> None:
        await self.upload_quantity_samples(
            Resource.WATER, user_id, start, end, time_zone_id, payload
        )


async def upload_resource(
    uploader: Uploader,
    resource: Resource,
    user_id: str,
    start: datetime,
    end: datetime,
    time_zone_id: str | None,
    data: ProcessedResourceData,
) -> None:
    """Convert ``data`` to its payload shape and call the matching upload.

    Raises:
        InvalidResourceStateError: ``data`` does not match ``resource``.
    """
    logger.debug("Uploading %s for %s", resource.value, user_id)
    args = (user_id, start, end, time_zone_id)
    quantity_uploads = {
        Resource.GLUCOSE: uploader.upload_glucose,
        Resource.HEART_RATE: uploader.upload_heart_rate,
        Resource.HEART_RATE_VARIABILITY: uploader.upload_heart_rate_variability,
        Resource.WATER: uploader.upload_water,
    }

    if isinstance(data, TimeSeries):
        if resource == Resource.BLOOD_PRESSURE:
            await uploader.upload_blood_pressure(
                *args,
                [
                    BloodPressureSamplePayload.from_sample(s)
                    for s in data.samples
                    if isinstance(s, BloodPressureSample)
                ],
            )
            return
        if resource in quantity_uploads:
            await quantity_uploads[resource](
                *args,
                [
                    QuantitySamplePayload.from_sample(s)
                    for s in data.samples
                    if isinstance(s, NormalizedSample)
                ],
            )
            return

    if isinstance(data, Summary):
        payload = data.payload
        if resource == Resource.PROFILE and isinstance(payload, ProfileSummary):
            await uploader.upload_profile(*args, ProfilePayload.from_summary(payload))
            return
        if resource == Resource.BODY and isinstance(payload, BodySummary):
            await uploader.upload_body(*args, BodyPayload.from_summary(payload))
            return
        if resource == Resource.WORKOUT and isinstance(payload, WorkoutSummary):
            await uploader.upload_workouts(
                *args, [WorkoutPayload.from_item(w) for w in payload.workouts]
            )
            return
        if resource == Resource.ACTIVITY and isinstance(payload, ActivitySummary):
            await uploader.upload_activities(
                *args, [ActivityPayload.from_day(d) for d in payload.days]
            )
            return
        if resource == Resource.SLEEP and isinstance(payload, SleepSummary):
            await uploader.upload_sleeps(
                *args, [SleepPayload.from_item(s) for s in payload.sessions]
            )
            return

    raise InvalidResourceStateError(
        f"Processed data {type(data).__name__} does not match resource '{resource.value}'"
    )
