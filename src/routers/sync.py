"""Sync endpoints: resource catalogue, export backfill, stored cursors."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import APIRouter, File, Form, HTTPException, Response, UploadFile

from src.dependencies import (
    AppSettings,
    AppSyncConfig,
    PlatformUploader,
    TokenStore,
    discard_user_lock,
    get_user_lock,
)
from src.health_sync.adapters.apple_health import AppleHealthExportSource
from src.health_sync.base import SUB_RESOURCES, SYNCABLE_RESOURCES, Resource, SyncProgress
from src.health_sync.exceptions import InvalidResourceStateError
from src.health_sync.sync.orchestrator import SyncOrchestrator
from src.models.base import ErrorDetail, utc_now
from src.models.sync import (
    CursorRead,
    ResourceList,
    SyncEventRead,
    SyncResponse,
    SyncResultRead,
)

router = APIRouter(prefix="/sync", tags=["sync"])
logger = logging.getLogger("healthsync.routers.sync")


def _parse_resources(raw: str | None, defaults: list[Resource]) -> list[Resource]:
    """Parse a comma-separated resource list; empty means the configured defaults."""
    if not raw or not raw.strip():
        return list(defaults)
    resources = []
    for name in (part.strip() for part in raw.split(",")):
        if not name:
            continue
        try:
            resources.append(Resource(name))
        except ValueError:
            raise HTTPException(
                status_code=400,
                detail=f"Unknown resource '{name}'. Available: {[r.value for r in Resource]}",
            ) from None
    return resources


@router.get("/resources", response_model=ResourceList)
async def list_resources() -> Any:
    return ResourceList(
        resources=[r.value for r in SYNCABLE_RESOURCES],
        sub_resources={r.value: r.remapped().value for r in sorted(SUB_RESOURCES, key=lambda r: r.value)},
    )


@router.post(
    "/{user_id}/backfill",
    response_model=SyncResponse,
    responses={400: {"model": ErrorDetail}, 409: {"model": ErrorDetail}, 502: {"model": SyncResponse}},
)
async def backfill_export(
    user_id: str,
    response: Response,
    settings: AppSettings,
    sync_config: AppSyncConfig,
    uploader: PlatformUploader,
    token_store: TokenStore,
    file: UploadFile = File(...),
    resources: str | None = Form(default=None),
    start_date: datetime | None = Form(default=None),
    end_date: datetime | None = Form(default=None),
    time_zone: str | None = Form(default=None),
) -> Any:
    """Backfill ``user_id`` from an uploaded Apple Health ``export.xml``.

    ``resources`` is comma-separated (sub-resources fold into activity).  The
    window defaults to the configured number of days ending now.  Returns
    every status event in emission order plus the attempt result; a failed
    attempt answers 502.
    """
    lock = get_user_lock(user_id)
    if lock.locked():
        raise HTTPException(status_code=409, detail=f"A sync for '{user_id}' is already running")

    try:
        async with lock:
            targets = _parse_resources(resources, sync_config.default_resources)

            try:
                tz = ZoneInfo(time_zone or settings.default_time_zone)
            except (ZoneInfoNotFoundError, ValueError):
                raise HTTPException(status_code=400, detail=f"Unknown time zone '{time_zone}'") from None

            end = end_date or utc_now()
            start = start_date or end - timedelta(days=sync_config.backfill.default_days)
            if start.tzinfo is None or end.tzinfo is None:
                raise HTTPException(status_code=400, detail="start_date and end_date need a UTC offset")

            data = await file.read()
            if len(data) > settings.max_upload_size_bytes:
                raise HTTPException(
                    status_code=400,
                    detail=f"File too large. Max size: {settings.max_upload_size_bytes // (1024*1024)} MB",
                )
            try:
                source = AppleHealthExportSource.from_xml(data)
            except ValueError as exc:
                raise HTTPException(status_code=400, detail=str(exc)) from exc

            events: list[SyncProgress] = []

            async def collect(progress: SyncProgress) -> None:
                events.append(progress)

            orchestrator = SyncOrchestrator(
                source,
                uploader,
                token_store,
                config=sync_config,
                status_sink=collect,
                time_zone=tz,
                device_name=settings.device_name,
            )
            try:
                result = await orchestrator.backfill(user_id, targets, start, end)
            except InvalidResourceStateError as exc:
                raise HTTPException(status_code=400, detail=str(exc)) from exc
    finally:
        discard_user_lock(user_id, lock)

    if not result.succeeded:
        logger.warning("Backfill for %s failed: %s", user_id, result.error)
        response.status_code = 502

    return SyncResponse(
        user_id=user_id,
        start_date=start,
        end_date=end,
        events=[SyncEventRead.from_progress(e) for e in events],
        result=SyncResultRead.from_result(result),
    )


@router.get(
    "/{user_id}/cursor",
    response_model=CursorRead,
    responses={404: {"model": ErrorDetail}},
)
async def get_cursor(user_id: str, token_store: TokenStore) -> Any:
    """The change token stored by the last successful attempt."""
    cursor = await token_store.load(user_id)
    if cursor is None:
        raise HTTPException(status_code=404, detail="No sync cursor for this user")
    return CursorRead(user_id=user_id, change_token=cursor.change_token, updated_at=cursor.updated_at)


@router.delete("/{user_id}/cursor", status_code=204)
async def reset_cursor(user_id: str, token_store: TokenStore) -> None:
    """Forget the stored token; the next attempt runs as a backfill."""
    await token_store.clear(user_id)
