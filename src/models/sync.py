"""Pydantic schemas for the sync endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from src.health_sync.base import SyncAttemptResult, SyncProgress
from src.models.base import HealthSyncBase


class ResourceList(HealthSyncBase):
    resources: list[str]
    sub_resources: dict[str, str] = Field(
        default_factory=dict, description="Sub-resource -> resource it is synced as"
    )


class SyncEventRead(HealthSyncBase):
    resource: str
    status: str

    @classmethod
    def from_progress(cls, progress: SyncProgress) -> "SyncEventRead":
        return cls(**progress.to_json())


class SyncResultRead(HealthSyncBase):
    succeeded: bool
    statuses: dict[str, str] = Field(default_factory=dict)
    error: str | None = None

    @classmethod
    def from_result(cls, result: SyncAttemptResult) -> "SyncResultRead":
        return cls(**result.to_json())


class SyncResponse(HealthSyncBase):
    user_id: str
    start_date: datetime
    end_date: datetime
    events: list[SyncEventRead] = Field(default_factory=list)
    result: SyncResultRead


class CursorRead(HealthSyncBase):
    user_id: str
    change_token: str
    updated_at: datetime | None = None
