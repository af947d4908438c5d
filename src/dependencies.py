"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

import asyncio
from functools import lru_cache
from typing import Annotated, AsyncGenerator

from fastapi import Depends

from src.config import Settings, get_settings
from src.health_sync.config_loader import SyncConfig, get_sync_config
from src.health_sync.sync.cursor import ChangeTokenStore, JsonFileChangeTokenStore
from src.health_sync.upload.base import Uploader
from src.health_sync.upload.http import HttpUploader

# One active sync attempt per account
_user_locks: dict[str, asyncio.Lock] = {}


def get_user_lock(user_id: str) -> asyncio.Lock:
    """Return the lock guarding ``user_id``'s change token."""
    lock = _user_locks.get(user_id)
    if lock is None:
        lock = _user_locks[user_id] = asyncio.Lock()
    return lock


def discard_user_lock(user_id: str, lock: asyncio.Lock) -> None:
    """Forget ``lock`` once it is free so idle users don't accumulate."""
    if not lock.locked() and _user_locks.get(user_id) is lock:
        del _user_locks[user_id]


@lru_cache
def get_token_store() -> ChangeTokenStore:
    return JsonFileChangeTokenStore(get_settings().token_store_path)


async def get_uploader() -> AsyncGenerator[Uploader, None]:
    """Per-request HTTP uploader; its client is closed when the request ends."""
    settings = get_settings()
    uploader = HttpUploader(
        base_url=settings.platform_base_url,
        api_key=settings.platform_api_key,
        provider=settings.provider,
        timeout=settings.upload_timeout_seconds,
    )
    try:
        yield uploader
    finally:
        await uploader.aclose()


# Annotated shortcuts for route signatures
AppSettings = Annotated[Settings, Depends(get_settings)]
AppSyncConfig = Annotated[SyncConfig, Depends(get_sync_config)]
TokenStore = Annotated[ChangeTokenStore, Depends(get_token_store)]
PlatformUploader = Annotated[Uploader, Depends(get_uploader)]
