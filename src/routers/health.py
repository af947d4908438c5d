"""Health check endpoint — public, no auth required."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter

from src.config import get_settings
from src.health_sync.config_loader import ConfigValidationError, get_sync_config

router = APIRouter(tags=["system"])
logger = logging.getLogger("healthsync.health")


@router.get("/health")
async def health_check() -> dict:
    """Liveness probe. Returns 200 if the API process is up.

    Also confirms the sync config loads and validates.
    """
    settings = get_settings()
    config_version = None
    try:
        config_version = get_sync_config().version
    except (OSError, ConfigValidationError) as exc:
        logger.warning("Health check could not load sync config: %s", exc)

    return {
        "status": "healthy" if config_version else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "sync_config": config_version or "invalid",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
