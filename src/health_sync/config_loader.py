"""Load, validate, and hot-reload the health sync engine configuration.

The config lives in ``sync_config.yaml`` alongside this module.  At startup
it is loaded once and cached.  Call ``reload_sync_config()`` to re-read from
disk after an update; no restart required.

Usage::

    from src.health_sync.config_loader import get_sync_config

    config = get_sync_config()
    delay = config.status_delay_seconds      # 0.1
    mode = config.activity.totals_source      # "records"
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from src.health_sync.base import Resource

logger = logging.getLogger("healthsync.config")

_CONFIG_PATH = Path(__file__).parent / "sync_config.yaml"

ACTIVITY_TOTALS_SOURCES = ("records", "aggregate")


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class BackfillConfig:
    """Backfill window settings."""

    default_days: int
    max_days: int


@dataclass
class ActivityConfig:
    """How Activity day totals are computed."""

    totals_source: str  # "records" | "aggregate"

    @property
    def uses_aggregates(self) -> bool:
        return self.totals_source == "aggregate"


@dataclass
class ChangesConfig:
    """Incremental change feed settings."""

    max_pages: int


@dataclass
class SyncConfig:
    """Complete, validated sync configuration.

    Attributes:
        version:            Config schema version string.
        status_delay_ms:    Pause after each status event.
        default_resources:  Resources synced when none are requested.
        backfill:           Backfill window settings.
        activity:           Activity totals mode.
        enrich_workouts:    Fill workout distance/calories from aggregates.
        changes:            Change feed settings.
    """

    version: str
    status_delay_ms: int
    default_resources: list[Resource]
    backfill: BackfillConfig
    activity: ActivityConfig
    enrich_workouts: bool
    changes: ChangesConfig
    _raw: dict = field(default_factory=dict, repr=False)

    @property
    def status_delay_seconds(self) -> float:
        return self.status_delay_ms / 1000.0


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when sync_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Sync config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> SyncConfig:
    """Validate the raw YAML dict and construct a SyncConfig.

    Applies defaults for optional sections.

    Raises:
        ConfigValidationError: If any value is invalid.
    """
    errors: list[str] = []

    def _int(section: dict, key: str, default: int, where: str, minimum: int = 0) -> int:
        value: Any = section.get(key, default)
        try:
            number = int(value)
        except (TypeError, ValueError):
            errors.append(f"{where}.{key} must be an integer, got {value!r}")
            return default
        if number < minimum:
            errors.append(f"{where}.{key} = {number} must be >= {minimum}")
        return number

    version = str(raw.get("version", "1.0"))

    # ── Status ──
    status_raw = raw.get("status") or {}
    status_delay_ms = _int(status_raw, "delay_ms", 100, "status")

    # ── Default resources ──
    default_resources: list[Resource] = []
    for name in raw.get("default_resources") or []:
        try:
            resource = Resource(name)
        except ValueError:
            errors.append(f"default_resources: unknown resource {name!r}")
            continue
        if resource.is_sub_resource:
            errors.append(
                f"default_resources: {name!r} is a sub-resource of "
                f"{resource.remapped().value!r}; list the parent instead"
            )
            continue
        default_resources.append(resource)

    # ── Backfill ──
    bf_raw = raw.get("backfill") or {}
    backfill = BackfillConfig(
        default_days=_int(bf_raw, "default_days", 30, "backfill", minimum=1),
        max_days=_int(bf_raw, "max_days", 3650, "backfill", minimum=1),
    )
    if backfill.default_days > backfill.max_days:
        errors.append(
            f"backfill.default_days ({backfill.default_days}) exceeds "
            f"backfill.max_days ({backfill.max_days})"
        )

    # ── Activity ──
    act_raw = raw.get("activity") or {}
    totals_source = act_raw.get("totals_source", "records")
    if totals_source not in ACTIVITY_TOTALS_SOURCES:
        errors.append(
            f"activity.totals_source must be one of {ACTIVITY_TOTALS_SOURCES}, "
            f"got {totals_source!r}"
        )
    activity = ActivityConfig(totals_source=totals_source)

    # ── Workout ──
    wo_raw = raw.get("workout") or {}
    enrich_workouts = bool(wo_raw.get("enrich_from_aggregates", False))

    # ── Changes ──
    ch_raw = raw.get("changes") or {}
    changes = ChangesConfig(
        max_pages=_int(ch_raw, "max_pages", 50, "changes", minimum=1),
    )

    if errors:
        raise ConfigValidationError(
            f"sync_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return SyncConfig(
        version=version,
        status_delay_ms=status_delay_ms,
        default_resources=default_resources,
        backfill=backfill,
        activity=activity,
        enrich_workouts=enrich_workouts,
        changes=changes,
        _raw=raw,
    )


def load_sync_config(path: Path | None = None) -> SyncConfig:
    """Load and validate the sync config from disk.

    Args:
        path: Override path to YAML. Uses the bundled sync_config.yaml by default.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded sync config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: SyncConfig | None = None
_config_lock = threading.Lock()


def get_sync_config() -> SyncConfig:
    """Return the global SyncConfig singleton, loading it on first call."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_sync_config()
    return _config


def reload_sync_config(path: Path | None = None) -> SyncConfig:
    """Reload the sync config from disk and replace the global singleton.

    If validation fails, the old config is retained and the error is re-raised.
    """
    global _config
    new_config = load_sync_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded sync config: %s → %s", old_version, new_config.version)
    return new_config
