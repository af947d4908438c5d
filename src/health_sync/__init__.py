"""Health data sync core.

Reads raw health records from a local data source, normalizes them into
per-resource payloads and uploads them to the remote platform, either as a
windowed backfill or incrementally from a change feed.

Subpackages:
    adapters/ — Local data sources (in-memory, Apple Health export)
    sync/     — Sync orchestrator and change token persistence
    upload/   — Uploader interface and HTTP implementation

Core modules:
    base          — Resources, raw record kinds and normalized result types
    source        — RecordSource ABC implemented by every data source
    reader        — Permission-aware, half-open window record reads
    aggregator    — Source-native totals with floor rounding
    processor     — Per-resource normalization and the dispatch table
    changes       — Change feed reconciliation
    config_loader — Load/validate/hot-reload sync_config.yaml
"""

from src.health_sync.base import (
    ProcessedResourceData,
    RawRecord,
    RecordKind,
    Resource,
    SyncAttemptResult,
    SyncProgress,
    SyncStatus,
)
from src.health_sync.config_loader import SyncConfig, get_sync_config
from src.health_sync.source import ChangeSet, RecordSource

__all__ = [
    "Resource",
    "RecordKind",
    "RawRecord",
    "ProcessedResourceData",
    "SyncStatus",
    "SyncProgress",
    "SyncAttemptResult",
    "RecordSource",
    "ChangeSet",
    "SyncConfig",
    "get_sync_config",
]
