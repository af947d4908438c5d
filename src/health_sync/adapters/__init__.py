"""Local record sources.

Available sources:
    InMemoryRecordSource    — list-backed source with a paginated change log
    AppleHealthExportSource — records parsed from an Apple Health export.xml
"""

from src.health_sync.adapters.apple_health import AppleHealthExportSource
from src.health_sync.adapters.memory import InMemoryRecordSource

__all__ = [
    "InMemoryRecordSource",
    "AppleHealthExportSource",
]
