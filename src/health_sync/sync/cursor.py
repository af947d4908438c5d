"""Change token persistence.

The change token is the only durable state the sync core owns.  The
orchestrator reads it at the start of an incremental attempt and writes it
only after the whole attempt succeeds.

``JsonFileChangeTokenStore`` keeps one JSON document keyed by user id, in the
same shape a ``sync_cursor`` column would hold.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger("healthsync.sync.cursor")


@dataclass
class SyncCursor:
    """Persistent cursor for one account.

    Attributes:
        change_token:  Opaque token from the data source.
        updated_at:    UTC timestamp of the last successful attempt.
    """

    change_token: str
    updated_at: datetime | None = None

    def to_json(self) -> dict:
        return {
            "change_token": self.change_token,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_json(cls, data: dict) -> "SyncCursor":
        cursor = cls(change_token=str(data.get("change_token", "")))
        if updated := data.get("updated_at"):
            try:
                cursor.updated_at = datetime.fromisoformat(updated)
            except ValueError:
                logger.warning("Ignoring unparseable cursor timestamp: %r", updated)
        return cursor


class ChangeTokenStore(ABC):
    """Where the orchestrator keeps each account's change token."""

    @abstractmethod
    async def load(self, user_id: str) -> SyncCursor | None:
        """Return the stored cursor, or None if the account never synced."""

    @abstractmethod
    async def save(self, user_id: str, token: str) -> SyncCursor:
        """Persist ``token`` as the account's new cursor."""

    @abstractmethod
    async def clear(self, user_id: str) -> None:
        """Forget the account's cursor (forces a backfill next run)."""


class InMemoryChangeTokenStore(ChangeTokenStore):
    """Process-local store for tests and single-run tools."""

    def __init__(self) -> None:
        self._cursors: dict[str, SyncCursor] = {}

    async def load(self, user_id: str) -> SyncCursor | None:
        return self._cursors.get(user_id)

    async def save(self, user_id: str, token: str) -> SyncCursor:
        cursor = SyncCursor(change_token=token, updated_at=datetime.now(timezone.utc))
        self._cursors[user_id] = cursor
        return cursor

    async def clear(self, user_id: str) -> None:
        self._cursors.pop(user_id, None)


class JsonFileChangeTokenStore(ChangeTokenStore):
    """Stores all cursors in one JSON file, rewritten atomically on save.

    File I/O runs in a worker thread via ``asyncio.to_thread``.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        self._lock = asyncio.Lock()

    def _read_all(self) -> dict[str, dict]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Corrupt change token file {self._path}: {exc}") from exc
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict[str, dict]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
        tmp.replace(self._path)

    async def load(self, user_id: str) -> SyncCursor | None:
        async with self._lock:
            data = await asyncio.to_thread(self._read_all)
        entry = data.get(user_id)
        return SyncCursor.from_json(entry) if entry else None

    async def save(self, user_id: str, token: str) -> SyncCursor:
        cursor = SyncCursor(change_token=token, updated_at=datetime.now(timezone.utc))
        async with self._lock:
            data = await asyncio.to_thread(self._read_all)
            data[user_id] = cursor.to_json()
            await asyncio.to_thread(self._write_all, data)
        logger.debug("Saved change token for %s to %s", user_id, self._path)
        return cursor

    async def clear(self, user_id: str) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._read_all)
            if data.pop(user_id, None) is not None:
                await asyncio.to_thread(self._write_all, data)
