"""Reader: fetch raw records for a record kind and half-open time window."""

from __future__ import annotations

import logging
from datetime import datetime

from src.health_sync.base import (
    RawRecord,
    RecordKind,
    SleepSessionRecord,
    SleepStageRecord,
)
from src.health_sync.exceptions import PermissionDeniedError, ReadError
from src.health_sync.source import RecordSource

logger = logging.getLogger("healthsync.reader")


def in_window(record: RawRecord, start: datetime | None, end: datetime | None) -> bool:
    """Return True if ``record`` belongs to the half-open window ``[start, end)``.

    Membership is decided by the record's end time (its instant, for point
    records).  A record ending exactly at ``end`` is excluded.  Either bound
    may be None for an open window.
    """
    if end is not None and not record.end < end:
        return False
    if start is not None and record.end < start:
        return False
    return True


class RecordReader:
    """Pure query layer over a ``RecordSource``.

    Never mutates source state.  Reading a kind whose permission was never
    granted raises ``PermissionDeniedError``; callers that treat missing
    permission as an expected condition use ``read_permitted()``.
    """

    def __init__(self, source: RecordSource) -> None:
        self._source = source
        self._granted: set[RecordKind] | None = None

    async def granted(self) -> set[RecordKind]:
        """Return (and cache) the granted record kinds for this reader."""
        if self._granted is None:
            self._granted = set(await self._source.granted_permissions())
        return self._granted

    def invalidate_permissions(self) -> None:
        """Forget the cached permission set (call after a permission prompt)."""
        self._granted = None

    async def read(
        self, kind: RecordKind, start: datetime, end: datetime
    ) -> list[RawRecord]:
        """Return records of ``kind`` in ``[start, end)`` ordered by start time.

        Raises:
            PermissionDeniedError: The kind was never granted.
            ReadError:             The source failed.
        """
        if kind not in await self.granted():
            raise PermissionDeniedError(kind.value)

        try:
            records = await self._source.read(kind, start, end)
        except PermissionDeniedError:
            raise
        except Exception as exc:
            raise ReadError(f"Failed to read {kind.value} records: {exc}") from exc

        selected = [r for r in records if in_window(r, start, end)]
        selected.sort(key=lambda r: (r.start, r.end))
        logger.debug(
            "Read %d/%d %s records in [%s, %s)",
            len(selected), len(records), kind.value, start.isoformat(), end.isoformat(),
        )
        return selected

    async def read_permitted(
        self, kind: RecordKind, start: datetime, end: datetime
    ) -> list[RawRecord]:
        """Like ``read()``, but an ungranted kind yields an empty list."""
        if kind not in await self.granted():
            logger.debug("No read permission for %s; treating as empty", kind.value)
            return []
        return await self.read(kind, start, end)

    async def read_sleep_stages(
        self, session: SleepSessionRecord
    ) -> list[SleepStageRecord]:
        """Return the stage segments of ``session`` ordered by start time.

        Stages share the session's read permission.
        """
        if RecordKind.SLEEP_SESSION not in await self.granted():
            return []
        try:
            stages = await self._source.read_sleep_stages(session)
        except Exception as exc:
            raise ReadError(
                f"Failed to read sleep stages for session {session.record_id!r}: {exc}"
            ) from exc
        return sorted(stages, key=lambda s: (s.start, s.end))
