"""RecordSource: the capability interface every local data source implements.

The normalization core never touches platform record classes or permission
APIs directly.  A platform binding subclasses ``RecordSource`` and converts
its native records into ``RawRecord`` instances; everything downstream works
against this interface only.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime

from src.health_sync.base import (
    AggregateMetric,
    AggregateSummary,
    RawRecord,
    RecordKind,
    SleepSessionRecord,
    SleepStageRecord,
)


@dataclass
class ChangeSet:
    """One page of the incremental change feed.

    Attributes:
        upsertions: Records inserted or updated since the token.
        deletions:  Record ids deleted since the token (not processed).
        next_token: Token marking the end of this page.
        has_more:   True when another page is available from ``next_token``.
    """

    upsertions: list[RawRecord] = field(default_factory=list)
    deletions: list[str] = field(default_factory=list)
    next_token: str = ""
    has_more: bool = False


class RecordSource(ABC):
    """Abstract local health data source.

    Subclasses must implement:
        - granted_permissions()
        - read()
        - read_sleep_stages()
        - aggregate()
        - changes_token()
        - changes()
    """

    @abstractmethod
    async def granted_permissions(self) -> set[RecordKind]:
        """Return the record kinds the user has granted read access to."""

    @abstractmethod
    async def read(
        self, kind: RecordKind, start: datetime, end: datetime
    ) -> list[RawRecord]:
        """Return records of ``kind`` overlapping ``[start, end)``.

        Implementations may over-select; ``RecordReader`` applies the exact
        half-open end-time rule.  Zero records is an empty list, not an error.
        """

    @abstractmethod
    async def read_sleep_stages(
        self, session: SleepSessionRecord
    ) -> list[SleepStageRecord]:
        """Return the stage segments belonging to ``session``."""

    @abstractmethod
    async def aggregate(
        self, start: datetime, end: datetime, metrics: set[AggregateMetric]
    ) -> AggregateSummary:
        """Compute the requested totals over ``[start, end)``.

        Values are raw (unrounded); rounding is the aggregator's concern.
        """

    @abstractmethod
    async def changes_token(self) -> str:
        """Return a token marking the current head of the change feed."""

    @abstractmethod
    async def changes(self, token: str) -> ChangeSet:
        """Return the page of changes recorded after ``token``."""
