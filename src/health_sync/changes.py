"""Change reconciler: turn an incremental change feed into processed data.

Algorithm for one target resource:

1. Group upserted records by concrete record kind.  Deletions are ignored.
2. Remap sub-resource aliases (steps, active/basal energy) onto Activity.
3. Keep only the kinds the resource consumes, and only records ending
   strictly before the cutoff (default: no cutoff).  The cutoff guards
   against racing the feed with a write that is still in flight.
4. Dispatch through the same processor table the backfill path uses, so the
   result is identical to a full read of the same records.

Kinds the resource does not consume are dropped and logged at DEBUG; an
unmatched kind never fails reconciliation.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable

from src.health_sync.base import (
    RESOURCE_RECORD_KINDS,
    ProcessedResourceData,
    RawRecord,
    RecordKind,
    Resource,
    group_by_kind,
)
from src.health_sync.exceptions import InvalidResourceStateError
from src.health_sync.processor import ProcessingContext, process_resource
from src.health_sync.reader import in_window
from src.health_sync.source import ChangeSet

logger = logging.getLogger("healthsync.changes")


def merge_change_sets(pages: Iterable[ChangeSet]) -> ChangeSet:
    """Flatten paginated change sets into one, keeping the last token.

    A record upserted more than once keeps only its latest version.
    """
    merged: dict[tuple[RecordKind, str], RawRecord] = {}
    anonymous: list[RawRecord] = []
    deletions: list[str] = []
    token = ""
    for page in pages:
        for record in page.upsertions:
            if record.record_id:
                merged[(record.kind, record.record_id)] = record
            else:
                anonymous.append(record)
        deletions.extend(page.deletions)
        token = page.next_token or token
    return ChangeSet(
        upsertions=[*merged.values(), *anonymous],
        deletions=deletions,
        next_token=token,
        has_more=False,
    )


def reconcile_changes(
    resource: Resource,
    changes: ChangeSet,
    context: ProcessingContext,
    cutoff: datetime | None = None,
) -> ProcessedResourceData:
    """Process the upsertions in ``changes`` for ``resource``.

    Args:
        resource: Target resource.  Sub-resource aliases are remapped onto
                  Activity first.
        changes:  The (merged) change set.
        context:  Shared processing parameters.
        cutoff:   Exclusive upper bound on record end time; None means no
                  filtering.

    Returns:
        The same ``ProcessedResourceData`` a backfill read would produce.

    Raises:
        InvalidResourceStateError: The resource is unrecognized.
    """
    target = resource.remapped()
    if target.is_sub_resource or target not in RESOURCE_RECORD_KINDS:
        raise InvalidResourceStateError(
            f"Cannot reconcile changes for resource '{resource.value}'"
        )

    if changes.deletions:
        logger.debug(
            "Ignoring %d deletions while reconciling %s", len(changes.deletions), target.value
        )

    grouped = group_by_kind(changes.upsertions)
    wanted = RESOURCE_RECORD_KINDS[target]

    dropped = {kind: len(records) for kind, records in grouped.items() if kind not in wanted}
    if dropped:
        logger.debug(
            "Reconciling %s: dropped unrelated kinds %s",
            target.value,
            {k.value: n for k, n in dropped.items()},
        )

    batch = {
        kind: [r for r in grouped.get(kind, []) if in_window(r, None, cutoff)]
        for kind in wanted
    }
    return process_resource(target, batch, context)
