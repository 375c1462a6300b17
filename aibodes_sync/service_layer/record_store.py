# aibodes_sync/service_layer/record_store.py
from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Iterable

from ..domain.events import RECORD_EVENT_KIND, ChangeType, SyncEvent
from ..domain.records import (
    MarketSnapshot,
    NeighborhoodSnapshot,
    PropertyRecord,
    Record,
    RecordKind,
    location_key,
)
from ..domain.types import MergeOutcome
from .event_bus import EventBus

log = logging.getLogger(__name__)


class RecordStore:
    """
    identity key -> Record, newest fetched_at wins.

    merge() is the only writer and is serialized; push-path and periodic-path
    merges queue up behind the same lock. Reads hand out deep copies.
    """

    def __init__(self, bus: EventBus | None = None) -> None:
        self._bus = bus
        self._records: dict[str, Record] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._records)

    async def merge(self, records: Iterable[Record]) -> MergeOutcome:
        added = updated = unchanged = discarded = 0
        changes: dict[tuple[RecordKind, ChangeType], list[Record]] = defaultdict(list)

        async with self._lock:
            for incoming in records:
                current = self._records.get(incoming.key)

                if current is None:
                    self._records[incoming.key] = incoming.copy()
                    added += 1
                    changes[(incoming.kind, ChangeType.added)].append(incoming)
                    continue

                if current.fetched_at >= incoming.fetched_at:
                    # late or duplicate delivery from a slower source
                    discarded += 1
                    continue

                self._records[incoming.key] = incoming.copy()
                if current.same_payload(incoming):
                    unchanged += 1
                else:
                    updated += 1
                    changes[(incoming.kind, ChangeType.updated)].append(incoming)

        # Events go out after the batch is applied so a reader that reacts by
        # querying the store sees the whole batch.
        if self._bus is not None:
            for (kind, change), recs in changes.items():
                self._bus.publish(
                    SyncEvent(
                        kind=RECORD_EVENT_KIND[kind],
                        change=change,
                        records=tuple(recs),
                    )
                )

        out = MergeOutcome(added=added, updated=updated, unchanged=unchanged, discarded=discarded)
        if added or updated:
            log.debug("merge: %s", out)
        return out

    # -------------------------
    # Snapshot reads
    # -------------------------

    def get(self, key: str) -> Record | None:
        r = self._records.get(key)
        return r.copy() if r is not None else None

    def records(self, kind: RecordKind | None = None) -> list[Record]:
        return [r.copy() for r in self._records.values() if kind is None or r.kind == kind]

    def properties(self) -> list[PropertyRecord]:
        return [r.copy() for r in self._records.values() if isinstance(r, PropertyRecord)]

    def market(self, location: str) -> MarketSnapshot | None:
        r = self._lookup(RecordKind.market, location)
        return r if isinstance(r, MarketSnapshot) else None

    def neighborhood(self, location: str) -> NeighborhoodSnapshot | None:
        r = self._lookup(RecordKind.neighborhood, location)
        return r if isinstance(r, NeighborhoodSnapshot) else None

    def _lookup(self, kind: RecordKind, location: str) -> Record | None:
        try:
            key = location_key(kind, location)
        except ValueError:
            return None
        return self.get(key)
