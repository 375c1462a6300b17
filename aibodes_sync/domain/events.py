# aibodes_sync/domain/events.py
from __future__ import annotations

import copy
import enum
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from .errors import SyncEngineError
from .records import Record, RecordKind
from .types import ConnectionState


class EventKind(str, enum.Enum):
    properties = "properties"
    market = "market"
    neighborhood = "neighborhood"
    connection = "connection"
    price_alert = "price_alert"
    new_listing = "new_listing"


class ChangeType(str, enum.Enum):
    added = "added"
    updated = "updated"


RECORD_EVENT_KIND: dict[RecordKind, EventKind] = {
    RecordKind.property: EventKind.properties,
    RecordKind.market: EventKind.market,
    RecordKind.neighborhood: EventKind.neighborhood,
}


@dataclass(frozen=True)
class SyncEvent:
    """One broadcast item. Which optional fields are set depends on kind."""

    kind: EventKind
    change: ChangeType | None = None
    records: tuple[Record, ...] = ()
    state: ConnectionState | None = None
    retry_count: int | None = None
    retry_in_s: float | None = None
    error: SyncEngineError | None = None
    data: dict[str, Any] = field(default_factory=dict)
    emitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def copy(self) -> "SyncEvent":
        """Independent records and data, so one subscriber cannot alter what another sees."""
        return replace(self, records=tuple(r.copy() for r in self.records), data=copy.deepcopy(self.data))

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"kind": self.kind.value, "emitted_at": self.emitted_at.isoformat()}
        if self.change is not None:
            out["change"] = self.change.value
        if self.records:
            out["records"] = [
                {"key": r.key, "source": r.source, "fetched_at": r.fetched_at.isoformat(), "payload": r.payload}
                for r in self.records
            ]
        if self.state is not None:
            out["state"] = self.state.value
            out["retry_count"] = self.retry_count
            out["retry_in_s"] = self.retry_in_s
        if self.error is not None:
            out["error"] = str(self.error)
        if self.data:
            out["data"] = self.data
        return out


def connection_event(
    state: ConnectionState,
    *,
    retry_count: int,
    retry_in_s: float | None = None,
    error: SyncEngineError | None = None,
) -> SyncEvent:
    return SyncEvent(
        kind=EventKind.connection,
        state=state,
        retry_count=retry_count,
        retry_in_s=retry_in_s,
        error=error,
    )
