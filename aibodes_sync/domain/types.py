# aibodes_sync/domain/types.py
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Sequence

from .errors import TotalSyncFailure, TransientSourceError
from .records import Record


class ConnectionState(str, enum.Enum):
    disconnected = "disconnected"
    connecting = "connecting"
    authenticating = "authenticating"
    connected = "connected"
    # auto retry stopped; only an external trigger moves us back to connecting
    needs_manual_reconnect = "needs_manual_reconnect"


class SyncOutcome(str, enum.Enum):
    success = "success"
    partial = "partial"
    total_failure = "total_failure"
    cancelled = "cancelled"


@dataclass(frozen=True)
class FetchContext:
    started_at: datetime
    locations: tuple[str, ...] = ()
    per_location_limit: int = 200


@dataclass(frozen=True)
class FetchResult:
    """What an adapter hands back. Never an exception for transient failures."""

    source: str
    records: Sequence[Record] = ()
    error: TransientSourceError | None = None
    dropped: int = 0
    drop_reasons: dict[str, int] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failed(cls, source: str, reason: str) -> "FetchResult":
        return cls(source=source, error=TransientSourceError(source, reason))


@dataclass(frozen=True)
class MergeOutcome:
    added: int = 0
    updated: int = 0
    unchanged: int = 0
    discarded: int = 0


@dataclass(frozen=True)
class SyncResult:
    outcome: SyncOutcome
    started_at: datetime
    finished_at: datetime
    duration_s: float
    added: int = 0
    updated: int = 0
    unchanged: int = 0
    discarded: int = 0
    dropped: int = 0
    failed_sources: int = 0
    total_sources: int = 0
    source_errors: dict[str, str] = field(default_factory=dict)
    error: TotalSyncFailure | None = None

    @property
    def ok(self) -> bool:
        return self.outcome in (SyncOutcome.success, SyncOutcome.partial)

    def summary(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "added": self.added,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "discarded": self.discarded,
            "dropped": self.dropped,
            "failed_sources": self.failed_sources,
            "total_sources": self.total_sources,
            "source_errors": dict(self.source_errors),
            "duration_s": round(self.duration_s, 3),
        }


@dataclass
class SyncState:
    connected: bool = False
    last_sync_time: datetime | None = None
    retry_count: int = 0
    sync_interval_s: int = 30
    # diagnostics only
    consecutive_failures: int = 0
    connection_state: ConnectionState = ConnectionState.disconnected
