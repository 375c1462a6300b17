# aibodes_sync/entrypoints/api/schemas.py
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from ...domain.records import Record
from ...domain.types import SyncResult, SyncState


class RecordOut(BaseModel):
    key: str
    kind: str
    source: str
    fetched_at: datetime
    payload: dict[str, Any]

    @classmethod
    def from_record(cls, r: Record) -> "RecordOut":
        return cls(key=r.key, kind=r.kind.value, source=r.source, fetched_at=r.fetched_at, payload=r.payload)


class SyncStatusOut(BaseModel):
    connected: bool
    connection_state: str
    last_sync_time: datetime | None = None
    retry_count: int = Field(..., ge=0)
    sync_interval_s: int
    consecutive_failures: int = Field(..., ge=0)
    stale: bool

    @classmethod
    def from_state(cls, st: SyncState, *, stale: bool) -> "SyncStatusOut":
        return cls(
            connected=st.connected,
            connection_state=st.connection_state.value,
            last_sync_time=st.last_sync_time,
            retry_count=st.retry_count,
            sync_interval_s=st.sync_interval_s,
            consecutive_failures=st.consecutive_failures,
            stale=stale,
        )


class SyncResultOut(BaseModel):
    outcome: str
    started_at: datetime
    finished_at: datetime
    duration_s: float
    added: int = Field(..., ge=0)
    updated: int = Field(..., ge=0)
    unchanged: int = Field(..., ge=0)
    discarded: int = Field(..., ge=0)
    dropped: int = Field(..., ge=0)
    failed_sources: int = Field(..., ge=0)
    total_sources: int = Field(..., ge=0)
    source_errors: dict[str, str]
    error: str | None = None

    @classmethod
    def from_result(cls, r: SyncResult) -> "SyncResultOut":
        return cls(
            outcome=r.outcome.value,
            started_at=r.started_at,
            finished_at=r.finished_at,
            duration_s=r.duration_s,
            added=r.added,
            updated=r.updated,
            unchanged=r.unchanged,
            discarded=r.discarded,
            dropped=r.dropped,
            failed_sources=r.failed_sources,
            total_sources=r.total_sources,
            source_errors=dict(r.source_errors),
            error=str(r.error) if r.error is not None else None,
        )
