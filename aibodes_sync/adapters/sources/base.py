# aibodes_sync/adapters/sources/base.py
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Protocol

from ...domain.records import Record
from ...domain.types import FetchContext, FetchResult


class SourceAdapter(Protocol):
    """
    One external provider. fetch() is idempotent and returns a FetchResult;
    transient failures come back as FetchResult.failed(...), not as exceptions.
    The caller owns the timeout (it cancels the coroutine).
    """

    name: str

    async def fetch(self, ctx: FetchContext) -> FetchResult:
        raise NotImplementedError


@dataclass
class RecordBatch:
    """Collects converted records plus drop_reasons counters for one fetch."""

    source: str
    records: list[Record] = field(default_factory=list)
    dropped: int = 0
    drop_reasons: dict[str, int] = field(default_factory=lambda: defaultdict(int))

    def add(
        self,
        item: Any,
        build: Callable[..., Record],
        *,
        fetched_at: datetime,
        **kwargs: Any,
    ) -> None:
        if not isinstance(item, dict):
            self.drop("bad_payload")
            return
        try:
            self.records.append(build(item, source=self.source, fetched_at=fetched_at, **kwargs))
        except (ValueError, TypeError, OverflowError) as e:
            msg = str(e) if isinstance(e, ValueError) else ""
            if "address" in msg:
                self.drop("missing_address")
            elif "location" in msg:
                self.drop("missing_location")
            else:
                self.drop("bad_payload")

    def drop(self, reason: str) -> None:
        self.dropped += 1
        self.drop_reasons[reason] += 1

    def result(self) -> FetchResult:
        return FetchResult(
            source=self.source,
            records=tuple(self.records),
            dropped=self.dropped,
            drop_reasons=dict(self.drop_reasons),
        )
