# aibodes_sync/service_layer/aggregator.py
from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Sequence

from ..adapters.sources.base import SourceAdapter
from ..domain.errors import TotalSyncFailure
from ..domain.records import Record
from ..domain.types import FetchContext, FetchResult, SyncOutcome, SyncResult
from .record_store import RecordStore

log = logging.getLogger(__name__)


class Aggregator:
    """
    One sync cycle = every registered source fetched concurrently, each under its
    own timeout, successful records merged into the store in one batch.
    """

    def __init__(
        self,
        sources: Sequence[SourceAdapter],
        store: RecordStore,
        *,
        fetch_timeout_s: float = 10.0,
        locations: Sequence[str] = (),
        per_location_limit: int = 200,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        names = [s.name for s in sources]
        if len(set(names)) != len(names):
            raise ValueError(f"source names must be unique: {names}")
        self._sources = tuple(sources)
        self._store = store
        self.fetch_timeout_s = fetch_timeout_s
        self._locations = tuple(locations)
        self._per_location_limit = per_location_limit
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._inflight: set[asyncio.Task[FetchResult]] = set()
        self._closed = False

    @property
    def source_names(self) -> list[str]:
        return [s.name for s in self._sources]

    def context(self) -> FetchContext:
        return FetchContext(
            started_at=self._clock(),
            locations=self._locations,
            per_location_limit=self._per_location_limit,
        )

    async def _fetch_one(self, source: SourceAdapter, ctx: FetchContext) -> FetchResult:
        try:
            return await asyncio.wait_for(source.fetch(ctx), timeout=self.fetch_timeout_s)
        except asyncio.TimeoutError:
            log.warning("source %s timed out after %.1fs", source.name, self.fetch_timeout_s)
            return FetchResult.failed(source.name, f"timeout after {self.fetch_timeout_s}s")
        except Exception as e:
            # Adapter broke its no-raise contract; isolate it like any transient failure.
            log.warning("source %s raised %s: %s", source.name, type(e).__name__, e)
            return FetchResult.failed(source.name, f"{type(e).__name__}: {e}")

    async def run_sync(self, ctx: FetchContext | None = None) -> SyncResult:
        ctx = ctx or self.context()
        started_at = ctx.started_at
        t0 = time.monotonic()

        if self._closed:
            return self._result(SyncOutcome.cancelled, started_at, t0)

        tasks = [asyncio.create_task(self._fetch_one(s, ctx), name=f"fetch:{s.name}") for s in self._sources]
        self._inflight.update(tasks)
        try:
            # return_exceptions so a cancelled fetch (shutdown) does not tear down its siblings
            gathered = await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            self._inflight.difference_update(tasks)

        results: list[FetchResult] = []
        source_errors: dict[str, str] = {}
        for src, res in zip(self._sources, gathered):
            if isinstance(res, FetchResult):
                results.append(res)
                if res.error is not None:
                    source_errors[src.name] = res.error.reason
            else:
                source_errors[src.name] = "cancelled"

        if self._closed:
            return self._result(SyncOutcome.cancelled, started_at, t0, source_errors=source_errors)

        ok = [r for r in results if r.ok]
        failed = len(self._sources) - len(ok)
        dropped = sum(r.dropped for r in ok)

        if self._sources and not ok:
            err = TotalSyncFailure(list(source_errors))
            log.warning("sync cycle failed: %s", err)
            return self._result(
                SyncOutcome.total_failure,
                started_at,
                t0,
                failed_sources=failed,
                source_errors=source_errors,
                error=err,
            )

        incoming: list[Record] = [rec for r in ok for rec in r.records]
        merged = await self._store.merge(incoming)

        outcome = SyncOutcome.partial if failed else SyncOutcome.success
        res = self._result(
            outcome,
            started_at,
            t0,
            added=merged.added,
            updated=merged.updated,
            unchanged=merged.unchanged,
            discarded=merged.discarded,
            dropped=dropped,
            failed_sources=failed,
            source_errors=source_errors,
        )
        log.info("sync cycle %s", res.summary())
        return res

    def _result(self, outcome: SyncOutcome, started_at: datetime, t0: float, **kw) -> SyncResult:
        return SyncResult(
            outcome=outcome,
            started_at=started_at,
            finished_at=self._clock(),
            duration_s=time.monotonic() - t0,
            total_sources=len(self._sources),
            **kw,
        )

    def close(self) -> None:
        """Cancel outstanding fetches; later cycles return `cancelled` without merging."""
        self._closed = True
        for t in list(self._inflight):
            t.cancel()
