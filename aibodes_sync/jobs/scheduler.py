# aibodes_sync/jobs/scheduler.py
from __future__ import annotations

import asyncio
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from ..domain.types import SyncOutcome, SyncResult
from ..service_layer.aggregator import Aggregator
from ..service_layer.sync_state import SyncStateGuard

log = logging.getLogger(__name__)

PERIODIC_JOB_ID = "periodic_sync"


class SyncScheduler:
    """
    Periodic full sync, independent of push-channel state; this is the path that
    keeps data moving while the push channel is down.
    """

    def __init__(
        self,
        aggregator: Aggregator,
        state: SyncStateGuard,
        *,
        interval_s: int = 30,
        scheduler: AsyncIOScheduler | None = None,
    ) -> None:
        if interval_s <= 0:
            raise ValueError("sync interval must be positive")
        self._aggregator = aggregator
        self._state = state
        self.interval_s = interval_s
        self._sched = scheduler or AsyncIOScheduler()
        self._oob: set[asyncio.Task[SyncResult]] = set()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        async with self._state.mutate() as st:
            st.sync_interval_s = self.interval_s
        # refresh cadence; max_instances=1 means an overrunning cycle skips the next tick
        self._sched.add_job(
            self.run_cycle,
            "interval",
            seconds=self.interval_s,
            id=PERIODIC_JOB_ID,
            kwargs={"reason": "interval"},
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._sched.start()
        self._running = True
        log.info("periodic sync every %ss", self.interval_s)

    async def stop(self) -> None:
        if self._running:
            self._sched.shutdown(wait=False)
            self._running = False
        for t in list(self._oob):
            t.cancel()
        if self._oob:
            await asyncio.gather(*self._oob, return_exceptions=True)
        self._oob.clear()

    async def run_cycle(self, reason: str = "manual") -> SyncResult:
        result = await self._aggregator.run_sync()

        if result.outcome == SyncOutcome.cancelled:
            return result

        async with self._state.mutate() as st:
            # advances on total failure too: it records the attempt
            st.last_sync_time = result.finished_at
            if result.outcome == SyncOutcome.total_failure:
                st.consecutive_failures += 1
            else:
                st.consecutive_failures = 0
            failures = st.consecutive_failures

        if result.outcome == SyncOutcome.total_failure:
            log.warning("sync (%s) total failure; %d in a row", reason, failures)
        else:
            log.info(
                "sync (%s) %s: +%d ~%d =%d, %d/%d sources failed",
                reason,
                result.outcome.value,
                result.added,
                result.updated,
                result.unchanged,
                result.failed_sources,
                result.total_sources,
            )
        return result

    def trigger_now(self, reason: str = "out_of_band") -> asyncio.Task[SyncResult]:
        """One extra cycle; the interval job keeps its phase."""
        task = asyncio.create_task(self.run_cycle(reason), name=f"sync:{reason}")
        self._oob.add(task)
        task.add_done_callback(self._oob.discard)
        return task

    async def update_interval(self, seconds: int) -> None:
        if seconds <= 0:
            raise ValueError("sync interval must be positive")
        self.interval_s = seconds
        async with self._state.mutate() as st:
            st.sync_interval_s = seconds
        if self._running:
            self._sched.reschedule_job(PERIODIC_JOB_ID, trigger="interval", seconds=seconds)
        log.info("periodic sync interval now %ss", seconds)
