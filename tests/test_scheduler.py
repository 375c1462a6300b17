import asyncio

import pytest

from aibodes_sync.domain.types import SyncOutcome
from aibodes_sync.jobs.scheduler import PERIODIC_JOB_ID, SyncScheduler
from aibodes_sync.service_layer.aggregator import Aggregator
from aibodes_sync.service_layer.record_store import RecordStore
from aibodes_sync.service_layer.sync_state import SyncStateGuard

from conftest import FakeSource, at, prop, wait_until


def _scheduler(sources, *, interval_s=3600, clock=None):
    state = SyncStateGuard()
    agg = Aggregator(sources, RecordStore(), fetch_timeout_s=0.1, clock=clock)
    return SyncScheduler(agg, state, interval_s=interval_s), agg, state


@pytest.mark.asyncio
async def test_run_cycle_advances_last_sync_time_even_on_total_failure():
    sched, agg, state = _scheduler([FakeSource("a", error="down")], clock=lambda: at(42))

    res = await sched.run_cycle("forced")
    assert res.outcome == SyncOutcome.total_failure
    snap = state.snapshot()
    assert snap.last_sync_time == at(42)
    assert snap.consecutive_failures == 1

    await sched.run_cycle("forced")
    assert state.snapshot().consecutive_failures == 2


@pytest.mark.asyncio
async def test_success_resets_failure_counter():
    src = FakeSource("a", error="down")
    sched, agg, state = _scheduler([src])
    await sched.run_cycle()
    src.error = None
    src.records = [prop()]
    res = await sched.run_cycle()
    assert res.outcome == SyncOutcome.success
    assert state.snapshot().consecutive_failures == 0


@pytest.mark.asyncio
async def test_cancelled_cycle_does_not_touch_state():
    sched, agg, state = _scheduler([FakeSource("a", [prop()])])
    agg.close()
    res = await sched.run_cycle()
    assert res.outcome == SyncOutcome.cancelled
    assert state.snapshot().last_sync_time is None


@pytest.mark.asyncio
async def test_interval_job_fires_and_can_be_rescheduled():
    src = FakeSource("a", [prop()])
    sched, agg, state = _scheduler([src], interval_s=1)
    await sched.start()
    try:
        assert state.snapshot().sync_interval_s == 1
        await wait_until(lambda: src.calls >= 1, timeout=3.0)

        await sched.update_interval(120)
        job = sched._sched.get_job(PERIODIC_JOB_ID)
        assert job.trigger.interval.total_seconds() == 120
        assert state.snapshot().sync_interval_s == 120
    finally:
        await sched.stop()
    assert not sched.running


@pytest.mark.asyncio
async def test_trigger_now_runs_out_of_band():
    src = FakeSource("a", [prop()])
    sched, agg, state = _scheduler([src])
    await sched.start()
    try:
        res = await sched.trigger_now("connectivity_restored")
        assert res.outcome == SyncOutcome.success
        assert src.calls == 1
        # the periodic job keeps its own schedule
        assert sched._sched.get_job(PERIODIC_JOB_ID) is not None
    finally:
        await sched.stop()


@pytest.mark.asyncio
async def test_stop_cancels_out_of_band_cycles():
    src = FakeSource("slow", [prop()], delay=5.0)
    state = SyncStateGuard()
    agg = Aggregator([src], RecordStore(), fetch_timeout_s=10)
    sched = SyncScheduler(agg, state)

    task = sched.trigger_now()
    await asyncio.sleep(0.01)
    await sched.stop()
    assert task.done()


def test_interval_must_be_positive():
    state = SyncStateGuard()
    with pytest.raises(ValueError):
        SyncScheduler(Aggregator([], RecordStore()), state, interval_s=0)
