import asyncio

import pytest

from aibodes_sync.domain.events import EventKind, SyncEvent, connection_event
from aibodes_sync.domain.types import ConnectionState
from aibodes_sync.service_layer.event_bus import EventBus

from conftest import prop


def _ev(kind: EventKind = EventKind.properties, n: int = 0) -> SyncEvent:
    return SyncEvent(kind=kind, data={"n": n})


@pytest.mark.asyncio
async def test_full_buffer_drops_oldest():
    bus = EventBus()
    sub = bus.subscribe(maxsize=3)
    for i in range(10):
        bus.publish(_ev(n=i))

    assert sub.pending == 3
    assert sub.dropped == 7
    assert [sub.get_nowait().data["n"] for _ in range(3)] == [7, 8, 9]


@pytest.mark.asyncio
async def test_kind_filter():
    bus = EventBus()
    conn = bus.subscribe([EventKind.connection])
    every = bus.subscribe()

    assert bus.publish(_ev(EventKind.market)) == 1
    assert bus.publish(connection_event(ConnectionState.connecting, retry_count=0)) == 2

    assert conn.pending == 1
    assert every.pending == 2


@pytest.mark.asyncio
async def test_get_waits_and_times_out():
    bus = EventBus()
    sub = bus.subscribe()

    assert await sub.get(timeout=0.01) is None

    async def later():
        await asyncio.sleep(0.01)
        bus.publish(_ev(n=1))

    task = asyncio.create_task(later())
    ev = await sub.get(timeout=1.0)
    await task
    assert ev is not None and ev.data["n"] == 1


@pytest.mark.asyncio
async def test_close_drains_then_stops_iteration():
    bus = EventBus()
    sub = bus.subscribe()
    bus.publish(_ev(n=1))
    bus.publish(_ev(n=2))
    bus.close()

    seen = [ev.data["n"] async for ev in sub]
    assert seen == [1, 2]
    assert bus.subscriber_count == 0
    assert bus.publish(_ev()) == 0

    late = bus.subscribe()
    assert late.closed


@pytest.mark.asyncio
async def test_unsubscribe_by_close():
    bus = EventBus()
    sub = bus.subscribe()
    sub.close()
    assert bus.subscriber_count == 0
    assert bus.publish(_ev()) == 0


def test_unknown_kind_rejected():
    bus = EventBus()
    with pytest.raises(ValueError):
        bus.subscribe(["nope"])


def test_each_subscriber_gets_its_own_payloads():
    bus = EventBus()
    first = bus.subscribe([EventKind.properties])
    second = bus.subscribe([EventKind.properties])
    published = prop("1 A St", 300_000)
    bus.publish(SyncEvent(kind=EventKind.properties, records=(published,), data={"tags": ["x"]}))

    a = first.get_nowait()
    a.records[0].payload["listPrice"] = 1
    a.data["tags"].append("y")

    b = second.get_nowait()
    assert b.records[0].payload["listPrice"] == 300_000
    assert b.data == {"tags": ["x"]}
    assert published.payload["listPrice"] == 300_000
    assert b.records[0] == published
