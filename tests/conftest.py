# tests/conftest.py
import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Sequence

import pytest

from aibodes_sync.domain.errors import PushConnectionError
from aibodes_sync.domain.records import MarketSnapshot, PropertyRecord, Record
from aibodes_sync.domain.types import FetchContext, FetchResult
from aibodes_sync.service_layer.engine import SyncConfig

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    return T0 + timedelta(seconds=seconds)


def prop(
    address: str = "123 Main St",
    price: float | None = 450_000,
    *,
    fetched_at: datetime = T0,
    source: str = "a",
    city: str = "Austin",
    state: str = "TX",
    zip_code: str = "78701",
    **extra: Any,
) -> PropertyRecord:
    item = {"addressLine": address, "city": city, "state": state, "zipCode": zip_code, "listPrice": price, **extra}
    return PropertyRecord.from_payload(item, source=source, fetched_at=fetched_at)


def market(location: str = "Austin, TX", *, fetched_at: datetime = T0, source: str = "m", **extra: Any) -> MarketSnapshot:
    return MarketSnapshot.from_payload({"location": location, **extra}, source=source, fetched_at=fetched_at)


class FakeSource:
    """Scriptable adapter. `records` may be swapped between cycles."""

    def __init__(
        self,
        name: str,
        records: Sequence[Record] = (),
        *,
        error: str | None = None,
        delay: float = 0.0,
        raises: Exception | None = None,
    ) -> None:
        self.name = name
        self.records = list(records)
        self.error = error
        self.delay = delay
        self.raises = raises
        self.calls = 0
        self.contexts: list[FetchContext] = []

    async def fetch(self, ctx: FetchContext) -> FetchResult:
        self.calls += 1
        self.contexts.append(ctx)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.raises is not None:
            raise self.raises
        if self.error is not None:
            return FetchResult.failed(self.name, self.error)
        return FetchResult(source=self.name, records=tuple(self.records))


class FakeTransport:
    """In-process push connection. push(None) simulates a remote close."""

    def __init__(self, frames: Sequence[Any] = ()) -> None:
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self._q: asyncio.Queue = asyncio.Queue()
        for f in frames:
            self.push(f)

    def push(self, frame: Any) -> None:
        if frame is not None and not isinstance(frame, str):
            frame = json.dumps(frame)
        self._q.put_nowait(frame)

    async def send_json(self, data: dict[str, Any]) -> None:
        if self.closed:
            raise PushConnectionError("send", "closed")
        self.sent.append(data)

    async def receive(self) -> str | None:
        if self.closed and self._q.empty():
            return None
        return await self._q.get()

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._q.put_nowait(None)


class FakeTransportFactory:
    """
    fail=True makes every connect raise. frames are preloaded into each new
    transport (e.g. an auth_ok reply).
    """

    def __init__(self, *, fail: bool = False, frames: Sequence[Any] = ()) -> None:
        self.fail = fail
        self.frames = list(frames)
        self.calls = 0
        self.transports: list[FakeTransport] = []

    async def __call__(self) -> FakeTransport:
        self.calls += 1
        if self.fail:
            raise PushConnectionError("connect", "connection refused")
        t = FakeTransport(self.frames)
        self.transports.append(t)
        return t

    @property
    def current(self) -> FakeTransport:
        return self.transports[-1]


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def fast_config() -> SyncConfig:
    return SyncConfig(
        sync_interval_s=3600,
        max_retries=3,
        retry_base_delay_s=0.01,
        source_fetch_timeout_s=0.2,
        connect_timeout_s=0.5,
        auth_timeout_s=0.5,
        auth_token="tok",
        user_id="u1",
        event_queue_size=64,
    )


@pytest.fixture
def transport_factory() -> FakeTransportFactory:
    return FakeTransportFactory()
