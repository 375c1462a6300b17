# aibodes_sync/service_layer/event_bus.py
from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Iterable

from ..domain.events import EventKind, SyncEvent

log = logging.getLogger(__name__)


class Subscription:
    """
    Per-subscriber buffer. Bounded; when full the oldest unread event is dropped,
    so a slow reader never holds up publishers. Readers are expected to go back to
    the RecordStore for current truth if they fall behind.
    """

    def __init__(self, bus: "EventBus", kinds: frozenset[EventKind] | None, maxsize: int) -> None:
        if maxsize < 1:
            raise ValueError("subscription maxsize must be >= 1")
        self._bus = bus
        self.kinds = kinds
        self.maxsize = maxsize
        self._queue: deque[SyncEvent] = deque(maxlen=maxsize)
        self._ready = asyncio.Event()
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return len(self._queue)

    def wants(self, event: SyncEvent) -> bool:
        return self.kinds is None or event.kind in self.kinds

    def _offer(self, event: SyncEvent) -> None:
        if self._closed:
            return
        if len(self._queue) == self.maxsize:
            self.dropped += 1
        self._queue.append(event)  # deque(maxlen) evicts from the left
        self._ready.set()

    def get_nowait(self) -> SyncEvent | None:
        if not self._queue:
            return None
        ev = self._queue.popleft()
        if not self._queue and not self._closed:
            self._ready.clear()
        return ev

    async def get(self, timeout: float | None = None) -> SyncEvent | None:
        """
        Next event in publish order. None once the subscription is closed and drained,
        or when timeout elapses with nothing to read.
        """
        while not self._queue:
            if self._closed:
                return None
            try:
                await asyncio.wait_for(self._ready.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                return None
            if not self._queue and not self._closed:
                self._ready.clear()
        return self.get_nowait()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._ready.set()
        self._bus._discard(self)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> SyncEvent:
        ev = await self.get()
        if ev is None:
            raise StopAsyncIteration
        return ev


class EventBus:
    def __init__(self, default_maxsize: int = 256) -> None:
        self.default_maxsize = default_maxsize
        self._subs: list[Subscription] = []
        self._closed = False

    @property
    def subscriber_count(self) -> int:
        return len(self._subs)

    def subscribe(
        self,
        kinds: Iterable[EventKind | str] | None = None,
        maxsize: int | None = None,
    ) -> Subscription:
        wanted = frozenset(EventKind(k) for k in kinds) if kinds is not None else None
        sub = Subscription(self, wanted, maxsize or self.default_maxsize)
        if self._closed:
            sub.close()
            return sub
        self._subs.append(sub)
        return sub

    def publish(self, event: SyncEvent) -> int:
        """Fan out a private copy to each subscriber without awaiting. Returns how many took it."""
        if self._closed:
            return 0
        n = 0
        for sub in list(self._subs):
            if sub.wants(event):
                sub._offer(event.copy())
                n += 1
        log.debug("published %s to %d subscribers", event.kind.value, n)
        return n

    def close(self) -> None:
        self._closed = True
        for sub in list(self._subs):
            sub.close()
        self._subs.clear()

    def _discard(self, sub: Subscription) -> None:
        try:
            self._subs.remove(sub)
        except ValueError:
            pass
