# aibodes_sync/service_layer/sync_state.py
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import AsyncIterator

from ..domain.types import SyncState


class SyncStateGuard:
    """
    The one mutex around SyncState. Writers are ConnectionManager and SyncScheduler;
    nothing awaits network I/O while holding it.
    """

    def __init__(self, state: SyncState | None = None) -> None:
        self._state = state or SyncState()
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def mutate(self) -> AsyncIterator[SyncState]:
        async with self._lock:
            yield self._state

    def snapshot(self) -> SyncState:
        return replace(self._state)
