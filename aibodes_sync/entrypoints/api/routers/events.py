# aibodes_sync/entrypoints/api/routers/events.py
from __future__ import annotations

import json
from typing import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse

from ..deps import get_engine, require_api_key
from ....domain.events import EventKind
from ....service_layer.engine import SyncEngine
from ....service_layer.event_bus import Subscription

router = APIRouter(tags=["events"])

KEEPALIVE_S = 15.0


async def sse_stream(sub: Subscription, *, keepalive_s: float = KEEPALIVE_S) -> AsyncIterator[str]:
    """Server-sent events; a comment line goes out when nothing happened for keepalive_s."""
    try:
        while True:
            ev = await sub.get(timeout=keepalive_s)
            if ev is None:
                if sub.closed:
                    return
                yield ": keepalive\n\n"
                continue
            yield f"event: {ev.kind.value}\ndata: {json.dumps(ev.to_dict(), default=str)}\n\n"
    finally:
        sub.close()


@router.get("/events", dependencies=[Depends(require_api_key)])
async def events(
    kinds: str | None = Query(None, description="Comma-separated event kinds; omit for all"),
    engine: SyncEngine = Depends(get_engine),
) -> StreamingResponse:
    wanted: list[str] | None = None
    if kinds:
        wanted = [k.strip() for k in kinds.split(",") if k.strip()]
        bad = [k for k in wanted if k not in EventKind.__members__]
        if bad:
            raise HTTPException(status_code=400, detail=f"Unknown event kinds: {bad}")

    sub = engine.subscribe(wanted)
    return StreamingResponse(sse_stream(sub), media_type="text/event-stream")
