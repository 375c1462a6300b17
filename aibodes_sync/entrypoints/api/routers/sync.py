# aibodes_sync/entrypoints/api/routers/sync.py
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query

from ..deps import get_engine, require_api_key
from ..schemas import SyncResultOut, SyncStatusOut
from ....service_layer.engine import SyncEngine

router = APIRouter(tags=["sync"])


@router.get("/sync/status", response_model=SyncStatusOut)
def sync_status(
    max_age_s: float | None = Query(None, gt=0, description="Staleness threshold; defaults to 2x the sync interval"),
    engine: SyncEngine = Depends(get_engine),
) -> SyncStatusOut:
    st = engine.status()
    threshold = max_age_s if max_age_s is not None else 2 * st.sync_interval_s
    return SyncStatusOut.from_state(st, stale=engine.is_stale(threshold))


@router.post("/sync/force", response_model=SyncResultOut, dependencies=[Depends(require_api_key)])
async def sync_force(engine: SyncEngine = Depends(get_engine)) -> SyncResultOut:
    return SyncResultOut.from_result(await engine.force_sync())


@router.post("/sync/connectivity", dependencies=[Depends(require_api_key)])
async def sync_connectivity(
    online: bool = Query(...),
    engine: SyncEngine = Depends(get_engine),
) -> dict[str, Any]:
    if online:
        engine.notify_connectivity_restored()
    else:
        await engine.notify_connectivity_lost()
    return {"online": online}


@router.post("/sync/reconnect", dependencies=[Depends(require_api_key)])
async def sync_reconnect(engine: SyncEngine = Depends(get_engine)) -> dict[str, Any]:
    return {"reconnecting": engine.reconnect()}


@router.post("/sync/interval", response_model=SyncStatusOut, dependencies=[Depends(require_api_key)])
async def sync_interval(
    seconds: int = Query(..., ge=1, le=86_400),
    engine: SyncEngine = Depends(get_engine),
) -> SyncStatusOut:
    await engine.update_sync_interval(seconds)
    st = engine.status()
    return SyncStatusOut.from_state(st, stale=engine.is_stale(2 * st.sync_interval_s))
