# aibodes_sync/entrypoints/api/routers/records.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from ..deps import get_engine
from ..schemas import RecordOut
from ....domain.address import normalize_text
from ....service_layer.engine import SyncEngine

router = APIRouter(tags=["records"])


@router.get("/properties", response_model=list[RecordOut])
def list_properties(
    zip: str | None = Query(None, min_length=5, max_length=10),
    city: str | None = Query(None),
    max_price: float | None = Query(None, ge=0),
    limit: int = Query(200, ge=1, le=5000),
    engine: SyncEngine = Depends(get_engine),
) -> list[RecordOut]:
    want_city = normalize_text(city) if city else None

    out: list[RecordOut] = []
    for p in sorted(engine.current_properties(), key=lambda r: r.key):
        if zip and str(p.payload.get("zipCode") or "") != zip:
            continue
        if want_city and normalize_text(str(p.payload.get("city") or "")) != want_city:
            continue
        if max_price is not None and (p.price is None or p.price > max_price):
            continue
        out.append(RecordOut.from_record(p))
        if len(out) >= limit:
            break
    return out


@router.get("/market/{location}", response_model=RecordOut)
def market_data(location: str, engine: SyncEngine = Depends(get_engine)) -> RecordOut:
    snap = engine.current_market_data(location)
    if snap is None:
        raise HTTPException(status_code=404, detail=f"No market data for {location!r}")
    return RecordOut.from_record(snap)


@router.get("/neighborhoods/{location}", response_model=RecordOut)
def neighborhood_data(location: str, engine: SyncEngine = Depends(get_engine)) -> RecordOut:
    snap = engine.current_neighborhood_data(location)
    if snap is None:
        raise HTTPException(status_code=404, detail=f"No neighborhood data for {location!r}")
    return RecordOut.from_record(snap)
