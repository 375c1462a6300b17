# aibodes_sync/entrypoints/api/routers/health.py
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from ..deps import get_engine, require_api_key
from ....config import settings
from ....service_layer.engine import SyncEngine

router = APIRouter(tags=["health"])


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/debug/config", dependencies=[Depends(require_api_key)])
def debug_config(engine: SyncEngine = Depends(get_engine)) -> dict[str, Any]:
    """
    Reads the *running server's* settings, not your shell's. Secrets are redacted.
    """

    def _redact(v: str | None) -> str | None:
        if not v:
            return v
        if len(v) <= 8:
            return "***"
        return v[:4] + "***" + v[-4:]

    return {
        "ENV": settings.ENV,
        "SYNC_INTERVAL_S": engine.config.sync_interval_s,
        "SYNC_LOCATIONS": list(engine.config.locations),
        "SOURCES": engine.aggregator.source_names,
        "PUSH_URL": settings.PUSH_URL,
        "PUSH_ENABLED": engine.connection is not None,
        "SYNC_MAX_RETRIES": engine.config.max_retries,
        "SYNC_RETRY_BASE_DELAY_S": engine.config.retry_base_delay_s,
        "AUTH_TOKEN": _redact(settings.AUTH_TOKEN),
        "USER_ID": settings.USER_ID,
        "API_KEY_SET": bool(settings.API_KEY),
    }
