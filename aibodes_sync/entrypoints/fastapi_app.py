# aibodes_sync/entrypoints/fastapi_app.py
from __future__ import annotations

from fastapi import FastAPI

from ..config import settings
from ..service_layer.engine import SyncEngine
from .api.routers import events, health, records, sync


def create_app(engine: SyncEngine | None = None, *, manage_engine: bool = True) -> FastAPI:
    """
    engine=None builds one from settings. manage_engine=False leaves start/shutdown
    to the caller (tests drive the engine directly).
    """
    app = FastAPI(title="AIBodes - Real-time Sync Engine")
    app.state.engine = engine or SyncEngine.from_settings(settings)

    if manage_engine:

        @app.on_event("startup")
        async def _startup() -> None:
            await app.state.engine.start()

        @app.on_event("shutdown")
        async def _shutdown() -> None:
            await app.state.engine.shutdown()

    # Routers
    app.include_router(health.router)
    app.include_router(sync.router)
    app.include_router(records.router)
    app.include_router(events.router)

    return app
