# aibodes_sync/main.py
from __future__ import annotations

from .entrypoints.fastapi_app import create_app

# uvicorn aibodes_sync.main:app
app = create_app()
