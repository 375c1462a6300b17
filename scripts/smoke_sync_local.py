# scripts/smoke_sync_local.py
import asyncio
import os
from pathlib import Path

from aibodes_sync.adapters.sources.stub_json import StubJsonSource
from aibodes_sync.service_layer.engine import SyncConfig, SyncEngine


async def main():
    locations = tuple(z for z in os.environ.get("LOCATIONS", "78701").split(",") if z)
    fixtures = Path(os.environ.get("STUB_LISTINGS_DIR", "data/stub_listings"))

    engine = SyncEngine(SyncConfig(locations=locations), [StubJsonSource(fixtures_dir=fixtures)])
    res = await engine.force_sync()
    print(res.summary())
    for p in engine.current_properties():
        print(p.key, p.price)
    await engine.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
