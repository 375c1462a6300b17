from __future__ import annotations

import argparse
import asyncio
import logging

from aibodes_sync.config import settings
from aibodes_sync.service_layer.engine import SyncEngine


def _quiet_logging() -> None:
    # Root defaults
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(levelname)s:%(name)s:%(message)s",
    )

    # Quiet the usual offenders
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


async def _tail(engine: SyncEngine) -> None:
    log = logging.getLogger("events")
    async for ev in engine.subscribe():
        log.info("%s", ev.to_dict())


async def main(once: bool = False, tail: bool = False) -> None:
    _quiet_logging()
    log = logging.getLogger(__name__)

    engine = SyncEngine.from_settings(settings)

    if once:
        result = await engine.force_sync()
        log.info("sync %s", result.summary())
        await engine.shutdown()
        return

    tail_task = asyncio.create_task(_tail(engine)) if tail else None
    await engine.start()
    log.info("Engine started")

    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        await engine.shutdown()
        if tail_task is not None:
            await tail_task
        log.info("Engine stopped")


if __name__ == "__main__":
    ap = argparse.ArgumentParser(description="Run the sync engine headless.")
    ap.add_argument("--once", action="store_true", help="Run one sync cycle and exit")
    ap.add_argument("--tail", action="store_true", help="Log every published event")
    args = ap.parse_args()
    try:
        asyncio.run(main(once=args.once, tail=args.tail))
    except KeyboardInterrupt:
        pass
