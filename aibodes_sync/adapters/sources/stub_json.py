# aibodes_sync/adapters/sources/stub_json.py
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from ...domain.parsing import as_list_of_dicts
from ...domain.records import DEFAULT_PRICE_BUCKET, PropertyRecord
from ...domain.types import FetchContext, FetchResult
from .base import RecordBatch, SourceAdapter

log = logging.getLogger(__name__)


@dataclass
class StubJsonSource(SourceAdapter):
    """
    Offline provider for development/testing.

    Reads listing payloads from fixtures:
      <fixtures_dir>/<location>.json

    The fixture can be:
      - list of dict payloads
      - {"listings": [...]} or {"value": [...]} (RESO-like)
    """

    fixtures_dir: Path
    name: str = "stub_json"
    bucket_size: int = DEFAULT_PRICE_BUCKET
    clock: Callable[[], datetime] = field(default=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_settings(cls, settings) -> "StubJsonSource":
        return cls(
            fixtures_dir=Path(settings.STUB_LISTINGS_DIR or (Path("data") / "stub_listings")),
            bucket_size=int(settings.PRICE_BUCKET_SIZE),
        )

    async def fetch(self, ctx: FetchContext) -> FetchResult:
        batch = RecordBatch(source=self.name)

        if ctx.locations:
            paths = [self.fixtures_dir / f"{loc}.json" for loc in ctx.locations]
        else:
            paths = sorted(self.fixtures_dir.glob("*.json"))

        for path in paths:
            if not path.exists():
                # Dev-friendly: missing fixture means "no listings"
                continue
            try:
                raw = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                log.warning("%s: unreadable fixture %s: %s", self.name, path, e)
                return FetchResult.failed(self.name, f"fixture {path.name}: {e}")

            fetched_at = self.clock()
            items = as_list_of_dicts(raw, "listings", "properties", "value")
            for it in items[: int(ctx.per_location_limit)]:
                batch.add(it, PropertyRecord.from_payload, fetched_at=fetched_at, bucket_size=self.bucket_size)

        return batch.result()
