# aibodes_sync/adapters/sources/market_api.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

import httpx

from ...domain.parsing import as_list_of_dicts
from ...domain.records import MarketSnapshot, NeighborhoodSnapshot
from ...domain.types import FetchContext, FetchResult
from ..clients.http_resilience import ResilientHttp
from .base import RecordBatch, SourceAdapter

log = logging.getLogger(__name__)


def _items(data: Any, envelope: str) -> list[dict[str, Any]]:
    # Single object, list, or {"<envelope>": obj | list}
    if isinstance(data, dict) and envelope in data:
        data = data[envelope]
    if isinstance(data, dict):
        return [data]
    return as_list_of_dicts(data, "value")


class HttpMarketDataSource(SourceAdapter):
    """
    Market + neighborhood snapshots:
      GET {base}/market-data?location=...
      GET {base}/neighborhood-data?location=...
    """

    def __init__(
        self,
        name: str,
        base_url: str,
        *,
        api_key: str | None = None,
        http: ResilientHttp | None = None,
        include_neighborhoods: bool = True,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.name = name
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._http = http or ResilientHttp()
        self._include_neighborhoods = include_neighborhoods
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _headers(self) -> dict[str, str]:
        if not self._api_key:
            return {"accept": "application/json"}
        return {"accept": "application/json", "authorization": f"Bearer {self._api_key}"}

    async def _get(self, path: str, location: str | None) -> Any:
        params = {"location": location} if location else None
        resp = await self._http.request("GET", f"{self._base_url}{path}", headers=self._headers(), params=params)
        return resp.json()

    async def fetch(self, ctx: FetchContext) -> FetchResult:
        batch = RecordBatch(source=self.name)
        locations: tuple[str | None, ...] = ctx.locations or (None,)

        try:
            for loc in locations:
                market = await self._get("/market-data", loc)
                fetched_at = self._clock()
                for item in _items(market, "marketData"):
                    if loc and not item.get("location"):
                        item = {**item, "location": loc}
                    batch.add(item, MarketSnapshot.from_payload, fetched_at=fetched_at)

                if not self._include_neighborhoods:
                    continue

                hood = await self._get("/neighborhood-data", loc)
                fetched_at = self._clock()
                for item in _items(hood, "neighborhoodData"):
                    if loc and not (item.get("location") or item.get("name")):
                        item = {**item, "location": loc}
                    batch.add(item, NeighborhoodSnapshot.from_payload, fetched_at=fetched_at)
        except httpx.HTTPError as e:
            log.warning("%s: market data fetch failed: %s", self.name, e)
            return FetchResult.failed(self.name, f"{type(e).__name__}: {e}")
        except ValueError as e:
            log.warning("%s: market data response is not JSON: %s", self.name, e)
            return FetchResult.failed(self.name, "invalid_json")

        return batch.result()
