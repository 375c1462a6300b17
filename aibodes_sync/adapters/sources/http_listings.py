# aibodes_sync/adapters/sources/http_listings.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

import httpx

from ...domain.parsing import as_list_of_dicts
from ...domain.records import DEFAULT_PRICE_BUCKET, PropertyRecord
from ...domain.types import FetchContext, FetchResult
from ..clients.http_resilience import ResilientHttp
from .base import RecordBatch, SourceAdapter

log = logging.getLogger(__name__)


class HttpListingsSource(SourceAdapter):
    """
    Sale listings from one JSON provider, queried per location (zip / city).

    Accepted response shapes:
      - list[dict]
      - {"listings": [...]}, {"properties": [...]}, {"value": [...]} (RESO/OData)
    """

    def __init__(
        self,
        name: str,
        base_url: str,
        *,
        api_key: str | None = None,
        path: str = "/listings",
        http: ResilientHttp | None = None,
        bucket_size: int = DEFAULT_PRICE_BUCKET,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.name = name
        self._base_url = base_url.rstrip("/")
        self._path = "/" + path.lstrip("/")
        self._api_key = api_key
        self._http = http or ResilientHttp()
        self._bucket_size = bucket_size
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _headers(self) -> dict[str, str]:
        if not self._api_key:
            return {"accept": "application/json"}
        return {"accept": "application/json", "X-Api-Key": self._api_key}

    async def fetch(self, ctx: FetchContext) -> FetchResult:
        url = f"{self._base_url}{self._path}"
        batch = RecordBatch(source=self.name)
        # No locations configured: one unfiltered query.
        locations: tuple[str | None, ...] = ctx.locations or (None,)

        for loc in locations:
            params: dict[str, Any] = {"limit": ctx.per_location_limit}
            if loc:
                params["location"] = loc
            try:
                resp = await self._http.request("GET", url, headers=self._headers(), params=params)
                data = resp.json()
            except httpx.HTTPError as e:
                log.warning("%s: listings fetch failed for %r: %s", self.name, loc, e)
                return FetchResult.failed(self.name, f"{type(e).__name__}: {e}")
            except ValueError as e:
                log.warning("%s: listings response is not JSON: %s", self.name, e)
                return FetchResult.failed(self.name, "invalid_json")

            fetched_at = self._clock()
            for item in as_list_of_dicts(data, "listings", "properties", "value"):
                batch.add(item, PropertyRecord.from_payload, fetched_at=fetched_at, bucket_size=self._bucket_size)

        res = batch.result()
        log.debug("%s: %d records, dropped=%d %s", self.name, len(res.records), res.dropped, res.drop_reasons)
        return res
