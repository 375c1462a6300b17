import json

import httpx
import pytest

from aibodes_sync.adapters.clients.http_resilience import ResilientHttp
from aibodes_sync.adapters.sources.base import RecordBatch
from aibodes_sync.adapters.sources.http_listings import HttpListingsSource
from aibodes_sync.adapters.sources.market_api import HttpMarketDataSource
from aibodes_sync.adapters.sources.stub_json import StubJsonSource
from aibodes_sync.domain.types import FetchContext

from conftest import T0


def _http(handler, **kw) -> ResilientHttp:
    kw.setdefault("backoff_base_s", 0.0)
    return ResilientHttp(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)), **kw)


def _ctx(*locations, limit=200) -> FetchContext:
    return FetchContext(started_at=T0, locations=tuple(locations), per_location_limit=limit)


@pytest.mark.asyncio
async def test_listings_source_queries_each_location():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        loc = request.url.params["location"]
        return httpx.Response(
            200,
            json={
                "listings": [
                    {"address": "1 Main St", "city": "Austin", "state": "TX", "zipCode": loc, "price": 450000},
                    {"price": 1},
                ]
            },
        )

    src = HttpListingsSource("redfin", "https://redfin.example/", api_key="k1", http=_http(handler), clock=lambda: T0)
    res = await src.fetch(_ctx("78701", "78702", limit=50))

    assert res.ok
    assert len(res.records) == 2
    assert res.dropped == 2
    assert res.drop_reasons == {"missing_address": 2}
    assert {r.source for r in res.records} == {"redfin"}
    assert [r.url.path for r in seen] == ["/listings", "/listings"]
    assert seen[0].url.params["limit"] == "50"
    assert seen[0].headers["X-Api-Key"] == "k1"


@pytest.mark.asyncio
async def test_listings_source_accepts_bare_list_without_locations():
    def handler(request: httpx.Request) -> httpx.Response:
        assert "location" not in request.url.params
        return httpx.Response(200, json=[{"addressLine": "2 B St", "listPrice": 100000}])

    src = HttpListingsSource("p", "https://p.example", http=_http(handler))
    res = await src.fetch(_ctx())
    assert res.ok
    assert res.records[0].payload["addressLine"] == "2 B St"


@pytest.mark.asyncio
async def test_retryable_status_is_retried_then_reported():
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(503)

    src = HttpListingsSource("p", "https://p.example", http=_http(handler, max_retries=1))
    res = await src.fetch(_ctx("78701"))

    assert not res.ok
    assert res.error.source == "p"
    assert "HTTPStatusError" in res.error.reason
    assert calls["n"] == 2


@pytest.mark.asyncio
async def test_client_error_is_not_retried():
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(404)

    src = HttpListingsSource("p", "https://p.example", http=_http(handler, max_retries=3))
    res = await src.fetch(_ctx("78701"))
    assert not res.ok
    assert calls["n"] == 1


@pytest.mark.asyncio
async def test_invalid_json_is_a_failed_fetch():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>nope</html>")

    src = HttpListingsSource("p", "https://p.example", http=_http(handler))
    res = await src.fetch(_ctx())
    assert res.error.reason == "invalid_json"


@pytest.mark.asyncio
async def test_circuit_opens_after_repeated_failures():
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        raise httpx.ConnectError("refused", request=request)

    http = _http(handler, max_retries=0, circuit_fail_threshold=2, circuit_reset_s=60)
    src = HttpListingsSource("p", "https://p.example", http=http)

    await src.fetch(_ctx())
    await src.fetch(_ctx())
    assert http.circuit_is_open()

    res = await src.fetch(_ctx())
    assert "circuit_open" in res.error.reason
    assert calls["n"] == 2


@pytest.mark.asyncio
async def test_market_source_fills_location_and_reads_neighborhoods():
    auth = []

    def handler(request: httpx.Request) -> httpx.Response:
        auth.append(request.headers.get("authorization"))
        if request.url.path == "/market-data":
            return httpx.Response(200, json={"medianPrice": "510000", "activeListings": "1200"})
        return httpx.Response(
            200,
            json={"neighborhoodData": [{"name": "Downtown", "walkScore": 91}, {"walkScore": 50}]},
        )

    src = HttpMarketDataSource("market_data", "https://m.example", api_key="mk", http=_http(handler), clock=lambda: T0)
    res = await src.fetch(_ctx("Austin, TX"))

    assert res.ok
    kinds = sorted(r.kind.value for r in res.records)
    assert kinds == ["market", "neighborhood", "neighborhood"]
    mk = next(r for r in res.records if r.kind.value == "market")
    assert mk.key == "market::AUSTIN TX"
    assert mk.payload["medianPrice"] == 510000.0
    assert mk.payload["activeListings"] == 1200
    hoods = sorted(r.key for r in res.records if r.kind.value == "neighborhood")
    assert hoods == ["neighborhood::AUSTIN TX", "neighborhood::DOWNTOWN"]
    assert set(auth) == {"Bearer mk"}


@pytest.mark.asyncio
async def test_stub_source_reads_fixtures(tmp_path):
    (tmp_path / "78701.json").write_text(
        json.dumps(
            {
                "listings": [
                    {"addressLine": "1 A St", "zipCode": "78701", "listPrice": 300000},
                    {"addressLine": "2 B St", "zipCode": "78701", "listPrice": 310000},
                    {"addressLine": "3 C St", "zipCode": "78701", "listPrice": 320000},
                ]
            }
        ),
        encoding="utf-8",
    )
    src = StubJsonSource(fixtures_dir=tmp_path, clock=lambda: T0)

    res = await src.fetch(_ctx("78701", "99999", limit=2))
    assert res.ok
    assert [r.payload["addressLine"] for r in res.records] == ["1 A St", "2 B St"]

    res = await src.fetch(_ctx())
    assert len(res.records) == 3

    (tmp_path / "bad.json").write_text("{", encoding="utf-8")
    res = await src.fetch(_ctx("bad"))
    assert not res.ok
    assert "bad.json" in res.error.reason


@pytest.mark.asyncio
async def test_stub_source_survives_out_of_range_item_values(tmp_path):
    (tmp_path / "78701.json").write_text(
        '[{"addressLine": "1 A St", "listPrice": 1, "bedrooms": 1e400},'
        ' {"addressLine": "2 B St", "fetchedAt": 1e20}]',
        encoding="utf-8",
    )
    src = StubJsonSource(fixtures_dir=tmp_path, clock=lambda: T0)

    res = await src.fetch(_ctx("78701"))
    assert res.ok
    by_line = {r.payload["addressLine"]: r for r in res.records}
    assert set(by_line) == {"1 A St", "2 B St"}
    assert by_line["1 A St"].payload["bedrooms"] is None
    # unusable item stamp falls back to the fetch time
    assert by_line["2 B St"].fetched_at == T0
    assert res.dropped == 0


def test_batch_counts_builder_type_and_overflow_errors_as_bad_payload():
    def build(item, **kw):
        raise item["exc"]

    batch = RecordBatch(source="s")
    batch.add({"exc": OverflowError("int too large")}, build, fetched_at=T0)
    batch.add({"exc": TypeError("unsupported operand")}, build, fetched_at=T0)
    batch.add({"exc": ValueError("Missing address fields")}, build, fetched_at=T0)

    res = batch.result()
    assert res.records == ()
    assert res.drop_reasons == {"bad_payload": 2, "missing_address": 1}
