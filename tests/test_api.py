import pytest
from fastapi.testclient import TestClient

from aibodes_sync.config import settings
from aibodes_sync.domain.events import EventKind, SyncEvent
from aibodes_sync.entrypoints.api.routers.events import sse_stream
from aibodes_sync.entrypoints.fastapi_app import create_app
from aibodes_sync.service_layer.engine import SyncEngine
from aibodes_sync.service_layer.event_bus import EventBus

from conftest import FakeSource, market, prop


@pytest.fixture
def engine(fast_config):
    sources = [
        FakeSource("a", [prop("1 A St", 300_000, zip_code="78701"), prop("2 B St", 700_000, zip_code="78702")]),
        FakeSource("m", [market("Austin")]),
    ]
    return SyncEngine(fast_config, sources)


@pytest.fixture
def client(engine, monkeypatch):
    monkeypatch.setattr(settings, "API_KEY", None)
    app = create_app(engine, manage_engine=False)
    with TestClient(app) as c:
        yield c


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_force_sync_then_read_snapshots(client):
    r = client.get("/sync/status")
    assert r.status_code == 200
    assert r.json()["stale"] is True
    assert r.json()["last_sync_time"] is None

    r = client.post("/sync/force")
    assert r.status_code == 200
    body = r.json()
    assert body["outcome"] == "success"
    assert body["added"] == 3
    assert body["total_sources"] == 2

    r = client.get("/properties")
    assert [p["payload"]["addressLine"] for p in r.json()] == ["1 A St", "2 B St"]

    r = client.get("/properties", params={"zip": "78702"})
    assert [p["payload"]["addressLine"] for p in r.json()] == ["2 B St"]

    r = client.get("/properties", params={"max_price": 500000})
    assert [p["payload"]["addressLine"] for p in r.json()] == ["1 A St"]

    r = client.get("/market/austin")
    assert r.status_code == 200
    assert r.json()["kind"] == "market"

    assert client.get("/market/Nowhere").status_code == 404
    assert client.get("/neighborhoods/Austin").status_code == 404

    r = client.get("/sync/status")
    assert r.json()["stale"] is False
    assert r.json()["consecutive_failures"] == 0


def test_interval_reconnect_and_connectivity(client):
    r = client.post("/sync/interval", params={"seconds": 90})
    assert r.status_code == 200
    assert r.json()["sync_interval_s"] == 90
    assert client.post("/sync/interval", params={"seconds": 0}).status_code == 422

    r = client.post("/sync/reconnect")
    assert r.json() == {"reconnecting": False}

    r = client.post("/sync/connectivity", params={"online": "false"})
    assert r.json() == {"online": False}


def test_mutating_routes_require_api_key(client, monkeypatch):
    monkeypatch.setattr(settings, "API_KEY", "k-123")

    assert client.post("/sync/force").status_code == 401
    assert client.post("/sync/force", headers={"X-API-Key": "wrong"}).status_code == 401
    assert client.post("/sync/force", headers={"X-API-Key": "k-123"}).status_code == 200
    # reads stay open
    assert client.get("/properties").status_code == 200


def test_debug_config_redacts_secrets(client, monkeypatch):
    monkeypatch.setattr(settings, "AUTH_TOKEN", "supersecrettoken")
    r = client.get("/debug/config")
    assert r.status_code == 200
    body = r.json()
    assert body["AUTH_TOKEN"] == "supe***oken"
    assert body["SOURCES"] == ["a", "m"]
    assert body["PUSH_ENABLED"] is False


def test_events_rejects_unknown_kinds(client):
    r = client.get("/events", params={"kinds": "properties,bogus"})
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_sse_stream_formats_events_and_ends_on_close():
    bus = EventBus()
    sub = bus.subscribe()
    bus.publish(SyncEvent(kind=EventKind.price_alert, data={"propertyId": "p1"}))
    bus.close()

    chunks = [c async for c in sse_stream(sub, keepalive_s=0.01)]
    assert len(chunks) == 1
    assert chunks[0].startswith("event: price_alert\ndata: ")
    assert '"propertyId": "p1"' in chunks[0]
    assert chunks[0].endswith("\n\n")


@pytest.mark.asyncio
async def test_sse_stream_sends_keepalive():
    bus = EventBus()
    sub = bus.subscribe()
    gen = sse_stream(sub, keepalive_s=0.01)
    assert await gen.__anext__() == ": keepalive\n\n"
    await gen.aclose()
    assert sub.closed
