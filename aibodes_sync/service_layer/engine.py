# aibodes_sync/service_layer/engine.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Sequence

from ..adapters.clients.http_resilience import ResilientHttp
from ..adapters.push.transport import TransportFactory, websocket_factory
from ..adapters.sources.base import SourceAdapter
from ..adapters.sources.http_listings import HttpListingsSource
from ..adapters.sources.market_api import HttpMarketDataSource
from ..adapters.sources.stub_json import StubJsonSource
from ..domain.events import EventKind
from ..domain.records import DEFAULT_PRICE_BUCKET, MarketSnapshot, NeighborhoodSnapshot, PropertyRecord
from ..domain.types import SyncResult, SyncState
from ..jobs.scheduler import SyncScheduler
from .aggregator import Aggregator
from .connection import ConnectionManager
from .event_bus import EventBus, Subscription
from .record_store import RecordStore
from .sync_state import SyncStateGuard

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncConfig:
    """Everything the engine needs, supplied by whoever wires it up."""

    sync_interval_s: int = 30
    max_retries: int = 3
    retry_base_delay_s: float = 5.0
    source_fetch_timeout_s: float = 10.0
    connect_timeout_s: float = 10.0
    auth_timeout_s: float = 10.0
    require_auth_ack: bool = False
    auth_token: str = ""
    user_id: str = ""
    event_queue_size: int = 256
    price_bucket_size: int = DEFAULT_PRICE_BUCKET
    locations: tuple[str, ...] = ()
    per_location_limit: int = 200

    @classmethod
    def from_settings(cls, settings: Any) -> "SyncConfig":
        return cls(
            sync_interval_s=int(settings.SYNC_INTERVAL_S),
            max_retries=int(settings.SYNC_MAX_RETRIES),
            retry_base_delay_s=float(settings.SYNC_RETRY_BASE_DELAY_S),
            source_fetch_timeout_s=float(settings.SOURCE_FETCH_TIMEOUT_S),
            connect_timeout_s=float(settings.PUSH_CONNECT_TIMEOUT_S),
            auth_timeout_s=float(settings.PUSH_AUTH_TIMEOUT_S),
            require_auth_ack=bool(settings.PUSH_REQUIRE_AUTH_ACK),
            auth_token=settings.AUTH_TOKEN or "",
            user_id=settings.USER_ID or "",
            event_queue_size=int(settings.EVENT_QUEUE_SIZE),
            price_bucket_size=int(settings.PRICE_BUCKET_SIZE),
            locations=tuple(settings.SYNC_LOCATIONS),
            per_location_limit=int(settings.PER_LOCATION_LIMIT),
        )


def build_sources(settings: Any) -> list[SourceAdapter]:
    """
    Ordered adapter list from settings:
      listing providers (declared order) -> market data -> stub fixtures.

    Stub fixtures are used when STUB_LISTINGS_DIR is set, or in dev when nothing
    else is configured, so local runs never start with an empty source list.
    """
    bucket = int(settings.PRICE_BUCKET_SIZE)
    sources: list[SourceAdapter] = []

    for name, base_url in settings.LISTING_SOURCES.items():
        sources.append(
            HttpListingsSource(
                name,
                base_url,
                api_key=settings.LISTING_SOURCES_API_KEY,
                http=ResilientHttp.from_settings(settings),
                bucket_size=bucket,
            )
        )

    if settings.MARKET_DATA_BASE_URL:
        sources.append(
            HttpMarketDataSource(
                "market_data",
                settings.MARKET_DATA_BASE_URL,
                api_key=settings.MARKET_DATA_API_KEY,
                http=ResilientHttp.from_settings(settings),
            )
        )

    if settings.STUB_LISTINGS_DIR or (not sources and settings.ENV.lower() in ("dev", "local", "test")):
        sources.append(StubJsonSource.from_settings(settings))

    return sources


class SyncEngine:
    """
    Composition root. Construct one per collaborator that needs it; nothing here
    is global, so tests can run several side by side.

    With transport_factory=None the push path is off and only periodic sync runs.
    """

    def __init__(
        self,
        config: SyncConfig,
        sources: Sequence[SourceAdapter],
        *,
        transport_factory: TransportFactory | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self.bus = EventBus(default_maxsize=config.event_queue_size)
        self.store = RecordStore(self.bus)
        self.state = SyncStateGuard(SyncState(sync_interval_s=config.sync_interval_s))

        self.aggregator = Aggregator(
            sources,
            self.store,
            fetch_timeout_s=config.source_fetch_timeout_s,
            locations=config.locations,
            per_location_limit=config.per_location_limit,
            clock=self._clock,
        )
        self.scheduler = SyncScheduler(self.aggregator, self.state, interval_s=config.sync_interval_s)

        self.connection: ConnectionManager | None = None
        if transport_factory is not None:
            self.connection = ConnectionManager(
                transport_factory,
                self.store,
                self.bus,
                self.state,
                auth_token=config.auth_token,
                user_id=config.user_id,
                max_retries=config.max_retries,
                base_delay_s=config.retry_base_delay_s,
                connect_timeout_s=config.connect_timeout_s,
                auth_timeout_s=config.auth_timeout_s,
                require_auth_ack=config.require_auth_ack,
                bucket_size=config.price_bucket_size,
                clock=self._clock,
            )

        self._started = False
        self._shut_down = False

    @classmethod
    def from_settings(cls, settings: Any) -> "SyncEngine":
        factory = None
        if settings.PUSH_URL:
            factory = websocket_factory(settings.PUSH_URL, heartbeat_s=settings.PUSH_HEARTBEAT_S)
        return cls(SyncConfig.from_settings(settings), build_sources(settings), transport_factory=factory)

    @property
    def started(self) -> bool:
        return self._started

    # -------------------------
    # Lifecycle
    # -------------------------

    async def start(self) -> None:
        if self._started or self._shut_down:
            return
        self._started = True
        log.info(
            "engine starting: sources=%s push=%s interval=%ss",
            self.aggregator.source_names,
            self.connection is not None,
            self.config.sync_interval_s,
        )
        await self.scheduler.start()
        self.scheduler.trigger_now("startup")
        if self.connection is not None:
            await self.connection.start()

    async def shutdown(self) -> None:
        """Push connection, in-flight fetches, timer, subscribers; in that order."""
        if self._shut_down:
            return
        self._shut_down = True
        if self.connection is not None:
            await self.connection.stop()
        self.aggregator.close()
        await self.scheduler.stop()
        self.bus.close()
        log.info("engine stopped")

    # -------------------------
    # Collaborator API
    # -------------------------

    def subscribe(self, kinds: Iterable[EventKind | str] | None = None, maxsize: int | None = None) -> Subscription:
        return self.bus.subscribe(kinds, maxsize)

    def current_properties(self) -> list[PropertyRecord]:
        return self.store.properties()

    def current_market_data(self, location: str) -> MarketSnapshot | None:
        return self.store.market(location)

    def current_neighborhood_data(self, location: str) -> NeighborhoodSnapshot | None:
        return self.store.neighborhood(location)

    async def force_sync(self) -> SyncResult:
        return await self.scheduler.run_cycle("forced")

    def notify_connectivity_restored(self) -> None:
        if self._shut_down:
            return
        log.info("connectivity restored: out-of-band sync + reconnect")
        self.scheduler.trigger_now("connectivity_restored")
        if self.connection is not None:
            self.connection.request_reconnect()

    async def notify_connectivity_lost(self) -> None:
        log.info("connectivity lost")
        if self.connection is not None:
            await self.connection.drop_connection()

    def reconnect(self) -> bool:
        """Explicit user reconnect. False when there is no push channel or nothing to do."""
        if self.connection is None or self._shut_down:
            return False
        return self.connection.request_reconnect()

    async def update_sync_interval(self, seconds: int) -> None:
        await self.scheduler.update_interval(seconds)

    def status(self) -> SyncState:
        return self.state.snapshot()

    def is_stale(self, max_age_s: float) -> bool:
        """True when the last sync is older than max_age_s (or never happened)."""
        last = self.state.snapshot().last_sync_time
        if last is None:
            return True
        return (self._clock() - last).total_seconds() > max_age_s
