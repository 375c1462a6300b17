# aibodes_sync/service_layer/connection.py
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable

from ..adapters.push.transport import PushTransport, TransportFactory
from ..adapters.sources.base import RecordBatch
from ..domain.errors import PushConnectionError, RetriesExhausted
from ..domain.events import EventKind, SyncEvent, connection_event
from ..domain.messages import (
    AuthError,
    AuthOk,
    MarketDataUpdate,
    NeighborhoodDataUpdate,
    NewListing,
    PriceAlert,
    PropertyUpdate,
    UnknownMessage,
    auth_envelope,
    decode_message,
)
from ..domain.records import DEFAULT_PRICE_BUCKET, MarketSnapshot, NeighborhoodSnapshot, PropertyRecord
from ..domain.types import ConnectionState
from .event_bus import EventBus
from .record_store import RecordStore
from .sync_state import SyncStateGuard

log = logging.getLogger(__name__)

PUSH_SOURCE = "push"


def backoff_delay(retry_count: int, base_delay_s: float) -> float:
    """Linear: 1st retry waits base, 2nd 2*base, ..."""
    return max(0, retry_count) * base_delay_s


def _cancelling(task: asyncio.Task | None) -> int:
    # Task.cancelling() is 3.11+
    fn = getattr(task, "cancelling", None)
    return fn() if fn is not None else 0


class ConnectionManager:
    """
    Push-channel lifecycle:

      disconnected -> connecting -> authenticating -> connected -> disconnected

    Every failure lands in `disconnected` and bumps retry_count. While
    retry_count <= max_retries the next attempt waits retry_count * base_delay_s;
    past that we publish one `needs_manual_reconnect` event and sit idle until
    request_reconnect() (connectivity restored / user action).

    Errors never leave this class; they show up as connection events.
    """

    def __init__(
        self,
        transport_factory: TransportFactory,
        store: RecordStore,
        bus: EventBus,
        state: SyncStateGuard,
        *,
        auth_token: str = "",
        user_id: str = "",
        max_retries: int = 3,
        base_delay_s: float = 5.0,
        connect_timeout_s: float = 10.0,
        auth_timeout_s: float = 10.0,
        require_auth_ack: bool = False,
        bucket_size: int = DEFAULT_PRICE_BUCKET,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._factory = transport_factory
        self._store = store
        self._bus = bus
        self._state = state
        self.auth_token = auth_token
        self.user_id = user_id
        self.max_retries = max_retries
        self.base_delay_s = base_delay_s
        self.connect_timeout_s = connect_timeout_s
        self.auth_timeout_s = auth_timeout_s
        self.require_auth_ack = require_auth_ack
        self._bucket_size = bucket_size
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._wake = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._transport: PushTransport | None = None
        self.attempts = 0

    @property
    def state(self) -> ConnectionState:
        return self._state.snapshot().connection_state

    # -------------------------
    # Lifecycle
    # -------------------------

    async def start(self) -> None:
        if self._task is not None:
            return
        self._wake.set()
        self._task = asyncio.create_task(self._run(), name="push-connection")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                # only the loop task's own cancellation is expected here
                if _cancelling(asyncio.current_task()):
                    raise
        transport, self._transport = self._transport, None
        if transport is not None:
            await self._close_quietly(transport)

        async with self._state.mutate() as st:
            st.connected = False
            st.connection_state = ConnectionState.disconnected

    def request_reconnect(self) -> bool:
        """
        External trigger. Starts one attempt if we are idle after exhausting retries,
        or cuts a pending backoff wait short. No-op while connecting/connected.
        """
        if self._task is None:
            return False
        if self.state in (ConnectionState.needs_manual_reconnect, ConnectionState.disconnected):
            self._wake.set()
            return True
        return False

    async def drop_connection(self) -> None:
        """Connectivity lost: close the live transport; the read loop ends and backoff starts."""
        transport = self._transport
        if transport is not None:
            log.info("dropping push connection (connectivity lost)")
            await self._close_quietly(transport)

    # -------------------------
    # Loop
    # -------------------------

    async def _run(self) -> None:
        while True:
            await self._wake.wait()
            self._wake.clear()
            while True:
                err = await self.connect_once()
                retry_in = await self._after_disconnect(err)
                if retry_in is None:
                    break
                await self._wait_backoff(retry_in)

    async def _wait_backoff(self, delay: float) -> None:
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass
        self._wake.clear()

    async def connect_once(self) -> PushConnectionError:
        """One connect -> auth -> read pass. Returns why it ended."""
        self.attempts += 1
        await self._set_state(ConnectionState.connecting)

        try:
            transport = await asyncio.wait_for(self._factory(), timeout=self.connect_timeout_s)
        except asyncio.TimeoutError:
            return PushConnectionError("connect", f"timeout after {self.connect_timeout_s}s")
        except PushConnectionError as e:
            return e
        except Exception as e:
            return PushConnectionError("connect", f"{type(e).__name__}: {e}")

        self._transport = transport
        try:
            await self._set_state(ConnectionState.authenticating)
            err = await self._authenticate(transport)
            if err is not None:
                return err
            await self._on_connected()
            return await self._read_loop(transport)
        finally:
            self._transport = None
            await self._close_quietly(transport)

    async def _authenticate(self, transport: PushTransport) -> PushConnectionError | None:
        try:
            await asyncio.wait_for(
                transport.send_json(auth_envelope(self.auth_token, self.user_id)),
                timeout=self.auth_timeout_s,
            )
        except asyncio.TimeoutError:
            return PushConnectionError("auth", "timeout sending auth")
        except PushConnectionError as e:
            return e
        except Exception as e:
            return PushConnectionError("auth", f"{type(e).__name__}: {e}")

        if not self.require_auth_ack:
            return None

        try:
            raw = await asyncio.wait_for(transport.receive(), timeout=self.auth_timeout_s)
        except asyncio.TimeoutError:
            return PushConnectionError("auth", f"no auth reply within {self.auth_timeout_s}s")
        except PushConnectionError as e:
            return e
        except Exception as e:
            return PushConnectionError("auth", f"{type(e).__name__}: {e}")

        if raw is None:
            return PushConnectionError("auth", "closed during auth")
        try:
            msg = decode_message(raw)
        except ValueError:
            return PushConnectionError("auth", "malformed auth reply")

        if isinstance(msg, AuthOk):
            return None
        if isinstance(msg, AuthError):
            return PushConnectionError("auth", f"rejected: {msg.reason or 'no reason'}")
        return PushConnectionError("auth", f"unexpected reply {msg.type!r}")

    async def _read_loop(self, transport: PushTransport) -> PushConnectionError:
        while True:
            try:
                raw = await transport.receive()
            except PushConnectionError as e:
                return e
            except Exception as e:
                return PushConnectionError("read", f"{type(e).__name__}: {e}")

            if raw is None:
                return PushConnectionError("closed", "remote closed the connection")

            received_at = self._clock()
            try:
                msg = decode_message(raw)
            except ValueError as e:
                log.warning("ignoring malformed push frame: %s", e)
                continue

            try:
                err = await self._dispatch(msg, received_at)
            except Exception as e:
                log.warning("skipping push frame %r that failed to apply: %s: %s", msg.type, type(e).__name__, e)
                continue
            if err is not None:
                return err

    async def _dispatch(self, msg, received_at: datetime) -> PushConnectionError | None:
        if isinstance(msg, PropertyUpdate):
            batch = RecordBatch(source=PUSH_SOURCE)
            for item in msg.properties:
                batch.add(
                    item,
                    PropertyRecord.from_payload,
                    fetched_at=msg.stamped(received_at),
                    bucket_size=self._bucket_size,
                )
            await self._merge(batch, msg.type)
        elif isinstance(msg, MarketDataUpdate):
            batch = RecordBatch(source=PUSH_SOURCE)
            batch.add(msg.market_data, MarketSnapshot.from_payload, fetched_at=msg.stamped(received_at))
            await self._merge(batch, msg.type)
        elif isinstance(msg, NeighborhoodDataUpdate):
            batch = RecordBatch(source=PUSH_SOURCE)
            batch.add(msg.neighborhood_data, NeighborhoodSnapshot.from_payload, fetched_at=msg.stamped(received_at))
            await self._merge(batch, msg.type)
        elif isinstance(msg, PriceAlert):
            self._bus.publish(
                SyncEvent(
                    kind=EventKind.price_alert,
                    data={
                        "propertyId": msg.property_id,
                        "oldPrice": msg.old_price,
                        "newPrice": msg.new_price,
                        "changePercent": msg.percent(),
                    },
                )
            )
        elif isinstance(msg, NewListing):
            batch = RecordBatch(source=PUSH_SOURCE)
            batch.add(
                msg.listing,
                PropertyRecord.from_payload,
                fetched_at=msg.stamped(received_at),
                bucket_size=self._bucket_size,
            )
            await self._merge(batch, msg.type)
            self._bus.publish(SyncEvent(kind=EventKind.new_listing, records=tuple(batch.records)))
        elif isinstance(msg, AuthError):
            return PushConnectionError("auth", f"rejected: {msg.reason or 'no reason'}")
        elif isinstance(msg, AuthOk):
            log.debug("late auth_ok")
        elif isinstance(msg, UnknownMessage):
            log.warning("ignoring push message with unknown type %r", msg.type)
        return None

    async def _merge(self, batch: RecordBatch, msg_type: str) -> None:
        if batch.dropped:
            log.warning("%s: dropped %d items %s", msg_type, batch.dropped, dict(batch.drop_reasons))
        if batch.records:
            await self._store.merge(batch.records)

    # -------------------------
    # State transitions
    # -------------------------

    async def _set_state(self, new: ConnectionState) -> None:
        async with self._state.mutate() as st:
            st.connection_state = new
            retry_count = st.retry_count
        self._bus.publish(connection_event(new, retry_count=retry_count))

    async def _on_connected(self) -> None:
        async with self._state.mutate() as st:
            st.connected = True
            st.retry_count = 0
            st.connection_state = ConnectionState.connected
        log.info("push channel connected")
        self._bus.publish(connection_event(ConnectionState.connected, retry_count=0))

    async def _after_disconnect(self, err: PushConnectionError) -> float | None:
        async with self._state.mutate() as st:
            st.connected = False
            st.retry_count += 1
            n = st.retry_count
            exhausted = n > self.max_retries
            st.connection_state = (
                ConnectionState.needs_manual_reconnect if exhausted else ConnectionState.disconnected
            )

        if not exhausted:
            delay = backoff_delay(n, self.base_delay_s)
            log.warning("push channel down (%s); retry %d/%d in %.1fs", err, n, self.max_retries, delay)
            self._bus.publish(
                connection_event(ConnectionState.disconnected, retry_count=n, retry_in_s=delay, error=err)
            )
            return delay

        log.warning("push channel down (%s); retries exhausted, manual reconnect required", err)
        self._bus.publish(connection_event(ConnectionState.disconnected, retry_count=n, error=err))
        self._bus.publish(
            connection_event(ConnectionState.needs_manual_reconnect, retry_count=n, error=RetriesExhausted(n))
        )
        return None

    @staticmethod
    async def _close_quietly(transport: PushTransport) -> None:
        try:
            await transport.close()
        except Exception as e:
            log.debug("transport close failed: %s", e)
