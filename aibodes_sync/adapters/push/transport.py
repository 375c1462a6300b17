# aibodes_sync/adapters/push/transport.py
from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, Protocol

import aiohttp

from ...domain.errors import PushConnectionError

log = logging.getLogger(__name__)


class PushTransport(Protocol):
    """
    One established streamed connection.

    receive() returns the next text frame, or None when the remote closed.
    Transport-level failures raise PushConnectionError.
    """

    async def send_json(self, data: dict[str, Any]) -> None: ...

    async def receive(self) -> str | None: ...

    async def close(self) -> None: ...


TransportFactory = Callable[[], Awaitable[PushTransport]]


class AiohttpPushTransport:
    def __init__(self, session: aiohttp.ClientSession, ws: aiohttp.ClientWebSocketResponse) -> None:
        self._session = session
        self._ws = ws

    @classmethod
    async def connect(
        cls,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        heartbeat_s: float | None = 30.0,
    ) -> "AiohttpPushTransport":
        session = aiohttp.ClientSession()
        try:
            ws = await session.ws_connect(url, headers=headers, heartbeat=heartbeat_s)
        except (aiohttp.ClientError, OSError) as e:
            await session.close()
            raise PushConnectionError("connect", f"{type(e).__name__}: {e}") from e
        except BaseException:
            await session.close()
            raise
        return cls(session, ws)

    async def send_json(self, data: dict[str, Any]) -> None:
        try:
            await self._ws.send_str(json.dumps(data))
        except (aiohttp.ClientError, ConnectionResetError) as e:
            raise PushConnectionError("send", str(e)) from e

    async def receive(self) -> str | None:
        while True:
            msg = await self._ws.receive()
            if msg.type == aiohttp.WSMsgType.TEXT:
                return msg.data
            if msg.type == aiohttp.WSMsgType.BINARY:
                return msg.data.decode("utf-8", errors="replace")
            if msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                return None
            if msg.type == aiohttp.WSMsgType.ERROR:
                raise PushConnectionError("read", f"websocket error: {self._ws.exception()}")
            log.debug("ignoring websocket frame type %s", msg.type)

    async def close(self) -> None:
        try:
            await self._ws.close()
        finally:
            await self._session.close()


def websocket_factory(url: str, *, heartbeat_s: float | None = 30.0) -> TransportFactory:
    async def _factory() -> PushTransport:
        return await AiohttpPushTransport.connect(url, heartbeat_s=heartbeat_s)

    return _factory
