"""WebSocket endpoints for the duplex bridge and the chat route.

Both endpoints expose the synchronous ``send``/``close`` surface of
``BridgeEndpoint``: writes are queued and drained by a writer task, and a
reader task turns incoming frames into ``message``/``close``/``error``
events. ``run()`` drives both tasks until either side finishes.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from typing import Any

import websockets
from starlette.websockets import WebSocket, WebSocketState
from websockets.exceptions import ConnectionClosed

from .base import (
    CLOSE_NORMAL,
    CloseEvent,
    EndpointEvent,
    EventEmitterEndpoint,
    TransportClosedError,
)

logger = logging.getLogger(__name__)


class _CloseRequest:
    """Queue marker: close the socket once earlier writes are flushed."""

    def __init__(self, code: int, reason: str | None) -> None:
        self.code = code
        self.reason = reason


class QueuedWebSocketEndpoint(EventEmitterEndpoint, ABC):
    """Shared queue/reader/writer machinery. Subclasses do the actual I/O."""

    def __init__(self) -> None:
        super().__init__()
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    def send(self, data: Any) -> None:
        if self._closed:
            raise TransportClosedError("WebSocket endpoint is closed")
        self._queue.put_nowait(data)

    def close(self, code: int | None = None, reason: str | None = None) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CloseRequest(code if code is not None else CLOSE_NORMAL, reason))

    async def run(self) -> None:
        """Pump frames until the peer disconnects or ``close()`` is flushed."""
        reader = asyncio.create_task(self._read_loop())
        writer = asyncio.create_task(self._write_loop())
        try:
            await asyncio.wait({reader, writer}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (reader, writer):
                task.cancel()
            for task in (reader, writer):
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    async def _write_loop(self) -> None:
        while True:
            item = await self._queue.get()
            if isinstance(item, _CloseRequest):
                try:
                    await self._close_socket(item.code, item.reason)
                except Exception as e:
                    logger.debug(f"WebSocket close failed: {e}")
                return
            try:
                await self._write(item)
            except Exception as e:
                logger.warning(f"WebSocket send failed: {e}")
                self._closed = True
                self.emit(EndpointEvent.ERROR, e)
                return

    def _peer_closed(self, event: CloseEvent) -> None:
        was_closed = self._closed
        self._closed = True
        if not was_closed:
            self.emit(EndpointEvent.CLOSE, event)

    @abstractmethod
    async def _read_loop(self) -> None:
        """Emit incoming frames until the peer goes away."""

    @abstractmethod
    async def _write(self, data: Any) -> None:
        """Write one frame to the socket."""

    @abstractmethod
    async def _close_socket(self, code: int, reason: str | None) -> None:
        """Close the underlying socket."""


class StarletteWebSocketEndpoint(QueuedWebSocketEndpoint):
    """Server side: wraps an accepted Starlette ``WebSocket``."""

    def __init__(self, websocket: WebSocket) -> None:
        super().__init__()
        self._websocket = websocket

    async def _read_loop(self) -> None:
        while True:
            try:
                message = await self._websocket.receive()
            except Exception as e:
                if not self._closed:
                    self._closed = True
                    self.emit(EndpointEvent.ERROR, e)
                return

            if message["type"] == "websocket.disconnect":
                code = message.get("code") or CLOSE_NORMAL
                reason = message.get("reason") or None
                self._peer_closed(CloseEvent(code=code, reason=reason))
                return

            data = message.get("text")
            if data is None:
                data = message.get("bytes")
            if data is not None:
                self.emit(EndpointEvent.MESSAGE, data)

    async def _write(self, data: Any) -> None:
        if isinstance(data, bytes):
            await self._websocket.send_bytes(data)
        else:
            await self._websocket.send_text(data if isinstance(data, str) else str(data))

    async def _close_socket(self, code: int, reason: str | None) -> None:
        if self._websocket.client_state == WebSocketState.CONNECTED:
            await self._websocket.close(code=code, reason=reason)


class ClientWebSocketEndpoint(QueuedWebSocketEndpoint):
    """Client side: an outbound connection made with ``websockets``."""

    def __init__(self, connection: Any) -> None:
        super().__init__()
        self._connection = connection

    @classmethod
    async def connect(cls, url: str, **kwargs: Any) -> ClientWebSocketEndpoint:
        kwargs.setdefault("ping_interval", 30)
        kwargs.setdefault("ping_timeout", 10)
        connection = await websockets.connect(url, **kwargs)
        logger.info(f"Connected upstream WebSocket: {url}")
        return cls(connection)

    async def _read_loop(self) -> None:
        while True:
            try:
                data = await self._connection.recv()
            except ConnectionClosed as e:
                if self._closed:
                    return
                if e.rcvd is None:
                    # No close frame: the connection dropped
                    self._closed = True
                    self.emit(EndpointEvent.ERROR, e)
                else:
                    self._peer_closed(CloseEvent(code=e.rcvd.code, reason=e.rcvd.reason or None))
                return
            except Exception as e:
                if not self._closed:
                    self._closed = True
                    self.emit(EndpointEvent.ERROR, e)
                return
            self.emit(EndpointEvent.MESSAGE, data)

    async def _write(self, data: Any) -> None:
        await self._connection.send(data)

    async def _close_socket(self, code: int, reason: str | None) -> None:
        await self._connection.close(code=code, reason=reason or "")
