"""Transport abstractions.

Socket-like endpoints expose a synchronous ``send``/``close`` pair plus
``message``/``close``/``error`` listeners. Anything shaped like that can be
joined by the duplex bridge, whatever sits underneath (a Starlette
WebSocket, a ``websockets`` client connection, or an in-memory fake).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

# WebSocket close codes used by the runtime
CLOSE_NORMAL = 1000
CLOSE_INTERNAL_ERROR = 1011


class TransportClosedError(ConnectionError):
    """Raised when sending on a transport that is not (or no longer) open."""


class EndpointEvent(str, Enum):
    """Events an endpoint emits."""

    MESSAGE = "message"
    CLOSE = "close"
    ERROR = "error"


@dataclass(frozen=True)
class CloseEvent:
    """Close notification. Missing values mean a plain close by the peer."""

    code: int | None = None
    reason: str | None = None


Listener = Callable[[Any], None]


@runtime_checkable
class BridgeEndpoint(Protocol):
    """Minimal socket-like surface the duplex bridge needs."""

    def send(self, data: Any) -> None: ...

    def close(self, code: int | None = None, reason: str | None = None) -> None: ...

    def add_listener(self, event: EndpointEvent, listener: Listener) -> None: ...

    def remove_listener(self, event: EndpointEvent, listener: Listener) -> None: ...


class EventEmitterEndpoint:
    """Listener bookkeeping shared by endpoint implementations.

    Listener exceptions are logged and never reach the emitter.
    """

    def __init__(self) -> None:
        self._listeners: dict[EndpointEvent, list[Listener]] = {
            event: [] for event in EndpointEvent
        }

    def add_listener(self, event: EndpointEvent, listener: Listener) -> None:
        self._listeners[EndpointEvent(event)].append(listener)

    def remove_listener(self, event: EndpointEvent, listener: Listener) -> None:
        listeners = self._listeners[EndpointEvent(event)]
        if listener in listeners:
            listeners.remove(listener)

    def emit(self, event: EndpointEvent, payload: Any = None) -> None:
        # Copy: listeners may remove themselves while being called
        for listener in list(self._listeners[EndpointEvent(event)]):
            try:
                listener(payload)
            except Exception as e:
                logger.exception(f"{event.value} listener failed: {e}")
