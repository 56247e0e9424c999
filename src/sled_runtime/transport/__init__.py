"""Transports for agent processes and WebSocket peers.

- stdio - agent subprocess speaking newline-delimited JSON-RPC
- WebSocket - Starlette server sockets and ``websockets`` client sockets
- bridge - relays frames between any two socket-like endpoints
"""

from .base import (
    CLOSE_INTERNAL_ERROR,
    CLOSE_NORMAL,
    BridgeEndpoint,
    CloseEvent,
    EndpointEvent,
    EventEmitterEndpoint,
    TransportClosedError,
)
from .bridge import DuplexBridge, bridge_endpoints
from .stdio import AgentProcessTransport
from .websocket import ClientWebSocketEndpoint, StarletteWebSocketEndpoint

__all__ = [
    # Base abstractions
    "BridgeEndpoint",
    "CloseEvent",
    "EndpointEvent",
    "EventEmitterEndpoint",
    "TransportClosedError",
    "CLOSE_NORMAL",
    "CLOSE_INTERNAL_ERROR",
    # Bridge
    "DuplexBridge",
    "bridge_endpoints",
    # Implementations
    "AgentProcessTransport",
    "ClientWebSocketEndpoint",
    "StarletteWebSocketEndpoint",
]
