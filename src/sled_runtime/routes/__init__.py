"""HTTP and WebSocket routes."""

from .chat import chat_routes
from .health import health_routes
from .proxy import proxy_routes

__all__ = [
    "chat_routes",
    "health_routes",
    "proxy_routes",
]
