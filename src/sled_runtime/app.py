"""Sled runtime server application.

Creates the Starlette ASGI application with all routes.

Routes:
- /health - Health check
- /chat/ws - Browser chat bridged to an ACP agent subprocess
- /proxy/ws - Raw WebSocket relay to a configured upstream
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.routing import BaseRoute

from .config import RuntimeConfig
from .routes import chat_routes, health_routes, proxy_routes

logger = logging.getLogger(__name__)


def create_app(
    config: RuntimeConfig | None = None,
    *,
    agent_transport_factory: Callable[..., Any] | None = None,
) -> Starlette:
    """Create the runtime application.

    Args:
        config: Runtime settings (read from the environment when omitted)
        agent_transport_factory: Replaces ``AgentProcessTransport`` for chat connections

    Returns:
        Configured Starlette application
    """
    config = config or RuntimeConfig.from_env()

    routes: list[BaseRoute] = []
    routes.extend(health_routes)
    routes.extend(chat_routes)
    routes.extend(proxy_routes)

    # CORS middleware for local development
    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origin_regex=r"http://(localhost|127\.0\.0\.1)(:\d+)?",
            allow_methods=["*"],
            allow_headers=["*"],
        ),
    ]

    if config.debug:
        logging.getLogger("sled_runtime").setLevel(logging.DEBUG)

    app = Starlette(routes=routes, middleware=middleware)
    app.state.config = config
    app.state.agent_transport_factory = agent_transport_factory
    logger.debug(f"Created app for agent type {config.agent_type}")
    return app
