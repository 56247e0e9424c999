"""Raw WebSocket proxy to an upstream ACP endpoint.

Frames are relayed untouched in both directions through the duplex bridge.
"""

from __future__ import annotations

import asyncio
import logging

from starlette.routing import WebSocketRoute
from starlette.websockets import WebSocket
from websockets.exceptions import WebSocketException

from ..transport import (
    CLOSE_INTERNAL_ERROR,
    ClientWebSocketEndpoint,
    StarletteWebSocketEndpoint,
    bridge_endpoints,
)

logger = logging.getLogger(__name__)

PROXY_NOT_CONFIGURED = "proxy_not_configured"
UPSTREAM_UNAVAILABLE = "upstream_unavailable"


async def proxy_websocket_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint bridged to ``SLED_PROXY_UPSTREAM_URL``.

    URL: /proxy/ws
    """
    upstream_url = websocket.app.state.config.proxy_upstream_url
    await websocket.accept()

    if not upstream_url:
        await websocket.close(code=CLOSE_INTERNAL_ERROR, reason=PROXY_NOT_CONFIGURED)
        return

    try:
        remote = await ClientWebSocketEndpoint.connect(upstream_url)
    except (OSError, TimeoutError, WebSocketException) as e:
        logger.warning(f"Cannot reach proxy upstream {upstream_url}: {e}")
        await websocket.close(code=CLOSE_INTERNAL_ERROR, reason=UPSTREAM_UNAVAILABLE)
        return

    local = StarletteWebSocketEndpoint(websocket)
    done = bridge_endpoints(local, remote)
    await asyncio.gather(local.run(), remote.run())
    if not done.done():
        logger.warning("Proxy pumps stopped before the bridge tore down")
    logger.info(f"Proxy connection to {upstream_url} closed")


proxy_routes = [
    WebSocketRoute("/proxy/ws", proxy_websocket_endpoint),
]
