"""Duplex bridge between two socket-like endpoints.

Messages flow both ways, optionally through a transform. The bridge tears
down once: the first close, error, forward failure or transform failure
detaches every listener and resolves the completion future.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from .base import (
    CLOSE_INTERNAL_ERROR,
    CLOSE_NORMAL,
    BridgeEndpoint,
    CloseEvent,
    EndpointEvent,
)

logger = logging.getLogger(__name__)

PEER_CLOSED_REASON = "peer_closed"
PEER_ERROR_REASON = "peer_error"
FORWARD_FAILURE_REASON = "bridge_forward_failure"
TRANSFORM_FAILURE_REASON = "bridge_transform_failure"

# A transform returns one payload, a list of payloads to send in order, or
# None to drop the message.
Transform = Callable[[Any], Any]


class DuplexBridge:
    """Joins ``local`` and ``remote`` until either side goes away.

    Args:
        local: The endpoint facing our client (browser)
        remote: The endpoint facing the upstream peer
        transform_local_to_remote: Applied to messages travelling upstream
        transform_remote_to_local: Applied to messages travelling downstream
    """

    def __init__(
        self,
        local: BridgeEndpoint,
        remote: BridgeEndpoint,
        *,
        transform_local_to_remote: Transform | None = None,
        transform_remote_to_local: Transform | None = None,
    ) -> None:
        self.local = local
        self.remote = remote
        self._transform_local_to_remote = transform_local_to_remote
        self._transform_remote_to_local = transform_remote_to_local

        self._local_closed = False
        self._remote_closed = False
        self._finished = False
        self._done: asyncio.Future[None] = asyncio.get_running_loop().create_future()

        self._listeners: list[tuple[BridgeEndpoint, EndpointEvent, Callable[[Any], None]]] = [
            (local, EndpointEvent.MESSAGE, self._on_local_message),
            (remote, EndpointEvent.MESSAGE, self._on_remote_message),
            (local, EndpointEvent.CLOSE, self._on_local_close),
            (remote, EndpointEvent.CLOSE, self._on_remote_close),
            (local, EndpointEvent.ERROR, self._on_error),
            (remote, EndpointEvent.ERROR, self._on_error),
        ]
        for endpoint, event, listener in self._listeners:
            endpoint.add_listener(event, listener)

    @property
    def done(self) -> asyncio.Future[None]:
        """Resolves once the bridge has torn down."""
        return self._done

    @property
    def finished(self) -> bool:
        return self._finished

    # =========================================================================
    # Event handlers
    # =========================================================================

    def _on_local_message(self, data: Any) -> None:
        if self._finished or self._remote_closed:
            return
        self._relay(data, self._transform_local_to_remote, self.remote, to_remote=True)

    def _on_remote_message(self, data: Any) -> None:
        if self._finished or self._local_closed:
            return
        self._relay(data, self._transform_remote_to_local, self.local, to_remote=False)

    def _on_local_close(self, event: Any) -> None:
        self._local_closed = True
        if not self._remote_closed:
            code, reason = _read_close(event)
            self._remote_closed = True
            _safe_close(self.remote, code, reason)
        self._finish()

    def _on_remote_close(self, event: Any) -> None:
        self._remote_closed = True
        if not self._local_closed:
            code, reason = _read_close(event)
            self._local_closed = True
            _safe_close(self.local, code, reason)
        self._finish()

    def _on_error(self, error: Any) -> None:
        logger.warning(f"Bridge endpoint error: {error}")
        self._abort(PEER_ERROR_REASON)

    # =========================================================================
    # Forwarding
    # =========================================================================

    def _relay(
        self, data: Any, transform: Transform | None, target: BridgeEndpoint, *, to_remote: bool
    ) -> None:
        try:
            payload = transform(data) if transform is not None else data
        except Exception as e:
            logger.exception(f"Bridge transform failed: {e}")
            self._abort(TRANSFORM_FAILURE_REASON)
            return

        if payload is None:
            return
        payloads = payload if isinstance(payload, list) else [payload]
        for item in payloads:
            try:
                target.send(item)
            except Exception as e:
                direction = "upstream" if to_remote else "downstream"
                logger.warning(f"Bridge failed to forward {direction}: {e}")
                self._abort(FORWARD_FAILURE_REASON)
                return

    # =========================================================================
    # Teardown
    # =========================================================================

    def _abort(self, reason: str) -> None:
        if not self._local_closed:
            self._local_closed = True
            _safe_close(self.local, CLOSE_INTERNAL_ERROR, reason)
        if not self._remote_closed:
            self._remote_closed = True
            _safe_close(self.remote, CLOSE_INTERNAL_ERROR, reason)
        self._finish()

    def _finish(self) -> None:
        if self._finished:
            return
        self._finished = True
        for endpoint, event, listener in self._listeners:
            endpoint.remove_listener(event, listener)
        if not self._done.done():
            self._done.set_result(None)


def _read_close(event: Any) -> tuple[int, str]:
    code = getattr(event, "code", None)
    reason = getattr(event, "reason", None)
    return (
        code if isinstance(code, int) else CLOSE_NORMAL,
        reason if isinstance(reason, str) and reason else PEER_CLOSED_REASON,
    )


def _safe_close(endpoint: BridgeEndpoint, code: int, reason: str) -> None:
    try:
        endpoint.close(code, reason)
    except Exception as e:
        logger.warning(f"Bridge failed to close endpoint: {e}")


def bridge_endpoints(
    local: BridgeEndpoint,
    remote: BridgeEndpoint,
    *,
    transform_local_to_remote: Transform | None = None,
    transform_remote_to_local: Transform | None = None,
) -> asyncio.Future[None]:
    """Join two endpoints; the returned future resolves on teardown.

    Must be called from a running event loop.
    """
    bridge = DuplexBridge(
        local,
        remote,
        transform_local_to_remote=transform_local_to_remote,
        transform_remote_to_local=transform_remote_to_local,
    )
    return bridge.done


__all__ = [
    "CloseEvent",
    "DuplexBridge",
    "FORWARD_FAILURE_REASON",
    "PEER_CLOSED_REASON",
    "PEER_ERROR_REASON",
    "TRANSFORM_FAILURE_REASON",
    "Transform",
    "bridge_endpoints",
]
