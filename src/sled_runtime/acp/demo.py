"""Scripted handshake used for diagnostics.

Runs initialize -> session/new -> one canned prompt against an agent and
reports each step as a client-event snippet. Stops reporting after the
first terminal outcome (acknowledged prompt or any failure).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from .errors import stringify
from .protocol_session import (
    CreateId,
    ProtocolSession,
    ProtocolSessionListener,
    RequestType,
    SendUpstream,
)
from .renderer import JsonSnippetRenderer, PushSnippet, SnippetRenderer
from .types import AuthMethod, PermissionRequest

logger = logging.getLogger(__name__)

DEMO_PERMISSION_MODE = "bypassPermissions"
DEMO_PROMPT_TEXT = "Hello, agent! (browser demo)"

REQUEST_LABELS: dict[RequestType, str] = {
    RequestType.INITIALIZE: "Sent initialize request",
    RequestType.SESSION_NEW: "Requested new session",
    RequestType.SESSION_PROMPT: "Sent demo prompt",
}


class DemoHandshake(ProtocolSessionListener):
    """Drives a ``ProtocolSession`` through one scripted turn.

    Every protocol callback is also forwarded to ``session_listener`` so
    tests and tools can observe the raw session.
    """

    def __init__(
        self,
        send_upstream: SendUpstream,
        push_snippet: PushSnippet,
        *,
        create_id: CreateId | None = None,
        on_session_ready: Callable[[str], Any] | None = None,
        session_listener: ProtocolSessionListener | None = None,
        renderer: SnippetRenderer | None = None,
    ) -> None:
        self._push_snippet = push_snippet
        self._on_session_ready = on_session_ready
        self._hooks = session_listener or ProtocolSessionListener()
        self._renderer: SnippetRenderer = renderer or JsonSnippetRenderer()
        self.completed = False
        self.prompt_sent = False
        self.session = ProtocolSession(
            send_upstream,
            initial_permission_mode=DEMO_PERMISSION_MODE,
            create_id=create_id,
            listener=self,
        )

    def start(self) -> None:
        if self.completed:
            return
        self.session.start()

    def handle_agent_message(self, message: Any) -> None:
        """Forward JSON-RPC 2.0 messages carrying a string or numeric id."""
        if not isinstance(message, dict) or message.get("jsonrpc") != "2.0":
            return
        message_id = message.get("id")
        if isinstance(message_id, bool) or not isinstance(message_id, str | int | float):
            return
        self.session.handle_agent_message(message)

    # =========================================================================
    # Protocol callbacks
    # =========================================================================

    def on_request_dispatched(
        self, request_type: RequestType, payload: dict[str, Any], request_id: str
    ) -> None:
        if not self.completed:
            label = REQUEST_LABELS.get(request_type, "Sent request")
            self._event(label, stringify(payload))
        self._hooks.on_request_dispatched(request_type, payload, request_id)

    def on_response_received(
        self, request_type: RequestType, message: dict[str, Any], request_id: str
    ) -> None:
        self._hooks.on_response_received(request_type, message, request_id)

    def on_initialize_error(self, error: Any, message: dict[str, Any]) -> None:
        self._fail("Initialize failed", error, message)
        self._hooks.on_initialize_error(error, message)

    def on_session_error(self, error: Any, message: dict[str, Any]) -> None:
        self._fail("New session failed", error, message)
        self._hooks.on_session_error(error, message)

    def on_session_ready(self, session_id: str) -> None:
        if not self.completed:
            if not self._notify_ready(session_id):
                return
            if not self.prompt_sent:
                self.prompt_sent = True
                self.session.send_prompt(DEMO_PROMPT_TEXT)
        self._hooks.on_session_ready(session_id)

    def on_authentication_required(self, method: AuthMethod) -> None:
        if not self.completed:
            self.completed = True
            self._event("Authentication required", method.description or method.name)
        self._hooks.on_authentication_required(method)

    def on_prompt_queued(self, request_id: str, text: str, metadata: Any) -> None:
        self._hooks.on_prompt_queued(request_id, text, metadata)

    def on_prompt_sent(self, request_id: str, text: str, metadata: Any) -> None:
        self._hooks.on_prompt_sent(request_id, text, metadata)

    def on_prompt_result(self, request_id: str, result: dict[str, Any], metadata: Any) -> None:
        if not self.completed:
            self.completed = True
            self._event("Demo prompt acknowledged", stringify(result))
        self._hooks.on_prompt_result(request_id, result, metadata)

    def on_prompt_error(
        self, request_id: str, error: Any, metadata: Any, message: dict[str, Any]
    ) -> None:
        self._fail("Demo prompt failed", error, message)
        self._hooks.on_prompt_error(request_id, error, metadata, message)

    def on_session_update(
        self, session_id: str | None, update: dict[str, Any], message: dict[str, Any]
    ) -> None:
        self._hooks.on_session_update(session_id, update, message)

    def on_permission_request(self, request: PermissionRequest) -> None:
        self._hooks.on_permission_request(request)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _notify_ready(self, session_id: str) -> bool:
        if self._on_session_ready is None:
            return True
        try:
            self._on_session_ready(session_id)
        except Exception as e:
            logger.warning(f"Demo session ready callback failed: {e}")
            self.completed = True
            self._event("Session ready callback failed", str(e))
            return False
        return True

    def _fail(self, label: str, error: Any, message: dict[str, Any]) -> None:
        if self.completed:
            return
        self.completed = True
        if "error" in message:
            self._event(label, stringify(message["error"]))
        else:
            # The request never left: ``message`` is our own outbound payload
            self._event("Failed to send handshake step", str(error))

    def _event(self, title: str, details: str | None = None) -> None:
        try:
            self._push_snippet(self._renderer.client_event(title, details))
        except Exception as e:
            logger.exception(f"push_snippet failed: {e}")
