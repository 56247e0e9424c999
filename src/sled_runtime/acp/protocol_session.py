"""ACP protocol session.

Drives the JSON-RPC side of a conversation with one coding agent:

1. ``initialize`` (id ``init-*``)
2. ``authenticate`` (id ``auth-*``), only for agents advertising ``gemini-api-key``
3. ``session/new`` (id ``session-*``)
4. ``session/prompt`` (id ``prompt-*``), queued until the session exists

Requests and replies are correlated by id, never by call/return: every
outbound frame is handed to ``send_upstream`` and the matching reply shows up
later through ``handle_agent_message``. The session knows nothing about UI or
storage; it reports progress to a ``ProtocolSessionListener``.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .types import (
    AUTHENTICATE_PREFIX,
    GEMINI_API_KEY_METHOD,
    INITIALIZE_PREFIX,
    JSONRPC_VERSION,
    OPENCODE_LOGIN_METHOD,
    PROMPT_PREFIX,
    PROTOCOL_VERSION,
    SESSION_PREFIX,
    SET_MODE_PREFIX,
    AuthMethod,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    MessageKind,
    PermissionOutcome,
    PermissionRequest,
    classify_message,
    parse_permission_request,
    read_auth_methods,
)

logger = logging.getLogger(__name__)

SendUpstream = Callable[[str], None]
CreateId = Callable[[], str]


class SessionProtocolError(Exception):
    """Protocol violation detected locally (as opposed to a JSON-RPC error reply)."""


class RequestType(str, Enum):
    """Requests whose replies the session tracks."""

    INITIALIZE = "initialize"
    AUTHENTICATE = "authenticate"
    SESSION_NEW = "session/new"
    SESSION_PROMPT = "session/prompt"


@dataclass
class PendingPrompt:
    """A prompt waiting for the session or for its reply.

    ``metadata`` is an opaque correlation token owned by the caller.
    """

    request_id: str
    text: str
    metadata: Any = None


class ProtocolSessionListener:
    """Observer for protocol session progress.

    Every method is a no-op; subclasses override what they need. Exceptions
    raised by a listener are logged and never reach the session.
    """

    def on_request_dispatched(
        self, request_type: RequestType, payload: dict[str, Any], request_id: str
    ) -> None:
        pass

    def on_response_received(
        self, request_type: RequestType, message: dict[str, Any], request_id: str
    ) -> None:
        pass

    def on_initialize_error(self, error: Any, message: dict[str, Any]) -> None:
        pass

    def on_session_ready(self, session_id: str) -> None:
        pass

    def on_session_error(self, error: Any, message: dict[str, Any]) -> None:
        pass

    def on_authentication_required(self, method: AuthMethod) -> None:
        pass

    def on_prompt_queued(self, request_id: str, text: str, metadata: Any) -> None:
        pass

    def on_prompt_sent(self, request_id: str, text: str, metadata: Any) -> None:
        pass

    def on_prompt_result(self, request_id: str, result: dict[str, Any], metadata: Any) -> None:
        pass

    def on_prompt_error(
        self, request_id: str, error: Any, metadata: Any, message: dict[str, Any]
    ) -> None:
        pass

    def on_session_update(
        self, session_id: str | None, update: dict[str, Any], message: dict[str, Any]
    ) -> None:
        pass

    def on_permission_request(self, request: PermissionRequest) -> None:
        pass


def frame_payload(payload: dict[str, Any]) -> str:
    """Serialize one outbound frame (newline-delimited JSON)."""
    data = json.dumps(payload, separators=(",", ":"))
    return data if data.endswith("\n") else f"{data}\n"


def _normalize(value: str | None) -> str | None:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def _default_create_id() -> str:
    return uuid.uuid4().hex


class ProtocolSession:
    """JSON-RPC state machine for one ACP session.

    Single-threaded and synchronous per message: ``handle_agent_message``
    runs to completion, listener callbacks included, before returning.
    """

    def __init__(
        self,
        send_upstream: SendUpstream,
        *,
        initial_permission_mode: str,
        create_id: CreateId | None = None,
        session_cwd: str | None = None,
        resume_session_id: str | None = None,
        listener: ProtocolSessionListener | None = None,
    ) -> None:
        self._send_upstream = send_upstream
        self._create_id = create_id or _default_create_id
        self.initial_permission_mode = initial_permission_mode
        self.session_cwd = _normalize(session_cwd)
        self.resume_session_id = _normalize(resume_session_id)
        self.listener = listener or ProtocolSessionListener()

        self.started = False
        self.initialization_complete = False
        self.session_id: str | None = None

        self.initialize_request_id: str | None = None
        self.authenticate_request_id: str | None = None
        self.session_request_id: str | None = None

        self.queued_prompts: list[PendingPrompt] = []
        self.pending_prompts: dict[str, PendingPrompt] = {}

    @property
    def is_ready(self) -> bool:
        return self.initialization_complete and self.session_id is not None

    # =========================================================================
    # Public API
    # =========================================================================

    def start(self) -> None:
        """Kick off the handshake. Later calls are no-ops."""
        if self.started:
            return
        self.started = True
        self._dispatch_initialize()

    def send_prompt(self, text: str, metadata: Any = None) -> str | None:
        """Send (or queue) a prompt.

        Returns:
            The ``prompt-*`` request id, or None when ``text`` is blank.
        """
        trimmed = text.strip()
        if not trimmed:
            return None

        prompt = PendingPrompt(
            request_id=f"{PROMPT_PREFIX}{self._create_id()}",
            text=trimmed,
            metadata=metadata,
        )

        if not self.is_ready:
            self.queued_prompts.append(prompt)
            self._notify("on_prompt_queued", prompt.request_id, prompt.text, metadata)
            self.start()
            return prompt.request_id

        self._dispatch_prompt(prompt)
        return prompt.request_id

    def set_mode(self, mode_id: str) -> bool:
        """Send ``session/set_mode``. The reply is not tracked."""
        if not self.session_id:
            return False
        request = JsonRpcRequest(
            id=f"{SET_MODE_PREFIX}{self._create_id()}",
            method="session/set_mode",
            params={"sessionId": self.session_id, "modeId": mode_id},
        )
        return self._send(request.model_dump(exclude_none=True))

    def cancel_current_prompt(self) -> bool:
        """Send the ``session/cancel`` notification for the active session."""
        if not self.session_id:
            return False
        notification = JsonRpcNotification(
            method="session/cancel",
            params={"sessionId": self.session_id},
        )
        return self._send(notification.model_dump(exclude_none=True))

    def respond_to_permission_request(
        self, request_id: int | float, outcome: PermissionOutcome
    ) -> bool:
        """Answer a peer ``session/request_permission`` request."""
        response = {
            "jsonrpc": JSONRPC_VERSION,
            "id": request_id,
            "result": {"outcome": outcome.to_wire()},
        }
        return self._send(response)

    def handle_agent_message(self, payload: Any) -> bool:
        """Route one inbound JSON-RPC message.

        Returns:
            True if the message was recognized and handled.
        """
        kind, message = classify_message(payload)

        if kind is MessageKind.PEER_REQUEST and isinstance(message, JsonRpcRequest):
            return self._handle_peer_request(message)

        if kind is MessageKind.RESPONSE and isinstance(message, JsonRpcResponse):
            return self._handle_response(message, payload)

        if kind is MessageKind.NOTIFICATION and isinstance(message, JsonRpcNotification):
            return self._handle_notification(message, payload)

        logger.debug(f"Ignoring invalid agent message: {str(payload)[:100]}")
        return False

    # =========================================================================
    # Inbound routing
    # =========================================================================

    def _handle_response(self, response: JsonRpcResponse, raw: dict[str, Any]) -> bool:
        request_id = str(response.id)

        if request_id == self.initialize_request_id:
            self._notify("on_response_received", RequestType.INITIALIZE, raw, request_id)
            self._on_initialize_response(response, raw)
            return True

        if request_id == self.authenticate_request_id:
            self._notify("on_response_received", RequestType.AUTHENTICATE, raw, request_id)
            if response.is_error:
                # Pre-session failures all surface as session errors
                self._notify("on_session_error", response.error, raw)
            else:
                self._dispatch_session_new()
            return True

        if request_id == self.session_request_id:
            self._notify("on_response_received", RequestType.SESSION_NEW, raw, request_id)
            self._on_session_new_response(response, raw)
            return True

        prompt = self.pending_prompts.pop(request_id, None)
        if prompt is None:
            logger.debug(f"Response for unknown request id: {request_id}")
            return False

        self._notify("on_response_received", RequestType.SESSION_PROMPT, raw, request_id)
        if response.is_error:
            self._notify("on_prompt_error", request_id, response.error, prompt.metadata, raw)
        else:
            result = response.result if isinstance(response.result, dict) else {}
            self._notify("on_prompt_result", request_id, result, prompt.metadata)
        return True

    def _on_initialize_response(self, response: JsonRpcResponse, raw: dict[str, Any]) -> None:
        if response.is_error:
            self._notify("on_initialize_error", response.error, raw)
            return

        self.initialization_complete = True
        methods = {method.id: method for method in read_auth_methods(response.result)}

        if GEMINI_API_KEY_METHOD in methods:
            self._dispatch_authenticate(GEMINI_API_KEY_METHOD)
        elif OPENCODE_LOGIN_METHOD in methods:
            # The agent cannot work until the user logs in from a terminal
            logger.info("Agent requires interactive login, not creating a session")
            self._notify("on_authentication_required", methods[OPENCODE_LOGIN_METHOD])
        else:
            self._dispatch_session_new()

    def _on_session_new_response(self, response: JsonRpcResponse, raw: dict[str, Any]) -> None:
        if response.is_error:
            self._notify("on_session_error", response.error, raw)
            return

        result = response.result if isinstance(response.result, dict) else {}
        session_id = result.get("sessionId")
        if not isinstance(session_id, str) or not session_id:
            self._notify(
                "on_session_error",
                SessionProtocolError("session/new response missing sessionId"),
                raw,
            )
            return

        self.session_id = session_id
        logger.info(f"ACP session ready: {session_id}")
        self._notify("on_session_ready", session_id)
        self._flush_queued_prompts()

    def _handle_notification(self, notification: JsonRpcNotification, raw: dict[str, Any]) -> bool:
        if notification.method != "session/update":
            logger.debug(f"Ignoring notification: {notification.method}")
            return False

        params = notification.params or {}
        update = params.get("update")
        if not isinstance(update, dict):
            return False

        session_id = params.get("sessionId")
        if not isinstance(session_id, str) or not session_id:
            session_id = None

        self._notify("on_session_update", session_id, update, raw)
        return True

    def _handle_peer_request(self, request: JsonRpcRequest) -> bool:
        if request.method != "session/request_permission":
            logger.debug(f"Ignoring unsupported peer request: {request.method}")
            return False

        if isinstance(request.id, str):
            logger.warning(f"Ignoring permission request with a string id: {request.id}")
            return False
        permission = parse_permission_request(request.id, request.params)
        if permission is None:
            # Dropped without a reply
            logger.warning(f"Dropping malformed session/request_permission (id={request.id})")
            return False

        self._notify("on_permission_request", permission)
        return True

    # =========================================================================
    # Outbound requests
    # =========================================================================

    def _dispatch_initialize(self) -> None:
        request_id = f"{INITIALIZE_PREFIX}{self._create_id()}"
        self.initialize_request_id = request_id
        # No client capabilities: agents use their own file tools
        self._dispatch_request(
            RequestType.INITIALIZE,
            request_id,
            {"protocolVersion": PROTOCOL_VERSION, "clientCapabilities": {}},
        )

    def _dispatch_authenticate(self, method_id: str) -> None:
        request_id = f"{AUTHENTICATE_PREFIX}{self._create_id()}"
        self.authenticate_request_id = request_id
        self._dispatch_request(RequestType.AUTHENTICATE, request_id, {"methodId": method_id})

    def _dispatch_session_new(self) -> None:
        request_id = f"{SESSION_PREFIX}{self._create_id()}"
        self.session_request_id = request_id

        meta: dict[str, Any] = {"permissionMode": self.initial_permission_mode}
        if self.resume_session_id:
            meta["claudeCode"] = {"options": {"resume": self.resume_session_id}}

        self._dispatch_request(
            RequestType.SESSION_NEW,
            request_id,
            {"cwd": self.session_cwd or "/", "mcpServers": [], "_meta": meta},
        )

    def _flush_queued_prompts(self) -> None:
        while self.queued_prompts and self.session_id:
            self._dispatch_prompt(self.queued_prompts.pop(0))

    def _dispatch_prompt(self, prompt: PendingPrompt) -> None:
        if not self.session_id:
            self.queued_prompts.append(prompt)
            return

        params = {
            "sessionId": self.session_id,
            "prompt": [{"type": "text", "text": prompt.text}],
        }
        payload = self._build_request(prompt.request_id, RequestType.SESSION_PROMPT, params)
        self._notify(
            "on_request_dispatched", RequestType.SESSION_PROMPT, payload, prompt.request_id
        )

        try:
            self._send_upstream(frame_payload(payload))
        except Exception as e:
            logger.warning(f"Failed to send prompt {prompt.request_id}: {e}")
            self._notify("on_prompt_error", prompt.request_id, e, prompt.metadata, payload)
            return

        self.pending_prompts[prompt.request_id] = prompt
        self._notify("on_prompt_sent", prompt.request_id, prompt.text, prompt.metadata)

    def _dispatch_request(
        self, request_type: RequestType, request_id: str, params: dict[str, Any]
    ) -> bool:
        payload = self._build_request(request_id, request_type, params)
        self._notify("on_request_dispatched", request_type, payload, request_id)
        try:
            self._send_upstream(frame_payload(payload))
        except Exception as e:
            logger.warning(f"Failed to send {request_type.value}: {e}")
            if request_type is RequestType.INITIALIZE:
                self._notify("on_initialize_error", e, payload)
            else:
                self._notify("on_session_error", e, payload)
            return False
        return True

    @staticmethod
    def _build_request(
        request_id: str, request_type: RequestType, params: dict[str, Any]
    ) -> dict[str, Any]:
        request = JsonRpcRequest(id=request_id, method=request_type.value, params=params)
        return request.model_dump(exclude_none=True)

    def _send(self, payload: dict[str, Any]) -> bool:
        try:
            self._send_upstream(frame_payload(payload))
        except Exception as e:
            logger.warning(f"Failed to send {payload.get('method', 'response')}: {e}")
            return False
        return True

    def _notify(self, callback: str, *args: Any) -> None:
        try:
            getattr(self.listener, callback)(*args)
        except Exception as e:
            logger.exception(f"Listener {callback} failed: {e}")
