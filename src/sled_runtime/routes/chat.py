"""WebSocket endpoint that puts a browser in front of an ACP agent.

One connection owns one agent subprocess and one ``ChatSession``. Browser
events are JSON objects with a ``type``; everything sent back is a snippet
string from the session's renderer, plus ``assistant.sentence`` events for
speech synthesis.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from starlette.routing import WebSocketRoute
from starlette.websockets import WebSocket

from ..acp import ChatSession, JsonSnippetRenderer
from ..acp.permissions import parse_request_id
from ..config import RuntimeConfig
from ..transport import AgentProcessTransport, EndpointEvent, StarletteWebSocketEndpoint

logger = logging.getLogger(__name__)

SENTENCE_EVENT = "assistant.sentence"

AgentTransportFactory = Callable[..., Any]


class ChatWebSocketHandler:
    """Handles one browser chat connection.

    Browser events:
    - chat_init: launch the agent and run the handshake
    - chat_user_message {text}: submit a turn (launches the agent if needed)
    - chat_set_mode {modeId}: change the permission mode
    - chat_cancel_response: cancel the active turn
    - permission_response {requestId, optionId}: answer a permission prompt
    """

    def __init__(
        self,
        websocket: WebSocket,
        config: RuntimeConfig,
        *,
        transport_factory: AgentTransportFactory | None = None,
    ):
        self.websocket = websocket
        self.config = config
        self.endpoint = StarletteWebSocketEndpoint(websocket)
        self.renderer = JsonSnippetRenderer()
        self.chat: ChatSession | None = None
        self.agent: Any = None
        self.session_id: str | None = None

        self._transport_factory = transport_factory or AgentProcessTransport
        self._events: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._handlers: dict[str, Callable[[dict[str, Any]], Awaitable[None]]] = {
            "chat_init": self._handle_init,
            "chat_user_message": self._handle_user_message,
            "chat_set_mode": self._handle_set_mode,
            "chat_cancel_response": self._handle_cancel,
            "permission_response": self._handle_permission_response,
        }

    async def handle(self) -> None:
        """Main handler for the WebSocket connection."""
        await self.websocket.accept()
        self.endpoint.add_listener(EndpointEvent.MESSAGE, self._on_browser_frame)
        consumer = asyncio.create_task(self._consume_events())
        try:
            await self.endpoint.run()
        except Exception as e:
            logger.exception(f"Chat WebSocket error: {e}")
        finally:
            consumer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await consumer
            await self._cleanup()

    # =========================================================================
    # Browser events
    # =========================================================================

    def _on_browser_frame(self, data: Any) -> None:
        try:
            event = json.loads(data)
        except (TypeError, ValueError) as e:
            logger.warning(f"Invalid chat event: {e}")
            return
        if not isinstance(event, dict) or not isinstance(event.get("type"), str):
            logger.warning(f"Chat event without a type: {str(event)[:80]}")
            return
        self._events.put_nowait(event)

    async def _consume_events(self) -> None:
        # Sequential, so a message sent right after chat_init waits for the launch
        while True:
            event = await self._events.get()
            handler = self._handlers.get(event["type"])
            if handler is None:
                logger.warning(f"Unknown chat event type: {event['type']}")
                continue
            try:
                await handler(event)
            except Exception as e:
                logger.exception(f"Error handling chat event {event['type']}: {e}")
                self._push_status(f"Error: {e}", "error")

    async def _handle_init(self, event: dict[str, Any]) -> None:
        await self._ensure_agent()

    async def _handle_user_message(self, event: dict[str, Any]) -> None:
        text = event.get("text")
        if not isinstance(text, str) or not text.strip():
            return
        # handle_user_message starts the session itself, after rendering the message
        chat = await self._ensure_agent(start=False)
        if chat is not None:
            chat.handle_user_message(text)

    async def _handle_set_mode(self, event: dict[str, Any]) -> None:
        mode_id = event.get("modeId")
        if not isinstance(mode_id, str) or not mode_id:
            return
        if self.chat is None:
            self.config = self.config.model_copy(update={"permission_mode": mode_id})
            return
        self.chat.set_mode(mode_id)

    async def _handle_cancel(self, event: dict[str, Any]) -> None:
        if self.chat is None:
            return
        if not self.chat.cancel_prompt():
            self.chat.cancel_pending_permissions()

    async def _handle_permission_response(self, event: dict[str, Any]) -> None:
        if self.chat is None:
            return
        request_id = parse_request_id(event.get("requestId"))
        option_id = event.get("optionId")
        if request_id is None or not isinstance(option_id, str):
            logger.warning(f"Malformed permission response: {event}")
            return
        self.chat.resolve_permission(request_id, option_id)

    # =========================================================================
    # Agent lifecycle
    # =========================================================================

    async def _ensure_agent(self, *, start: bool = True) -> ChatSession | None:
        if self.chat is not None:
            return self.chat

        try:
            command = self.config.resolve_command()
        except ValueError as e:
            self._push_status(str(e), "error")
            return None

        agent = self._transport_factory(
            command,
            cwd=self.config.agent_cwd,
            on_close=self._on_agent_closed,
        )
        try:
            await agent.start()
        except OSError as e:
            logger.warning(f"Failed to launch agent {command[0]}: {e}")
            self._push_status(f"Failed to launch {command[0]}: {e}", "error")
            return None

        chat = ChatSession(
            agent.send,
            self._send,
            initial_permission_mode=self.config.permission_mode,
            session_cwd=self.config.agent_cwd,
            resume_session_id=self.config.resume_session_id,
            agent_type=self.config.agent_type,
            renderer=self.renderer,
            on_session_ready=self._on_session_ready,
            on_sentence_ready=self._on_sentence_ready,
            on_working_state_change=self._on_working_state_change,
        )
        agent.on_message = chat.handle_agent_message
        self.agent = agent
        self.chat = chat
        if start:
            chat.start()
        return chat

    def _on_agent_closed(self, returncode: int | None) -> None:
        logger.info(f"Agent exited with code {returncode}")
        self._push_status(f"Agent exited (code {returncode})", "error")
        if self.chat is not None:
            self.chat.cancel_pending_permissions()

    def _on_session_ready(self, session_id: str) -> None:
        self.session_id = session_id
        logger.info(f"Agent session ready: {session_id}")

    def _on_sentence_ready(self, sentence: str) -> None:
        self._send(json.dumps({"type": SENTENCE_EVENT, "content": sentence}))

    def _on_working_state_change(self, is_working: bool, tool: dict[str, Any] | None) -> None:
        self._send(self.renderer.send_button_state(is_working))

    # =========================================================================
    # Output
    # =========================================================================

    def _send(self, data: str) -> None:
        if self.endpoint.is_closed:
            logger.debug("Dropping chat output after disconnect")
            return
        self.endpoint.send(data)

    def _push_status(self, label: str, tone: str) -> None:
        self._send(self.renderer.status(label, tone))

    async def _cleanup(self) -> None:
        """Cleanup resources on disconnect."""
        if self.chat is not None:
            self.chat.handle_transport_closed()
        if self.agent is not None:
            await self.agent.stop()


async def chat_websocket_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for browser chat.

    URL: /chat/ws
    """
    state = websocket.app.state
    handler = ChatWebSocketHandler(
        websocket,
        state.config,
        transport_factory=getattr(state, "agent_transport_factory", None),
    )
    await handler.handle()


chat_routes = [
    WebSocketRoute("/chat/ws", chat_websocket_endpoint),
]
