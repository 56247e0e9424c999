"""Chat session orchestration.

Turns protocol session callbacks into:

- snippets for the UI (via a ``SnippetRenderer`` and ``push_snippet``)
- persistence callbacks (``on_new_message``, ``on_tool_call``, ``on_session_ready``)
- an incremental sentence stream for speech synthesis (``on_sentence_ready``)
- working-state notifications for the sidebar (``on_working_state_change``)

Only one turn is active at a time. Submitting a user message force-completes
every earlier turn, so stray updates from a finished turn are never
attributed to the new one.

Timeline produced for a typical turn::

    user message -> "thinking" notice -> text segment -> tool call
                 -> text segment -> ... -> completion (or cancellation)

External callbacks are fire-and-forget: their exceptions are logged and
swallowed, and awaitables they return are scheduled on the running loop.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import format_agent_error, login_command, stringify
from .permissions import PendingPermissions, RequestId
from .protocol_session import (
    CreateId,
    ProtocolSession,
    ProtocolSessionListener,
    RequestType,
    SendUpstream,
)
from .renderer import JsonSnippetRenderer, PushSnippet, SnippetRenderer
from .sentences import SentenceBuffer
from .types import AuthMethod, PermissionOutcome, PermissionRequest

logger = logging.getLogger(__name__)

THINKING_NOTICE = "Agent is thinking…"
SEGMENT_PLACEHOLDER = "…"
DEFAULT_TOOL_TITLE = "Tool call"

_MISSING = object()


# =============================================================================
# Tool Status Classification
# =============================================================================


class ToolStatus(str, Enum):
    """Coarse classification of free-form tool status strings."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"


_TERMINAL_MARKERS = ("complete", "success", "done", "fail", "error", "cancel")


def is_terminal_tool_status(status: str | None) -> bool:
    """True when a status string means the tool call is finished.

    Matches case-insensitive substrings: complete, success, done, fail,
    error, cancel. Agents do not agree on a vocabulary ("completed",
    "failed", "Done", ...), hence substrings instead of an enum.
    """
    if not status:
        return False
    lower = status.lower()
    return any(marker in lower for marker in _TERMINAL_MARKERS)


def classify_tool_status(status: str | None) -> ToolStatus:
    if not status:
        return ToolStatus.PENDING
    lower = status.lower()
    if "cancel" in lower:
        return ToolStatus.CANCELLED
    if "complet" in lower or "success" in lower or "done" in lower:
        return ToolStatus.SUCCESS
    if "error" in lower or "fail" in lower:
        return ToolStatus.ERROR
    if "running" in lower or "progress" in lower:
        return ToolStatus.RUNNING
    return ToolStatus.PENDING


# =============================================================================
# Turn State
# =============================================================================


@dataclass
class TextSegment:
    """A run of streamed text bounded by tool calls."""

    id: str
    content: str = ""
    is_closed: bool = False


@dataclass
class ToolMessageState:
    """A tool call as rendered in the chat (``id``) and known to the agent (``tool_call_id``)."""

    id: str
    tool_call_id: str
    title: str
    status: str | None = None
    kind: str | None = None
    content: list[str] = field(default_factory=list)
    persisted: bool = False

    @property
    def status_class(self) -> str:
        return classify_tool_status(self.status).value

    def to_record(self) -> dict[str, Any]:
        return {
            "toolCallId": self.tool_call_id,
            "title": self.title,
            "status": self.status,
            "kind": self.kind,
            "content": list(self.content),
        }


@dataclass
class PromptState:
    """Per-turn state, one per submitted user message."""

    agent_message_id: str
    system_message_id: str
    request_id: str | None = None
    agent_content: str = ""
    thought_content: str = ""
    completed: bool = False
    cancelled: bool = False
    cancel_notice_shown: bool = False
    notice_cleared: bool = False
    tool_messages: dict[str, ToolMessageState] = field(default_factory=dict)
    text_segments: list[TextSegment] = field(default_factory=list)
    sentence_buffer: SentenceBuffer = field(default_factory=SentenceBuffer)
    current_segment_id: str | None = None

    @property
    def current_segment(self) -> TextSegment | None:
        if self.current_segment_id is None:
            return None
        for segment in self.text_segments:
            if segment.id == self.current_segment_id:
                return segment
        return None


# =============================================================================
# Content Helpers
# =============================================================================


def read_text_block(block: dict[str, Any]) -> str | None:
    if block.get("type") == "text" and isinstance(block.get("text"), str):
        return block["text"]
    if isinstance(block.get("message"), str):
        return block["message"]
    if isinstance(block.get("content"), str):
        return block["content"]
    return None


def collect_text_content(value: Any) -> list[str]:
    """Flatten ACP content (strings, text blocks, ``{"type": "content"}`` wrappers, lists)."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        collected: list[str] = []
        for entry in value:
            collected.extend(collect_text_content(entry))
        return collected
    if isinstance(value, dict):
        if value.get("type") == "content" and "content" in value:
            return collect_text_content(value["content"])
        text = read_text_block(value)
        return [text] if text else []
    return []


def extract_content(result: dict[str, Any]) -> str:
    """Fallback text for a prompt result that streamed no chunks."""
    content = result.get("content")
    if isinstance(content, list):
        collected: list[str] = []
        for block in content:
            if isinstance(block, str):
                collected.append(block)
            elif isinstance(block, dict):
                text = read_text_block(block)
                if text:
                    collected.append(text)
        if collected:
            return "\n\n".join(collected)

    message = result.get("message")
    if isinstance(message, str) and message.strip():
        return message.strip()
    return ""


def _read_agent_message_id(metadata: Any) -> str | None:
    if not isinstance(metadata, dict):
        return None
    agent_message_id = metadata.get("agentMessageId")
    if isinstance(agent_message_id, str) and agent_message_id:
        return agent_message_id
    return None


def _read_nullable_string(value: Any) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def _default_create_id() -> str:
    return uuid.uuid4().hex


# =============================================================================
# Chat Session
# =============================================================================


class _ChatProtocolListener(ProtocolSessionListener):
    """Routes protocol session events into the owning chat session."""

    def __init__(self, chat: ChatSession) -> None:
        self._chat = chat

    def on_request_dispatched(
        self, request_type: RequestType, payload: dict[str, Any], request_id: str
    ) -> None:
        if request_type is RequestType.INITIALIZE:
            self._chat._push(self._chat.renderer.status("Initializing…", "info"))

    def on_initialize_error(self, error: Any, message: dict[str, Any]) -> None:
        self._chat._handle_handshake_error("Initialize failed", error, message)

    def on_session_error(self, error: Any, message: dict[str, Any]) -> None:
        self._chat._handle_handshake_error("Session error", error, message)

    def on_session_ready(self, session_id: str) -> None:
        self._chat._handle_session_ready(session_id)

    def on_authentication_required(self, method: AuthMethod) -> None:
        self._chat._handle_authentication_required(method)

    def on_prompt_result(self, request_id: str, result: dict[str, Any], metadata: Any) -> None:
        self._chat._handle_prompt_result(request_id, result, metadata)

    def on_prompt_error(
        self, request_id: str, error: Any, metadata: Any, message: dict[str, Any]
    ) -> None:
        self._chat._handle_prompt_error(request_id, error, metadata)

    def on_session_update(
        self, session_id: str | None, update: dict[str, Any], message: dict[str, Any]
    ) -> None:
        self._chat._handle_session_update(update)

    def on_permission_request(self, request: PermissionRequest) -> None:
        self._chat._handle_permission_request(request)


class ChatSession:
    """Chat-level state machine on top of a ``ProtocolSession``.

    Args:
        send_upstream: Writes one framed JSON-RPC message to the agent (may raise)
        push_snippet: Delivers one rendered snippet to the UI
        initial_permission_mode: ACP permission mode for ``session/new``
        create_id: Id generator shared with the protocol session
        session_cwd: Working directory for the agent session
        resume_session_id: Previous ACP session to resume
        agent_type: Agent flavour, used for login hints
        renderer: Snippet renderer (JSON by default)
    """

    def __init__(
        self,
        send_upstream: SendUpstream,
        push_snippet: PushSnippet,
        *,
        initial_permission_mode: str = "default",
        create_id: CreateId | None = None,
        session_cwd: str | None = None,
        resume_session_id: str | None = None,
        agent_type: str = "claude",
        renderer: SnippetRenderer | None = None,
        on_new_message: Callable[[str, str], Any] | None = None,
        on_tool_call: Callable[[dict[str, Any]], Any] | None = None,
        on_session_ready: Callable[[str], Any] | None = None,
        on_permission_request: Callable[[PermissionRequest], Any] | None = None,
        on_sentence_ready: Callable[[str], Any] | None = None,
        on_working_state_change: Callable[[bool, dict[str, Any] | None], Any] | None = None,
    ) -> None:
        self._push_snippet = push_snippet
        self._create_id = create_id or _default_create_id
        self.initial_permission_mode = initial_permission_mode
        self.agent_type = agent_type
        self.renderer: SnippetRenderer = renderer or JsonSnippetRenderer()

        self.on_new_message = on_new_message
        self.on_tool_call = on_tool_call
        self.on_session_ready = on_session_ready
        self.on_permission_request = on_permission_request
        self.on_sentence_ready = on_sentence_ready
        self.on_working_state_change = on_working_state_change

        self.protocol = ProtocolSession(
            send_upstream,
            initial_permission_mode=initial_permission_mode,
            create_id=self._create_id,
            session_cwd=session_cwd,
            resume_session_id=resume_session_id,
            listener=_ChatProtocolListener(self),
        )

        self.prompt_states: list[PromptState] = []
        self.permissions = PendingPermissions()
        self.current_tool_call_title: str | None = None

        self._started = False
        self._cancel_in_flight = False
        self._orphan_message_id: str | None = None
        self._orphan_content = ""
        self._background_tasks: set[asyncio.Future[Any]] = set()

        self._update_handlers: dict[str, Callable[[PromptState | None, dict[str, Any]], None]] = {
            "agent_message_chunk": self._handle_message_chunk,
            "agent_thought_chunk": self._handle_thought_chunk,
            "tool_call": self._handle_tool_call,
            "tool_call_update": self._handle_tool_call,
        }

    # =========================================================================
    # Public API
    # =========================================================================

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        self.protocol.start()

    def update_push_snippet(self, push_snippet: PushSnippet) -> None:
        """Point snippets at a new UI connection (browser reconnect)."""
        self._push_snippet = push_snippet

    def handle_user_message(self, text: str) -> None:
        """Submit a user message as a new turn."""
        trimmed = text.strip()
        if not trimmed:
            return

        self._cancel_in_flight = False
        for earlier in self.prompt_states:
            earlier.completed = True
        self._clear_orphan()

        self._push(self.renderer.user_message(trimmed, f"user-{self._create_id()}"))

        state = PromptState(
            system_message_id=f"system-{self._create_id()}",
            agent_message_id=f"agent-{self._create_id()}",
        )
        self.prompt_states.append(state)

        self._push(self.renderer.system_notice(THINKING_NOTICE, state.system_message_id))
        self._fire("on_working_state_change", True, None)

        state.request_id = self.protocol.send_prompt(
            trimmed, {"agentMessageId": state.agent_message_id}
        )
        self._fire("on_new_message", "user", trimmed)
        self.start()

    def handle_agent_message(self, message: Any) -> bool:
        return self.protocol.handle_agent_message(message)

    def handle_agent_line(self, line: str | bytes) -> bool:
        """Parse one newline-delimited frame from the agent and handle it."""
        if isinstance(line, bytes):
            line = line.decode("utf-8", errors="replace")
        line = line.strip()
        if not line:
            return False
        try:
            message = json.loads(line)
        except json.JSONDecodeError:
            logger.debug(f"Skipping non-JSON agent line: {line[:80]}")
            return False
        return self.handle_agent_message(message)

    def set_mode(self, mode_id: str) -> bool:
        """Change the permission mode now and for any later session restart."""
        self.initial_permission_mode = mode_id
        self.protocol.initial_permission_mode = mode_id
        return self.protocol.set_mode(mode_id)

    def cancel_prompt(self) -> bool:
        """Cancel the active turn. Returns False if ``session/cancel`` could not be sent."""
        if not self.protocol.cancel_current_prompt():
            return False

        state = self._active_state()
        self._cancel_in_flight = True
        if state is not None:
            self._cancel_active_tool_calls(state)
            self._finalize_cancelled(state)
        self.cancel_pending_permissions()
        return True

    def respond_to_permission_request(
        self, request_id: RequestId, outcome: PermissionOutcome
    ) -> bool:
        return self.protocol.respond_to_permission_request(request_id, outcome)

    def resolve_permission(self, request_id: RequestId, option_id: str) -> bool:
        """Answer a pending permission request with the option the user picked."""
        pending = self.permissions.get(request_id)
        if pending is None:
            logger.warning(f"No pending permission request {request_id}")
            return False
        option = pending.request.find_option(option_id)
        if option is None:
            logger.warning(f"Unknown option {option_id!r} for permission request {request_id}")
            return False

        self.permissions.resolve(request_id)
        sent = self.respond_to_permission_request(
            request_id, PermissionOutcome.selected(option.option_id)
        )
        self._push(self.renderer.permission_resolved(pending.element_id, option.name))
        return sent

    def cancel_pending_permissions(self) -> int:
        """Answer every pending permission request with ``cancelled``."""
        drained = self.permissions.drain()
        for pending in drained:
            self.respond_to_permission_request(pending.request_id, PermissionOutcome.cancelled())
            self._push(self.renderer.permission_resolved(pending.element_id, "Cancelled"))
        return len(drained)

    def handle_transport_closed(self) -> None:
        """The UI connection went away; nobody is left to answer prompts."""
        cancelled = self.cancel_pending_permissions()
        if cancelled:
            logger.info(f"Cancelled {cancelled} pending permission request(s) on disconnect")

    # =========================================================================
    # Handshake
    # =========================================================================

    def _handle_handshake_error(self, label: str, error: Any, message: dict[str, Any]) -> None:
        self._push(self.renderer.status(label, "error"))
        details = stringify(error if error is not None else message)
        self._push(self.renderer.error(details, self._error_id()))

    def _handle_session_ready(self, session_id: str) -> None:
        self._push(self.renderer.status("Connected", "success"))
        self.protocol.set_mode(self.initial_permission_mode)
        self._fire("on_session_ready", session_id)

    def _handle_authentication_required(self, method: AuthMethod) -> None:
        self._push(self.renderer.status("Login required", "warning"))
        command = login_command(self.agent_type)
        hint = f"{method.name}: run `{command}` in your terminal, then reconnect."
        self._push(self.renderer.error(hint, self._error_id()))
        state = self._active_state()
        if state is not None:
            state.completed = True
            self._hide_system_notice(state)
            self._set_idle()

    # =========================================================================
    # Prompt Results
    # =========================================================================

    def _handle_prompt_result(self, request_id: str, result: dict[str, Any], metadata: Any) -> None:
        agent_message_id = _read_agent_message_id(metadata)
        if agent_message_id is None:
            self._push(self.renderer.error("Agent response missing metadata.", self._error_id()))
            return

        state = self._find_state(agent_message_id)
        self._cancel_in_flight = False

        if result.get("stopReason") == "cancelled":
            if state is not None and not state.cancel_notice_shown:
                self._finalize_cancelled(state)
            return
        if state is not None and state.cancelled:
            return

        fallback = extract_content(result)
        rendered = state.agent_content if state and state.agent_content.strip() else fallback

        if state is not None:
            self._flush_sentences(state)
            segment = state.current_segment
            if segment is not None:
                self._push(self.renderer.agent_update(segment.content, segment.id))
            elif not state.text_segments and rendered.strip():
                segment = TextSegment(
                    id=f"segment-{self._create_id()}", content=rendered, is_closed=True
                )
                state.text_segments.append(segment)
                self._push(self.renderer.agent_message(rendered, segment.id))
            state.agent_content = rendered
            state.completed = True
            self._hide_system_notice(state)

        if self._active_state() is None:
            self._set_idle()

        if rendered.strip():
            self._fire("on_new_message", "assistant", rendered)
        else:
            logger.debug(f"Not persisting empty assistant turn {request_id}")

    def _handle_prompt_error(self, request_id: str, error: Any, metadata: Any) -> None:
        self._cancel_in_flight = False
        agent_message_id = _read_agent_message_id(metadata)
        state = self._find_state(agent_message_id) if agent_message_id else None

        if state is not None and state.cancelled:
            if not state.cancel_notice_shown:
                self._finalize_cancelled(state)
            return

        logger.warning(f"Prompt {request_id} failed: {stringify(error)}")
        if state is not None:
            state.completed = True
        if self._active_state() is None:
            self._set_idle()
        details = format_agent_error(error, self.agent_type)

        if agent_message_id is None:
            self._push(self.renderer.agent_failure(details, self._error_id()))
            return

        if state is not None:
            self._flush_sentences(state)
        self._push(self.renderer.agent_failure(details, agent_message_id))
        if state is not None:
            self._hide_system_notice(state)

    # =========================================================================
    # Session Updates
    # =========================================================================

    def _handle_session_update(self, update: dict[str, Any]) -> None:
        update_type = update.get("sessionUpdate")
        if not isinstance(update_type, str) or not update_type:
            return

        state = self._active_state()
        if state is None and self._cancel_in_flight:
            return
        if state is not None and state.cancelled:
            return

        handler = self._update_handlers.get(update_type)
        if handler is None:
            logger.debug(f"Ignoring session update: {update_type}")
            return
        handler(state, update)

    def _handle_message_chunk(self, state: PromptState | None, update: dict[str, Any]) -> None:
        addition = "".join(collect_text_content(update.get("content")))
        if not addition:
            return

        if state is None:
            self._append_orphan(addition)
            return
        self._clear_orphan()

        segment = state.current_segment
        if segment is None:
            segment = TextSegment(id=f"segment-{self._create_id()}")
            state.text_segments.append(segment)
            state.current_segment_id = segment.id
            self._push(self.renderer.agent_message(SEGMENT_PLACEHOLDER, segment.id))

        segment.content += addition
        self._push(self.renderer.agent_update(segment.content, segment.id))
        state.agent_content += addition

        for sentence in state.sentence_buffer.add(addition):
            self._fire("on_sentence_ready", sentence)

        self._hide_system_notice(state)

    def _handle_thought_chunk(self, state: PromptState | None, update: dict[str, Any]) -> None:
        if state is None:
            return
        addition = "".join(collect_text_content(update.get("content")))
        if not addition:
            return

        state.thought_content += addition
        thought = state.thought_content.strip()
        self._push(self.renderer.thought_update(thought, state.system_message_id))
        state.notice_cleared = True

    def _handle_tool_call(self, state: PromptState | None, update: dict[str, Any]) -> None:
        if state is None:
            return

        tool_call_id = update.get("toolCallId")
        if not isinstance(tool_call_id, str) or not tool_call_id:
            missing = "Tool call update missing toolCallId."
            self._push(self.renderer.error(missing, self._error_id()))
            return

        title = _read_nullable_string(update.get("title"))
        status = update.get("status", _MISSING)
        kind = update.get("kind", _MISSING)
        content = update.get("content", _MISSING)

        tool = state.tool_messages.get(tool_call_id)
        if tool is None:
            self._close_current_segment(state)
            self._flush_sentences(state)

            tool = ToolMessageState(
                id=f"tool-{self._create_id()}",
                tool_call_id=tool_call_id,
                title=title or DEFAULT_TOOL_TITLE,
                status=None if status is _MISSING else _read_nullable_string(status),
                kind=None if kind is _MISSING else _read_nullable_string(kind),
                content=[] if content is _MISSING else collect_text_content(content),
            )
            state.tool_messages[tool_call_id] = tool
            self.current_tool_call_title = tool.title
            self._fire_tool_working(tool)
            self._push(self.renderer.tool_call(tool))
            self._persist_tool_if_terminal(tool)
            return

        if title:
            tool.title = title
            self.current_tool_call_title = title
        if status is not _MISSING:
            tool.status = _read_nullable_string(status)
        if kind is not _MISSING:
            tool.kind = _read_nullable_string(kind)
        if content is not _MISSING:
            tool.content = collect_text_content(content)

        self._fire_tool_working(tool)
        self._push(self.renderer.tool_call_update(tool))
        self._persist_tool_if_terminal(tool)

    def _handle_permission_request(self, request: PermissionRequest) -> None:
        pending = self.permissions.add(request)
        self._push(self.renderer.permission_prompt(pending.element_id, request))
        self._fire("on_permission_request", request)

    # =========================================================================
    # Cancellation
    # =========================================================================

    def _cancel_active_tool_calls(self, state: PromptState) -> None:
        latest: ToolMessageState | None = None
        for tool in state.tool_messages.values():
            if is_terminal_tool_status(tool.status):
                continue
            tool.status = ToolStatus.CANCELLED.value
            self._push(self.renderer.tool_call_update(tool))
            self._persist_tool_if_terminal(tool)
            latest = tool

        if latest is not None:
            self.current_tool_call_title = latest.title
            self._fire_tool_working(latest)

    def _finalize_cancelled(self, state: PromptState) -> None:
        if state.cancel_notice_shown:
            return
        state.cancelled = True
        state.cancel_notice_shown = True
        state.completed = True
        self._flush_sentences(state)
        self._push(self.renderer.hidden(state.system_message_id))
        state.notice_cleared = True
        self._set_idle()
        self._push(self.renderer.agent_cancelled())

    # =========================================================================
    # Helpers
    # =========================================================================

    def _active_state(self) -> PromptState | None:
        for state in self.prompt_states:
            if not state.completed:
                return state
        return None

    def _find_state(self, agent_message_id: str) -> PromptState | None:
        for state in self.prompt_states:
            if state.agent_message_id == agent_message_id:
                return state
        return None

    def _close_current_segment(self, state: PromptState) -> None:
        segment = state.current_segment
        if segment is not None:
            segment.is_closed = True
        state.current_segment_id = None

    def _hide_system_notice(self, state: PromptState) -> None:
        if state.notice_cleared or state.thought_content.strip():
            return
        self._push(self.renderer.hidden(state.system_message_id))
        state.notice_cleared = True

    def _flush_sentences(self, state: PromptState) -> None:
        remaining = state.sentence_buffer.flush()
        if remaining:
            self._fire("on_sentence_ready", remaining)

    def _persist_tool_if_terminal(self, tool: ToolMessageState) -> None:
        if tool.persisted or not is_terminal_tool_status(tool.status):
            return
        tool.persisted = True
        self._fire("on_tool_call", tool.to_record())

    def _append_orphan(self, addition: str) -> None:
        if self._orphan_message_id is None:
            self._orphan_message_id = f"agent-{self._create_id()}"
            self._orphan_content = addition
            self._push(self.renderer.agent_message(addition, self._orphan_message_id))
            return
        self._orphan_content += addition
        self._push(self.renderer.agent_update(self._orphan_content, self._orphan_message_id))

    def _clear_orphan(self) -> None:
        self._orphan_message_id = None
        self._orphan_content = ""

    def _fire_tool_working(self, tool: ToolMessageState) -> None:
        self._fire("on_working_state_change", True, {"title": tool.title, "status": tool.status})

    def _set_idle(self) -> None:
        self.current_tool_call_title = None
        self._fire("on_working_state_change", False, None)

    def _error_id(self) -> str:
        return f"error-{self._create_id()}"

    def _push(self, snippet: str) -> None:
        self._invoke("push_snippet", self._push_snippet, snippet)

    def _fire(self, name: str, *args: Any) -> None:
        callback = getattr(self, name)
        if callback is not None:
            self._invoke(name, callback, *args)

    def _invoke(self, name: str, callback: Callable[..., Any], *args: Any) -> None:
        try:
            result = callback(*args)
        except Exception as e:
            logger.exception(f"{name} callback failed: {e}")
            return
        if inspect.isawaitable(result):
            self._schedule(name, result)

    def _schedule(self, name: str, awaitable: Any) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # No running loop: nothing can await the callback
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            logger.warning(f"{name} returned an awaitable outside an event loop; dropped")
            return
        task = asyncio.ensure_future(awaitable)
        self._background_tasks.add(task)
        task.add_done_callback(lambda done: self._on_background_done(name, done))

    def _on_background_done(self, name: str, task: asyncio.Future[Any]) -> None:
        self._background_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"{name} callback failed: {error}")
