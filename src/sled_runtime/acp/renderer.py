"""Snippet rendering for chat sessions.

A snippet is an opaque string handed to the UI. Snippets that carry an ``id``
replace whatever the UI previously showed under that id, so re-rendering a
whole text segment on every chunk is safe.

The default renderer emits one compact JSON object per snippet; the browser
client applies them by ``type`` and ``id``.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .chat_session import ToolMessageState
    from .types import PermissionRequest

PushSnippet = Callable[[str], Any]


class SnippetType(str, Enum):
    """Snippet kinds understood by the browser client."""

    STATUS = "status"
    USER_MESSAGE = "user_message"
    SYSTEM_NOTICE = "system_notice"
    AGENT_MESSAGE = "agent_message"
    AGENT_UPDATE = "agent_update"
    AGENT_FAILURE = "agent_failure"
    AGENT_CANCELLED = "agent_cancelled"
    THOUGHT_UPDATE = "thought_update"
    HIDDEN = "hidden"
    ERROR = "error"
    TOOL_CALL = "tool_call"
    TOOL_CALL_UPDATE = "tool_call_update"
    PERMISSION_PROMPT = "permission_prompt"
    PERMISSION_RESOLVED = "permission_resolved"
    SEND_BUTTON_STATE = "send_button_state"
    CLIENT_EVENT = "client_event"


@dataclass
class Snippet:
    """One UI update."""

    type: SnippetType
    id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        data: dict[str, Any] = {"type": self.type.value}
        if self.id is not None:
            data["id"] = self.id
        data.update(self.payload)
        return json.dumps(data, separators=(",", ":"))


def format_label(label: str) -> str:
    """``"in_progress"`` -> ``"In Progress"``."""
    words = label.replace("_", " ").replace("-", " ").split()
    return " ".join(word[:1].upper() + word[1:] for word in words)


@runtime_checkable
class SnippetRenderer(Protocol):
    """Turns chat events into snippet strings."""

    def status(self, label: str, tone: str = "info") -> str: ...

    def user_message(self, content: str, message_id: str) -> str: ...

    def system_notice(self, content: str, message_id: str) -> str: ...

    def agent_message(self, content: str, message_id: str) -> str: ...

    def agent_update(self, content: str, message_id: str) -> str: ...

    def agent_failure(self, content: str, message_id: str) -> str: ...

    def agent_cancelled(self, label: str = "Agent Cancelled") -> str: ...

    def thought_update(self, content: str, message_id: str) -> str: ...

    def hidden(self, message_id: str) -> str: ...

    def error(self, content: str, message_id: str) -> str: ...

    def tool_call(self, tool: ToolMessageState) -> str: ...

    def tool_call_update(self, tool: ToolMessageState) -> str: ...

    def permission_prompt(self, prompt_id: str, request: PermissionRequest) -> str: ...

    def permission_resolved(self, prompt_id: str, selected_option: str) -> str: ...

    def send_button_state(self, is_working: bool) -> str: ...

    def client_event(self, title: str, details: str | None = None) -> str: ...


class JsonSnippetRenderer:
    """Default renderer: one JSON object per snippet."""

    def status(self, label: str, tone: str = "info") -> str:
        return Snippet(SnippetType.STATUS, payload={"label": label, "tone": tone}).to_json()

    def user_message(self, content: str, message_id: str) -> str:
        return Snippet(SnippetType.USER_MESSAGE, message_id, {"content": content}).to_json()

    def system_notice(self, content: str, message_id: str) -> str:
        return Snippet(
            SnippetType.SYSTEM_NOTICE, message_id, {"content": content, "thinking": True}
        ).to_json()

    def agent_message(self, content: str, message_id: str) -> str:
        return Snippet(SnippetType.AGENT_MESSAGE, message_id, {"content": content}).to_json()

    def agent_update(self, content: str, message_id: str) -> str:
        return Snippet(SnippetType.AGENT_UPDATE, message_id, {"content": content}).to_json()

    def agent_failure(self, content: str, message_id: str) -> str:
        return Snippet(SnippetType.AGENT_FAILURE, message_id, {"content": content}).to_json()

    def agent_cancelled(self, label: str = "Agent Cancelled") -> str:
        return Snippet(SnippetType.AGENT_CANCELLED, payload={"label": label}).to_json()

    def thought_update(self, content: str, message_id: str) -> str:
        return Snippet(SnippetType.THOUGHT_UPDATE, message_id, {"content": content}).to_json()

    def hidden(self, message_id: str) -> str:
        return Snippet(SnippetType.HIDDEN, message_id).to_json()

    def error(self, content: str, message_id: str) -> str:
        return Snippet(SnippetType.ERROR, message_id, {"content": content}).to_json()

    def tool_call(self, tool: ToolMessageState) -> str:
        return Snippet(SnippetType.TOOL_CALL, tool.id, self._tool_payload(tool)).to_json()

    def tool_call_update(self, tool: ToolMessageState) -> str:
        return Snippet(SnippetType.TOOL_CALL_UPDATE, tool.id, self._tool_payload(tool)).to_json()

    def permission_prompt(self, prompt_id: str, request: PermissionRequest) -> str:
        return Snippet(
            SnippetType.PERMISSION_PROMPT,
            prompt_id,
            {
                "requestId": request.request_id,
                "title": request.tool_call.title,
                "options": [option.model_dump(by_alias=True) for option in request.options],
            },
        ).to_json()

    def permission_resolved(self, prompt_id: str, selected_option: str) -> str:
        return Snippet(
            SnippetType.PERMISSION_RESOLVED, prompt_id, {"selected": selected_option}
        ).to_json()

    def send_button_state(self, is_working: bool) -> str:
        return Snippet(
            SnippetType.SEND_BUTTON_STATE,
            payload={"state": "stop" if is_working else "send"},
        ).to_json()

    def client_event(self, title: str, details: str | None = None) -> str:
        payload: dict[str, Any] = {"title": title}
        if details is not None:
            payload["details"] = details
        return Snippet(SnippetType.CLIENT_EVENT, payload=payload).to_json()

    @staticmethod
    def _tool_payload(tool: ToolMessageState) -> dict[str, Any]:
        return {
            "title": tool.title,
            "status": tool.status,
            "statusLabel": format_label(tool.status or "pending"),
            "statusClass": tool.status_class,
            "kind": tool.kind,
            "content": list(tool.content),
        }
