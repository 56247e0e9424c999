"""Agent Client Protocol (ACP) client side.

Drives a coding agent (Claude Code, Gemini CLI, Codex, OpenCode) as a
JSON-RPC 2.0 peer: handshake, prompts, streamed session updates,
permission requests and cancellation.

Protocol: newline-delimited JSON-RPC 2.0 over the agent's stdio.
See: https://agentclientprotocol.com
"""

from .chat_session import ChatSession, PromptState, ToolMessageState, is_terminal_tool_status
from .demo import DemoHandshake
from .errors import format_agent_error, is_auth_error, login_command
from .permissions import PendingPermission, PendingPermissions
from .protocol_session import (
    ProtocolSession,
    ProtocolSessionListener,
    RequestType,
    SessionProtocolError,
    frame_payload,
)
from .renderer import JsonSnippetRenderer, Snippet, SnippetRenderer, SnippetType
from .sentences import SentenceBuffer, SentenceResult, extract_sentences
from .types import (
    PROTOCOL_VERSION,
    AuthMethod,
    MessageKind,
    PermissionOption,
    PermissionOutcome,
    PermissionRequest,
    classify_message,
)

__all__ = [
    # Sessions
    "ChatSession",
    "DemoHandshake",
    "ProtocolSession",
    "ProtocolSessionListener",
    "PromptState",
    "RequestType",
    "SessionProtocolError",
    "ToolMessageState",
    "frame_payload",
    "is_terminal_tool_status",
    # Messages
    "PROTOCOL_VERSION",
    "AuthMethod",
    "MessageKind",
    "PermissionOption",
    "PermissionOutcome",
    "PermissionRequest",
    "classify_message",
    # Permissions
    "PendingPermission",
    "PendingPermissions",
    # Errors
    "format_agent_error",
    "is_auth_error",
    "login_command",
    # Rendering
    "JsonSnippetRenderer",
    "Snippet",
    "SnippetRenderer",
    "SnippetType",
    # Sentences
    "SentenceBuffer",
    "SentenceResult",
    "extract_sentences",
]
