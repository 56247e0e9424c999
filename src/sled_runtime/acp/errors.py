"""Agent error classification.

Prompt errors are JSON-RPC error objects passed through verbatim. Auth
failures get a remediation message naming the login command for the agent;
everything else is shown as ``Agent error: <json>``.
"""

from __future__ import annotations

import json
from typing import Any

from .types import JsonRpcError, JsonRpcErrorCode

AUTH_REQUIRED_MESSAGE = "Authentication required"
INVALID_GRANT = "invalid_grant"

# Command a user runs in a terminal to log an agent in
LOGIN_COMMANDS: dict[str, str] = {
    "claude": "claude /login",
    "gemini": "gemini",
    "codex": "codex login",
    "opencode": "opencode auth login",
}


def stringify(value: Any) -> str:
    """Pretty JSON for display; falls back to ``str()``."""
    if isinstance(value, BaseException):
        return str(value)
    try:
        return json.dumps(value, indent=2, default=str)
    except (TypeError, ValueError):
        return str(value)


def _as_error(error: Any) -> JsonRpcError | None:
    if not isinstance(error, dict):
        return None
    try:
        return JsonRpcError.model_validate(error)
    except ValueError:
        return None


def is_auth_error(error: Any) -> bool:
    """True for the error shapes agents use when credentials are missing or expired."""
    parsed = _as_error(error)
    if parsed is None:
        return False
    if parsed.code == JsonRpcErrorCode.AUTH_REQUIRED and parsed.message == AUTH_REQUIRED_MESSAGE:
        return True
    data = parsed.data
    return isinstance(data, dict) and data.get("details") == INVALID_GRANT


def login_command(agent_type: str) -> str:
    return LOGIN_COMMANDS.get(agent_type, f"{agent_type} login")


def format_agent_error(error: Any, agent_type: str) -> str:
    """Human-readable text for a prompt error."""
    if is_auth_error(error):
        return (
            f"The {agent_type} agent is not logged in. "
            f"Run `{login_command(agent_type)}` in your terminal, then send your message again."
        )
    return f"Agent error: {stringify(error)}"
