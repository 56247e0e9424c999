"""ACP wire types.

JSON-RPC 2.0 envelopes plus the handful of ACP payloads this runtime reads
or writes. Inbound traffic is classified exactly once, in
``classify_message``; everything past that point works with the tagged
variants instead of probing dict keys.

Id convention (load-bearing): requests *we* send carry string ids, requests
the agent sends carry numeric ids. A bare ``id`` therefore tells us whether a
message is a reply to us or a request from the peer.

Note: Field names use camelCase to match the ACP wire format.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

PROTOCOL_VERSION = 1
JSONRPC_VERSION = "2.0"

# Request id prefixes for requests originated locally
INITIALIZE_PREFIX = "init-"
AUTHENTICATE_PREFIX = "auth-"
SESSION_PREFIX = "session-"
PROMPT_PREFIX = "prompt-"
SET_MODE_PREFIX = "setmode-"

# Auth method ids with special handshake handling
GEMINI_API_KEY_METHOD = "gemini-api-key"
OPENCODE_LOGIN_METHOD = "opencode-login"


class AcpModel(BaseModel):
    """Base model for ACP payloads."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")


# =============================================================================
# JSON-RPC 2.0 Envelopes
# =============================================================================


class JsonRpcError(BaseModel):
    """JSON-RPC 2.0 error object."""

    model_config = ConfigDict(extra="allow")

    code: int | None = None
    message: str | None = None
    data: Any | None = None


class JsonRpcRequest(BaseModel):
    """Request envelope. Outbound requests use string ids, peer requests numeric ids."""

    jsonrpc: Literal["2.0"] = "2.0"
    id: str | int | float
    method: str
    params: dict[str, Any] | None = None


class JsonRpcNotification(BaseModel):
    """Notification envelope (no id, no reply expected)."""

    jsonrpc: Literal["2.0"] = "2.0"
    method: str
    params: dict[str, Any] | None = None


class JsonRpcResponse(BaseModel):
    """Response envelope."""

    jsonrpc: Literal["2.0"] = "2.0"
    id: str | int | float
    result: Any | None = None
    error: Any | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None


class JsonRpcErrorCode:
    """JSON-RPC 2.0 error codes seen on the ACP wire."""

    AUTH_REQUIRED = -32000


class MessageKind(str, Enum):
    """Classification of an inbound message."""

    PEER_REQUEST = "peer_request"
    RESPONSE = "response"
    NOTIFICATION = "notification"
    INVALID = "invalid"


JsonRpcMessage = JsonRpcRequest | JsonRpcResponse | JsonRpcNotification


def _is_numeric_id(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return False
    return math.isfinite(value)


def _non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and len(value) > 0


def classify_message(payload: Any) -> tuple[MessageKind, JsonRpcMessage | None]:
    """Classify an inbound payload into one of the JSON-RPC variants.

    Rules:
    - numeric id (0 included) and a method: peer-initiated request
    - non-empty string id: response to one of our requests
    - no usable id but a method: notification
    - anything else: invalid

    Returns:
        The kind plus the validated envelope (None for INVALID).
    """
    if not isinstance(payload, dict):
        return MessageKind.INVALID, None

    message_id = payload.get("id")
    method = payload.get("method")
    params = payload.get("params")
    if not isinstance(params, dict):
        params = None

    if _is_numeric_id(message_id) and _non_empty_str(method):
        return MessageKind.PEER_REQUEST, JsonRpcRequest(id=message_id, method=method, params=params)

    if _non_empty_str(message_id):
        return MessageKind.RESPONSE, JsonRpcResponse(
            id=message_id,
            result=payload.get("result"),
            error=payload.get("error"),
        )

    if _non_empty_str(method):
        return MessageKind.NOTIFICATION, JsonRpcNotification(method=method, params=params)

    return MessageKind.INVALID, None


# =============================================================================
# Handshake Payloads
# =============================================================================


class AuthMethod(AcpModel):
    """Authentication method advertised in the initialize result."""

    id: str
    name: str
    description: str = ""


def read_auth_methods(result: Any) -> list[AuthMethod]:
    """Read ``authMethods`` from an initialize result, skipping entries without an id."""
    if not isinstance(result, dict):
        return []
    raw_methods = result.get("authMethods")
    if not isinstance(raw_methods, list):
        return []

    methods: list[AuthMethod] = []
    for entry in raw_methods:
        if not isinstance(entry, dict) or not _non_empty_str(entry.get("id")):
            continue
        name = entry.get("name")
        description = entry.get("description")
        methods.append(
            AuthMethod(
                id=entry["id"],
                name=name if _non_empty_str(name) else entry["id"],
                description=description if isinstance(description, str) else "",
            )
        )
    return methods


# =============================================================================
# Permission Payloads
# =============================================================================

PermissionOptionKind = Literal["allow_once", "allow_always", "reject_once"]
PERMISSION_OPTION_KINDS: frozenset[str] = frozenset({"allow_once", "allow_always", "reject_once"})


class PermissionOption(AcpModel):
    """One choice offered by a ``session/request_permission`` request."""

    kind: PermissionOptionKind
    name: str
    option_id: str = Field(alias="optionId")


class PermissionToolCall(AcpModel):
    """Tool call a permission request refers to."""

    tool_call_id: str = Field(alias="toolCallId")
    title: str
    raw_input: Any | None = Field(default=None, alias="rawInput")


class PermissionRequest(AcpModel):
    """A validated peer-initiated permission request."""

    request_id: int | float = Field(alias="requestId")
    session_id: str = Field(alias="sessionId")
    options: list[PermissionOption]
    tool_call: PermissionToolCall = Field(alias="toolCall")

    def find_option(self, option_id: str) -> PermissionOption | None:
        for option in self.options:
            if option.option_id == option_id:
                return option
        return None


class PermissionOutcome(AcpModel):
    """Outcome sent back for a permission request."""

    outcome: Literal["selected", "cancelled"]
    option_id: str | None = Field(default=None, alias="optionId")

    @classmethod
    def selected(cls, option_id: str) -> PermissionOutcome:
        return cls(outcome="selected", option_id=option_id)

    @classmethod
    def cancelled(cls) -> PermissionOutcome:
        return cls(outcome="cancelled")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def _read_option(entry: Any) -> PermissionOption | None:
    if not isinstance(entry, dict):
        return None
    kind = entry.get("kind")
    name = entry.get("name")
    option_id = entry.get("optionId")
    if kind not in PERMISSION_OPTION_KINDS or not _non_empty_str(name):
        return None
    if not _non_empty_str(option_id):
        return None
    return PermissionOption(kind=kind, name=name, option_id=option_id)


def parse_permission_request(
    request_id: int | float, params: dict[str, Any] | None
) -> PermissionRequest | None:
    """Validate ``session/request_permission`` params.

    Invalid option entries are dropped one by one. The request as a whole is
    rejected (None) when no option survives, or when ``sessionId`` or
    ``toolCall`` is missing or malformed.
    """
    if not params:
        return None

    session_id = params.get("sessionId")
    if not _non_empty_str(session_id):
        return None

    raw_options = params.get("options")
    if not isinstance(raw_options, list):
        return None
    options = [option for option in map(_read_option, raw_options) if option is not None]
    if not options:
        return None

    tool_call = params.get("toolCall")
    if not isinstance(tool_call, dict):
        return None
    tool_call_id = tool_call.get("toolCallId")
    title = tool_call.get("title")
    if not _non_empty_str(tool_call_id) or not _non_empty_str(title):
        return None

    return PermissionRequest(
        request_id=request_id,
        session_id=session_id,
        options=options,
        tool_call=PermissionToolCall(
            tool_call_id=tool_call_id,
            title=title,
            raw_input=tool_call.get("rawInput"),
        ),
    )
