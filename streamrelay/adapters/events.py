"""WebSocket wire messages exchanged between the relay and its clients.

Each JSON message is parsed into a typed dataclass so both the server
and the terminal client handle them safely. Field names are snake_case
in Python and camelCase on the wire (see ``_WIRE_KEYS``).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def now_iso() -> str:
    """Current UTC time as ISO-8601 with millisecond precision."""
    return (
        datetime.now(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


@dataclass
class WireMessage:
    """Base message; ``type`` selects the concrete class."""
    type: str = ""
    timestamp: str = field(default_factory=now_iso)


# -- Server -> client --


@dataclass
class ConnectionMessage(WireMessage):
    type: str = "connection"
    status: str = "connected"
    client_id: str = ""
    message: str = "Connected to streamrelay"


@dataclass
class ChatReceived(WireMessage):
    type: str = "chat_received"
    message_id: str | None = None


@dataclass
class ClaudeResponse(WireMessage):
    """One structured record from the tool, verbatim in ``data``."""
    type: str = "claude-response"
    message_id: str = ""
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class ClaudeOutput(WireMessage):
    """One non-JSON stdout line."""
    type: str = "claude-output"
    message_id: str = ""
    content: str = ""


@dataclass
class ClaudeError(WireMessage):
    """One non-debug stderr line."""
    type: str = "claude-error"
    message_id: str = ""
    error: str = ""


@dataclass
class ClaudeComplete(WireMessage):
    type: str = "claude-complete"
    message_id: str = ""
    exit_code: int | None = None


@dataclass
class InterruptConfirmed(WireMessage):
    type: str = "interrupt-confirmed"
    message: str = "Claude process interrupted"


@dataclass
class ErrorMessage(WireMessage):
    type: str = "error"
    message: str = ""


@dataclass
class CommandResponse(WireMessage):
    type: str = "command_response"
    command: str = ""
    status: str | None = "success"
    data: dict[str, Any] | None = None


# -- Client -> server --


@dataclass
class ChatRequest(WireMessage):
    type: str = "chat"
    message_id: str | None = None
    content: str = ""
    # Each image: {"data": <base64>, "mediaType": "image/png"}
    images: list[dict[str, Any]] = field(default_factory=list)
    session_id: str | None = None


@dataclass
class InterruptRequest(WireMessage):
    type: str = "interrupt"


@dataclass
class CommandRequest(WireMessage):
    type: str = "command"
    command: str = ""
    args: Any = None


_MESSAGE_MAP: dict[str, type[WireMessage]] = {
    "connection": ConnectionMessage,
    "chat_received": ChatReceived,
    "claude-response": ClaudeResponse,
    "claude-output": ClaudeOutput,
    "claude-error": ClaudeError,
    "claude-complete": ClaudeComplete,
    "interrupt-confirmed": InterruptConfirmed,
    "error": ErrorMessage,
    "command_response": CommandResponse,
    "chat": ChatRequest,
    "interrupt": InterruptRequest,
    "command": CommandRequest,
}

INBOUND_TYPES = frozenset({"chat", "interrupt", "command"})

# python field -> wire key
_WIRE_KEYS: dict[str, str] = {
    "client_id": "clientId",
    "message_id": "messageId",
    "exit_code": "exitCode",
    "session_id": "sessionId",
}
_FIELD_NAMES: dict[str, str] = {v: k for k, v in _WIRE_KEYS.items()}


def message_to_dict(message: WireMessage) -> dict[str, Any]:
    """Convert a typed message to a plain dict for JSON serialization."""
    d: dict[str, Any] = {}
    for f in message.__dataclass_fields__:
        val = getattr(message, f)
        # exitCode is meaningful even when null (killed without a code)
        if val is None and f != "exit_code":
            continue
        d[_WIRE_KEYS.get(f, f)] = val
    return d


def dict_to_message(data: dict[str, Any]) -> WireMessage:
    """Convert a decoded JSON dict to its typed message dataclass."""
    msg_type = data.get("type", "")
    cls = _MESSAGE_MAP.get(msg_type, WireMessage)
    valid_fields = set(cls.__dataclass_fields__)
    filtered: dict[str, Any] = {}
    for key, value in data.items():
        name = _FIELD_NAMES.get(key, key)
        if name in valid_fields:
            filtered[name] = value
    filtered["type"] = msg_type if isinstance(msg_type, str) else str(msg_type)
    return cls(**filtered)
