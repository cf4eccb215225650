"""Transcript entry models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
import uuid


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _gen_id() -> str:
    return str(uuid.uuid4())[:8]


class EntryRole(Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class EntryKind(Enum):
    TEXT = "text"
    THINKING = "thinking"
    TOOL_USE = "tool_use"
    ERROR = "error"
    SYSTEM = "system"


class ToolStatus(Enum):
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class TranscriptEntry:
    role: EntryRole
    kind: EntryKind
    content: str = ""
    # True while fragments may still be appended.
    streaming: bool = False
    tool_name: str | None = None
    tool_input: Any = None
    tool_output: str | None = None
    tool_status: ToolStatus | None = None
    # API-assigned id of the tool invocation, used to pair results.
    tool_use_id: str | None = None
    id: str = field(default_factory=_gen_id)
    timestamp: datetime = field(default_factory=_utcnow)

    @property
    def is_tool(self) -> bool:
        return self.kind is EntryKind.TOOL_USE

    @property
    def is_running(self) -> bool:
        return self.tool_status is ToolStatus.RUNNING
