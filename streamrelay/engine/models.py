"""Core data models for the relay engine.

Turn-level dataclasses and enums shared by the supervisor, the
process session and the relay. Single source of truth to avoid
circular imports.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum

from .config import GRACEFUL_TERMINATION_EXIT_CODE


class TurnStatus(str, Enum):
    """How a turn resolved."""
    SUCCESS = "success"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"
    FAILED = "failed"

    @property
    def is_success(self) -> bool:
        return self in (TurnStatus.SUCCESS, TurnStatus.CANCELLED)


def make_message_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass
class TurnContext:
    """Per-turn context passed to SessionSupervisor.start()."""
    cwd: str | None = None
    message_id: str = field(default_factory=make_message_id)
    attachment_paths: list[str] = field(default_factory=list)


@dataclass
class StderrLine:
    """One line the process wrote on stderr."""
    text: str

    @property
    def is_debug(self) -> bool:
        return "[DEBUG]" in self.text


@dataclass
class TurnResult:
    """Terminal item of a turn's record stream."""
    message_id: str
    status: TurnStatus
    exit_code: int | None = None
    error: Exception | None = None
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.status.is_success


def normalize_exit_code(returncode: int | None) -> int | None:
    """Map asyncio's negative signal return codes to the shell form 128+N."""
    if returncode is None:
        return None
    if returncode < 0:
        return 128 + (-returncode)
    return returncode


def classify_exit(
    exit_code: int | None,
    *,
    cancelled: bool = False,
    timed_out: bool = False,
) -> TurnStatus:
    """Resolve a turn from its normalized exit code and supervisor flags.

    Exit code 143 counts as success whether or not this supervisor sent
    the SIGTERM; an unrelated failure with the same code is
    indistinguishable here.
    """
    if timed_out:
        return TurnStatus.TIMEOUT
    if cancelled:
        return TurnStatus.CANCELLED
    if exit_code == 0 or exit_code == GRACEFUL_TERMINATION_EXIT_CODE:
        return TurnStatus.SUCCESS
    return TurnStatus.FAILED
