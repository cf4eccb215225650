"""Abstract base for external tool providers.

A provider knows how to turn one chat turn into a command line for an
external AI CLI that streams newline-delimited JSON on stdout. The
supervisor owns the process; providers only build the invocation.
"""
from __future__ import annotations

import abc
from dataclasses import dataclass, field
import logging
import os
import shutil

logger = logging.getLogger(__name__)


@dataclass
class TurnCommand:
    """A fully-resolved invocation for one turn."""
    argv: list[str]
    stdin_payload: str
    cwd: str | None = None
    env: dict[str, str] | None = None


@dataclass
class TurnRequest:
    """Everything a provider needs to build a turn invocation."""
    prompt: str
    continuation_token: str | None = None
    cwd: str | None = None
    attachment_paths: list[str] = field(default_factory=list)
    extra_args: list[str] = field(default_factory=list)

    @property
    def attachment_dirs(self) -> list[str]:
        """Distinct parent directories of the attachments, in order."""
        dirs: list[str] = []
        for path in self.attachment_paths:
            parent = os.path.dirname(path)
            if parent and parent not in dirs:
                dirs.append(parent)
        return dirs


class Provider(abc.ABC):
    """Abstract provider interface.

    Implementations wrap a specific CLI:
    - ClaudeProvider: ``claude --print --output-format stream-json``
    """

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Short provider name (e.g. 'claude')."""

    @abc.abstractmethod
    def build_turn_cmd(self, request: TurnRequest) -> TurnCommand:
        """Build the command line and stdin payload for one turn."""

    @abc.abstractmethod
    def is_available(self) -> bool:
        """Check if this provider's CLI is installed."""

    @property
    def command(self) -> str:
        return getattr(self, "_command", self.name)

    def resolve_command(self, command: str, fallback: str | None = None) -> str:
        """Resolve a provider binary by preferring explicit command, then fallback.

        The command may point to a CLI that is not on PATH when using
        custom wrappers or tests. In that case, keep the raw value so
        callers can surface the configured command in error messages.
        """
        if command:
            if shutil.which(command):
                return command
            if fallback and shutil.which(fallback):
                logger.debug(
                    "Command %s not found; falling back to %s for provider %s",
                    command, fallback, self.name if hasattr(self, "name") else "<unknown>",
                )
                return fallback
            return command
        if fallback:
            return fallback
        return command
