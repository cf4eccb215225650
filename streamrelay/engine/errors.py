"""Exception hierarchy for the relay engine.

Specific exceptions for each failure mode of a turn. Process-level
failures are caught at the supervisor boundary and turned into a
single terminal event; none of these should escape into the
WebSocket handler.
"""
from __future__ import annotations


class RelayError(Exception):
    """Base exception for all relay errors."""


class ProcessSpawnError(RelayError):
    """The external tool binary could not be located or executed."""
    def __init__(self, command: str, reason: str, *, workspace: str | None = None):
        self.command = command
        self.reason = reason
        # Set when the working directory, not the binary, is at fault
        self.workspace = workspace
        super().__init__(f"Failed to start '{command}': {reason}")

    @property
    def user_message(self) -> str:
        if self.workspace is not None:
            return (
                f"Workspace directory '{self.workspace}' does not exist "
                f"or is not a directory."
            )
        return (
            f"Claude CLI is not installed. Please make sure you can run "
            f"'{self.command}' command in your terminal."
        )


class TurnTimeoutError(RelayError):
    """A turn exceeded its wall-clock ceiling and was terminated."""
    def __init__(self, message_id: str, timeout_seconds: float):
        self.message_id = message_id
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Turn {message_id} timed out after {timeout_seconds:g}s"
        )

    @property
    def user_message(self) -> str:
        minutes = self.timeout_seconds / 60.0
        if minutes >= 1 and float(minutes).is_integer():
            ceiling = f"{int(minutes)} minutes"
        else:
            ceiling = f"{self.timeout_seconds:g} seconds"
        return (
            f"Claude request timed out after {ceiling}. Please try again."
        )


class ProcessExitError(RelayError):
    """The external tool exited with a non-graceful nonzero code."""
    def __init__(self, message_id: str, exit_code: int | None):
        self.message_id = message_id
        self.exit_code = exit_code
        super().__init__(
            f"Claude process exited with code {exit_code}"
        )


class SessionBusyError(RelayError):
    """A turn was requested while another is still active."""
    def __init__(self, connection_id: str):
        self.connection_id = connection_id
        super().__init__(
            f"Connection {connection_id} already has an active turn"
        )


class RelayDroppedError(RelayError):
    """An event had no target in the transcript and was dropped."""
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Dropped event: {reason}")


class ConfigError(RelayError):
    """Configuration file could not be loaded."""
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid config {path}: {reason}")


class AttachmentError(RelayError):
    """An uploaded attachment could not be decoded or stored."""
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid attachment: {reason}")
