"""Slash command parser and dispatch table."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class ParsedCommand:
    """A parsed slash command."""

    name: str
    args: list[str]
    raw: str

    @property
    def arg_text(self) -> str:
        """Everything after the command name, unsplit (paths with spaces)."""
        _, _, rest = self.raw.partition(" ")
        return rest.strip()


def parse_command(text: str) -> ParsedCommand | None:
    """Parse a /command from input text.

    Returns None if text does not start with '/'.
    """
    stripped = text.strip()
    if not stripped.startswith("/"):
        return None
    parts = stripped.split()
    name = parts[0][1:]  # remove leading '/'
    args = parts[1:] if len(parts) > 1 else []
    return ParsedCommand(name=name, args=args, raw=stripped)


# Commands forwarded to the relay as {"type": "command", "command": NAME}
SERVER_COMMANDS: frozenset[str] = frozenset({"status", "reset", "clear"})

COMMAND_HELP: dict[str, str] = {
    "stop": "Interrupt the running Claude request (also Ctrl+C / Escape)",
    "status": "Show connection and session status from the relay",
    "reset": "Stop any running request and start a new conversation",
    "clear": "Clear the transcript and start a new conversation",
    "attach": "/attach PATH — attach an image to the next message",
    "help": "Show this help message",
}


def format_help() -> str:
    width = max(len(name) for name in COMMAND_HELP)
    return "\n".join(
        f"/{name.ljust(width)}  {text}" for name, text in COMMAND_HELP.items()
    )
