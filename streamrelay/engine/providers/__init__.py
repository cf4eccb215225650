"""Provider abstraction for external streaming CLIs."""
from .base import Provider, TurnCommand, TurnRequest
from .claude_provider import ClaudeProvider

__all__ = [
    "Provider",
    "TurnCommand",
    "TurnRequest",
    "ClaudeProvider",
]
