"""Claude CLI provider.

Runs ``claude --print`` in stream-json mode with partial messages so
text and thinking arrive as content-block deltas while the model is
still generating.
"""
from __future__ import annotations

import logging
import os
import shutil

from .base import Provider, TurnCommand, TurnRequest

logger = logging.getLogger(__name__)

STREAMING_FLAGS: tuple[str, ...] = (
    "--print",
    "--output-format", "stream-json",
    "--include-partial-messages",
    "--verbose",
)


class ClaudeProvider(Provider):
    """Provider backed by the Claude command-line tool.

    Auth: the CLI handles its own login (OAuth or API key). If
    api_key_env is set and the env var exists, it is passed through as
    ANTHROPIC_API_KEY.
    """

    def __init__(
        self,
        command: str = "claude",
        api_key_env: str | None = None,
        extra_args: list[str] | None = None,
    ) -> None:
        self._command = self.resolve_command(command, "claude")
        self._api_key_env = api_key_env
        self._extra_args = list(extra_args or [])

    @property
    def name(self) -> str:
        return "claude"

    def _build_env(self) -> dict[str, str] | None:
        """Build subprocess environment with optional API key."""
        if self._api_key_env:
            key = os.environ.get(self._api_key_env)
            if key:
                env = os.environ.copy()
                env["ANTHROPIC_API_KEY"] = key
                return env
        return None

    @staticmethod
    def build_prompt(prompt: str, attachment_paths: list[str]) -> str:
        """Append attachment paths so the CLI reads them with its own tools."""
        if not attachment_paths:
            return prompt
        lines = [prompt, "", "I have attached the following images for you to analyze:"]
        for index, path in enumerate(attachment_paths, start=1):
            lines.append(f"Image {index}: {path}")
        lines.append("")
        lines.append("Please use the Read tool to view and analyze these images.")
        return "\n".join(lines)

    def build_turn_cmd(self, request: TurnRequest) -> TurnCommand:
        cmd = [self._command, *STREAMING_FLAGS]
        # Attachments live outside the workspace; grant read access explicitly.
        for directory in request.attachment_dirs:
            cmd.extend(["--add-dir", directory])
        if request.continuation_token:
            cmd.extend(["--resume", request.continuation_token])
        cmd.extend(self._extra_args)
        cmd.extend(request.extra_args)

        return TurnCommand(
            argv=cmd,
            stdin_payload=self.build_prompt(request.prompt, request.attachment_paths) + "\n",
            cwd=request.cwd,
            env=self._build_env(),
        )

    def is_available(self) -> bool:
        """Check if the claude CLI is installed."""
        return shutil.which(self._command) is not None
