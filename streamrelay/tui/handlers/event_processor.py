"""Event processor for the terminal client.

Consumes relay messages and updates the TUI: the transcript
reconstructor, the conversation view and the status bar.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from streamrelay.shared.models.message import TranscriptEntry
from streamrelay.shared.transcript import TranscriptReconstructor

if TYPE_CHECKING:
    from streamrelay.tui.app import RelayApp

logger = logging.getLogger(__name__)


class EventProcessor:
    """Processes relay messages on behalf of *RelayApp*.

    Owns the transcript state and tracks whether a turn is streaming.
    Keeps a back-reference to the app so it can query widgets without
    duplicating them.
    """

    def __init__(self, screen: RelayApp, transcript: TranscriptReconstructor | None = None) -> None:
        self._screen = screen
        self.transcript = transcript or TranscriptReconstructor()
        self.streaming = False
        self.current_message_id: str | None = None

    def handle(self, message: dict[str, Any]) -> list[TranscriptEntry]:
        """Apply one relay message. Errors are logged, never raised."""
        from streamrelay.tui.widgets.conversation import ConversationView
        from streamrelay.tui.widgets.status_bar import StatusBar

        s = self._screen
        try:
            conv = s.query_one("#conversation", ConversationView)
            sb = s.query_one("#status-bar", StatusBar)
            return self._process(message, conv, sb)
        except Exception:
            logger.exception("Error processing relay message %s", message.get("type"))
            return []

    def _process(self, message: dict[str, Any], conv, sb) -> list[TranscriptEntry]:
        msg_type = message.get("type")
        touched: list[TranscriptEntry] = []

        if msg_type == "connection":
            sb.status = "connected"
        elif msg_type == "chat_received":
            self.streaming = True
            sb.status = "streaming"
        elif msg_type == "command_response":
            touched.extend(self._handle_command_response(message, conv, sb))

        if msg_type in ("claude-response", "claude-output", "claude-error", "claude-complete"):
            self.current_message_id = message.get("messageId") or self.current_message_id

        touched.extend(self.transcript.apply(message))

        if msg_type == "claude-complete":
            self.streaming = False
            self.current_message_id = None
            sb.status = "connected"
            exit_code = message.get("exitCode")
            logger.info("Turn complete (exit=%s)", exit_code)
        elif msg_type == "error" and not self.transcript.is_streaming and not self.streaming:
            sb.status = "connected"

        if self.transcript.session_id:
            sb.session_id = self.transcript.session_id

        conv.sync(touched)
        return touched

    def _handle_command_response(self, message: dict[str, Any], conv, sb) -> list[TranscriptEntry]:
        command = message.get("command")
        if command == "status":
            data = message.get("data") or {}
            text = (
                f"Relay status: client {data.get('clientId') or '?'}, "
                f"Claude {'running' if data.get('claudeActive') else 'idle'}, "
                f"session {data.get('sessionId') or 'none'}"
            )
            return [self.transcript.add_notice(text)]
        if command == "reset":
            self.transcript.session_id = None
            sb.session_id = ""
            return [self.transcript.add_notice("Conversation reset")]
        if command == "clear":
            self.transcript.clear()
            conv.clear()
            sb.session_id = ""
            return []
        return []

    def on_connection_state(self, state: str) -> None:
        """Called by the relay client when the socket opens or drops."""
        from streamrelay.tui.widgets.conversation import ConversationView
        from streamrelay.tui.widgets.status_bar import StatusBar

        s = self._screen
        sb = s.query_one("#status-bar", StatusBar)
        sb.status = state
        if state == "disconnected":
            self.streaming = False
            conv = s.query_one("#conversation", ConversationView)
            conv.sync([self.transcript.add_notice("Disconnected from relay, reconnecting…")])
