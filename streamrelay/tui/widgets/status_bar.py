"""Status bar — bottom bar showing connection state and the session."""

from __future__ import annotations

import time
from typing import Optional

from textual.reactive import reactive
from textual.timer import Timer
from textual.widget import Widget
from rich.text import Text


def _format_elapsed(seconds: float) -> str:
    """Format elapsed seconds into a human-readable string."""
    secs = int(seconds)
    if secs < 60:
        return f"{secs}s"
    elif secs < 3600:
        m, s = divmod(secs, 60)
        return f"{m}m {s}s"
    else:
        h, remainder = divmod(secs, 3600)
        m = remainder // 60
        return f"{h}h {m}m"


class StatusBar(Widget):
    """Single-line status bar with relay and session info."""

    DEFAULT_CSS = """
    StatusBar {
        dock: bottom;
        height: 1;
        background: $panel;
    }
    """

    status: reactive[str] = reactive("disconnected")
    session_id: reactive[str] = reactive("")
    url: reactive[str] = reactive("")
    attachments: reactive[int] = reactive(0)

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._stream_started_at: Optional[float] = None
        self._elapsed_timer: Timer | None = None

    def watch_status(self, old_value: str, new_value: str) -> None:
        """Track elapsed time while a turn is streaming."""
        if new_value == "streaming" and old_value != "streaming":
            self._stream_started_at = time.monotonic()
            if self._elapsed_timer is None:
                self._elapsed_timer = self.set_interval(1.0, self.refresh)
        elif old_value == "streaming" and new_value != "streaming":
            self._stream_started_at = None
            if self._elapsed_timer is not None:
                self._elapsed_timer.stop()
                self._elapsed_timer = None

    def render(self) -> Text:
        status_colors = {
            "connected": "green",
            "streaming": "yellow",
            "disconnected": "red",
            "error": "red bold",
        }
        color = status_colors.get(self.status, "white")

        bar = Text()
        bar.append(" streamrelay ", style="bold")
        bar.append(" │ ", style="dim")
        bar.append(self.url or "—", style="cyan")
        bar.append(" │ ", style="dim")
        session = self.session_id[:8] if self.session_id else "new session"
        bar.append(session, style="dim")
        if self.attachments:
            bar.append(" │ ", style="dim")
            bar.append(f"📎 {self.attachments}", style="magenta")
        bar.append(" │ ", style="dim")

        status_display = f"● {self.status}"
        if self._stream_started_at is not None:
            elapsed = _format_elapsed(time.monotonic() - self._stream_started_at)
            status_display += f" ({elapsed})"
        bar.append(status_display, style=color)
        return bar
