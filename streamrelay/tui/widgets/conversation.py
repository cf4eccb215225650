"""Conversation view — scrollable transcript with one widget per entry."""

from __future__ import annotations

import json
from typing import Any

from rich.console import Group, RenderableType
from rich.markdown import Markdown as RichMarkdown
from rich.text import Text
from textual.app import ComposeResult
from textual.containers import VerticalScroll
from textual.css.query import NoMatches
from textual.widget import Widget
from textual.widgets import Static

from streamrelay.shared.models.message import (
    EntryKind,
    EntryRole,
    ToolStatus,
    TranscriptEntry,
)

# Characters of tool input shown in the collapsed one-line summary
SUMMARY_WIDTH = 80

_STATUS_ICONS: dict[ToolStatus, tuple[str, str]] = {
    ToolStatus.SUCCESS: ("✔", "green"),
    ToolStatus.ERROR: ("✘", "red"),
    ToolStatus.RUNNING: ("⏳", "yellow"),
}

# Input keys that best describe a call, checked in order
_SUMMARY_KEYS = ("command", "file_path", "path", "pattern", "url", "query", "description")


def status_icon(entry: TranscriptEntry) -> tuple[str, str]:
    """(icon, style) for a tool entry's status."""
    return _STATUS_ICONS.get(entry.tool_status or ToolStatus.RUNNING, ("?", "dim"))


def summarize_tool_input(tool_input: Any, width: int = SUMMARY_WIDTH) -> str:
    """One-line preview of a tool's input."""
    if tool_input is None or tool_input == {}:
        return ""
    if isinstance(tool_input, dict):
        for key in _SUMMARY_KEYS:
            value = tool_input.get(key)
            if isinstance(value, str) and value:
                text = value
                break
        else:
            text = json.dumps(tool_input, default=str)
    else:
        text = str(tool_input)
    text = " ".join(text.split())
    if len(text) > width:
        text = text[: width - 1] + "…"
    return text


class EntryWidget(Static):
    """A single transcript entry. Click thinking or tool entries to expand."""

    DEFAULT_CSS = """
    EntryWidget {
        height: auto;
        margin: 0 0 1 0;
    }
    EntryWidget.entry-user {
        border-left: thick $primary;
        padding: 0 1;
    }
    EntryWidget.entry-error {
        color: $error;
    }
    EntryWidget.entry-system {
        text-align: center;
    }
    """

    def __init__(self, entry: TranscriptEntry, **kwargs) -> None:
        self.entry = entry
        self._expanded = False
        super().__init__(
            self._render_entry(),
            classes=f"entry-{entry.kind.value} entry-{entry.role.value}",
            **kwargs,
        )

    def _header(self, label: str, style: str) -> Text:
        header = Text()
        header.append(label, style=style)
        header.append(f" {self.entry.timestamp.strftime('%H:%M:%S')}", style="dim")
        if self.entry.streaming:
            header.append(" …", style="yellow")
        return header

    def _render_entry(self) -> RenderableType:
        entry = self.entry
        if entry.kind is EntryKind.TOOL_USE:
            return self._render_tool()
        if entry.kind is EntryKind.THINKING:
            header = self._header("Thinking", "italic magenta")
            if not self._expanded and not entry.streaming:
                header.append("  [click to expand]", style="dim italic")
                return header
            return Group(header, Text(entry.content, style="dim italic"))
        if entry.kind is EntryKind.ERROR:
            return Text(f"✘ {entry.content}", style="red")
        if entry.kind is EntryKind.SYSTEM:
            return Text(f"───── ⏹ {entry.content} ─────", style="dim")
        if entry.role is EntryRole.USER:
            return Group(self._header("You", "bold blue"), RichMarkdown(entry.content))
        return Group(self._header("Claude", "bold cyan"), RichMarkdown(entry.content))

    def _render_tool(self) -> RenderableType:
        entry = self.entry
        icon, style = status_icon(entry)
        line = Text()
        line.append(f"{icon} ", style=style)
        line.append(entry.tool_name or "Tool", style="bold")
        summary = summarize_tool_input(entry.tool_input)
        if summary:
            line.append(f"  {summary}", style="dim")
        if not self._expanded:
            return line
        parts: list[RenderableType] = [line]
        if entry.tool_input:
            parts.append(Text("Input", style="bold dim"))
            parts.append(Text(json.dumps(entry.tool_input, indent=2, default=str)))
        if entry.tool_output:
            parts.append(Text("Output", style="bold dim"))
            out_style = "red" if entry.tool_status is ToolStatus.ERROR else ""
            parts.append(Text(entry.tool_output, style=out_style))
        return Group(*parts)

    def refresh_entry(self) -> None:
        """Re-render after the entry changed (delta, close, tool result)."""
        self.update(self._render_entry())

    def on_click(self) -> None:
        if self.entry.kind in (EntryKind.THINKING, EntryKind.TOOL_USE):
            self._expanded = not self._expanded
            self.refresh_entry()


class ConversationView(Widget):
    """Scrollable pane holding one EntryWidget per transcript entry."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._widgets: dict[str, EntryWidget] = {}

    def compose(self) -> ComposeResult:
        yield VerticalScroll(id="message-container")

    # ── Scroll helpers ──

    def is_near_bottom(self) -> bool:
        """Check if the scroll container is at or near the bottom."""
        container = self._message_container()
        if container is None:
            return False
        if container.max_scroll_y == 0:
            return True
        return container.scroll_y >= container.max_scroll_y - 3

    def _smart_scroll(self) -> None:
        """Scroll to bottom only if already near the bottom."""
        container = self._message_container()
        if container is not None and self.is_near_bottom():
            container.scroll_end(animate=False)

    def _message_container(self) -> VerticalScroll | None:
        try:
            return self.query_one("#message-container", VerticalScroll)
        except NoMatches:
            return None

    # ── Entries ──

    def sync(self, entries: list[TranscriptEntry]) -> None:
        """Mount new entries and refresh changed ones."""
        container = self._message_container()
        if container is None:
            return
        follow = self.is_near_bottom()
        for entry in entries:
            widget = self._widgets.get(entry.id)
            if widget is None:
                widget = EntryWidget(entry)
                self._widgets[entry.id] = widget
                container.mount(widget)
            else:
                widget.refresh_entry()
        if follow:
            container.scroll_end(animate=False)

    def clear(self) -> None:
        container = self._message_container()
        if container is not None:
            container.remove_children()
        self._widgets.clear()
