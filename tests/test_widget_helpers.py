from __future__ import annotations

import pytest

from streamrelay.shared.models.message import EntryKind, EntryRole, ToolStatus, TranscriptEntry
from streamrelay.tui.widgets.conversation import status_icon, summarize_tool_input
from streamrelay.tui.widgets.status_bar import _format_elapsed


@pytest.mark.parametrize(
    ("seconds", "expected"),
    [(0, "0s"), (59.9, "59s"), (61, "1m 1s"), (3725, "1h 2m")],
)
def test_format_elapsed(seconds, expected) -> None:
    assert _format_elapsed(seconds) == expected


def test_summary_prefers_descriptive_keys() -> None:
    assert summarize_tool_input({"description": "list", "command": "ls -la"}) == "ls -la"
    assert summarize_tool_input({"file_path": "/a/b.py", "limit": 3}) == "/a/b.py"
    assert summarize_tool_input({"x": 1}) == '{"x": 1}'
    assert summarize_tool_input(None) == ""
    assert summarize_tool_input({}) == ""


def test_summary_collapses_whitespace_and_truncates() -> None:
    summary = summarize_tool_input({"command": "echo  a\n\necho b " + "x" * 100}, width=20)

    assert len(summary) == 20
    assert summary.startswith("echo a echo b")
    assert summary.endswith("…")


def test_status_icons() -> None:
    entry = TranscriptEntry(role=EntryRole.ASSISTANT, kind=EntryKind.TOOL_USE)

    assert status_icon(entry)[0] == "⏳"
    entry.tool_status = ToolStatus.SUCCESS
    assert status_icon(entry)[0] == "✔"
    entry.tool_status = ToolStatus.ERROR
    assert status_icon(entry) == ("✘", "red")
