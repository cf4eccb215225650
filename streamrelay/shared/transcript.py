"""Transcript reconstruction from relayed wire messages.

The relay forwards the tool's stream-json records one at a time:
content-block boundaries, text/thinking deltas, full assistant
messages, tool results and the relay's own lifecycle messages.
``TranscriptReconstructor`` folds them into an ordered list of
``TranscriptEntry`` objects that a UI can render directly.

State is kept as one "current open entry" pointer per streaming kind
(text, thinking) plus a stack of tool entries still waiting for their
result. Entries are appended in arrival order and that order is the
display order.
"""
from __future__ import annotations

import json
import logging
from typing import Any

from streamrelay.engine.errors import RelayDroppedError
from streamrelay.engine.frame_decoder import EventKind, classify_event
from streamrelay.shared.models.message import (
    EntryKind,
    EntryRole,
    ToolStatus,
    TranscriptEntry,
)

logger = logging.getLogger(__name__)

STOPPED_NOTICE = "Stopped by user"

_STREAMING_KINDS = (EntryKind.TEXT, EntryKind.THINKING)


def stringify_tool_output(content: Any) -> str:
    """Flatten a tool_result ``content`` field into display text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and item.get("type") == "text":
                parts.append(str(item.get("text", "")))
            elif isinstance(item, str):
                parts.append(item)
            else:
                parts.append(json.dumps(item, default=str))
        return "\n".join(parts)
    return json.dumps(content, default=str)


def _unique(entries: list[TranscriptEntry]) -> list[TranscriptEntry]:
    seen: set[str] = set()
    result: list[TranscriptEntry] = []
    for entry in entries:
        if entry.id not in seen:
            seen.add(entry.id)
            result.append(entry)
    return result


class TranscriptReconstructor:
    """Single-threaded state machine from wire messages to entries."""

    def __init__(self) -> None:
        self.entries: list[TranscriptEntry] = []
        self.session_id: str | None = None
        self._open: dict[EntryKind, TranscriptEntry] = {}
        self._running_tools: list[TranscriptEntry] = []
        # content-block index -> entry, for the API message being streamed
        self._blocks: dict[int, TranscriptEntry] = {}
        self._partial_input: dict[str, list[str]] = {}
        # API message ids already shown through partial stream events
        self._streamed_message_ids: set[str] = set()

    @property
    def is_streaming(self) -> bool:
        return any(entry.streaming for entry in self.entries)

    def open_entry(self, kind: EntryKind) -> TranscriptEntry | None:
        return self._open.get(kind)

    @property
    def running_tools(self) -> list[TranscriptEntry]:
        return list(self._running_tools)

    # ── Public API ──

    def apply(self, message: dict[str, Any]) -> list[TranscriptEntry]:
        """Apply one wire message. Returns the entries it created or changed.

        Never raises: a malformed message is logged and leaves the
        transcript as it was.
        """
        touched: list[TranscriptEntry] = []
        try:
            self._dispatch(message, touched)
        except Exception:
            logger.exception(
                "Failed to apply %s message", message.get("type", "?"),
            )
        return _unique(touched)

    def add_user_message(self, text: str) -> TranscriptEntry:
        """Record the user's own prompt and start a fresh assistant turn."""
        touched: list[TranscriptEntry] = []
        for kind in _STREAMING_KINDS:
            self._close_open(kind, touched)
        return self._new_entry(EntryRole.USER, EntryKind.TEXT, text, touched)

    def add_notice(self, text: str) -> TranscriptEntry:
        """Append a closed system notice (command feedback, reconnects)."""
        return self._new_entry(EntryRole.SYSTEM, EntryKind.SYSTEM, text, [])

    def clear(self) -> None:
        self.entries.clear()
        self.session_id = None
        self._open.clear()
        self._running_tools.clear()
        self._blocks.clear()
        self._partial_input.clear()
        self._streamed_message_ids.clear()

    # ── Dispatch ──

    def _dispatch(self, message: dict[str, Any], touched: list[TranscriptEntry]) -> None:
        msg_type = message.get("type")
        if msg_type == "claude-response":
            data = message.get("data")
            if isinstance(data, dict):
                self._apply_record(data, touched)
        elif msg_type == "claude-output":
            self._append_raw(str(message.get("content") or ""), touched)
        elif msg_type in ("claude-error", "error"):
            text = message.get("error") or message.get("message") or "An error occurred"
            self._add_error(str(text), touched)
        elif msg_type == "claude-complete":
            self._close_all(touched)
        elif msg_type == "interrupt-confirmed":
            self._new_entry(EntryRole.SYSTEM, EntryKind.SYSTEM, STOPPED_NOTICE, touched)
        # connection, chat_received, command_response: nothing to display

    def _apply_record(self, data: dict[str, Any], touched: list[TranscriptEntry]) -> None:
        kind = classify_event(data)
        event = data.get("event") if isinstance(data.get("event"), dict) else {}

        if kind is EventKind.SYSTEM:
            session_id = data.get("session_id")
            if isinstance(session_id, str) and session_id:
                self.session_id = session_id
        elif kind is EventKind.MESSAGE_START:
            api_message = event.get("message") or {}
            api_id = api_message.get("id") if isinstance(api_message, dict) else None
            if api_id:
                self._streamed_message_ids.add(api_id)
            self._blocks.clear()
        elif kind is EventKind.BLOCK_START:
            self._block_start(event, touched)
        elif kind is EventKind.BLOCK_DELTA:
            self._block_delta(event, touched)
        elif kind is EventKind.BLOCK_STOP:
            self._block_stop(event, touched)
        elif kind is EventKind.MESSAGE_STOP:
            self._message_stop(touched)
        elif kind is EventKind.ASSISTANT:
            self._apply_assistant(data, touched)
        elif kind is EventKind.TOOL_RESULT:
            self._apply_tool_results(data, touched)
        elif kind is EventKind.RESULT:
            if data.get("is_error"):
                self._add_error(str(data.get("result") or "Claude reported an error"), touched)
        elif kind is EventKind.ERROR:
            error = data.get("error")
            if isinstance(error, dict):
                error = error.get("message")
            self._add_error(str(error or data.get("message") or "An error occurred"), touched)

    # ── Stream events ──

    def _block_start(self, event: dict[str, Any], touched: list[TranscriptEntry]) -> None:
        block = event.get("content_block") or {}
        block_type = block.get("type")
        if block_type in ("text", "thinking"):
            kind = EntryKind(block_type)
            self._close_open(kind, touched)
            entry = self._new_entry(
                EntryRole.ASSISTANT, kind, str(block.get(block_type) or ""), touched,
                streaming=True,
            )
        elif block_type == "tool_use":
            entry = self._open_tool(block, touched)
            # Input arrives as input_json_delta fragments until block stop
            entry.streaming = True
        else:
            return
        index = event.get("index")
        if isinstance(index, int):
            self._blocks[index] = entry

    def _block_delta(self, event: dict[str, Any], touched: list[TranscriptEntry]) -> None:
        delta = event.get("delta") or {}
        delta_type = delta.get("type")
        if delta_type == "text_delta":
            self._append(EntryKind.TEXT, str(delta.get("text") or ""), touched)
        elif delta_type == "thinking_delta":
            self._append(EntryKind.THINKING, str(delta.get("thinking") or ""), touched)
        elif delta_type == "input_json_delta":
            entry = self._blocks.get(event.get("index"))
            if entry is not None and entry.is_tool:
                self._partial_input.setdefault(entry.id, []).append(
                    str(delta.get("partial_json") or "")
                )

    def _block_stop(self, event: dict[str, Any], touched: list[TranscriptEntry]) -> None:
        entry = self._blocks.pop(event.get("index"), None)
        if entry is None:
            # Unknown or missing index: close whatever text/thinking is open
            for kind in _STREAMING_KINDS:
                self._close_open(kind, touched)
            return
        if entry.is_tool:
            fragments = self._partial_input.pop(entry.id, None)
            if fragments:
                raw = "".join(fragments)
                try:
                    entry.tool_input = json.loads(raw)
                except ValueError:
                    logger.debug("Tool input for %s is not valid JSON", entry.tool_name)
                    entry.tool_input = raw
        elif self._open.get(entry.kind) is entry:
            del self._open[entry.kind]
        entry.streaming = False
        touched.append(entry)

    def _message_stop(self, touched: list[TranscriptEntry]) -> None:
        """End of one API message: close its text, thinking and tool blocks."""
        for kind in _STREAMING_KINDS:
            self._close_open(kind, touched)
        for index in list(self._blocks):
            self._block_stop({"index": index}, touched)
        self._blocks.clear()

    # ── Full messages ──

    def _apply_assistant(self, data: dict[str, Any], touched: list[TranscriptEntry]) -> None:
        api_message = data.get("message") or {}
        content = api_message.get("content")
        if isinstance(content, str):
            content = [{"type": "text", "text": content}]
        if not isinstance(content, list):
            return
        api_id = api_message.get("id")
        already_streamed = bool(api_id) and api_id in self._streamed_message_ids

        for item in content:
            if not isinstance(item, dict):
                continue
            item_type = item.get("type")
            if item_type == "tool_use":
                existing = self._find_tool(item.get("id"))
                if existing is not None:
                    if not existing.tool_input and item.get("input"):
                        existing.tool_input = item.get("input")
                        touched.append(existing)
                    continue
                self._open_tool(item, touched)
            elif already_streamed:
                # Same content was shown from the partial stream events
                continue
            elif item_type == "text":
                self._append(EntryKind.TEXT, str(item.get("text") or ""), touched)
            elif item_type == "thinking":
                self._append(
                    EntryKind.THINKING,
                    str(item.get("thinking") or item.get("text") or ""),
                    touched,
                )

    def _apply_tool_results(self, data: dict[str, Any], touched: list[TranscriptEntry]) -> None:
        api_message = data.get("message") or {}
        content = api_message.get("content")
        if not isinstance(content, list):
            return
        for item in content:
            if not isinstance(item, dict) or item.get("type") != "tool_result":
                continue
            entry = self._take_running_tool(item.get("tool_use_id"))
            if entry is None:
                dropped = RelayDroppedError(
                    f"tool result {item.get('tool_use_id') or '<no id>'} has no running tool"
                )
                logger.warning("%s", dropped)
                continue
            entry.tool_output = stringify_tool_output(item.get("content"))
            entry.tool_status = ToolStatus.ERROR if item.get("is_error") else ToolStatus.SUCCESS
            entry.streaming = False
            touched.append(entry)

    # ── Entry helpers ──

    def _new_entry(
        self,
        role: EntryRole,
        kind: EntryKind,
        content: str,
        touched: list[TranscriptEntry],
        *,
        streaming: bool = False,
    ) -> TranscriptEntry:
        entry = TranscriptEntry(role=role, kind=kind, content=content, streaming=streaming)
        self.entries.append(entry)
        if streaming and kind in _STREAMING_KINDS:
            self._open[kind] = entry
        touched.append(entry)
        return entry

    def _append(self, kind: EntryKind, text: str, touched: list[TranscriptEntry]) -> None:
        if not text:
            return
        entry = self._open.get(kind)
        if entry is None:
            self._new_entry(EntryRole.ASSISTANT, kind, text, touched, streaming=True)
            return
        entry.content += text
        touched.append(entry)

    def _append_raw(self, line: str, touched: list[TranscriptEntry]) -> None:
        if not line:
            return
        entry = self._open.get(EntryKind.TEXT)
        if entry is not None and entry.content and not entry.content.endswith("\n"):
            line = "\n" + line
        self._append(EntryKind.TEXT, line, touched)

    def _add_error(self, text: str, touched: list[TranscriptEntry]) -> None:
        self._new_entry(EntryRole.SYSTEM, EntryKind.ERROR, text, touched)

    def _close_open(self, kind: EntryKind, touched: list[TranscriptEntry]) -> None:
        entry = self._open.pop(kind, None)
        if entry is not None:
            entry.streaming = False
            touched.append(entry)

    def _open_tool(self, block: dict[str, Any], touched: list[TranscriptEntry]) -> TranscriptEntry:
        # Text after a tool call belongs below it, not in the earlier entry
        for kind in _STREAMING_KINDS:
            self._close_open(kind, touched)
        entry = TranscriptEntry(
            role=EntryRole.ASSISTANT,
            kind=EntryKind.TOOL_USE,
            tool_name=str(block.get("name") or "Unknown Tool"),
            tool_input=block.get("input") or None,
            tool_status=ToolStatus.RUNNING,
            tool_use_id=block.get("id"),
        )
        self.entries.append(entry)
        self._running_tools.append(entry)
        touched.append(entry)
        return entry

    def _find_tool(self, tool_use_id: str | None) -> TranscriptEntry | None:
        if not tool_use_id:
            return None
        for entry in reversed(self.entries):
            if entry.is_tool and entry.tool_use_id == tool_use_id:
                return entry
        return None

    def _take_running_tool(self, tool_use_id: str | None) -> TranscriptEntry | None:
        if not self._running_tools:
            return None
        if tool_use_id:
            for i in range(len(self._running_tools) - 1, -1, -1):
                if self._running_tools[i].tool_use_id == tool_use_id:
                    return self._running_tools.pop(i)
        return self._running_tools.pop()

    def _close_all(self, touched: list[TranscriptEntry]) -> None:
        for entry in self.entries:
            if entry.streaming:
                entry.streaming = False
                touched.append(entry)
        self._open.clear()
        self._blocks.clear()
        self._partial_input.clear()
        # A result can no longer arrive for this turn's tools
        self._running_tools.clear()
