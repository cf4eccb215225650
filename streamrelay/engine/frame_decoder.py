"""Incremental decoder for the external tool's line-oriented output.

The CLI writes one JSON event per line on stdout (``--output-format
stream-json``). Reads from the pipe arrive in arbitrary chunks, so a
line (or a multi-byte UTF-8 sequence) may be split across chunks. The
decoder keeps the unterminated tail between ``feed()`` calls and hands
every complete line to a best-effort parser: JSON objects become
structured records, anything else is relayed verbatim as raw text.
"""
from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class RecordKind(Enum):
    STRUCTURED = "structured"
    RAW = "raw"


class EventKind(Enum):
    """Classification of a structured record by its ``type`` fields."""
    SYSTEM = "system"
    MESSAGE_START = "message_start"
    MESSAGE_STOP = "message_stop"
    BLOCK_START = "block_start"
    BLOCK_DELTA = "block_delta"
    BLOCK_STOP = "block_stop"
    ASSISTANT = "assistant"
    TOOL_RESULT = "tool_result"
    RESULT = "result"
    ERROR = "error"
    OTHER = "other"


_STREAM_EVENT_KINDS: dict[str, EventKind] = {
    "message_start": EventKind.MESSAGE_START,
    "message_stop": EventKind.MESSAGE_STOP,
    "content_block_start": EventKind.BLOCK_START,
    "content_block_delta": EventKind.BLOCK_DELTA,
    "content_block_stop": EventKind.BLOCK_STOP,
}

_TOP_LEVEL_KINDS: dict[str, EventKind] = {
    "system": EventKind.SYSTEM,
    "assistant": EventKind.ASSISTANT,
    "user": EventKind.TOOL_RESULT,
    "result": EventKind.RESULT,
    "error": EventKind.ERROR,
}


def classify_event(data: dict[str, Any]) -> EventKind:
    """Map a decoded stream-json object to its ``EventKind``."""
    etype = data.get("type", "")
    if etype == "stream_event":
        event = data.get("event")
        if isinstance(event, dict):
            return _STREAM_EVENT_KINDS.get(event.get("type", ""), EventKind.OTHER)
        return EventKind.OTHER
    return _TOP_LEVEL_KINDS.get(etype, EventKind.OTHER)


@dataclass
class Record:
    """One decoded line of process output."""
    kind: RecordKind
    text: str
    data: dict[str, Any] | None = None
    event_kind: EventKind = EventKind.OTHER
    decode_error: str | None = None

    @property
    def is_structured(self) -> bool:
        return self.kind is RecordKind.STRUCTURED

    @property
    def session_id(self) -> str | None:
        """Conversation id announced by a ``system`` record, if any."""
        if self.event_kind is EventKind.SYSTEM and self.data:
            value = self.data.get("session_id")
            if isinstance(value, str) and value:
                return value
        return None


def decode_line(line: bytes) -> Record | None:
    """Parse one complete line. Returns None for blank lines."""
    if line.endswith(b"\r"):
        line = line[:-1]
    try:
        text = line.decode("utf-8")
    except UnicodeDecodeError as exc:
        text = line.decode("utf-8", errors="replace")
        logger.warning(
            "Undecodable output line (%d bytes): %s", len(line), exc,
        )
        if not text.strip():
            return None
        return Record(
            kind=RecordKind.RAW,
            text=text,
            decode_error=f"invalid utf-8: {exc.reason} at byte {exc.start}",
        )

    if not text.strip():
        return None

    try:
        data = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return Record(kind=RecordKind.RAW, text=text)

    if not isinstance(data, dict):
        # Valid JSON, but not an event object
        return Record(kind=RecordKind.RAW, text=text)

    return Record(
        kind=RecordKind.STRUCTURED,
        text=text,
        data=data,
        event_kind=classify_event(data),
    )


@dataclass
class FrameDecoder:
    """Stateful newline framer over a byte stream.

    One decoder per process stream; create a fresh one per session.
    """
    _buffer: bytearray = field(default_factory=bytearray)
    lines_decoded: int = 0

    def feed(self, chunk: bytes) -> list[Record]:
        """Consume a chunk and return the records for every completed line."""
        if not chunk:
            return []
        self._buffer.extend(chunk)
        records: list[Record] = []
        start = 0
        while True:
            end = self._buffer.find(b"\n", start)
            if end == -1:
                break
            record = decode_line(bytes(self._buffer[start:end]))
            start = end + 1
            if record is not None:
                self.lines_decoded += 1
                records.append(record)
        if start:
            del self._buffer[:start]
        return records

    def flush(self) -> list[Record]:
        """Emit the trailing unterminated line at end of stream."""
        if not self._buffer:
            return []
        tail = bytes(self._buffer)
        self._buffer.clear()
        record = decode_line(tail)
        if record is None:
            return []
        self.lines_decoded += 1
        return [record]

    @property
    def pending_bytes(self) -> int:
        return len(self._buffer)


async def iter_records(
    chunks: AsyncIterator[bytes],
    decoder: FrameDecoder | None = None,
) -> AsyncIterator[Record]:
    """Lazily decode an async stream of byte chunks into records."""
    decoder = decoder or FrameDecoder()
    async for chunk in chunks:
        for record in decoder.feed(chunk):
            yield record
    for record in decoder.flush():
        yield record
