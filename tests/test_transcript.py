from __future__ import annotations

import pytest

from streamrelay.shared.models.message import EntryKind, EntryRole, ToolStatus
from streamrelay.shared.transcript import (
    STOPPED_NOTICE,
    TranscriptReconstructor,
    stringify_tool_output,
)


def _resp(data: dict) -> dict:
    return {"type": "claude-response", "messageId": "m1", "data": data}


def _event(payload: dict) -> dict:
    return _resp({"type": "stream_event", "event": payload})


def _block_start(index: int, block: dict) -> dict:
    return _event({"type": "content_block_start", "index": index, "content_block": block})


def _delta(index: int, delta: dict) -> dict:
    return _event({"type": "content_block_delta", "index": index, "delta": delta})


def _block_stop(index: int) -> dict:
    return _event({"type": "content_block_stop", "index": index})


def _message_start(api_id: str) -> dict:
    return _event({"type": "message_start", "message": {"id": api_id}})


def _feed(rec: TranscriptReconstructor, messages: list[dict]) -> None:
    for message in messages:
        rec.apply(message)


def test_streamed_text_with_duplicate_assistant_message() -> None:
    rec = TranscriptReconstructor()
    _feed(rec, [
        _resp({"type": "system", "subtype": "init", "session_id": "sess-1"}),
        _message_start("msg_1"),
        _block_start(0, {"type": "text", "text": ""}),
        _delta(0, {"type": "text_delta", "text": "Hel"}),
        _delta(0, {"type": "text_delta", "text": "lo"}),
    ])

    assert rec.is_streaming
    assert rec.open_entry(EntryKind.TEXT).content == "Hello"

    _feed(rec, [
        _block_stop(0),
        _event({"type": "message_stop"}),
        _resp({"type": "assistant", "message": {
            "id": "msg_1", "content": [{"type": "text", "text": "Hello"}],
        }}),
        _resp({"type": "result", "is_error": False, "result": "Hello"}),
        {"type": "claude-complete", "messageId": "m1", "exitCode": 0},
    ])

    assert [(e.kind, e.content) for e in rec.entries] == [(EntryKind.TEXT, "Hello")]
    assert rec.entries[0].role is EntryRole.ASSISTANT
    assert not rec.is_streaming
    assert rec.session_id == "sess-1"


def test_unstreamed_assistant_message_is_shown() -> None:
    rec = TranscriptReconstructor()
    rec.apply(_resp({"type": "assistant", "message": {
        "id": "msg_9",
        "content": [
            {"type": "thinking", "thinking": "hmm"},
            {"type": "text", "text": "Answer"},
        ],
    }}))

    assert [(e.kind, e.content) for e in rec.entries] == [
        (EntryKind.THINKING, "hmm"),
        (EntryKind.TEXT, "Answer"),
    ]


def test_tool_call_streamed_input_then_result() -> None:
    rec = TranscriptReconstructor()
    _feed(rec, [
        _message_start("msg_2"),
        _block_start(0, {"type": "text", "text": ""}),
        _delta(0, {"type": "text_delta", "text": "Listing files."}),
        _block_start(1, {"type": "tool_use", "id": "toolu_1", "name": "Bash", "input": {}}),
        _delta(1, {"type": "input_json_delta", "partial_json": '{"command": '}),
        _delta(1, {"type": "input_json_delta", "partial_json": '"ls"}'}),
        _block_stop(1),
        _resp({"type": "assistant", "message": {"id": "msg_2", "content": [
            {"type": "text", "text": "Listing files."},
            {"type": "tool_use", "id": "toolu_1", "name": "Bash", "input": {"command": "ls"}},
        ]}}),
    ])

    text, tool = rec.entries
    assert not text.streaming
    assert tool.tool_name == "Bash"
    assert tool.tool_input == {"command": "ls"}
    assert tool.is_running
    assert rec.running_tools == [tool]

    touched = rec.apply(_resp({"type": "user", "message": {"content": [
        {"type": "tool_result", "tool_use_id": "toolu_1",
         "content": [{"type": "text", "text": "a.txt\nb.txt"}]},
    ]}}))

    assert touched == [tool]
    assert tool.tool_status is ToolStatus.SUCCESS
    assert tool.tool_output == "a.txt\nb.txt"
    assert rec.running_tools == []


def test_text_after_tool_call_starts_a_new_entry() -> None:
    rec = TranscriptReconstructor()
    _feed(rec, [
        _resp({"type": "assistant", "message": {"id": "a", "content": [
            {"type": "text", "text": "Before"},
            {"type": "tool_use", "id": "t1", "name": "Read", "input": {"file_path": "x"}},
        ]}}),
        _resp({"type": "user", "message": {"content": [
            {"type": "tool_result", "tool_use_id": "t1", "content": "data", "is_error": True},
        ]}}),
        _resp({"type": "assistant", "message": {"id": "b", "content": [
            {"type": "text", "text": "After"},
        ]}}),
    ])

    kinds = [(e.kind, e.content) for e in rec.entries]
    assert kinds == [
        (EntryKind.TEXT, "Before"),
        (EntryKind.TOOL_USE, ""),
        (EntryKind.TEXT, "After"),
    ]
    assert rec.entries[1].tool_status is ToolStatus.ERROR
    assert rec.entries[1].tool_output == "data"


def test_result_without_id_goes_to_most_recent_running_tool() -> None:
    rec = TranscriptReconstructor()
    rec.apply(_resp({"type": "assistant", "message": {"id": "a", "content": [
        {"type": "tool_use", "id": "t1", "name": "Glob", "input": {}},
        {"type": "tool_use", "id": "t2", "name": "Grep", "input": {}},
    ]}}))

    rec.apply(_resp({"type": "user", "message": {"content": [
        {"type": "tool_result", "content": "found"},
    ]}}))
    rec.apply(_resp({"type": "user", "message": {"content": [
        {"type": "tool_result", "tool_use_id": "t1", "content": "globbed"},
    ]}}))

    glob, grep = rec.entries
    assert grep.tool_output == "found"
    assert glob.tool_output == "globbed"


def test_orphan_tool_result_is_dropped(caplog) -> None:
    rec = TranscriptReconstructor()

    touched = rec.apply(_resp({"type": "user", "message": {"content": [
        {"type": "tool_result", "tool_use_id": "nope", "content": "x"},
    ]}}))

    assert touched == []
    assert rec.entries == []
    assert "nope" in caplog.text


def test_thinking_and_text_blocks_keep_arrival_order() -> None:
    rec = TranscriptReconstructor()
    _feed(rec, [
        _message_start("msg_3"),
        _block_start(0, {"type": "thinking", "thinking": ""}),
        _delta(0, {"type": "thinking_delta", "thinking": "Let me "}),
        _delta(0, {"type": "thinking_delta", "thinking": "think."}),
        _block_stop(0),
        _block_start(1, {"type": "text", "text": ""}),
        _delta(1, {"type": "text_delta", "text": "Done."}),
        _block_stop(1),
    ])

    assert [(e.kind, e.content, e.streaming) for e in rec.entries] == [
        (EntryKind.THINKING, "Let me think.", False),
        (EntryKind.TEXT, "Done.", False),
    ]


def test_error_messages_become_error_entries() -> None:
    rec = TranscriptReconstructor()
    _feed(rec, [
        {"type": "claude-error", "messageId": "m1", "error": "boom"},
        _resp({"type": "result", "is_error": True, "result": "quota exceeded"}),
        {"type": "error", "message": "Claude process exited with code 3"},
    ])

    assert [(e.kind, e.content) for e in rec.entries] == [
        (EntryKind.ERROR, "boom"),
        (EntryKind.ERROR, "quota exceeded"),
        (EntryKind.ERROR, "Claude process exited with code 3"),
    ]


def test_interrupt_and_complete_close_streaming_entries() -> None:
    rec = TranscriptReconstructor()
    _feed(rec, [
        _delta(0, {"type": "text_delta", "text": "partial"}),
        _resp({"type": "assistant", "message": {"id": "x", "content": [
            {"type": "tool_use", "id": "t1", "name": "Bash", "input": {"command": "sleep 9"}},
        ]}}),
        _delta(0, {"type": "text_delta", "text": "more"}),
        {"type": "interrupt-confirmed", "message": "Claude process interrupted"},
        {"type": "claude-complete", "messageId": "m1", "exitCode": 143},
    ])

    assert rec.entries[-1].content == STOPPED_NOTICE
    assert rec.entries[-1].kind is EntryKind.SYSTEM
    assert not rec.is_streaming
    assert rec.open_entry(EntryKind.TEXT) is None
    assert rec.running_tools == []
    # A tool whose result never arrived keeps its last status
    assert rec.entries[1].tool_status is ToolStatus.RUNNING


def test_raw_output_lines_are_joined() -> None:
    rec = TranscriptReconstructor()
    _feed(rec, [
        {"type": "claude-output", "content": "first"},
        {"type": "claude-output", "content": "second"},
    ])

    assert len(rec.entries) == 1
    assert rec.entries[0].content == "first\nsecond"


def test_user_message_closes_open_entries() -> None:
    rec = TranscriptReconstructor()
    rec.apply(_delta(0, {"type": "text_delta", "text": "old"}))

    user = rec.add_user_message("next question")

    assert rec.entries[0].streaming is False
    assert user.role is EntryRole.USER
    rec.apply(_delta(0, {"type": "text_delta", "text": "new"}))
    assert rec.entries[-1].content == "new"


def test_apply_never_raises(monkeypatch, caplog) -> None:
    rec = TranscriptReconstructor()
    rec.apply({"type": "claude-output", "content": "kept"})

    def _boom(*_args):
        raise RuntimeError("bad record")

    monkeypatch.setattr(rec, "_apply_record", _boom)
    touched = rec.apply(_resp({"type": "assistant"}))

    assert touched == []
    assert [e.content for e in rec.entries] == ["kept"]
    assert "bad record" in caplog.text


def test_clear_resets_state() -> None:
    rec = TranscriptReconstructor()
    _feed(rec, [
        _resp({"type": "system", "session_id": "s"}),
        _delta(0, {"type": "text_delta", "text": "x"}),
    ])

    rec.clear()

    assert rec.entries == []
    assert rec.session_id is None
    assert rec.open_entry(EntryKind.TEXT) is None


@pytest.mark.parametrize(
    ("content", "expected"),
    [
        (None, ""),
        ("plain", "plain"),
        ([{"type": "text", "text": "a"}, "b"], "a\nb"),
        ({"k": 1}, '{"k": 1}'),
    ],
)
def test_stringify_tool_output(content, expected) -> None:
    assert stringify_tool_output(content) == expected


def test_message_stop_closes_entries_without_block_stop() -> None:
    rec = TranscriptReconstructor()
    _feed(rec, [
        _message_start("msg_4"),
        _block_start(0, {"type": "thinking", "thinking": ""}),
        _delta(0, {"type": "thinking_delta", "thinking": "pondering"}),
        _block_start(1, {"type": "text", "text": ""}),
        _delta(1, {"type": "text_delta", "text": "Hello"}),
        _event({"type": "message_stop"}),
    ])

    assert [(e.kind, e.content) for e in rec.entries] == [
        (EntryKind.THINKING, "pondering"),
        (EntryKind.TEXT, "Hello"),
    ]
    assert not rec.is_streaming
    assert rec.open_entry(EntryKind.TEXT) is None

    # A late block stop for the closed unit changes nothing
    assert rec.apply(_block_stop(1)) == []
    assert [e.content for e in rec.entries] == ["pondering", "Hello"]


def test_block_stop_without_known_index_closes_open_entry() -> None:
    rec = TranscriptReconstructor()
    _feed(rec, [
        _message_start("msg_5"),
        _block_start(0, {"type": "text", "text": ""}),
        _delta(0, {"type": "text_delta", "text": "Hel"}),
        _delta(0, {"type": "text_delta", "text": "lo"}),
        _event({"type": "content_block_stop"}),
    ])

    assert len(rec.entries) == 1
    assert rec.entries[0].content == "Hello"
    assert not rec.entries[0].streaming

    rec.apply(_delta(3, {"type": "text_delta", "text": "next"}))
    rec.apply(_block_stop(7))

    assert [e.content for e in rec.entries] == ["Hello", "next"]
    assert not rec.is_streaming
