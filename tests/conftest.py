from __future__ import annotations

import asyncio
import stat
import sys
from pathlib import Path

import pytest

from streamrelay.engine.providers.base import Provider, TurnCommand, TurnRequest

# Behaviour is selected by keywords in the prompt read from stdin:
#   SLEEP        print, then sleep until signalled
#   IGNORE_TERM  like SLEEP but ignores SIGTERM (needs SIGKILL)
#   FAIL         write stderr lines and exit 3
#   RAW          non-JSON line, then an unterminated JSON line
#   (default)    a streamed "Hello" turn
FAKE_CLI = '''#!{python}
import json
import signal
import sys
import time


def emit(obj):
    sys.stdout.write((obj if isinstance(obj, str) else json.dumps(obj)) + "\\n")
    sys.stdout.flush()


def event(payload):
    emit({{"type": "stream_event", "event": payload}})


prompt = sys.stdin.read()
if "IGNORE_TERM" in prompt:
    signal.signal(signal.SIGTERM, signal.SIG_IGN)

emit({{"type": "argv", "argv": sys.argv[1:], "prompt": prompt}})
emit({{"type": "system", "subtype": "init", "session_id": "sess-fake"}})

if "SLEEP" in prompt or "IGNORE_TERM" in prompt:
    emit("working...")
    time.sleep(30)
    sys.exit(0)

if "FAIL" in prompt:
    sys.stderr.write("[DEBUG] loading settings\\n")
    sys.stderr.write("boom\\n")
    sys.stderr.flush()
    sys.exit(3)

if "RAW" in prompt:
    sys.stdout.write("plain line\\n")
    sys.stdout.write('{{"type": "result", "is_error": false}}')
    sys.stdout.flush()
    sys.exit(0)

event({{"type": "message_start", "message": {{"id": "msg_1"}}}})
event({{"type": "content_block_start", "index": 0, "content_block": {{"type": "text", "text": ""}}}})
event({{"type": "content_block_delta", "index": 0, "delta": {{"type": "text_delta", "text": "Hel"}}}})
event({{"type": "content_block_delta", "index": 0, "delta": {{"type": "text_delta", "text": "lo"}}}})
event({{"type": "content_block_stop", "index": 0}})
event({{"type": "message_stop"}})
emit({{"type": "assistant", "message": {{"id": "msg_1", "content": [{{"type": "text", "text": "Hello"}}]}}}})
emit({{"type": "result", "subtype": "success", "is_error": False, "result": "Hello", "session_id": "sess-fake"}})
'''


@pytest.fixture
def fake_cli(tmp_path: Path) -> Path:
    path = tmp_path / "fake-claude"
    path.write_text(FAKE_CLI.format(python=sys.executable))
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


class StaticProvider(Provider):
    """Provider that runs a fixed argv, for spawn-failure tests."""

    def __init__(self, argv: list[str]) -> None:
        self._argv = argv

    @property
    def name(self) -> str:
        return "static"

    def build_turn_cmd(self, request: TurnRequest) -> TurnCommand:
        return TurnCommand(argv=list(self._argv), stdin_payload=request.prompt + "\n", cwd=request.cwd)

    def is_available(self) -> bool:
        return True


async def collect(session, timeout: float = 15.0) -> list:
    """Drain a session's channel to the end."""
    async def _drain():
        return [item async for item in session.channel.consume()]
    return await asyncio.wait_for(_drain(), timeout=timeout)
