from __future__ import annotations

import asyncio

import pytest

from streamrelay.adapters.record_channel import RecordChannel
from streamrelay.engine.frame_decoder import decode_line
from streamrelay.engine.models import StderrLine, TurnResult, TurnStatus


@pytest.mark.asyncio
async def test_items_are_consumed_in_order_until_close() -> None:
    channel = RecordChannel()
    items = [
        decode_line(b'{"type": "system"}'),
        StderrLine("warn"),
        TurnResult(message_id="m", status=TurnStatus.SUCCESS, exit_code=0),
    ]
    for item in items:
        await channel.put(item)
    await channel.close()
    await channel.put(StderrLine("late"))

    received = [item async for item in channel.consume()]

    assert received == items
    assert channel.put_count == 3
    assert channel.closed


@pytest.mark.asyncio
async def test_full_channel_applies_backpressure() -> None:
    channel = RecordChannel(maxsize=1)
    await channel.put(StderrLine("a"))

    blocked = asyncio.create_task(channel.put(StderrLine("b")))
    await asyncio.sleep(0.01)
    assert not blocked.done()

    stream = channel.consume()
    assert (await stream.__anext__()).text == "a"
    await asyncio.wait_for(blocked, timeout=1)
    assert (await stream.__anext__()).text == "b"
