"""Per-session async channel carrying decoded output to the relay.

The process driver pushes records, stderr lines and finally a single
TurnResult; the relay consumes them in FIFO order. Decouples the OS
process handling from forwarding so either side can be tested with a
synthetic sequence.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Union

from streamrelay.engine.frame_decoder import Record
from streamrelay.engine.models import StderrLine, TurnResult

logger = logging.getLogger(__name__)

ChannelItem = Union[Record, StderrLine, TurnResult]

_CLOSED = object()


class RecordChannel:
    """Async FIFO from one process session to its consumer.

    ``put()`` applies backpressure when the queue is full rather than
    dropping; a stalled consumer eventually stalls the process's stdout
    pipe, which is the intended flow control.
    """

    def __init__(self, maxsize: int = 5000) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._put_count = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def put_count(self) -> int:
        return self._put_count

    async def put(self, item: ChannelItem) -> None:
        """Enqueue an item. Items after close() are discarded with a log."""
        if self._closed:
            logger.debug("RecordChannel closed, discarding %s", type(item).__name__)
            return
        self._put_count += 1
        await self._queue.put(item)

    async def close(self) -> None:
        """Mark end of stream. The consumer stops after draining."""
        if self._closed:
            return
        self._closed = True
        await self._queue.put(_CLOSED)

    async def consume(self) -> AsyncIterator[ChannelItem]:
        """Yield items in order until the channel is closed and drained."""
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                break
            yield item  # type: ignore[misc]
