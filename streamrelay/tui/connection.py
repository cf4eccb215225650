"""WebSocket client for the relay, used by the terminal UI."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Union

import aiohttp

logger = logging.getLogger(__name__)

MessageHandler = Callable[[dict[str, Any]], Union[Awaitable[None], None]]


class RelayClient:
    """Connects to ``/ws`` and exchanges JSON messages with the relay.

    ``run()`` keeps the connection alive, reconnecting after a fixed
    delay, and hands every inbound message to a handler callback.
    """

    def __init__(
        self,
        url: str,
        *,
        token: str | None = None,
        reconnect_delay: float = 2.0,
        heartbeat: float | None = 30.0,
    ) -> None:
        self.url = url
        self.token = token
        self.reconnect_delay = reconnect_delay
        self.heartbeat = heartbeat
        self.client_id: str | None = None
        self._session: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._closing = False

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def connect(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        params = {"token": self.token} if self.token else None
        self._ws = await self._session.ws_connect(
            self.url, params=params, heartbeat=self.heartbeat,
        )
        logger.info("Connected to relay at %s", self.url)

    async def close(self) -> None:
        self._closing = True
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._ws = None

    async def messages(self) -> AsyncIterator[dict[str, Any]]:
        """Yield decoded messages until the socket closes."""
        ws = self._ws
        if ws is None:
            return
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                try:
                    data = json.loads(msg.data)
                except json.JSONDecodeError:
                    logger.warning("Ignoring non-JSON frame from relay: %.200s", msg.data)
                    continue
                if not isinstance(data, dict):
                    continue
                if data.get("type") == "connection":
                    self.client_id = data.get("clientId")
                yield data
            elif msg.type == aiohttp.WSMsgType.ERROR:
                logger.warning("WebSocket error: %s", ws.exception())
                break

    async def run(
        self,
        handler: MessageHandler,
        on_state: Callable[[str], None] | None = None,
    ) -> None:
        """Connect, dispatch messages, and reconnect until close()."""
        while not self._closing:
            try:
                await self.connect()
                if on_state:
                    on_state("connected")
                async for data in self.messages():
                    result = handler(data)
                    if inspect.isawaitable(result):
                        await result
            except (aiohttp.ClientError, OSError) as exc:
                logger.warning("Relay connection failed: %s", exc)
            if self._closing:
                break
            if on_state:
                on_state("disconnected")
            await asyncio.sleep(self.reconnect_delay)

    # ── Outbound ──

    async def send(self, payload: dict[str, Any]) -> None:
        if not self.connected:
            raise ConnectionError("Not connected to relay")
        assert self._ws is not None
        await self._ws.send_json(payload)

    async def send_chat(
        self,
        content: str,
        *,
        images: list[dict[str, Any]] | None = None,
        session_id: str | None = None,
    ) -> str:
        """Send a chat turn. Returns the client-side message id."""
        message_id = uuid.uuid4().hex[:12]
        payload: dict[str, Any] = {
            "type": "chat",
            "messageId": message_id,
            "content": content,
        }
        if images:
            payload["images"] = images
        if session_id:
            payload["sessionId"] = session_id
        await self.send(payload)
        return message_id

    async def send_interrupt(self) -> None:
        await self.send({"type": "interrupt"})

    async def send_command(self, command: str, args: Any = None) -> None:
        payload: dict[str, Any] = {"type": "command", "command": command}
        if args is not None:
            payload["args"] = args
        await self.send(payload)
