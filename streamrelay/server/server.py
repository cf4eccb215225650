"""HTTP + WebSocket server for the relay.

Exposes one WebSocket endpoint that streams turn output to its client
and a health endpoint with connection counts.

Usage:
    streamrelay --server [--host HOST] [--port PORT]
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from typing import Union

from aiohttp import WSCloseCode, WSMsgType, web

from streamrelay.adapters.events import now_iso
from streamrelay.engine.config import RelayConfig
from streamrelay.engine.providers import Provider

from .relay import EventRelay

logger = logging.getLogger(__name__)

# token -> workspace path, or None to reject the connection
WorkspaceResolver = Callable[
    [Union[str, None]], Union[str, None, Awaitable[Union[str, None]]]
]


class RelayServer:
    """aiohttp application hosting an EventRelay."""

    def __init__(
        self,
        config: RelayConfig,
        *,
        resolver: WorkspaceResolver | None = None,
        provider: Provider | None = None,
        relay: EventRelay | None = None,
    ) -> None:
        self._config = config
        self._host = config.host
        self._port = config.port
        self._resolver = resolver
        self.relay = relay or EventRelay(config, provider=provider)
        self._started_at = time.time()
        self._app = web.Application(middlewares=[self._request_logging_middleware])
        self._app.on_shutdown.append(self._on_shutdown)
        self._setup_routes()

    @property
    def app(self) -> web.Application:
        return self._app

    # ── Middleware ──

    @web.middleware
    async def _request_logging_middleware(self, request: web.Request, handler) -> web.StreamResponse:
        req_id = request.headers.get("x-relay-request-id", str(uuid.uuid4())[:8])
        request["req_id"] = req_id
        start = time.monotonic()
        logger.info("HTTP %s %s req=%s from=%s", request.method, request.path, req_id, request.remote)
        try:
            response = await handler(request)
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.info(
                "HTTP %s %s req=%s status=%s duration_ms=%.1f",
                request.method, request.path, req_id,
                getattr(response, "status", "?"), elapsed_ms,
            )
            return response
        except web.HTTPException:
            raise
        except Exception:
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.exception("HTTP %s %s req=%s failed duration_ms=%.1f", request.method, request.path, req_id, elapsed_ms)
            raise

    # ── Route setup ──

    def _setup_routes(self) -> None:
        r = self._app.router
        r.add_get("/ws", self._handle_ws)
        r.add_get("/api/health", self._handle_health)

    # ── Lifecycle ──

    async def start(self) -> None:
        """Start listening and serve until cancelled."""
        runner = web.AppRunner(self._app)
        await runner.setup()
        site = web.TCPSite(runner, self._host, self._port)
        await site.start()
        logger.info(
            "streamrelay listening on ws://%s:%d/ws (command=%s project=%s)",
            self._host, self._port, self._config.claude_command, self._config.project_path,
        )

        try:
            await asyncio.Event().wait()
        except (KeyboardInterrupt, asyncio.CancelledError):
            logger.info("Server shutting down")
        finally:
            await runner.cleanup()

    async def _on_shutdown(self, app: web.Application) -> None:
        for conn in self.relay.connections():
            close = getattr(conn.sender, "close", None)
            if close is not None:
                await close(code=WSCloseCode.GOING_AWAY, message=b"Server shutdown")
        await self.relay.shutdown()

    async def _resolve_workspace(self, token: str | None) -> str | None:
        if self._resolver is None:
            return self._config.project_path
        result = self._resolver(token)
        if inspect.isawaitable(result):
            result = await result
        return result

    # ── HTTP handlers ──

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "healthy",
            "timestamp": now_iso(),
            "clients": self.relay.client_count,
            "activeProcesses": self.relay.active_process_count,
        })

    async def _handle_ws(self, request: web.Request) -> web.StreamResponse:
        token = request.query.get("token")
        workspace = await self._resolve_workspace(token)
        if workspace is None:
            logger.warning("Rejected WebSocket from %s: invalid token", request.remote)
            return web.json_response({"error": "Invalid or missing token"}, status=401)

        heartbeat = self._config.heartbeat_seconds or None
        ws = web.WebSocketResponse(heartbeat=heartbeat)
        await ws.prepare(request)

        conn = await self.relay.open_connection(ws, workspace)
        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    await self.relay.handle_raw(conn, msg.data)
                elif msg.type == WSMsgType.BINARY:
                    await self.relay.send_error(conn, "Binary frames are not supported")
                elif msg.type == WSMsgType.ERROR:
                    logger.warning(
                        "WebSocket error for client %s: %s", conn.client_id, ws.exception(),
                    )
        finally:
            await self.relay.close_connection(conn)
        return ws
