"""Connection-keyed relay between WebSocket clients and process sessions.

Inbound messages become supervisor calls; records from a turn's channel
become outbound messages tagged with the turn's correlation id. Each
Connection owns its own SessionSupervisor, so there is no global
process table and one connection's turn never blocks another's.
"""
from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any, Protocol

from streamrelay.adapters.events import (
    INBOUND_TYPES,
    ChatReceived,
    ChatRequest,
    ClaudeComplete,
    ClaudeError,
    ClaudeOutput,
    ClaudeResponse,
    CommandRequest,
    CommandResponse,
    ConnectionMessage,
    ErrorMessage,
    InterruptConfirmed,
    InterruptRequest,
    WireMessage,
    dict_to_message,
    message_to_dict,
    now_iso,
)
from streamrelay.engine.config import RelayConfig
from streamrelay.engine.errors import (
    AttachmentError,
    ProcessSpawnError,
    SessionBusyError,
    TurnTimeoutError,
)
from streamrelay.engine.frame_decoder import Record
from streamrelay.engine.models import StderrLine, TurnContext, TurnResult
from streamrelay.engine.process_session import ProcessSession
from streamrelay.engine.providers import Provider
from streamrelay.engine.supervisor import SessionSupervisor
from streamrelay.shared.services.attachments import AttachmentStore

logger = logging.getLogger(__name__)


class MessageSender(Protocol):
    """Outbound side of a connection (an aiohttp WebSocketResponse)."""

    @property
    def closed(self) -> bool: ...

    async def send_json(self, data: Any) -> None: ...


@dataclass
class Connection:
    """One client socket and the turn state it owns."""
    client_id: str
    sender: MessageSender
    supervisor: SessionSupervisor
    workspace: str
    continuation_token: str | None = None
    closed: bool = False
    connected_at: str = field(default_factory=now_iso)
    forward_tasks: set[asyncio.Task[None]] = field(default_factory=set)


class EventRelay:
    """Registry of live connections and the message handling for each."""

    def __init__(
        self,
        config: RelayConfig,
        *,
        provider: Provider | None = None,
        attachments: AttachmentStore | None = None,
        supervisor_factory: Callable[[], SessionSupervisor] | None = None,
    ) -> None:
        self._config = config
        self._attachments = attachments or AttachmentStore(config.attachments_dir)
        self._supervisor_factory = supervisor_factory or (
            lambda: SessionSupervisor.from_config(config, provider)
        )
        self._connections: dict[str, Connection] = {}

    # -- Registry (read-only views) --

    @property
    def client_count(self) -> int:
        return len(self._connections)

    @property
    def active_process_count(self) -> int:
        return sum(1 for c in self._connections.values() if c.supervisor.is_active)

    def connections(self) -> Iterator[Connection]:
        return iter(tuple(self._connections.values()))

    def get(self, client_id: str) -> Connection | None:
        return self._connections.get(client_id)

    # -- Lifecycle --

    async def open_connection(
        self, sender: MessageSender, workspace: str | None = None,
    ) -> Connection:
        conn = Connection(
            client_id=uuid.uuid4().hex,
            sender=sender,
            supervisor=self._supervisor_factory(),
            workspace=workspace or self._config.project_path,
        )
        self._connections[conn.client_id] = conn
        logger.info(
            "Client %s connected (workspace=%s, clients=%d)",
            conn.client_id, conn.workspace, len(self._connections),
        )
        await self.send(conn, ConnectionMessage(client_id=conn.client_id))
        return conn

    async def close_connection(self, conn: Connection) -> None:
        """Tear down a connection: stop its turn and remove its attachments."""
        if conn.closed:
            return
        conn.closed = True
        self._connections.pop(conn.client_id, None)
        logger.info(
            "Client %s disconnected (clients=%d)", conn.client_id, len(self._connections),
        )
        await conn.supervisor.shutdown()
        # Forwarders finish once the channel's TurnResult has been drained
        pending = set(conn.forward_tasks)
        if pending:
            _, still_running = await asyncio.wait(
                pending, timeout=self._config.kill_grace_seconds,
            )
            for task in still_running:
                logger.warning("Forwarding task %s still running after close", task.get_name())
        self._attachments.cleanup(conn.client_id)

    async def shutdown(self) -> None:
        for conn in list(self._connections.values()):
            await self.close_connection(conn)

    # -- Outbound --

    async def send(self, conn: Connection, message: WireMessage) -> bool:
        """Send to a connection. Returns False when it is already gone."""
        if conn.closed or conn.sender.closed:
            logger.debug(
                "Dropping %s for closed connection %s", message.type, conn.client_id,
            )
            return False
        try:
            await conn.sender.send_json(message_to_dict(message))
        except ConnectionError as exc:
            logger.debug("Send to %s failed: %s", conn.client_id, exc)
            return False
        return True

    async def send_error(self, conn: Connection, text: str) -> None:
        await self.send(conn, ErrorMessage(message=text))

    # -- Inbound --

    async def handle_raw(self, conn: Connection, raw: str) -> None:
        """Parse one text frame and dispatch it."""
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("Invalid JSON from client %s: %s", conn.client_id, exc)
            await self.send_error(conn, f"Invalid JSON: {exc.msg}")
            return
        if not isinstance(data, dict):
            await self.send_error(conn, "Message must be a JSON object")
            return
        await self.handle_message(conn, data)

    async def handle_message(self, conn: Connection, data: dict[str, Any]) -> None:
        msg_type = data.get("type")
        logger.debug("Message from %s: type=%s", conn.client_id, msg_type)
        if msg_type not in INBOUND_TYPES:
            await self.send_error(conn, f"Unknown message type: {msg_type}")
            return
        try:
            message = dict_to_message(data)
            if isinstance(message, ChatRequest):
                await self._handle_chat(conn, message)
            elif isinstance(message, InterruptRequest):
                await self._handle_interrupt(conn)
            elif isinstance(message, CommandRequest):
                await self._handle_command(conn, message)
        except Exception as exc:
            logger.exception("Error handling %s from client %s", msg_type, conn.client_id)
            await self.send_error(conn, str(exc) or type(exc).__name__)

    async def _handle_chat(self, conn: Connection, request: ChatRequest) -> None:
        await self.send(conn, ChatReceived(message_id=request.message_id))

        try:
            paths = self._attachments.save_images(conn.client_id, request.images)
        except AttachmentError as exc:
            logger.warning("Rejected attachment from %s: %s", conn.client_id, exc)
            await self.send_error(conn, str(exc))
            return

        token = request.session_id or conn.continuation_token
        ctx = TurnContext(cwd=conn.workspace, attachment_paths=paths)
        try:
            session = await conn.supervisor.start(
                conn.client_id, request.content, token, ctx,
            )
        except SessionBusyError:
            await self.send_error(
                conn, "A Claude request is already running. Stop it before sending another message.",
            )
            return
        except ProcessSpawnError as exc:
            logger.error("Spawn failed for client %s: %s", conn.client_id, exc)
            await self.send_error(conn, exc.user_message)
            return

        task = asyncio.create_task(
            self._forward_turn(conn, session),
            name=f"forward-{conn.client_id}-{session.message_id}",
        )
        conn.forward_tasks.add(task)
        task.add_done_callback(conn.forward_tasks.discard)

    async def _handle_interrupt(self, conn: Connection) -> None:
        if await conn.supervisor.cancel(conn.client_id):
            logger.info("Interrupt requested by client %s", conn.client_id)
            await self.send(conn, InterruptConfirmed())
        else:
            await self.send_error(conn, "No active Claude process to interrupt")

    async def _handle_command(self, conn: Connection, request: CommandRequest) -> None:
        command = request.command
        if command == "status":
            await self.send(conn, CommandResponse(
                command="status",
                data={
                    "connected": not conn.closed,
                    "claudeActive": conn.supervisor.is_active,
                    "clientId": conn.client_id,
                    "sessionId": conn.continuation_token,
                    "connectedAt": conn.connected_at,
                },
            ))
        elif command == "reset":
            await conn.supervisor.cancel(conn.client_id)
            conn.continuation_token = None
            await self.send(conn, CommandResponse(command="reset"))
        elif command == "clear":
            conn.continuation_token = None
            await self.send(conn, CommandResponse(command="clear"))
        else:
            await self.send_error(conn, f"Unknown command: {command}")

    # -- Forwarding --

    async def _forward_turn(self, conn: Connection, session: ProcessSession) -> None:
        """Drain one turn's channel in order, even after the client is gone."""
        message_id = session.message_id
        try:
            async for item in session.channel.consume():
                if isinstance(item, Record):
                    if item.is_structured:
                        session_id = item.session_id
                        if session_id and session_id != conn.continuation_token:
                            logger.info(
                                "Client %s continuation token is now %s",
                                conn.client_id, session_id,
                            )
                            conn.continuation_token = session_id
                        await self.send(conn, ClaudeResponse(
                            message_id=message_id, data=item.data or {},
                        ))
                    else:
                        await self.send(conn, ClaudeOutput(
                            message_id=message_id, content=item.text,
                        ))
                elif isinstance(item, StderrLine):
                    if item.is_debug:
                        logger.debug("stderr [%s]: %s", message_id, item.text)
                        continue
                    logger.info("stderr [%s]: %s", message_id, item.text)
                    await self.send(conn, ClaudeError(
                        message_id=message_id, error=item.text,
                    ))
                elif isinstance(item, TurnResult):
                    await self._finish_turn(conn, item)
        except Exception:
            logger.exception("Forwarding failed for turn %s", message_id)

    async def _finish_turn(self, conn: Connection, result: TurnResult) -> None:
        await self.send(conn, ClaudeComplete(
            message_id=result.message_id, exit_code=result.exit_code,
        ))
        if result.success:
            return
        if isinstance(result.error, TurnTimeoutError):
            text = result.error.user_message
        elif result.error is not None:
            text = str(result.error)
        else:
            text = f"Claude process exited with code {result.exit_code}"
        await self.send_error(conn, text)
