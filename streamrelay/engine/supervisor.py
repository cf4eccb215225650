"""Per-connection supervisor enforcing one live process session.

The supervisor builds the turn invocation through a Provider, spawns a
ProcessSession and runs its supervision task. The active-session slot
is guarded by an asyncio.Lock; only the exit path of the slot's current
session clears it, so a new turn can never overlap a live one.
"""
from __future__ import annotations

import asyncio
import logging

from streamrelay.adapters.record_channel import RecordChannel

from .config import RelayConfig
from .errors import SessionBusyError
from .models import TurnContext
from .process_session import ProcessSession
from .providers import ClaudeProvider, Provider, TurnRequest

logger = logging.getLogger(__name__)


class SessionSupervisor:
    """Owns zero or one ProcessSession for a single connection."""

    def __init__(
        self,
        provider: Provider,
        *,
        turn_timeout_seconds: float = 600.0,
        kill_grace_seconds: float = 5.0,
        record_queue_size: int = 5000,
    ) -> None:
        self.provider = provider
        self.turn_timeout_seconds = turn_timeout_seconds
        self.kill_grace_seconds = kill_grace_seconds
        self.record_queue_size = record_queue_size
        self._lock = asyncio.Lock()
        self._active: ProcessSession | None = None
        self._task: asyncio.Task[None] | None = None

    @classmethod
    def from_config(
        cls, config: RelayConfig, provider: Provider | None = None,
    ) -> SessionSupervisor:
        provider = provider or ClaudeProvider(
            command=config.claude_command,
            api_key_env=config.api_key_env,
            extra_args=config.extra_args,
        )
        return cls(
            provider,
            turn_timeout_seconds=config.turn_timeout_seconds,
            kill_grace_seconds=config.kill_grace_seconds,
            record_queue_size=config.record_queue_size,
        )

    @property
    def active_session(self) -> ProcessSession | None:
        session = self._active
        if session is None or session.done:
            return None
        return session

    @property
    def is_active(self) -> bool:
        return self.active_session is not None

    async def start(
        self,
        connection_id: str,
        turn_input: str,
        continuation_token: str | None = None,
        extra_context: TurnContext | None = None,
    ) -> ProcessSession:
        """Spawn a process for one turn and return its session immediately.

        Raises SessionBusyError while a turn is live. A turn that was
        already cancelled is given the kill grace period to exit first.
        """
        ctx = extra_context or TurnContext()

        async with self._lock:
            previous = self.active_session
            if previous is not None and not previous.cancelled:
                raise SessionBusyError(connection_id)

        if previous is not None:
            logger.info(
                "Waiting for cancelled turn %s to exit before starting %s",
                previous.message_id, ctx.message_id,
            )
            if not await previous.wait_closed(self.kill_grace_seconds):
                previous.kill()
                await previous.wait_closed(self.kill_grace_seconds)

        async with self._lock:
            if self.active_session is not None:
                raise SessionBusyError(connection_id)

            request = TurnRequest(
                prompt=turn_input,
                continuation_token=continuation_token,
                cwd=ctx.cwd,
                attachment_paths=list(ctx.attachment_paths),
            )
            command = self.provider.build_turn_cmd(request)
            session = await ProcessSession.spawn(
                connection_id,
                command,
                message_id=ctx.message_id,
                continuation_token=continuation_token,
                channel=RecordChannel(self.record_queue_size),
                kill_grace_seconds=self.kill_grace_seconds,
            )
            self._active = session
            self._task = asyncio.create_task(
                self._supervise(session),
                name=f"supervise-{connection_id}-{ctx.message_id}",
            )
        return session

    async def _supervise(self, session: ProcessSession) -> None:
        try:
            await session.run(self.turn_timeout_seconds)
        finally:
            async with self._lock:
                if self._active is session:
                    self._active = None
                    self._task = None

    async def cancel(self, connection_id: str) -> bool:
        """Signal the active turn to stop. False when nothing is running."""
        async with self._lock:
            session = self.active_session
            if session is None:
                logger.debug("cancel: no active turn on connection %s", connection_id)
                return False
            session.cancel()
            return True

    async def shutdown(self) -> None:
        """Cancel any live turn and wait for its supervision task to end."""
        async with self._lock:
            session, task = self._active, self._task
        if session is None or task is None:
            return
        session.cancel()
        try:
            await asyncio.wait_for(
                asyncio.shield(task), timeout=self.kill_grace_seconds * 2,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Supervision task for pid %s did not finish; cancelling", session.pid,
            )
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
