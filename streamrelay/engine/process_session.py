"""One external-process invocation for one chat turn.

A ProcessSession owns the OS process, the frame decoder for its stdout
and the record channel its output is pushed onto. ``run()`` is the
supervision coroutine: it pumps stdout and stderr until EOF, reaps the
process, and finishes the channel with exactly one TurnResult.
"""
from __future__ import annotations

import asyncio
import logging
import os
import signal
import time
from collections.abc import AsyncIterator

from streamrelay.adapters.record_channel import RecordChannel

from .errors import ProcessExitError, ProcessSpawnError, TurnTimeoutError
from .frame_decoder import FrameDecoder, iter_records
from .models import (
    StderrLine,
    TurnResult,
    TurnStatus,
    classify_exit,
    normalize_exit_code,
)
from .providers.base import TurnCommand

logger = logging.getLogger(__name__)

# Bytes requested per stdout read; lines may span many reads.
READ_CHUNK_SIZE = 64 * 1024


class ProcessSession:
    """A live external process plus its decoding and termination state."""

    def __init__(
        self,
        connection_id: str,
        process: asyncio.subprocess.Process,
        *,
        message_id: str,
        continuation_token: str | None = None,
        channel: RecordChannel | None = None,
        kill_grace_seconds: float = 5.0,
    ) -> None:
        self.connection_id = connection_id
        self.process = process
        self.message_id = message_id
        self.continuation_token = continuation_token
        self.channel = channel or RecordChannel()
        self.kill_grace_seconds = kill_grace_seconds
        self.decoder = FrameDecoder()
        self.started_at = time.monotonic()
        self.cancelled = False
        self.timed_out = False
        self.result: TurnResult | None = None
        self._terminate_sent = False
        self._kill_handle: asyncio.TimerHandle | None = None
        self._done = asyncio.Event()

    @classmethod
    async def spawn(
        cls,
        connection_id: str,
        command: TurnCommand,
        *,
        message_id: str,
        continuation_token: str | None = None,
        channel: RecordChannel | None = None,
        kill_grace_seconds: float = 5.0,
    ) -> ProcessSession:
        """Start the process, write the turn input to stdin and close it."""
        program = command.argv[0]
        if command.cwd and not os.path.isdir(command.cwd):
            raise ProcessSpawnError(
                program, f"invalid working directory {command.cwd}", workspace=command.cwd,
            )
        try:
            # Own process group so signals reach the tool's children too
            proc = await asyncio.create_subprocess_exec(
                *command.argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=command.cwd,
                env=command.env,
                start_new_session=True,
            )
        except FileNotFoundError as exc:
            raise ProcessSpawnError(program, "command not found") from exc
        except PermissionError as exc:
            raise ProcessSpawnError(program, "permission denied") from exc
        except OSError as exc:
            raise ProcessSpawnError(program, exc.strerror or str(exc)) from exc

        logger.info(
            "Spawned %s for connection %s (pid=%s message=%s resume=%s)",
            program, connection_id, proc.pid, message_id,
            continuation_token or "-",
        )
        logger.debug("Command line: %s", " ".join(command.argv))

        session = cls(
            connection_id,
            proc,
            message_id=message_id,
            continuation_token=continuation_token,
            channel=channel,
            kill_grace_seconds=kill_grace_seconds,
        )
        await session._write_stdin(command.stdin_payload)
        return session

    async def _write_stdin(self, payload: str) -> None:
        stdin = self.process.stdin
        if stdin is None:
            return
        try:
            stdin.write(payload.encode("utf-8"))
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            # Process exited before reading its input; run() reports the exit
            logger.warning(
                "Process %s closed stdin before the turn input was written",
                self.process.pid,
            )
        finally:
            stdin.close()

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def done(self) -> bool:
        return self._done.is_set()

    @property
    def elapsed_seconds(self) -> float:
        return time.monotonic() - self.started_at

    async def wait_closed(self, timeout: float | None = None) -> bool:
        """Wait until run() has finished. Returns False on timeout."""
        try:
            await asyncio.wait_for(self._done.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    # -- Signalling --

    def _signal(self, sig: int) -> bool:
        if self.process.returncode is not None:
            return False
        try:
            os.killpg(self.process.pid, sig)
        except ProcessLookupError:
            return False
        except PermissionError:
            # Group gone or not ours; fall back to the direct child
            try:
                self.process.send_signal(sig)
            except ProcessLookupError:
                return False
        return True

    def terminate(self) -> bool:
        """Send SIGTERM once. Returns True while the process is still live."""
        if self.process.returncode is not None:
            return False
        if self._terminate_sent:
            return True
        self._terminate_sent = True
        sent = self._signal(signal.SIGTERM)
        logger.info(
            "Sent SIGTERM to pid %s (connection %s, sent=%s)",
            self.process.pid, self.connection_id, sent,
        )
        return True

    def kill(self) -> None:
        if self._signal(signal.SIGKILL):
            logger.warning(
                "Force-killed pid %s (connection %s) after %.1fs grace",
                self.process.pid, self.connection_id, self.kill_grace_seconds,
            )

    def cancel(self) -> bool:
        """Request a graceful stop and arm the SIGKILL fallback.

        Idempotent: the signal is sent only on the first call.
        """
        if self.done:
            return False
        first = not self.cancelled
        self.cancelled = True
        live = self.terminate()
        if first and live and self._kill_handle is None:
            loop = asyncio.get_running_loop()
            self._kill_handle = loop.call_later(self.kill_grace_seconds, self.kill)
        return True

    async def stop(self) -> int | None:
        """SIGTERM, wait up to the grace period, then SIGKILL."""
        self.terminate()
        try:
            await asyncio.wait_for(self.process.wait(), timeout=self.kill_grace_seconds)
        except asyncio.TimeoutError:
            self.kill()
            await self.process.wait()
        return normalize_exit_code(self.process.returncode)

    # -- Pumps --

    @staticmethod
    async def _read_chunks(stream: asyncio.StreamReader) -> AsyncIterator[bytes]:
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                return
            yield chunk

    async def _pump_stdout(self) -> None:
        stream = self.process.stdout
        if stream is None:
            return
        async for record in iter_records(self._read_chunks(stream), self.decoder):
            await self.channel.put(record)

    @staticmethod
    async def _read_line_unbounded(stream: asyncio.StreamReader) -> bytes:
        """Read a full line from *stream* with no size limit."""
        chunks: list[bytes] = []
        while True:
            try:
                chunks.append(await stream.readuntil(b"\n"))
                return b"".join(chunks)
            except asyncio.LimitOverrunError as exc:
                chunks.append(await stream.read(exc.consumed))
            except asyncio.IncompleteReadError as exc:
                chunks.append(exc.partial)
                return b"".join(chunks)

    async def _pump_stderr(self) -> None:
        stream = self.process.stderr
        if stream is None:
            return
        while True:
            line = await self._read_line_unbounded(stream)
            if not line:
                break
            text = line.decode("utf-8", errors="replace").rstrip("\r\n")
            if not text.strip():
                continue
            await self.channel.put(StderrLine(text))

    async def _drive(self) -> None:
        await asyncio.gather(self._pump_stdout(), self._pump_stderr())
        await self.process.wait()

    # -- Supervision --

    async def run(self, timeout_seconds: float | None = None) -> TurnResult:
        """Pump output until the process exits, then emit the TurnResult."""
        error: Exception | None = None
        drive = asyncio.ensure_future(self._drive())
        try:
            try:
                done, _ = await asyncio.wait({drive}, timeout=timeout_seconds)
                if not done:
                    self.timed_out = True
                    logger.warning(
                        "Turn %s on connection %s exceeded %.0fs; terminating pid %s",
                        self.message_id, self.connection_id,
                        timeout_seconds or 0, self.process.pid,
                    )
                    # Keep pumping while the process shuts down so its pipes reach EOF
                    self.terminate()
                    try:
                        await asyncio.wait_for(
                            asyncio.shield(drive), timeout=self.kill_grace_seconds,
                        )
                    except asyncio.TimeoutError:
                        self.kill()
                        await drive
                drive.result()
            except asyncio.CancelledError:
                drive.cancel()
                if self.decoder.pending_bytes:
                    logger.debug(
                        "Discarding %d undecoded bytes from pid %s",
                        self.decoder.pending_bytes, self.process.pid,
                    )
                self.kill()
                await self.channel.close()
                raise
            except Exception as exc:
                logger.exception(
                    "Supervision of pid %s failed", self.process.pid,
                )
                error = exc
                await self.stop()

            exit_code = normalize_exit_code(self.process.returncode)
            status = classify_exit(
                exit_code, cancelled=self.cancelled, timed_out=self.timed_out,
            )
            if error is not None:
                status = TurnStatus.FAILED
            elif status is TurnStatus.TIMEOUT:
                error = TurnTimeoutError(self.message_id, timeout_seconds or 0)
            elif status is TurnStatus.FAILED:
                error = ProcessExitError(self.message_id, exit_code)

            self.result = TurnResult(
                message_id=self.message_id,
                status=status,
                exit_code=exit_code,
                error=error,
                duration_seconds=self.elapsed_seconds,
            )
            logger.info(
                "Turn %s on connection %s finished: status=%s exit=%s "
                "lines=%d records=%d (%.1fs)",
                self.message_id, self.connection_id, status.value, exit_code,
                self.decoder.lines_decoded, self.channel.put_count,
                self.result.duration_seconds,
            )
            await self.channel.put(self.result)
            await self.channel.close()
            return self.result
        finally:
            if self._kill_handle is not None:
                self._kill_handle.cancel()
                self._kill_handle = None
            self._done.set()
