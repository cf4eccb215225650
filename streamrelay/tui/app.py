"""streamrelay TUI — Textual client for the relay server."""

from __future__ import annotations

import logging

from textual.app import App, ComposeResult
from textual.widgets import Input

from streamrelay.engine.errors import AttachmentError
from streamrelay.shared.commands import SERVER_COMMANDS, format_help, parse_command
from streamrelay.shared.services.attachments import encode_image_file
from streamrelay.tui.connection import RelayClient
from streamrelay.tui.handlers.event_processor import EventProcessor
from streamrelay.tui.widgets.conversation import ConversationView
from streamrelay.tui.widgets.status_bar import StatusBar

logger = logging.getLogger(__name__)


class RelayApp(App):
    """Terminal chat client streaming Claude turns through the relay."""

    TITLE = "streamrelay"
    SUB_TITLE = "Claude relay client"

    CSS = """
    #conversation {
        height: 1fr;
    }
    #prompt {
        dock: bottom;
        margin: 0 0 1 0;
    }
    """

    BINDINGS = [
        ("ctrl+q", "quit", "Quit"),
        ("ctrl+c", "interrupt", "Stop"),
        ("escape", "interrupt", "Stop"),
        ("ctrl+l", "clear", "Clear"),
    ]

    def __init__(self, url: str, token: str | None = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.client = RelayClient(url, token=token)
        self.processor = EventProcessor(self)
        self._pending_images: list[dict[str, str]] = []

    def compose(self) -> ComposeResult:
        yield ConversationView(id="conversation")
        yield Input(placeholder="Message Claude — /help for commands", id="prompt")
        yield StatusBar(id="status-bar")

    def on_mount(self) -> None:
        self.query_one("#status-bar", StatusBar).url = self.client.url
        self.query_one("#prompt", Input).focus()
        self.run_worker(
            self.client.run(self.processor.handle, self.processor.on_connection_state),
            name="relay-client",
            exclusive=True,
        )

    async def on_unmount(self) -> None:
        await self.client.close()

    # ── Input ──

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        text = event.value.strip()
        event.input.value = ""
        if not text:
            return
        parsed = parse_command(text)
        if parsed is not None:
            await self._run_command(parsed.name, parsed.arg_text)
            return
        await self._send_chat(text)

    async def _send_chat(self, text: str) -> None:
        conv = self.query_one("#conversation", ConversationView)
        if self.processor.streaming:
            self._notice("Claude is still responding. Use /stop to interrupt first.")
            return
        entry = self.processor.transcript.add_user_message(text)
        conv.sync([entry])
        images, self._pending_images = self._pending_images, []
        self.query_one("#status-bar", StatusBar).attachments = 0
        try:
            await self.client.send_chat(
                text, images=images, session_id=self.processor.transcript.session_id,
            )
        except ConnectionError as exc:
            self._notice(f"Not sent: {exc}")

    async def _run_command(self, name: str, arg_text: str) -> None:
        if name == "help":
            self._notice(format_help())
        elif name == "stop":
            await self.action_interrupt()
        elif name == "attach":
            self._attach(arg_text)
        elif name in SERVER_COMMANDS:
            try:
                await self.client.send_command(name)
            except ConnectionError as exc:
                self._notice(f"Command failed: {exc}")
        else:
            self._notice(f"Unknown command: /{name} (try /help)")

    def _attach(self, path: str) -> None:
        if not path:
            self._notice("Usage: /attach PATH")
            return
        try:
            image = encode_image_file(path)
        except AttachmentError as exc:
            self._notice(str(exc))
            return
        self._pending_images.append(image)
        self.query_one("#status-bar", StatusBar).attachments = len(self._pending_images)
        self._notice(f"Attached {image['name']} to the next message")

    def _notice(self, text: str) -> None:
        conv = self.query_one("#conversation", ConversationView)
        conv.sync([self.processor.transcript.add_notice(text)])

    # ── Actions ──

    async def action_interrupt(self) -> None:
        try:
            await self.client.send_interrupt()
        except ConnectionError as exc:
            self._notice(f"Interrupt failed: {exc}")

    async def action_clear(self) -> None:
        await self._run_command("clear", "")
