from __future__ import annotations

import asyncio

import pytest
from aiohttp.test_utils import TestClient, TestServer

from streamrelay.engine.config import RelayConfig
from streamrelay.engine.providers import ClaudeProvider
from streamrelay.server.server import RelayServer
from streamrelay.tui.connection import RelayClient


def _server(fake_cli, tmp_path, **kwargs) -> RelayServer:
    config = RelayConfig(
        project_path=str(tmp_path),
        attachments_dir=str(tmp_path / "attachments"),
        kill_grace_seconds=1.0,
        heartbeat_seconds=0,
    )
    return RelayServer(config, provider=ClaudeProvider(command=str(fake_cli)), **kwargs)


async def _receive_until(ws, msg_type: str, timeout: float = 15.0) -> list[dict]:
    received: list[dict] = []

    async def _loop():
        while True:
            msg = await ws.receive_json()
            received.append(msg)
            if msg["type"] == msg_type:
                return

    await asyncio.wait_for(_loop(), timeout=timeout)
    return received


@pytest.mark.asyncio
async def test_health_reports_counts(fake_cli, tmp_path) -> None:
    server = _server(fake_cli, tmp_path)
    async with TestClient(TestServer(server.app)) as client:
        resp = await client.get("/api/health")
        assert resp.status == 200
        body = await resp.json()

    assert body["status"] == "healthy"
    assert body["clients"] == 0
    assert body["activeProcesses"] == 0
    assert body["timestamp"].endswith("Z")


@pytest.mark.asyncio
async def test_websocket_chat_turn(fake_cli, tmp_path) -> None:
    server = _server(fake_cli, tmp_path)
    async with TestClient(TestServer(server.app)) as client:
        ws = await client.ws_connect("/ws")
        hello = await ws.receive_json(timeout=5)
        assert hello["type"] == "connection"
        assert server.relay.client_count == 1

        await ws.send_json({"type": "chat", "messageId": "m-7", "content": "hi"})
        received = await _receive_until(ws, "claude-complete")

        assert received[0] == {
            "type": "chat_received",
            "timestamp": received[0]["timestamp"],
            "messageId": "m-7",
        }
        assert received[-1]["exitCode"] == 0
        results = [m for m in received if m["type"] == "claude-response" and m["data"]["type"] == "result"]
        assert len(results) == 1

        await ws.close()
        for _ in range(50):
            if server.relay.client_count == 0:
                break
            await asyncio.sleep(0.02)
        assert server.relay.client_count == 0


@pytest.mark.asyncio
async def test_invalid_frames_keep_connection_open(fake_cli, tmp_path) -> None:
    server = _server(fake_cli, tmp_path)
    async with TestClient(TestServer(server.app)) as client:
        ws = await client.ws_connect("/ws")
        await ws.receive_json(timeout=5)

        await ws.send_str("not json")
        first = await ws.receive_json(timeout=5)
        await ws.send_bytes(b"\x00\x01")
        second = await ws.receive_json(timeout=5)
        await ws.send_json({"type": "command", "command": "status"})
        status = await ws.receive_json(timeout=5)

        assert first["type"] == "error"
        assert first["message"].startswith("Invalid JSON")
        assert second["message"] == "Binary frames are not supported"
        assert status["data"]["connected"] is True
        await ws.close()


@pytest.mark.asyncio
async def test_resolver_rejects_unknown_token(fake_cli, tmp_path) -> None:
    tokens = {"good": str(tmp_path)}
    server = _server(fake_cli, tmp_path, resolver=tokens.get)
    async with TestClient(TestServer(server.app)) as client:
        resp = await client.get("/ws", params={"token": "bad"})
        assert resp.status == 401
        assert await resp.json() == {"error": "Invalid or missing token"}

        ws = await client.ws_connect("/ws", params={"token": "good"})
        hello = await ws.receive_json(timeout=5)
        assert hello["type"] == "connection"
        conn = server.relay.get(hello["clientId"])
        assert conn is not None
        assert conn.workspace == str(tmp_path)
        await ws.close()


@pytest.mark.asyncio
async def test_async_resolver_is_awaited(fake_cli, tmp_path) -> None:
    async def resolver(token):
        return str(tmp_path / "ws") if token == "t" else None

    server = _server(fake_cli, tmp_path, resolver=resolver)
    async with TestClient(TestServer(server.app)) as client:
        resp = await client.get("/ws")
        assert resp.status == 401

        ws = await client.ws_connect("/ws?token=t")
        hello = await ws.receive_json(timeout=5)
        assert server.relay.get(hello["clientId"]).workspace == str(tmp_path / "ws")
        await ws.close()


@pytest.mark.asyncio
async def test_relay_client_exchanges_messages(fake_cli, tmp_path) -> None:
    server = _server(fake_cli, tmp_path)
    async with TestServer(server.app) as test_server:
        client = RelayClient(str(test_server.make_url("/ws")), heartbeat=None)
        with pytest.raises(ConnectionError):
            await client.send_interrupt()

        await client.connect()
        stream = client.messages()
        hello = await asyncio.wait_for(stream.__anext__(), timeout=5)
        assert client.connected
        assert client.client_id == hello["clientId"]

        await client.send_command("status")
        status = await asyncio.wait_for(stream.__anext__(), timeout=5)
        assert status["data"]["clientId"] == client.client_id

        await stream.aclose()
        await client.close()
        assert not client.connected
