"""
tests/integration/test_gateway_integration.py — End-to-end over real WebSockets

Starts a RabbitGateway on an ephemeral localhost port and drives it with the
websockets client, the way an R1 would.

Coverage:
  - connect.challenge is the first frame on every connection
  - Pairing success (three ordered frames) and deviceConnected
  - Wrong token → single 401, connection stays usable
  - chat.send → message notification + ack
  - send_text → chat event on the device
  - Re-pairing the same id moves send_text to the newest connection
  - Malformed JSON does not close the connection
  - Deeply nested JSON does not close the connection either
  - Disconnect unregisters and raises deviceDisconnected
  - An aborted transport raises one error notification; other devices keep working
  - The token only reaches the logs with debug enabled
  - Port already in use → GatewayStartError

Run:
    pytest tests/integration/test_gateway_integration.py -v
"""

from __future__ import annotations

import asyncio
import json

import pytest
from structlog.testing import capture_logs
from websockets.asyncio.client import connect as ws_connect

from r1gateway.exceptions import GatewayStartError
from r1gateway.gateway.events import (
    DeviceConnected,
    DeviceDisconnected,
    GatewayFault,
    InboundChatMessage,
)
from r1gateway.gateway.gateway_server import RabbitGateway

TOKEN = "integration-token"
RECV_TIMEOUT = 5.0


# ── Helpers ───────────────────────────────────────────────────────────────────


async def recv_json(ws) -> dict:
    return json.loads(await asyncio.wait_for(ws.recv(), timeout=RECV_TIMEOUT))


async def open_device(gateway: RabbitGateway):
    ws = await ws_connect(f"ws://127.0.0.1:{gateway.bound_port}")
    challenge = await recv_json(ws)
    assert challenge["event"] == "connect.challenge"
    return ws


async def pair(ws, device_id: str = "d1", token: str = TOKEN, req_id: str = "req-1") -> list[dict]:
    await ws.send(json.dumps({
        "method": "connect",
        "params": {"auth": {"token": token}, "device": {"id": device_id}},
        "id": req_id,
    }))
    return [await recv_json(ws) for _ in range(3)]


async def wait_for(predicate, timeout: float = RECV_TIMEOUT) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


class Recorder:
    def __init__(self, gateway: RabbitGateway):
        self.connected: list[DeviceConnected] = []
        self.disconnected: list[DeviceDisconnected] = []
        self.messages: list[InboundChatMessage] = []
        self.errors: list[GatewayFault] = []
        gateway.on_device_connected(self.connected.append)
        gateway.on_device_disconnected(self.disconnected.append)
        gateway.on_message(self.messages.append)
        gateway.on_error(self.errors.append)


# ─────────────────────────────────────────────────────────────────────────────
# Scenarios
# ─────────────────────────────────────────────────────────────────────────────

class TestGatewayEndToEnd:
    @pytest.mark.asyncio
    async def test_challenge_payload(self):
        async with RabbitGateway(host="127.0.0.1", port=0, token=TOKEN) as gateway:
            async with ws_connect(f"ws://127.0.0.1:{gateway.bound_port}") as ws:
                challenge = await recv_json(ws)
        assert challenge["type"] == "event"
        assert len(challenge["payload"]["nonce"]) == 36
        assert isinstance(challenge["payload"]["ts"], int)

    @pytest.mark.asyncio
    async def test_pairing_success(self):
        async with RabbitGateway(host="127.0.0.1", port=0, token=TOKEN) as gateway:
            rec = Recorder(gateway)
            ws = await open_device(gateway)
            frames = await pair(ws)

            assert [f.get("event") or f.get("type") for f in frames] == [
                "node.pair.approved", "res", "connect.ok",
            ]
            assert frames[1]["id"] == "req-1"
            assert frames[1]["ok"] is True
            assert frames[1]["payload"]["status"] == "paired"

            await wait_for(lambda: rec.connected)
            assert rec.connected[0].id == "d1"
            assert rec.connected[0].remote.startswith("127.0.0.1:")
            await ws.close()

    @pytest.mark.asyncio
    async def test_wrong_token_then_retry(self):
        async with RabbitGateway(host="127.0.0.1", port=0, token=TOKEN) as gateway:
            ws = await open_device(gateway)
            await ws.send(json.dumps({
                "method": "connect",
                "params": {"auth": {"token": "wrong"}, "device": {"id": "d1"}},
                "id": "bad",
            }))
            denied = await recv_json(ws)
            assert denied == {
                "type": "res", "id": "bad", "ok": False,
                "error": {"code": 401, "message": "Invalid token"},
            }
            assert gateway.registry.count == 0

            frames = await pair(ws, req_id="good")
            assert frames[1]["id"] == "good"
            assert gateway.registry.count == 1
            await ws.close()

    @pytest.mark.asyncio
    async def test_chat_round_trip(self):
        async with RabbitGateway(host="127.0.0.1", port=0, token=TOKEN) as gateway:
            rec = Recorder(gateway)
            ws = await open_device(gateway)
            await pair(ws)

            await ws.send(json.dumps({
                "method": "chat.send",
                "params": {"message": "hi", "sessionKey": "main", "idempotencyKey": "r1"},
                "id": "chat-1",
            }))
            ack = await recv_json(ws)
            assert ack == {"type": "res", "id": "chat-1", "ok": True}
            assert rec.messages == [InboundChatMessage(
                device_id="d1", text="hi", session_key="main", idempotency_key="r1",
            )]

            assert await gateway.send_text("d1", "hello", run_id="r1") is True
            reply = await recv_json(ws)
            assert reply["type"] == "event"
            assert reply["event"] == "chat"
            assert reply["payload"]["runId"] == "r1"
            assert reply["payload"]["message"]["content"] == [{"type": "text", "text": "hello"}]
            await ws.close()

    @pytest.mark.asyncio
    async def test_malformed_json_keeps_connection(self):
        async with RabbitGateway(host="127.0.0.1", port=0, token=TOKEN) as gateway:
            ws = await open_device(gateway)
            await pair(ws)
            await ws.send("{this is not json")
            await ws.send("[1, 2]")

            assert await gateway.send_text("d1", "still here") is True
            reply = await recv_json(ws)
            assert reply["payload"]["message"]["content"][0]["text"] == "still here"
            assert gateway.registry.count == 1
            await ws.close()

    @pytest.mark.asyncio
    async def test_deeply_nested_json_keeps_connection(self):
        async with RabbitGateway(host="127.0.0.1", port=0, token=TOKEN) as gateway:
            rec = Recorder(gateway)
            ws = await open_device(gateway)
            await pair(ws)
            await ws.send("[" * 100_000)
            await ws.send(json.dumps({
                "method": "chat.send", "params": {"message": "after"}, "id": "chat-2",
            }))
            ack = await recv_json(ws)
            assert ack == {"type": "res", "id": "chat-2", "ok": True}

            assert await gateway.send_text("d1", "survived") is True
            reply = await recv_json(ws)
            assert reply["payload"]["message"]["content"][0]["text"] == "survived"
            assert gateway.registry.count == 1
            assert rec.errors == []
            assert rec.disconnected == []
            await ws.close()

    @pytest.mark.asyncio
    async def test_aborted_transport_raises_error(self):
        async with RabbitGateway(host="127.0.0.1", port=0, token=TOKEN) as gateway:
            rec = Recorder(gateway)
            dropped = await open_device(gateway)
            await pair(dropped, device_id="d1")
            other = await open_device(gateway)
            await pair(other, device_id="d2")
            local_port = dropped.local_address[1]

            dropped.transport.abort()

            await wait_for(lambda: rec.errors)
            await wait_for(lambda: rec.disconnected)
            assert len(rec.errors) == 1
            assert rec.errors[0].remote == f"127.0.0.1:{local_port}"
            assert rec.disconnected == [DeviceDisconnected(id="d1")]

            assert await gateway.send_text("d2", "unaffected") is True
            reply = await recv_json(other)
            assert reply["payload"]["message"]["content"][0]["text"] == "unaffected"
            assert await gateway.registry.device_ids() == ["d2"]
            await other.close()

    @pytest.mark.asyncio
    async def test_repair_moves_delivery_to_new_connection(self):
        async with RabbitGateway(host="127.0.0.1", port=0, token=TOKEN) as gateway:
            old = await open_device(gateway)
            await pair(old)
            new = await open_device(gateway)
            await pair(new)

            assert await gateway.send_text("d1", "to newest") is True
            reply = await recv_json(new)
            assert reply["payload"]["message"]["content"][0]["text"] == "to newest"
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(old.recv(), timeout=0.2)

            # Closing the superseded connection leaves the newer pairing intact
            await old.close()
            await asyncio.sleep(0.1)
            assert await gateway.send_text("d1", "again") is True
            await recv_json(new)
            await new.close()

    @pytest.mark.asyncio
    async def test_disconnect_unregisters(self):
        async with RabbitGateway(host="127.0.0.1", port=0, token=TOKEN) as gateway:
            rec = Recorder(gateway)
            ws = await open_device(gateway)
            await pair(ws)
            await ws.close()

            await wait_for(lambda: rec.disconnected)
            assert rec.disconnected == [DeviceDisconnected(id="d1")]
            assert gateway.registry.count == 0
            assert await gateway.send_text("d1", "gone") is False

    @pytest.mark.asyncio
    async def test_port_in_use_is_fatal(self):
        async with RabbitGateway(host="127.0.0.1", port=0, token=TOKEN) as first:
            second = RabbitGateway(host="127.0.0.1", port=first.bound_port, token=TOKEN)
            with pytest.raises(GatewayStartError):
                await second.start()


# ─────────────────────────────────────────────────────────────────────────────
# Token confidentiality in logs
# ─────────────────────────────────────────────────────────────────────────────

async def _full_session(debug: bool) -> list[dict]:
    with capture_logs() as captured:
        async with RabbitGateway(
            host="127.0.0.1", port=0, token=TOKEN, debug=debug,
        ) as gateway:
            ws = await open_device(gateway)
            await pair(ws)
            await ws.send(json.dumps({
                "method": "chat.send", "params": {"message": "hi"}, "id": "chat-1",
            }))
            await recv_json(ws)
            await gateway.send_text("d1", "hello")
            await recv_json(ws)
            await ws.close()
    return captured


class TestTokenLogging:
    @pytest.mark.asyncio
    async def test_token_absent_without_debug(self):
        captured = await _full_session(debug=False)
        assert any(e["event"] == "gateway.device_paired" for e in captured)
        assert not any(e["event"] == "gateway.token" for e in captured)
        assert TOKEN not in repr(captured)

    @pytest.mark.asyncio
    async def test_token_logged_with_debug(self):
        captured = await _full_session(debug=True)
        token_events = [e for e in captured if e["event"] == "gateway.token"]
        assert token_events == [
            {"event": "gateway.token", "log_level": "info", "token": TOKEN},
        ]
