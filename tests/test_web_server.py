"""
Test Bridge Web Server

Control plane routes, driven in-process through httpx's ASGI transport.
"""

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock

from helpers import settle
from whatsapp_bridge.channels.mcp import INVALID_REQUEST, PARSE_ERROR, MCPServer
from whatsapp_bridge.channels.web_server import BridgeWebServer, render_qr_data_url
from whatsapp_bridge.core.dispatcher import DeliveryMode, OutboundDispatcher
from whatsapp_bridge.core.errors import SendError
from whatsapp_bridge.sinks.webhook import WebhookForwarder


def build_server(state, webhook=None, **kwargs) -> BridgeWebServer:
    dispatcher = OutboundDispatcher(state)
    return BridgeWebServer(state, dispatcher, MCPServer(state, dispatcher), webhook=webhook, **kwargs)


def client_for(server: BridgeWebServer) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=server.app), base_url="http://bridge")


class TestHealthAndStatus:

    @pytest.mark.asyncio
    async def test_health_disconnected(self, state):
        async with client_for(build_server(state)) as client:
            response = await client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "disconnected"
        assert body["user"] is None
        assert body["timestamp"]

    @pytest.mark.asyncio
    async def test_health_connected(self, connected_state):
        async with client_for(build_server(connected_state)) as client:
            body = (await client.get("/health")).json()

        assert body["status"] == "connected"
        assert body["user"] == "15550001111:7@s.whatsapp.net"

    @pytest.mark.asyncio
    async def test_status_unavailable(self, state):
        async with client_for(build_server(state)) as client:
            response = await client.get("/status")

        assert response.status_code == 503
        assert response.json() == {"error": "WhatsApp not connected"}

    @pytest.mark.asyncio
    async def test_status_connected(self, connected_state):
        async with client_for(build_server(connected_state)) as client:
            response = await client.get("/status")

        assert response.status_code == 200
        assert response.json() == {
            "connected": True,
            "user": "Bridge",
            "jid": "15550001111:7@s.whatsapp.net",
        }


class TestQRPage:

    @pytest.mark.asyncio
    async def test_waiting_for_qr(self, state):
        async with client_for(build_server(state)) as client:
            html = await client.get("/qr")
            data = await client.get("/qr", params={"format": "json"})

        assert 'content="5"' in html.text
        assert data.json() == {"status": "waiting", "qr": None}

    @pytest.mark.asyncio
    async def test_pairing_qr(self, state):
        state.publish(qr="2@pairing-token")

        async with client_for(build_server(state)) as client:
            html = await client.get("/qr")
            data = await client.get("/qr", headers={"Accept": "application/json"})

        assert "data:image/png;base64," in html.text
        body = data.json()
        assert body["status"] == "pairing"
        assert body["qr"] == "2@pairing-token"
        assert body["image"].startswith("data:image/png;base64,")

    @pytest.mark.asyncio
    async def test_connected_page(self, connected_state):
        async with client_for(build_server(connected_state)) as client:
            html = await client.get("/qr")
            data = await client.get("/qr", params={"format": "json"})

        assert "Bridge" in html.text
        assert data.json()["status"] == "connected"

    def test_render_qr_data_url(self):
        assert render_qr_data_url("2@abc").startswith("data:image/png;base64,")


class TestSendMessage:

    @pytest.mark.asyncio
    async def test_not_connected(self, state):
        async with client_for(build_server(state)) as client:
            response = await client.post("/send-message", json={"number": "15551234567", "message": "hi"})

        assert response.status_code == 503
        assert response.json() == {"error": "WhatsApp not connected"}

    @pytest.mark.asyncio
    async def test_awaited(self, connected_state, connection):
        async with client_for(build_server(connected_state)) as client:
            response = await client.post("/send-message", json={"number": "15551234567", "message": "hi"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["messageId"]
        assert connection.sent == [("15551234567@s.whatsapp.net", "hi")]

    @pytest.mark.asyncio
    async def test_fire_and_forget_default(self, connected_state, connection):
        server = build_server(connected_state, default_send_mode=DeliveryMode.FIRE_AND_FORGET)

        async with client_for(server) as client:
            response = await client.post("/send-message", json={"number": "15551234567", "message": "hi"})
            await settle()

        assert response.json() == {"success": True, "status": "queued"}
        assert connection.sent == [("15551234567@s.whatsapp.net", "hi")]

    @pytest.mark.asyncio
    async def test_mode_in_body_overrides_default(self, connected_state):
        async with client_for(build_server(connected_state)) as client:
            response = await client.post(
                "/send-message",
                json={"number": "15551234567", "message": "hi", "mode": "fire_and_forget"},
            )
            await settle()

        assert response.json()["status"] == "queued"

    @pytest.mark.asyncio
    async def test_engine_failure(self, connected_state, connection):
        connection.send_error = SendError("engine rejected message")

        async with client_for(build_server(connected_state)) as client:
            response = await client.post("/send-message", json={"number": "15551234567", "message": "hi"})

        assert response.status_code == 500
        assert response.json() == {"error": "engine rejected message"}

    @pytest.mark.asyncio
    async def test_missing_fields(self, connected_state):
        async with client_for(build_server(connected_state)) as client:
            response = await client.post("/send-message", json={"number": "15551234567"})

        assert response.status_code == 422


class TestMCPEndpoint:

    @pytest.mark.asyncio
    async def test_request(self, connected_state):
        async with client_for(build_server(connected_state)) as client:
            response = await client.post("/mcp", json={"jsonrpc": "2.0", "id": 1, "method": "ping"})

        assert response.json() == {"jsonrpc": "2.0", "id": 1, "result": {}}

    @pytest.mark.asyncio
    async def test_parse_error(self, state):
        async with client_for(build_server(state)) as client:
            response = await client.post("/mcp", content=b"{not json")

        body = response.json()
        assert body["error"]["code"] == PARSE_ERROR
        assert body["id"] is None

    @pytest.mark.asyncio
    async def test_non_string_method(self, state):
        async with client_for(build_server(state)) as client:
            response = await client.post("/mcp", json={"jsonrpc": "2.0", "id": 1, "method": 5})

        assert response.status_code == 200
        assert response.json()["error"]["code"] == INVALID_REQUEST

    @pytest.mark.asyncio
    async def test_notification_accepted(self, state):
        async with client_for(build_server(state)) as client:
            response = await client.post("/mcp", json={"jsonrpc": "2.0", "method": "notifications/initialized"})

        assert response.status_code == 202
        assert response.content == b""

    @pytest.mark.asyncio
    async def test_sse_stream(self, state):
        server = build_server(state, heartbeat_interval=0)
        request = MagicMock()
        request.is_disconnected = AsyncMock(side_effect=[False, True])

        chunks = [chunk async for chunk in server.sse_events(request)]

        assert len(chunks) == 2
        assert chunks[0].startswith("event: connected\ndata: ")
        assert '"type": "connected"' in chunks[0]
        assert chunks[1] == ": heartbeat\n\n"


class TestWebhookDiagnostics:

    @pytest.mark.asyncio
    async def test_without_webhook(self, state):
        async with client_for(build_server(state)) as client:
            response = await client.post("/test-webhook")

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_forwards_synthetic_event(self, state):
        received = []

        def handler(request):
            received.append(request)
            return httpx.Response(200, json={"received": True})

        webhook = WebhookForwarder("https://n8n.example.com/webhook/wa", transport=httpx.MockTransport(handler))

        async with client_for(build_server(state, webhook=webhook)) as client:
            response = await client.post("/test-webhook")

        assert response.json() == {"success": True, "status": 200, "response": {"received": True}}
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_unreachable_webhook(self, state):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        webhook = WebhookForwarder("https://n8n.example.com/webhook/wa", transport=httpx.MockTransport(handler))

        async with client_for(build_server(state, webhook=webhook)) as client:
            response = await client.post("/test-webhook")

        assert response.status_code == 502
