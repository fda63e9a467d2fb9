"""
Bridge Web Server

Control plane for the bridge on a single port:
- GET  /              - Landing page
- GET  /health        - Liveness + connection summary
- GET  /status        - 200 when connected, 503 otherwise
- GET  /qr            - Pairing QR (HTML, or JSON with ?format=json)
- POST /send-message  - Outbound send (awaited or fire-and-forget)
- POST /mcp           - MCP JSON-RPC endpoint
- GET  /mcp/sse       - MCP keep-alive stream
- POST /test-webhook  - Forward a synthetic event to the automation endpoint
"""

import asyncio
import base64
import io
import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import httpx
import qrcode
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, Response, StreamingResponse
from pydantic import BaseModel

from ..core.dispatcher import DeliveryMode, OutboundDispatcher
from ..core.errors import NotConnectedError, SendError
from ..core.state import SessionState
from ..sinks.webhook import WebhookForwarder
from .mcp import PARSE_ERROR, MCPServer

logger = logging.getLogger(__name__)


class SendMessageRequest(BaseModel):
    number: str
    message: str
    mode: Optional[DeliveryMode] = None


def render_qr_data_url(qr_data: str) -> str:
    """Render a pairing token as a PNG data URL."""
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=10,
        border=4,
    )
    qr.add_data(qr_data)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")
    img_bytes = io.BytesIO()
    img.save(img_bytes, format="PNG")
    encoded = base64.b64encode(img_bytes.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class BridgeWebServer:
    """FastAPI control plane over the session core."""

    def __init__(
        self,
        state: SessionState,
        dispatcher: OutboundDispatcher,
        mcp: MCPServer,
        webhook: Optional[WebhookForwarder] = None,
        default_send_mode: DeliveryMode = DeliveryMode.AWAITED,
        heartbeat_interval: float = 30.0,
        host: str = "0.0.0.0",
        port: int = 3000,
        lifespan: Optional[Callable] = None,
        version: str = "0.1.0",
    ):
        self.state = state
        self.dispatcher = dispatcher
        self.mcp = mcp
        self.webhook = webhook
        self.default_send_mode = default_send_mode
        self.heartbeat_interval = heartbeat_interval
        self.host = host
        self.port = port
        self._server: Optional[uvicorn.Server] = None

        self.app = FastAPI(
            title="WhatsApp Bridge",
            description="WhatsApp session bridge with webhook relay and MCP tools",
            version=version,
            lifespan=lifespan,
        )

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        self._setup_routes()

    def _setup_routes(self):
        """Setup all routes"""

        # =====================================================================
        # PAGES
        # =====================================================================

        @self.app.get("/", response_class=HTMLResponse)
        async def landing_page():
            return self._render_page("""
              <div class="card">
                <h2>WhatsApp Bridge</h2>
                <p><a href="/qr">Pair device</a> · <a href="/health">Health</a> · <a href="/status">Status</a></p>
              </div>
            """)

        @self.app.get("/qr")
        async def qr_page(request: Request, format: Optional[str] = None):
            wants_json = format == "json" or "application/json" in request.headers.get("accept", "")
            return self._qr_response(wants_json)

        # =====================================================================
        # HEALTH & STATUS
        # =====================================================================

        @self.app.get("/health")
        async def health_check():
            snapshot = self.state.current
            return {
                "status": "connected" if snapshot.is_connected else "disconnected",
                "user": snapshot.user_id if snapshot.is_connected else None,
                "timestamp": _utc_now(),
            }

        @self.app.get("/status")
        async def status():
            snapshot = self.state.current
            if not snapshot.is_connected:
                return JSONResponse(status_code=503, content={"error": "WhatsApp not connected"})
            return {
                "connected": True,
                "user": snapshot.user_name or snapshot.user_id,
                "jid": snapshot.user_id,
            }

        # =====================================================================
        # OUTBOUND
        # =====================================================================

        @self.app.post("/send-message")
        async def send_message(body: SendMessageRequest):
            mode = body.mode or self.default_send_mode
            try:
                result = await self.dispatcher.send(body.number, body.message, mode=mode)
            except NotConnectedError as e:
                return JSONResponse(status_code=503, content={"error": e.message})
            except SendError as e:
                return JSONResponse(status_code=500, content={"error": e.message})
            return result.to_dict()

        # =====================================================================
        # MCP
        # =====================================================================

        @self.app.post("/mcp")
        async def mcp_endpoint(request: Request):
            try:
                message = json.loads(await request.body())
            except (json.JSONDecodeError, UnicodeDecodeError):
                return JSONResponse(content={
                    "jsonrpc": "2.0",
                    "id": None,
                    "error": {"code": PARSE_ERROR, "message": "Parse error"}
                })

            response = await self.mcp.handle_request(message)
            if response is None:
                return Response(status_code=202)
            return JSONResponse(content=response)

        @self.app.get("/mcp/sse")
        async def mcp_sse(request: Request):
            return StreamingResponse(
                self.sse_events(request),
                media_type="text/event-stream",
                headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
            )

        # =====================================================================
        # DIAGNOSTICS
        # =====================================================================

        @self.app.post("/test-webhook")
        async def test_webhook():
            if self.webhook is None:
                return JSONResponse(status_code=400, content={"error": "N8N_WEBHOOK_URL not configured"})

            payload = {
                "from": "test@s.whatsapp.net",
                "text": "Test message from WhatsApp bridge",
                "timestamp": int(datetime.now(timezone.utc).timestamp()),
                "messageId": "test-message",
            }
            try:
                response = await self.webhook.post(payload)
            except httpx.HTTPError as e:
                logger.error(f"Test webhook failed: {e}")
                return JSONResponse(status_code=502, content={"error": f"Webhook request failed: {e}"})

            try:
                body: Any = response.json()
            except ValueError:
                body = response.text

            return {
                "success": response.is_success,
                "status": response.status_code,
                "response": body,
            }

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def sse_events(self, request: Request):
        """One connected event, then comment heartbeats until the client leaves."""
        connected = {"type": "connected", "server": self.mcp.server_name, "timestamp": _utc_now()}
        yield f"event: connected\ndata: {json.dumps(connected)}\n\n"

        while True:
            if await request.is_disconnected():
                logger.debug("MCP SSE client disconnected")
                break
            await asyncio.sleep(self.heartbeat_interval)
            yield ": heartbeat\n\n"

    def _qr_response(self, wants_json: bool) -> Response:
        snapshot = self.state.current

        if snapshot.is_connected:
            if wants_json:
                return JSONResponse(content={"status": "connected", "qr": None, "user": snapshot.user_id})
            return HTMLResponse(self._render_page(f"""
              <div class="card">
                <h2>✅ WhatsApp connected</h2>
                <p>{snapshot.user_name or snapshot.user_id}</p>
              </div>
            """))

        if not snapshot.has_qr:
            if wants_json:
                return JSONResponse(content={"status": "waiting", "qr": None})
            return HTMLResponse(self._render_page("""
              <meta http-equiv="refresh" content="5">
              <div class="card">
                <h2>⏳ Starting bridge...</h2>
                <p>Waiting for a pairing QR code...</p>
              </div>
            """))

        try:
            image = render_qr_data_url(snapshot.qr)
        except Exception as e:
            logger.error(f"Error generating QR image: {e}")
            if wants_json:
                return JSONResponse(status_code=500, content={"error": "Error rendering QR code", "qr": snapshot.qr})
            return HTMLResponse("Error rendering QR code", status_code=500)

        if wants_json:
            return JSONResponse(content={"status": "pairing", "qr": snapshot.qr, "image": image})

        return HTMLResponse(self._render_page(f"""
          <meta http-equiv="refresh" content="20">
          <div class="card">
            <h2>📱 Link your WhatsApp</h2>
            <img src="{image}" alt="QR Code"/>
            <p>The code changes every 20 seconds</p>
          </div>
        """))

    def _render_page(self, content: str) -> str:
        return f"""
  <html>
    <head>
      <meta charset="UTF-8">
      <meta name="viewport" content="width=device-width, initial-scale=1.0">
      <title>WhatsApp Bridge</title>
      <style>
        body {{ font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, Helvetica, Arial, sans-serif; background: #f0f2f5; display: flex; flex-direction: column; align-items: center; min-height: 100vh; margin: 0; padding: 20px; box-sizing: border-box; }}
        .card {{ background: white; padding: 24px; border-radius: 12px; box-shadow: 0 2px 5px rgba(0,0,0,0.1); text-align: center; max-width: 400px; width: 100%; margin-bottom: 20px; }}
        h2 {{ margin-top: 0; color: #1f2937; margin-bottom: 10px; }}
        img {{ border-radius: 8px; margin: 15px 0; max-width: 100%; }}
        p {{ color: #666; font-size: 14px; }}
      </style>
    </head>
    <body>
      {content}
    </body>
  </html>
"""

    # =========================================================================
    # SERVING
    # =========================================================================

    async def start(self):
        """Serve until stopped."""
        config = uvicorn.Config(self.app, host=self.host, port=self.port, log_level="info")
        self._server = uvicorn.Server(config)
        logger.info(f"Bridge web server listening on http://{self.host}:{self.port}")
        await self._server.serve()

    async def stop(self):
        if self._server:
            self._server.should_exit = True
