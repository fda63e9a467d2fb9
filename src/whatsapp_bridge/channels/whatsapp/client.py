"""
WhatsApp Session Connection

Connects to the protocol engine sidecar that speaks the WhatsApp
multi-device protocol (handshake, encryption, wire codec). The bridge owns
the session lifecycle; the engine owns the socket to WhatsApp.

Architecture:
    SessionManager <-> BridgeSessionConnection <-> Engine (HTTP + WS) <-> WhatsApp

Example:
    connection = BridgeSessionConnection()
    await connection.connect(credentials)

    async for event in connection.events():
        if event.kind == SessionEventKind.CONNECTION_UPDATED:
            print(event.connection)

    receipt = await connection.send("15551234567@s.whatsapp.net", "Hello!")
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Optional

import aiohttp

from ...core.errors import SendError, SessionConstructionError
from ...core.events import SessionEvent, events_from_frame

logger = logging.getLogger(__name__)


@dataclass
class SessionUser:
    """Authenticated identity of the session."""
    id: str
    name: Optional[str] = None


@dataclass
class DeliveryReceipt:
    """What the engine returns for an accepted outbound message."""
    message_id: str
    jid: str
    timestamp: Optional[int] = None

    @classmethod
    def from_engine(cls, jid: str, data: Dict[str, Any]) -> "DeliveryReceipt":
        key = data.get("key") or {}
        return cls(
            message_id=key.get("id") or data.get("messageId") or "",
            jid=key.get("remoteJid", jid),
            timestamp=data.get("messageTimestamp"),
        )


class SessionConnection(ABC):
    """
    One authenticated link to the messaging network.

    The SessionManager creates exactly one at a time and drops it on close;
    a connection is never reused after its event stream ends.
    """

    @property
    @abstractmethod
    def user(self) -> Optional[SessionUser]:
        """Authenticated identity, or None until the session is open."""

    @abstractmethod
    def events(self) -> AsyncIterator[SessionEvent]:
        """Typed event stream. Ends when the underlying link is gone."""

    @abstractmethod
    async def send(self, jid: str, text: str) -> DeliveryReceipt:
        """Send a text message to a fully-qualified JID."""

    @abstractmethod
    async def acknowledge_credentials(self, seq: int):
        """Tell the engine a credential update has been persisted."""

    @abstractmethod
    async def close(self):
        """Release the link. Safe to call more than once."""


class BridgeSessionConnection(SessionConnection):
    """
    SessionConnection backed by the protocol engine's HTTP + WebSocket API.

    HTTP:
        GET  /status     - engine liveness
        POST /messages   - send {"jid", "content": {"text"}}

    WebSocket frames (engine -> bridge):
        connection.update, messages.upsert, creds.update

    WebSocket frames (bridge -> engine):
        session.start {"auth": credentials}, creds.ack {"seq"}
    """

    def __init__(
        self,
        http_url: str = "http://localhost:3001",
        ws_url: str = "ws://localhost:3001/ws",
        send_timeout: float = 30.0,
    ):
        self.http_url = http_url.rstrip("/")
        self.ws_url = ws_url
        self.send_timeout = send_timeout
        self._http_session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._user: Optional[SessionUser] = None
        self._closed = False

    @property
    def user(self) -> Optional[SessionUser]:
        return self._user

    async def connect(self, credentials: Dict[str, Any]):
        """Open HTTP + WebSocket to the engine and start the session."""
        self._http_session = aiohttp.ClientSession()

        try:
            status = await self.get_status()
            logger.info(f"Engine status: {status}")
        except Exception as e:
            await self._http_session.close()
            raise SessionConstructionError(
                f"Cannot reach protocol engine at {self.http_url}", cause=e
            ) from e

        try:
            self._ws = await self._http_session.ws_connect(self.ws_url, heartbeat=30)
            await self._ws.send_json({"type": "session.start", "auth": credentials})
            logger.info(f"Connected to engine WebSocket: {self.ws_url}")
        except Exception as e:
            await self._http_session.close()
            raise SessionConstructionError(
                f"Cannot open engine WebSocket at {self.ws_url}", cause=e
            ) from e

    async def close(self):
        if self._closed:
            return
        self._closed = True

        if self._ws:
            await self._ws.close()
            self._ws = None

        if self._http_session:
            await self._http_session.close()
            self._http_session = None

        logger.info("Engine connection closed")

    # =========================================================================
    # HTTP API
    # =========================================================================

    async def get_status(self) -> Dict[str, Any]:
        """Get engine status."""
        async with self._http_session.get(f"{self.http_url}/status") as resp:
            resp.raise_for_status()
            return await resp.json()

    async def send(self, jid: str, text: str) -> DeliveryReceipt:
        if self._http_session is None or self._closed:
            raise SendError("Engine connection is closed")

        payload = {"jid": jid, "content": {"text": text}}

        try:
            async with self._http_session.post(
                f"{self.http_url}/messages",
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self.send_timeout),
            ) as resp:
                resp.raise_for_status()
                data = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SendError(f"Engine rejected send to {jid}: {e}", cause=e) from e

        return DeliveryReceipt.from_engine(jid, data)

    # =========================================================================
    # WEBSOCKET EVENTS
    # =========================================================================

    async def acknowledge_credentials(self, seq: int):
        if self._ws is None or self._ws.closed:
            logger.warning(f"Cannot acknowledge credentials #{seq}: socket closed")
            return
        await self._ws.send_json({"type": "creds.ack", "seq": seq})

    async def events(self) -> AsyncIterator[SessionEvent]:
        if not self._ws:
            raise RuntimeError("Not connected. Call connect() first.")

        while not self._closed:
            try:
                msg = await self._ws.receive()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in engine WebSocket listener: {e}")
                break

            if msg.type == aiohttp.WSMsgType.TEXT:
                try:
                    frame = json.loads(msg.data)
                except json.JSONDecodeError as e:
                    logger.warning(f"Invalid JSON from engine: {e}")
                    continue

                self._track_user(frame)
                for event in events_from_frame(frame):
                    yield event

            elif msg.type in (
                aiohttp.WSMsgType.CLOSE,
                aiohttp.WSMsgType.CLOSED,
                aiohttp.WSMsgType.CLOSING,
                aiohttp.WSMsgType.ERROR,
            ):
                logger.warning("Engine WebSocket closed")
                break

    def _track_user(self, frame: Dict[str, Any]):
        if frame.get("type") != "connection.update":
            return
        user = frame.get("user")
        if frame.get("connection") == "open" and user and user.get("id"):
            self._user = SessionUser(id=user["id"], name=user.get("name"))
        elif frame.get("connection") == "close":
            self._user = None


async def create_bridge_connection(
    credentials: Dict[str, Any],
    http_url: str,
    ws_url: str,
) -> BridgeSessionConnection:
    """Connection factory used by the SessionManager."""
    connection = BridgeSessionConnection(http_url=http_url, ws_url=ws_url)
    await connection.connect(credentials)
    return connection
