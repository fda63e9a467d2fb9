"""
Session Events

Typed events produced by a SessionConnection. The SessionManager consumes
them in a single loop and routes each kind to one handler.
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional


class SessionEventKind(str, Enum):
    CONNECTION_UPDATED = "connection.update"
    QR_CHALLENGE_ISSUED = "qr"
    MESSAGES_RECEIVED = "messages.upsert"
    CREDENTIALS_UPDATED = "creds.update"


class DisconnectReason(IntEnum):
    """Status codes the protocol engine reports when a connection closes."""
    CONNECTION_CLOSED = 428
    CONNECTION_LOST = 408
    TIMED_OUT = 408
    CONNECTION_REPLACED = 440
    LOGGED_OUT = 401
    BAD_SESSION = 500
    RESTART_REQUIRED = 515
    MULTIDEVICE_MISMATCH = 411
    FORBIDDEN = 403
    UNAVAILABLE_SERVICE = 503


def is_terminal_disconnect(status_code: Optional[int]) -> bool:
    """Only an explicit logout stops automatic reconnection."""
    return status_code == DisconnectReason.LOGGED_OUT


@dataclass
class SessionEvent:
    kind: SessionEventKind = field(init=False)


@dataclass
class ConnectionUpdated(SessionEvent):
    """Connection state changed ("connecting", "open" or "close")."""
    connection: str
    status_code: Optional[int] = None
    error: Optional[str] = None
    user_id: Optional[str] = None
    user_name: Optional[str] = None

    def __post_init__(self):
        self.kind = SessionEventKind.CONNECTION_UPDATED

    @classmethod
    def from_frame(cls, frame: Dict[str, Any]) -> "ConnectionUpdated":
        last_disconnect = frame.get("lastDisconnect") or {}
        user = frame.get("user") or {}

        status_code = last_disconnect.get("statusCode")
        if status_code is not None:
            try:
                status_code = int(status_code)
            except (TypeError, ValueError):
                status_code = None

        return cls(
            connection=frame.get("connection", ""),
            status_code=status_code,
            error=last_disconnect.get("message"),
            user_id=user.get("id"),
            user_name=user.get("name"),
        )


@dataclass
class QRChallengeIssued(SessionEvent):
    qr: str

    def __post_init__(self):
        self.kind = SessionEventKind.QR_CHALLENGE_ISSUED


@dataclass
class MessagesReceived(SessionEvent):
    """A batch of raw inbound messages, as the engine delivered it."""
    messages: List[Dict[str, Any]]
    upsert_type: str = "notify"

    def __post_init__(self):
        self.kind = SessionEventKind.MESSAGES_RECEIVED


@dataclass
class CredentialsUpdated(SessionEvent):
    """New credential snapshot; must be persisted before it is acknowledged."""
    credentials: Dict[str, Any]
    seq: int = 0

    def __post_init__(self):
        self.kind = SessionEventKind.CREDENTIALS_UPDATED


def events_from_frame(frame: Dict[str, Any]) -> List[SessionEvent]:
    """
    Decode one engine WebSocket frame into zero or more typed events.

    A connection update carrying a QR yields the QR event first, so the
    challenge is visible before any state change in the same frame.
    """
    frame_type = frame.get("type")
    events: List[SessionEvent] = []

    if frame_type == "connection.update":
        if frame.get("qr"):
            events.append(QRChallengeIssued(qr=frame["qr"]))
        if frame.get("connection"):
            events.append(ConnectionUpdated.from_frame(frame))

    elif frame_type == "messages.upsert":
        events.append(MessagesReceived(
            messages=list(frame.get("messages") or []),
            upsert_type=frame.get("upsertType", "notify"),
        ))

    elif frame_type == "creds.update":
        events.append(CredentialsUpdated(
            credentials=frame.get("creds") or {},
            seq=frame.get("seq", 0),
        ))

    return events
