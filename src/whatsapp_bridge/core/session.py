"""
Session Manager

Owns the single logical WhatsApp session: creates the connection, consumes
its event stream, and recreates it after recoverable failures.

State machine:
    start() ──> INITIALIZING ──qr──> PAIRING_REQUIRED ──open──> CONNECTED
                     │                      │                       │
                     └──────────────close───┴───────────────────────┘
                                      │
                  logged out ──> DISCONNECTED(terminal)   (no restart)
                  anything else ──> DISCONNECTED(retrying) ──delay──> start()

Retry policy is deliberately simple: fixed delay, unbounded attempts, no
rate limiting. Construction failures use their own, longer delay. Only one
restart timer is ever pending.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional

from .events import (
    ConnectionUpdated,
    CredentialsUpdated,
    DisconnectReason,
    MessagesReceived,
    QRChallengeIssued,
    SessionEvent,
    SessionEventKind,
    is_terminal_disconnect,
)
from .state import ConnectivityStatus, DisconnectKind, SessionState
from .tasks import spawn_detached

if TYPE_CHECKING:
    from ..channels.whatsapp.client import SessionConnection
    from ..channels.whatsapp.credentials import CredentialStore

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[Dict[str, Any]], Awaitable["SessionConnection"]]
MessageHandler = Callable[[MessagesReceived], Awaitable[None]]
ConnectedCallback = Callable[[], Awaitable[None]]


class SessionManager:
    """Single-writer owner of SessionState"""

    DEFAULT_RECONNECT_DELAY = 3.0
    DEFAULT_CONSTRUCTION_RETRY_DELAY = 5.0

    def __init__(
        self,
        state: SessionState,
        credential_store: "CredentialStore",
        connection_factory: ConnectionFactory,
        on_messages: Optional[MessageHandler] = None,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        construction_retry_delay: float = DEFAULT_CONSTRUCTION_RETRY_DELAY,
    ):
        self.state = state
        self.credential_store = credential_store
        self.connection_factory = connection_factory
        self.on_messages = on_messages
        self.reconnect_delay = reconnect_delay
        self.construction_retry_delay = construction_retry_delay

        self._connected_callbacks: List[ConnectedCallback] = []
        self._restart_handle: Optional[asyncio.TimerHandle] = None
        self._event_task: Optional[asyncio.Task] = None
        self._stopped = False
        self.restart_count = 0

    @property
    def restart_pending(self) -> bool:
        return self._restart_handle is not None

    def on_connected(self, callback: ConnectedCallback):
        """Run ``callback`` (detached) every time the session opens."""
        self._connected_callbacks.append(callback)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self):
        """
        Load credentials, build a new connection, and begin consuming events.

        Never called while a session is live: it runs once at process start
        and afterwards only from the restart timer.
        """
        if self._stopped:
            return

        try:
            credentials = await self.credential_store.load()
            connection = await self.connection_factory(credentials)
        except Exception as e:
            logger.error(f"Failed to create WhatsApp session: {e}")
            self._schedule_restart(self.construction_retry_delay, "construction failure")
            return

        self.state.publish(
            status=ConnectivityStatus.INITIALIZING,
            connection=connection,
            user_id=None,
            user_name=None,
            qr=None,
            disconnect_kind=None,
            disconnect_code=None,
        )
        self._event_task = asyncio.create_task(self._consume(connection), name="session-events")
        logger.info("WhatsApp session started")

    async def stop(self):
        """Stop for process shutdown. In-flight detached work is not drained."""
        self._stopped = True

        if self._restart_handle is not None:
            self._restart_handle.cancel()
            self._restart_handle = None

        if self._event_task and not self._event_task.done():
            self._event_task.cancel()
            try:
                await self._event_task
            except asyncio.CancelledError:
                pass

        connection = self.state.current.connection
        if connection is not None:
            await self._close_quietly(connection)
        self.state.publish(connection=None)

    def _schedule_restart(self, delay: float, reason: str):
        if self._stopped:
            return
        if self._restart_handle is not None:
            logger.debug(f"Restart already pending, ignoring request ({reason})")
            return

        logger.info(f"Reconnecting in {delay:g}s ({reason})")
        loop = asyncio.get_running_loop()
        self._restart_handle = loop.call_later(delay, self._fire_restart)

    def _fire_restart(self):
        self._restart_handle = None
        self.restart_count += 1
        spawn_detached(self.start(), name="session-restart")

    # =========================================================================
    # EVENT LOOP
    # =========================================================================

    async def _consume(self, connection: "SessionConnection"):
        """Run handlers one at a time, in the order the engine emitted events."""
        async for event in connection.events():
            try:
                await self.handle_event(connection, event)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"Error handling {event.kind.value} event: {e}")

        # Stream ended without a close update: treat as a lost connection
        if connection is self.state.current.connection:
            logger.warning("Session event stream ended unexpectedly")
            await self._handle_close(connection, ConnectionUpdated(
                connection="close",
                status_code=int(DisconnectReason.CONNECTION_LOST),
                error="event stream ended",
            ))

    async def handle_event(self, connection: "SessionConnection", event: SessionEvent):
        """Dispatch one event to its handler."""
        if connection is not self.state.current.connection:
            logger.debug(f"Ignoring {event.kind.value} from a replaced connection")
            return

        if event.kind == SessionEventKind.QR_CHALLENGE_ISSUED:
            self._handle_qr(event)

        elif event.kind == SessionEventKind.CONNECTION_UPDATED:
            if event.connection == "open":
                self._handle_open(connection, event)
            elif event.connection == "close":
                await self._handle_close(connection, event)
            else:
                logger.info(f"Connection state: {event.connection}")

        elif event.kind == SessionEventKind.CREDENTIALS_UPDATED:
            await self._handle_credentials(connection, event)

        elif event.kind == SessionEventKind.MESSAGES_RECEIVED:
            if self.on_messages is not None:
                await self.on_messages(event)

    # =========================================================================
    # HANDLERS
    # =========================================================================

    def _handle_qr(self, event: QRChallengeIssued):
        snapshot = self.state.current
        status = snapshot.status
        if status != ConnectivityStatus.CONNECTED:
            status = ConnectivityStatus.PAIRING_REQUIRED

        self.state.publish(qr=event.qr, status=status)
        logger.info("New pairing QR issued, scan it at /qr")

    def _handle_open(self, connection: "SessionConnection", event: ConnectionUpdated):
        user_id = event.user_id
        user_name = event.user_name
        if not user_id and connection.user is not None:
            user_id = connection.user.id
            user_name = user_name or connection.user.name

        self.state.publish(
            status=ConnectivityStatus.CONNECTED,
            user_id=user_id,
            user_name=user_name,
            qr=None,
            disconnect_kind=None,
            disconnect_code=None,
        )
        logger.info(f"Connected to WhatsApp as {user_id}")

        for callback in self._connected_callbacks:
            spawn_detached(callback(), name="on-connected")

    async def _handle_close(self, connection: "SessionConnection", event: ConnectionUpdated):
        code = event.status_code
        terminal = is_terminal_disconnect(code)

        self.state.publish(
            status=ConnectivityStatus.DISCONNECTED,
            connection=None,
            user_id=None,
            user_name=None,
            qr=None,
            disconnect_kind=DisconnectKind.TERMINAL if terminal else DisconnectKind.RETRYING,
            disconnect_code=code,
        )
        await self._close_quietly(connection)

        if terminal:
            logger.warning("WhatsApp session logged out. Re-pairing required, not reconnecting")
            return

        logger.info(f"Connection closed (code={code}, error={event.error})")
        self._schedule_restart(self.reconnect_delay, f"connection closed, code={code}")

    async def _handle_credentials(self, connection: "SessionConnection", event: CredentialsUpdated):
        await self.credential_store.save(event.credentials)
        await connection.acknowledge_credentials(event.seq)

    async def _close_quietly(self, connection: "SessionConnection"):
        try:
            await connection.close()
        except Exception as e:
            logger.warning(f"Error closing session connection: {e}")
