"""
Outbound Dispatcher

Normalizes destinations and sends text through whichever connection is
current at call time. Two delivery modes:

- AWAITED: the caller waits for the engine; gets the message id or a
  typed error. No retries, the caller decides.
- FIRE_AND_FORGET: the caller is told "queued" immediately. The send runs
  as a detached task whose outcome is only logged (plus an optional
  completion callback for side effects such as outbox bookkeeping).
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from .errors import BridgeError, NotConnectedError, SendError
from .state import SessionState
from .tasks import spawn_detached

logger = logging.getLogger(__name__)

DEFAULT_DOMAIN = "s.whatsapp.net"

CompletionCallback = Callable[["SendResult", Optional[BridgeError]], Awaitable[None]]


class DeliveryMode(str, Enum):
    AWAITED = "awaited"
    FIRE_AND_FORGET = "fire_and_forget"


@dataclass
class SendResult:
    """Outcome reported to the caller of OutboundDispatcher.send"""
    success: bool
    jid: str
    mode: DeliveryMode
    message_id: Optional[str] = None
    status: str = "sent"

    def to_dict(self) -> Dict[str, Any]:
        if self.mode == DeliveryMode.FIRE_AND_FORGET:
            return {"success": self.success, "status": self.status}
        return {"success": self.success, "messageId": self.message_id}


def normalize_destination(destination: str, default_domain: str = DEFAULT_DOMAIN) -> str:
    """
    Qualify a destination with the person-to-person domain.

    Purely syntactic: anything containing "@" is already an address and is
    returned unchanged; anything else gets "@<default_domain>" appended.
    """
    if "@" in destination:
        return destination
    return f"{destination}@{default_domain}"


class OutboundDispatcher:
    """Sends outbound messages on the current session."""

    def __init__(self, state: SessionState, default_domain: str = DEFAULT_DOMAIN):
        self.state = state
        self.default_domain = default_domain

    async def send(
        self,
        destination: str,
        text: str,
        mode: DeliveryMode = DeliveryMode.AWAITED,
        on_complete: Optional[CompletionCallback] = None,
    ) -> SendResult:
        """
        Send ``text`` to ``destination``.

        Raises:
            NotConnectedError: no authenticated session (no send attempted)
            SendError: engine failure, AWAITED mode only
        """
        jid = normalize_destination(destination, self.default_domain)

        snapshot = self.state.current
        if not snapshot.is_connected:
            logger.warning(f"Refusing send to {jid}: WhatsApp not connected")
            raise NotConnectedError()

        connection = snapshot.connection

        if mode == DeliveryMode.FIRE_AND_FORGET:
            spawn_detached(
                self._send_detached(connection, jid, text, on_complete),
                name=f"send:{jid}",
            )
            logger.info(f"Queued message to {jid}")
            return SendResult(success=True, jid=jid, mode=mode, status="queued")

        return await self._send_now(connection, jid, text, mode)

    async def _send_now(self, connection, jid: str, text: str, mode: DeliveryMode) -> SendResult:
        try:
            receipt = await connection.send(jid, text)
        except SendError:
            raise
        except Exception as e:
            raise SendError(f"Failed to send message to {jid}: {e}", cause=e) from e

        logger.info(f"Message sent to {jid} (id={receipt.message_id})")
        return SendResult(success=True, jid=jid, mode=mode, message_id=receipt.message_id)

    async def _send_detached(
        self,
        connection,
        jid: str,
        text: str,
        on_complete: Optional[CompletionCallback],
    ):
        error: Optional[BridgeError] = None
        result = SendResult(success=False, jid=jid, mode=DeliveryMode.FIRE_AND_FORGET, status="error")

        try:
            result = await self._send_now(connection, jid, text, DeliveryMode.FIRE_AND_FORGET)
        except SendError as e:
            error = e
            logger.error(f"Queued send to {jid} failed: {e}")

        if on_complete is not None:
            await on_complete(result, error)
