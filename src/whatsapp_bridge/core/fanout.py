"""
Inbound Fan-out

Turns a raw message batch from the engine into an InboundEvent and hands
it to every registered consumer. A consumer that raises or times out is
logged and skipped; the others still get the event and the session's
event loop keeps going.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .events import MessagesReceived
from .state import SessionState

logger = logging.getLogger(__name__)

MEDIA_PLACEHOLDER = "[Media]"


@dataclass
class InboundEvent:
    """A received message, reduced to what downstream consumers need."""
    sender: str
    text: str
    timestamp: int
    message_id: str
    sender_name: Optional[str] = None

    def to_webhook_payload(self) -> Dict[str, Any]:
        return {
            "from": self.sender,
            "text": self.text,
            "timestamp": self.timestamp,
            "messageId": self.message_id,
        }


class InboundConsumer(ABC):
    """Downstream receiver of inbound events."""

    name: str = "consumer"

    @abstractmethod
    async def consume(self, event: InboundEvent):
        """Handle one event. May raise; the fan-out isolates failures."""


# =============================================================================
# EXTRACTION
# =============================================================================

def bare_user(jid: Optional[str]) -> str:
    """'15551234567:12@s.whatsapp.net' -> '15551234567'"""
    if not jid:
        return ""
    return jid.split("@")[0].split(":")[0]


def extract_text(message: Optional[Dict[str, Any]]) -> str:
    """Best-effort text: plain, then rich text, then media caption."""
    if not message:
        return MEDIA_PLACEHOLDER

    if message.get("conversation"):
        return message["conversation"]

    extended = message.get("extendedTextMessage") or {}
    if extended.get("text"):
        return extended["text"]

    for media_key in ("imageMessage", "videoMessage", "documentMessage"):
        caption = (message.get(media_key) or {}).get("caption")
        if caption:
            return caption

    return MEDIA_PLACEHOLDER


def extract_timestamp(value: Any) -> int:
    """The engine sends seconds as an int, a numeric string, or {"low": n}."""
    if isinstance(value, dict):
        value = value.get("low", 0)
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def is_self_authored(raw: Dict[str, Any], own_jid: Optional[str]) -> bool:
    key = raw.get("key") or {}
    if key.get("fromMe"):
        return True

    sender = key.get("participant") or key.get("remoteJid")
    own = bare_user(own_jid)
    return bool(own) and bare_user(sender) == own


def extract_event(raw: Dict[str, Any]) -> InboundEvent:
    key = raw.get("key") or {}
    return InboundEvent(
        sender=key.get("remoteJid", ""),
        text=extract_text(raw.get("message")),
        timestamp=extract_timestamp(raw.get("messageTimestamp")),
        message_id=key.get("id", ""),
        sender_name=raw.get("pushName"),
    )


# =============================================================================
# FAN-OUT
# =============================================================================

class InboundFanout:
    """Delivers each inbound event to all consumers independently."""

    def __init__(
        self,
        state: SessionState,
        consumers: Optional[List[InboundConsumer]] = None,
        consumer_timeout: Optional[float] = 15.0,
    ):
        self.state = state
        self.consumers: List[InboundConsumer] = list(consumers or [])
        self.consumer_timeout = consumer_timeout

    def add_consumer(self, consumer: InboundConsumer):
        self.consumers.append(consumer)
        logger.info(f"Inbound consumer registered: {consumer.name}")

    async def handle_batch(self, batch: MessagesReceived) -> Optional[InboundEvent]:
        """
        Process the first message of a batch.

        Returns the delivered event, or None when the batch was empty or the
        message was self-authored.
        """
        if not batch.messages:
            return None

        if len(batch.messages) > 1:
            logger.debug(f"Batch of {len(batch.messages)} messages, processing the first only")

        raw = batch.messages[0]
        if is_self_authored(raw, self.state.current.user_id):
            return None

        event = extract_event(raw)
        logger.info(f"Message from {event.sender}: {event.text[:80]}")

        await self.dispatch(event)
        return event

    async def dispatch(self, event: InboundEvent):
        """Run every consumer concurrently; failures never propagate."""
        if not self.consumers:
            return
        await asyncio.gather(*(self._deliver(consumer, event) for consumer in self.consumers))

    async def _deliver(self, consumer: InboundConsumer, event: InboundEvent):
        try:
            if self.consumer_timeout is not None:
                await asyncio.wait_for(consumer.consume(event), timeout=self.consumer_timeout)
            else:
                await consumer.consume(event)
        except asyncio.TimeoutError:
            logger.error(f"Consumer {consumer.name} timed out on message {event.message_id}")
        except Exception as e:
            logger.error(f"Consumer {consumer.name} failed on message {event.message_id}: {e}")
