"""
Webhook Forwarder

Relays inbound events as JSON to an external automation endpoint (n8n or
similar). One attempt per event, bounded timeout, no retry, no outbox.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from ..core.errors import ConsumerError
from ..core.fanout import InboundConsumer, InboundEvent

logger = logging.getLogger(__name__)


class WebhookForwarder(InboundConsumer):
    """POSTs InboundEvents to the configured automation endpoint."""

    name = "webhook"

    def __init__(
        self,
        url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.token = token
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def post(self, payload: Dict[str, Any]) -> httpx.Response:
        """Send one payload and return the raw response."""
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            return await client.post(self.url, json=payload, headers=self._headers())

    async def consume(self, event: InboundEvent):
        try:
            response = await self.post(event.to_webhook_payload())
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ConsumerError(self.name, f"webhook delivery failed: {e}", cause=e) from e

        logger.debug(f"Webhook accepted message {event.message_id} ({response.status_code})")
