"""
Supabase Outbox Channel

Listens to INSERTs on ``public.outbox_whatsapp`` (Supabase Realtime) and
turns each new row into a fire-and-forget send. The row's ``status`` is
updated to ``sent`` or ``error: <message>`` once the attempt finishes.

This is just another trigger for the OutboundDispatcher; it has no send
semantics of its own.

Table:
    CREATE TABLE IF NOT EXISTS outbox_whatsapp (
        id BIGSERIAL PRIMARY KEY,
        to_number TEXT NOT NULL,
        reply_body TEXT NOT NULL,
        status TEXT DEFAULT 'pending',
        created_at TIMESTAMPTZ DEFAULT NOW()
    );
"""

import logging
from typing import Any, Dict, Optional

from supabase import AsyncClient

from ..core.dispatcher import DeliveryMode, OutboundDispatcher, SendResult
from ..core.errors import BridgeError, NotConnectedError
from ..core.tasks import spawn_detached

logger = logging.getLogger(__name__)


def extract_record(payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Pull the inserted row out of a postgres_changes payload."""
    if payload.get("new"):
        return payload["new"]
    data = payload.get("data") or {}
    return data.get("record")


class OutboxSubscriber:
    """Realtime subscription feeding the OutboundDispatcher."""

    def __init__(
        self,
        client: AsyncClient,
        dispatcher: OutboundDispatcher,
        table: str = "outbox_whatsapp",
        schema: str = "public",
    ):
        self.client = client
        self.dispatcher = dispatcher
        self.table = table
        self.schema = schema
        self._channel = None

    @property
    def is_subscribed(self) -> bool:
        return self._channel is not None

    async def subscribe(self):
        """
        Subscribe once. Later calls (e.g. after a reconnect) are no-ops.

        A failed attempt leaves the subscriber unsubscribed and re-raises, so
        the next connect tries again.
        """
        if self._channel is not None:
            return

        logger.info(f"Connecting to Supabase Realtime ({self.table})...")
        channel = self.client.channel("outbox-listener")
        channel.on_postgres_changes(
            "INSERT",
            schema=self.schema,
            table=self.table,
            callback=self._on_insert,
        )
        await channel.subscribe(self._on_status)
        self._channel = channel

    async def unsubscribe(self):
        if self._channel is None:
            return
        await self._channel.unsubscribe()
        self._channel = None

    def _on_status(self, status, err=None):
        if err:
            logger.error(f"Supabase Realtime status: {status} ({err})")
        else:
            logger.info(f"Supabase Realtime status: {status}")

    def _on_insert(self, payload: Dict[str, Any]):
        record = extract_record(payload)
        if not record:
            logger.warning("Outbox insert without a record, ignoring")
            return
        spawn_detached(self.handle_row(record), name=f"outbox:{record.get('id')}")

    async def handle_row(self, row: Dict[str, Any]):
        """Send one outbox row and record the outcome on it."""
        row_id = row.get("id")
        logger.info(f"New outbox message {row_id} -> {row.get('to_number')}")

        to_number = row.get("to_number")
        reply_body = row.get("reply_body")
        if not to_number or not reply_body:
            logger.error(f"Outbox message {row_id} is missing to_number or reply_body")
            await self._set_status(row_id, "error: missing to_number or reply_body")
            return

        async def on_complete(result: SendResult, error: Optional[BridgeError]):
            if error is None:
                await self._set_status(row_id, "sent")
            else:
                await self._set_status(row_id, f"error: {error.message}")

        try:
            await self.dispatcher.send(
                str(to_number),
                str(reply_body),
                mode=DeliveryMode.FIRE_AND_FORGET,
                on_complete=on_complete,
            )
        except NotConnectedError as e:
            logger.error(f"Cannot send outbox message {row_id}: {e.message}")
            await self._set_status(row_id, f"error: {e.message}")

    async def _set_status(self, row_id: Any, status: str):
        try:
            await self.client.table(self.table).update({"status": status}).eq("id", row_id).execute()
        except Exception as e:
            logger.error(f"Failed to update outbox row {row_id} to '{status}': {e}")
