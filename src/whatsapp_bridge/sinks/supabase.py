"""
Supabase Inbox Sink

Appends every inbound event to the ``inbox_whatsapp`` table.

Environment Variables:
    SUPABASE_URL: Your Supabase project URL
    SUPABASE_KEY: Your Supabase API key (service role for server-side)

Table:
    CREATE TABLE IF NOT EXISTS inbox_whatsapp (
        id BIGSERIAL PRIMARY KEY,
        from_number TEXT NOT NULL,
        text_body TEXT,
        sender_name TEXT,
        created_at TIMESTAMPTZ DEFAULT NOW()
    );
"""

import logging
from typing import Optional

from supabase import AsyncClient, acreate_client

from ..core.errors import ConsumerError
from ..core.fanout import InboundConsumer, InboundEvent

logger = logging.getLogger(__name__)

# Supabase client (lazy initialized)
_supabase_client: Optional[AsyncClient] = None


async def get_supabase_client(url: str, key: str) -> AsyncClient:
    """Get or create the shared async Supabase client"""
    global _supabase_client
    if _supabase_client is None:
        if not url or not key:
            raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set")

        _supabase_client = await acreate_client(url, key)
        logger.info("Supabase client initialized")

    return _supabase_client


class SupabaseInboxSink(InboundConsumer):
    """Persists inbound events. Failures are logged by the fan-out, not retried."""

    name = "supabase-inbox"

    def __init__(self, client: AsyncClient, table: str = "inbox_whatsapp"):
        self.client = client
        self.table = table

    async def consume(self, event: InboundEvent):
        row = {
            "from_number": event.sender,
            "text_body": event.text,
            "sender_name": event.sender_name or "Unknown",
        }
        try:
            await self.client.table(self.table).insert(row).execute()
        except Exception as e:
            raise ConsumerError(self.name, f"insert into {self.table} failed: {e}", cause=e) from e
