"""
Inbound event consumers.

- WebhookForwarder: POST to an automation endpoint
- SupabaseInboxSink: append to the inbox table
"""

from .webhook import WebhookForwarder
from .supabase import SupabaseInboxSink, get_supabase_client

__all__ = [
    "WebhookForwarder",
    "SupabaseInboxSink",
    "get_supabase_client",
]
