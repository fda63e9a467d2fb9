"""
WhatsApp Session Connection

Talks to the protocol engine sidecar and persists its credentials.
"""

from .client import BridgeSessionConnection, DeliveryReceipt, SessionConnection, SessionUser, create_bridge_connection
from .credentials import CredentialStore, FileCredentialStore

__all__ = [
    "BridgeSessionConnection",
    "CredentialStore",
    "DeliveryReceipt",
    "FileCredentialStore",
    "SessionConnection",
    "SessionUser",
    "create_bridge_connection",
]
