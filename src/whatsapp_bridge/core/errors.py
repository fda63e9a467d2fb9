"""
Bridge Error Taxonomy

Every failure the core surfaces to a caller is one of these. The control
plane maps them onto HTTP status codes; the MCP handler maps them onto
``isError`` tool results.
"""

from typing import Optional


class BridgeError(Exception):
    """Base class for all bridge errors."""

    def __init__(self, message: str, *, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class NotConnectedError(BridgeError):
    """A send was attempted with no live, authenticated session."""

    def __init__(self, message: str = "WhatsApp not connected"):
        super().__init__(message)


class SendError(BridgeError):
    """The protocol engine failed to deliver an outbound message."""


class SessionConstructionError(BridgeError):
    """The session connection could not be created."""


class ConsumerError(BridgeError):
    """An inbound-event consumer failed for a single event."""

    def __init__(self, consumer: str, message: str, *, cause: Optional[BaseException] = None):
        super().__init__(f"{consumer}: {message}", cause=cause)
        self.consumer = consumer
