"""
Session core: state, lifecycle, outbound dispatch and inbound fan-out.
"""

from .dispatcher import DeliveryMode, OutboundDispatcher, SendResult, normalize_destination
from .errors import BridgeError, ConsumerError, NotConnectedError, SendError, SessionConstructionError
from .fanout import InboundConsumer, InboundEvent, InboundFanout
from .session import SessionManager
from .state import ConnectivityStatus, DisconnectKind, SessionSnapshot, SessionState

__all__ = [
    "BridgeError",
    "ConnectivityStatus",
    "ConsumerError",
    "DeliveryMode",
    "DisconnectKind",
    "InboundConsumer",
    "InboundEvent",
    "InboundFanout",
    "NotConnectedError",
    "OutboundDispatcher",
    "SendError",
    "SendResult",
    "SessionConstructionError",
    "SessionManager",
    "SessionSnapshot",
    "SessionState",
    "normalize_destination",
]
