"""
Session State

The one piece of shared mutable state in the bridge: which connection is
live, whether it is authenticated, and the current pairing challenge.

Only the SessionManager writes. Readers (dispatcher, fan-out, control
plane) call ``state.current`` and get an immutable snapshot, so they see
either the old session or the new one in full, never a mix.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from ..channels.whatsapp.client import SessionConnection

logger = logging.getLogger(__name__)


class ConnectivityStatus(str, Enum):
    """Lifecycle of the single session"""
    INITIALIZING = "initializing"
    PAIRING_REQUIRED = "pairing_required"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class DisconnectKind(str, Enum):
    """Why we are disconnected, as far as recovery is concerned"""
    TERMINAL = "terminal"      # Explicit unpairing, operator must re-pair
    RETRYING = "retrying"      # Restart already scheduled


@dataclass(frozen=True)
class SessionSnapshot:
    """Immutable view of the session at one point in time."""
    status: ConnectivityStatus = ConnectivityStatus.INITIALIZING
    connection: Optional["SessionConnection"] = None
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    qr: Optional[str] = None
    disconnect_kind: Optional[DisconnectKind] = None
    disconnect_code: Optional[int] = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_connected(self) -> bool:
        return (
            self.status == ConnectivityStatus.CONNECTED
            and self.connection is not None
            and bool(self.user_id)
        )

    @property
    def has_qr(self) -> bool:
        return self.qr is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "user": self.user_id,
            "user_name": self.user_name,
            "has_qr": self.has_qr,
            "disconnect_kind": self.disconnect_kind.value if self.disconnect_kind else None,
            "disconnect_code": self.disconnect_code,
            "updated_at": self.updated_at.isoformat(),
        }


class SessionState:
    """
    Holder for the current SessionSnapshot.

    ``publish`` builds a new snapshot and swaps the reference in a single
    assignment. There is no await between building and swapping, so no
    coroutine can observe a half-updated session.
    """

    def __init__(self):
        self._snapshot = SessionSnapshot()

    @property
    def current(self) -> SessionSnapshot:
        return self._snapshot

    def publish(self, **changes: Any) -> SessionSnapshot:
        """Replace the snapshot with a copy carrying ``changes``."""
        previous = self._snapshot
        changes.setdefault("updated_at", datetime.now(timezone.utc))
        snapshot = replace(previous, **changes)
        self._snapshot = snapshot

        if snapshot.status != previous.status:
            logger.info(f"Session status: {previous.status.value} -> {snapshot.status.value}")

        return snapshot
