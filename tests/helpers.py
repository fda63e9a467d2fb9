"""Fakes shared by the bridge tests."""

import asyncio
from typing import Any, Dict, List, Optional

from whatsapp_bridge.channels.whatsapp.client import DeliveryReceipt, SessionConnection, SessionUser
from whatsapp_bridge.channels.whatsapp.credentials import CredentialStore


class FakeConnection(SessionConnection):
    """In-memory SessionConnection driven by a queue of events."""

    def __init__(self, user: Optional[SessionUser] = None):
        self._user = user
        self.queue: asyncio.Queue = asyncio.Queue()
        self.sent: List[tuple] = []
        self.acked: List[int] = []
        self.closed = False
        self.send_error: Optional[Exception] = None
        self.calls: List[str] = []

    @property
    def user(self) -> Optional[SessionUser]:
        return self._user

    async def events(self):
        while True:
            event = await self.queue.get()
            if event is None:
                return
            yield event

    async def send(self, jid: str, text: str) -> DeliveryReceipt:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((jid, text))
        return DeliveryReceipt(message_id=f"3EB0{len(self.sent):04d}", jid=jid)

    async def acknowledge_credentials(self, seq: int):
        self.calls.append(f"ack:{seq}")
        self.acked.append(seq)

    async def close(self):
        if not self.closed:
            self.closed = True
            self.queue.put_nowait(None)


class MemoryCredentialStore(CredentialStore):
    def __init__(self, initial: Optional[Dict[str, Any]] = None, calls: Optional[List[str]] = None):
        self.data: Dict[str, Any] = dict(initial or {})
        self.saved: List[Dict[str, Any]] = []
        self.calls = calls if calls is not None else []

    async def load(self) -> Dict[str, Any]:
        return dict(self.data)

    async def save(self, credentials: Dict[str, Any]):
        self.calls.append("save")
        self.saved.append(credentials)
        self.data.update(credentials)


async def settle(rounds: int = 5):
    """Let detached tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)
