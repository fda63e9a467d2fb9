"""
Test Session Manager

Lifecycle of the single session: pairing, open, close, restart policy and
credential persistence ordering.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock

from helpers import FakeConnection, MemoryCredentialStore, settle
from whatsapp_bridge.channels.whatsapp.client import SessionUser
from whatsapp_bridge.core.events import (
    ConnectionUpdated,
    CredentialsUpdated,
    DisconnectReason,
    MessagesReceived,
    QRChallengeIssued,
    is_terminal_disconnect,
)
from whatsapp_bridge.core.session import SessionManager
from whatsapp_bridge.core.state import ConnectivityStatus, DisconnectKind, SessionState


class TestDisconnectReason:
    """Only a logout is terminal"""

    def test_logged_out_is_terminal(self):
        assert is_terminal_disconnect(401) is True
        assert is_terminal_disconnect(DisconnectReason.LOGGED_OUT) is True

    @pytest.mark.parametrize("code", [428, 408, 440, 500, 515, 503, None])
    def test_everything_else_retries(self, code):
        assert is_terminal_disconnect(code) is False


class TestSessionManager:
    """Tests for SessionManager"""

    def setup_method(self):
        self.state = SessionState()
        self.store = MemoryCredentialStore(initial={"creds": {"me": None}})
        self.connections = []
        self.on_messages = AsyncMock()
        self.manager = SessionManager(
            self.state,
            self.store,
            self._factory,
            on_messages=self.on_messages,
            reconnect_delay=0.01,
            construction_retry_delay=0.02,
        )

    async def _factory(self, credentials):
        connection = FakeConnection(user=SessionUser(id="15550001111:7@s.whatsapp.net", name="Bridge"))
        connection.credentials = credentials
        self.connections.append(connection)
        return connection

    async def _feed(self, *events):
        connection = self.state.current.connection
        for event in events:
            connection.queue.put_nowait(event)
        await settle()
        return connection

    @pytest.mark.asyncio
    async def test_start_publishes_initializing(self):
        try:
            await self.manager.start()

            snapshot = self.state.current
            assert snapshot.status == ConnectivityStatus.INITIALIZING
            assert snapshot.connection is self.connections[0]
            assert self.connections[0].credentials == {"creds": {"me": None}}
        finally:
            await self.manager.stop()

    @pytest.mark.asyncio
    async def test_latest_qr_wins(self):
        try:
            await self.manager.start()
            await self._feed(QRChallengeIssued(qr="2@first"), QRChallengeIssued(qr="2@second"))

            snapshot = self.state.current
            assert snapshot.qr == "2@second"
            assert snapshot.status == ConnectivityStatus.PAIRING_REQUIRED
        finally:
            await self.manager.stop()

    @pytest.mark.asyncio
    async def test_open_clears_qr_and_sets_user(self):
        try:
            await self.manager.start()
            await self._feed(QRChallengeIssued(qr="2@abc"), ConnectionUpdated(connection="open"))

            snapshot = self.state.current
            assert snapshot.status == ConnectivityStatus.CONNECTED
            assert snapshot.is_connected
            assert snapshot.qr is None
            assert snapshot.user_id == "15550001111:7@s.whatsapp.net"
            assert snapshot.user_name == "Bridge"
        finally:
            await self.manager.stop()

    @pytest.mark.asyncio
    async def test_open_runs_connected_callbacks(self):
        callback = AsyncMock()
        self.manager.on_connected(callback)
        try:
            await self.manager.start()
            await self._feed(ConnectionUpdated(connection="open", user_id="1555@s.whatsapp.net"))

            callback.assert_awaited_once()
            assert self.state.current.user_id == "1555@s.whatsapp.net"
        finally:
            await self.manager.stop()

    @pytest.mark.asyncio
    async def test_logout_is_terminal(self):
        try:
            await self.manager.start()
            first = await self._feed(
                ConnectionUpdated(connection="open"),
                ConnectionUpdated(connection="close", status_code=401, error="logged out"),
            )

            snapshot = self.state.current
            assert snapshot.status == ConnectivityStatus.DISCONNECTED
            assert snapshot.disconnect_kind == DisconnectKind.TERMINAL
            assert snapshot.disconnect_code == 401
            assert snapshot.connection is None
            assert not snapshot.is_connected
            assert first.closed
            assert self.manager.restart_pending is False

            await asyncio.sleep(0.05)
            assert len(self.connections) == 1
        finally:
            await self.manager.stop()

    @pytest.mark.asyncio
    async def test_recoverable_close_schedules_one_restart(self):
        try:
            await self.manager.start()
            first = await self._feed(
                ConnectionUpdated(connection="open"),
                ConnectionUpdated(connection="close", status_code=428),
            )

            snapshot = self.state.current
            assert snapshot.disconnect_kind == DisconnectKind.RETRYING
            assert first.closed
            assert self.manager.restart_pending

            # A second failure signal while the timer is armed is absorbed
            self.manager._schedule_restart(0.01, "duplicate")

            await asyncio.sleep(0.06)
            assert len(self.connections) == 2
            assert self.manager.restart_count == 1
            assert self.state.current.connection is self.connections[1]
            assert self.state.current.status == ConnectivityStatus.INITIALIZING
        finally:
            await self.manager.stop()

    @pytest.mark.asyncio
    async def test_stream_end_counts_as_connection_lost(self):
        try:
            await self.manager.start()
            await self._feed(None)

            snapshot = self.state.current
            assert snapshot.status == ConnectivityStatus.DISCONNECTED
            assert snapshot.disconnect_code == int(DisconnectReason.CONNECTION_LOST)
            assert self.manager.restart_pending
        finally:
            await self.manager.stop()

    @pytest.mark.asyncio
    async def test_construction_failure_retries(self):
        calls = []

        async def flaky_factory(credentials):
            calls.append(credentials)
            if len(calls) == 1:
                raise OSError("engine unreachable")
            return await self._factory(credentials)

        self.manager.connection_factory = flaky_factory
        try:
            await self.manager.start()
            assert self.state.current.connection is None
            assert self.manager.restart_pending

            await asyncio.sleep(0.08)
            assert len(calls) == 2
            assert self.state.current.connection is self.connections[0]
        finally:
            await self.manager.stop()

    @pytest.mark.asyncio
    async def test_credentials_saved_before_ack(self):
        try:
            await self.manager.start()
            connection = self.state.current.connection
            self.store.calls = connection.calls

            await self._feed(CredentialsUpdated(credentials={"creds": {"registered": True}}, seq=4))

            assert self.store.saved == [{"creds": {"registered": True}}]
            assert connection.calls == ["save", "ack:4"]
        finally:
            await self.manager.stop()

    @pytest.mark.asyncio
    async def test_messages_go_to_handler(self):
        batch = MessagesReceived(messages=[{"key": {"id": "A"}}])
        try:
            await self.manager.start()
            await self._feed(batch)

            self.on_messages.assert_awaited_once_with(batch)
        finally:
            await self.manager.stop()

    @pytest.mark.asyncio
    async def test_handler_error_does_not_stop_event_loop(self):
        self.on_messages.side_effect = RuntimeError("boom")
        try:
            await self.manager.start()
            await self._feed(
                MessagesReceived(messages=[{"key": {"id": "A"}}]),
                QRChallengeIssued(qr="2@after"),
            )

            assert self.state.current.qr == "2@after"
        finally:
            await self.manager.stop()

    @pytest.mark.asyncio
    async def test_events_from_replaced_connection_are_ignored(self):
        try:
            await self.manager.start()
            stale = FakeConnection()

            await self.manager.handle_event(stale, QRChallengeIssued(qr="2@stale"))
            await self.manager.handle_event(stale, ConnectionUpdated(connection="close", status_code=428))

            snapshot = self.state.current
            assert snapshot.qr is None
            assert snapshot.status == ConnectivityStatus.INITIALIZING
            assert self.manager.restart_pending is False
        finally:
            await self.manager.stop()

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_restart(self):
        await self.manager.start()
        await self._feed(ConnectionUpdated(connection="close", status_code=515))
        assert self.manager.restart_pending

        await self.manager.stop()
        assert self.manager.restart_pending is False

        await asyncio.sleep(0.05)
        assert len(self.connections) == 1
