import pytest

from helpers import FakeConnection
from whatsapp_bridge.channels.whatsapp.client import SessionUser
from whatsapp_bridge.core.state import ConnectivityStatus, SessionState


@pytest.fixture
def state() -> SessionState:
    return SessionState()


@pytest.fixture
def connection() -> FakeConnection:
    return FakeConnection(user=SessionUser(id="15550001111:7@s.whatsapp.net", name="Bridge"))


@pytest.fixture
def connected_state(state: SessionState, connection: FakeConnection) -> SessionState:
    state.publish(
        status=ConnectivityStatus.CONNECTED,
        connection=connection,
        user_id="15550001111:7@s.whatsapp.net",
        user_name="Bridge",
    )
    return state
