"""Test fixtures — in-memory registry, broadcaster and fake sockets.

Learn: The real-time core never needs a database to be tested. Sockets
are replaced with FakeWebSocket, which records every frame and can be
told to fail (or to run a hook) on send. The app-level tests build a
fresh FastAPI app per test and plug the registry/broadcaster into
app.state, exactly where the lifespan would put them.
"""

import json
from typing import Callable, Optional

import pytest
import pytest_asyncio
from starlette.websockets import WebSocketState

from plantvibes.main import create_app
from plantvibes.realtime.broadcaster import ChangeBroadcaster
from plantvibes.realtime.connection import ClientConnection
from plantvibes.realtime.registry import ConnectionRegistry


class FakeWebSocket:
    """Stand-in for starlette's WebSocket on the send side."""

    def __init__(
        self,
        fail_with: Optional[BaseException] = None,
        on_send: Optional[Callable[[], None]] = None,
    ):
        self.sent: list[str] = []
        self.send_calls = 0
        self.fail_with = fail_with
        self.on_send = on_send
        self.client_state = WebSocketState.CONNECTING
        self.closed_with: Optional[tuple] = None

    async def accept(self):
        self.client_state = WebSocketState.CONNECTED

    async def send_text(self, text: str):
        self.send_calls += 1
        if self.on_send is not None:
            self.on_send()
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(text)

    async def close(self, code: int = 1000, reason: Optional[str] = None):
        self.closed_with = (code, reason)
        self.client_state = WebSocketState.DISCONNECTED

    @property
    def frames(self) -> list[dict]:
        return [json.loads(t) for t in self.sent]


@pytest.fixture()
def registry():
    return ConnectionRegistry()


@pytest.fixture()
def broadcaster(registry):
    return ChangeBroadcaster(registry)


@pytest_asyncio.fixture()
async def connect(registry):
    """Factory: open a connection around a FakeWebSocket and register it."""

    async def _connect(**fake_kwargs) -> ClientConnection:
        connection = ClientConnection(FakeWebSocket(**fake_kwargs))
        await connection.accept()
        registry.register(connection)
        return connection

    return _connect


@pytest.fixture()
def app(broadcaster):
    """App with the realtime state the lifespan would normally create."""
    application = create_app()
    application.state.registry = broadcaster.registry
    application.state.broadcaster = broadcaster
    return application
