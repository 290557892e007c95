"""Client connection handle — one live WebSocket to one browser tab.

Learn: A connection moves through CONNECTING → OPEN → CLOSED exactly once.
CLOSED is terminal; the same object is never re-opened. A reconnecting
client gets a brand new ClientConnection (and a new id).

Connections are anonymous here. Whoever gates the upgrade may attach
identity elsewhere; the broadcaster does not need it.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum

import structlog
from starlette.websockets import WebSocket, WebSocketState

from plantvibes.exceptions import ConnectionClosedError, ConnectionStateError

logger = structlog.get_logger()


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class ClientConnection:
    """Wraps a WebSocket with an id and a one-way state machine.

    Equality is identity: two handles around the same socket are still
    two different connections.
    """

    def __init__(self, websocket: WebSocket):
        self.id = uuid.uuid4().hex
        self.websocket = websocket
        self.state = ConnectionState.CONNECTING
        self.connected_at: datetime | None = None

    def __repr__(self) -> str:
        return f"<ClientConnection {self.id[:8]} {self.state.value}>"

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN

    async def accept(self) -> None:
        """Complete the handshake and enter OPEN."""
        if self.state is not ConnectionState.CONNECTING:
            raise ConnectionStateError(
                f"Cannot accept connection {self.id} in state {self.state.value}"
            )
        await self.websocket.accept()
        self.state = ConnectionState.OPEN
        self.connected_at = datetime.now(timezone.utc)

    def mark_closed(self) -> None:
        """Enter CLOSED. Idempotent."""
        self.state = ConnectionState.CLOSED

    async def send_text(self, text: str) -> None:
        """Send one text frame. Raises ConnectionClosedError once CLOSED."""
        if self.state is ConnectionState.CLOSED:
            raise ConnectionClosedError(f"Connection {self.id} is closed")
        await self.websocket.send_text(text)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        """Mark CLOSED and close the underlying socket if it is still up."""
        self.mark_closed()
        if self.websocket.client_state != WebSocketState.CONNECTED:
            return
        try:
            await self.websocket.close(code=code, reason=reason)
        except Exception as e:
            # Transport already gone; the receive loop will notice.
            logger.debug("realtime.close_failed", connection_id=self.id, error=str(e))
