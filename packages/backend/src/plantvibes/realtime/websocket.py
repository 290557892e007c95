"""WebSocket endpoint — live change notifications for frontend clients.

Learn: Each client connects to /ws. The handler:
1. Wraps the socket in a ClientConnection and accepts it (→ OPEN)
2. Registers it, so every broadcast from now on reaches it
3. Reads client frames and hands them to the broadcaster
4. On disconnect, marks it CLOSED and unregisters it (in `finally`)

There is no per-connection pub/sub subscription: the single dispatch loop
started in the lifespan pushes to all registered connections at once.
"""

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from plantvibes.config import settings
from plantvibes.realtime.broadcaster import ChangeBroadcaster
from plantvibes.realtime.connection import ClientConnection

logger = structlog.get_logger()
router = APIRouter()


def get_broadcaster(websocket: WebSocket) -> ChangeBroadcaster:
    """The app-owned broadcaster (created in the lifespan)."""
    return websocket.app.state.broadcaster


@router.websocket(settings.ws_path)
async def live_updates(websocket: WebSocket):
    """Stream {type, data} change envelopes to one client."""
    broadcaster = get_broadcaster(websocket)
    registry = broadcaster.registry
    connection = ClientConnection(websocket)

    structlog.contextvars.bind_contextvars(connection_id=connection.id)
    await connection.accept()
    registry.register(connection)
    logger.info("realtime.client_connected", connections=len(registry))

    try:
        while True:
            text = await websocket.receive_text()
            await broadcaster.handle_client_message(connection, text)
    except WebSocketDisconnect as e:
        logger.info("realtime.client_disconnected", code=e.code)
    except RuntimeError as e:
        # receive after a failed send closed the socket on our side
        logger.info("realtime.client_dropped", error=str(e))
    finally:
        connection.mark_closed()
        registry.unregister(connection)
        structlog.contextvars.unbind_contextvars("connection_id")
