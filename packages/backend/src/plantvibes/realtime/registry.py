"""Connection registry — the set of currently open live-update clients.

Learn: Everything runs on one event loop, so a plain dict is enough —
no locks. The one subtle case is reentrancy: a broadcast may discover a
dead socket and unregister it while still walking the members. Iteration
therefore always goes over a snapshot, never the live dict.

The registry is owned by the application (created in the lifespan and
stored on app.state), not a module-level global.
"""

from typing import Callable, Iterator

import structlog

from plantvibes.realtime.connection import ClientConnection

logger = structlog.get_logger()


class ConnectionRegistry:
    """In-memory set of open connections, keyed by connection identity."""

    def __init__(self):
        # Insertion-ordered; keyed by id() so equality is object identity.
        self._connections: dict[int, ClientConnection] = {}

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection: object) -> bool:
        return self._connections.get(id(connection)) is connection

    def __iter__(self) -> Iterator[ClientConnection]:
        return iter(self.snapshot())

    def register(self, connection: ClientConnection) -> None:
        """Add a connection. Registering the same object twice is a no-op."""
        self._connections[id(connection)] = connection
        logger.debug(
            "realtime.registered",
            connection_id=getattr(connection, "id", None),
            connections=len(self._connections),
        )

    def unregister(self, connection: ClientConnection) -> None:
        """Remove a connection. No-op if it is not (or no longer) registered.

        Both the receive loop's cleanup and a failed send may try to remove
        the same connection, in either order.
        """
        key = id(connection)
        if self._connections.get(key) is not connection:
            return
        del self._connections[key]
        logger.debug(
            "realtime.unregistered",
            connection_id=getattr(connection, "id", None),
            connections=len(self._connections),
        )

    def snapshot(self) -> list[ClientConnection]:
        """Copy of the current members, safe to iterate while mutating."""
        return list(self._connections.values())

    def for_each(self, visitor: Callable[[ClientConnection], object]) -> None:
        """Call visitor(connection) for every member of a snapshot.

        The visitor may register or unregister connections; members
        present when the walk started are each visited exactly once.
        """
        for connection in self.snapshot():
            visitor(connection)

    def clear(self) -> None:
        self._connections.clear()
