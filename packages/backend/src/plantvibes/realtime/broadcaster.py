"""Change broadcaster — ChangeEvents in, JSON frames out to every client.

Learn: The broadcaster owns no connections; it is handed the registry at
construction (see main.lifespan). For each event:

1. to_envelope() maps the variant to {type, data}
2. (optional) update events are enriched with the full document
3. the envelope is serialized ONCE
4. the frame is sent to each connection in a registry snapshot

A failing send only affects that connection: it is logged, marked closed
and unregistered, and the loop moves on. There is no barrier between
events — each broadcast is a tight loop over the snapshot.

Slow consumers: each send may be bounded by send_timeout. A timeout counts
as a failed send, and the socket is closed with 1011 in the background so
the client notices and reconnects.
"""

import asyncio
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

import structlog

from plantvibes.realtime.connection import ClientConnection
from plantvibes.realtime.events import ChangeEvent, Envelope, Updated, to_envelope
from plantvibes.realtime.feed import ChangeFeed
from plantvibes.realtime.registry import ConnectionRegistry

logger = structlog.get_logger()

DocumentLoader = Callable[[str, str], Awaitable[Optional[dict[str, Any]]]]


@dataclass
class BroadcastStats:
    """Runtime statistics for monitoring."""
    events: int = 0
    frames_sent: int = 0
    send_failures: int = 0
    malformed_messages: int = 0
    errors: int = 0
    started_at: Optional[datetime] = None


class ChangeBroadcaster:
    """Fan change events out to every registered connection."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        document_loader: Optional[DocumentLoader] = None,
        send_timeout: Optional[float] = None,
    ):
        self.registry = registry
        self.document_loader = document_loader
        # None or 0 → wait as long as the transport takes
        self.send_timeout = send_timeout or None
        self.stats = BroadcastStats()
        self._closing: set[asyncio.Task] = set()

    # ─── Events → envelopes ───────────────────────────────

    async def on_change(self, event: ChangeEvent) -> Envelope:
        """Translate one change event and broadcast it."""
        self.stats.events += 1
        envelope = to_envelope(event)
        if isinstance(event, Updated) and self.document_loader is not None:
            envelope = await self._enrich(event, envelope)
        await self.broadcast(envelope)
        return envelope

    async def _enrich(self, event: Updated, envelope: Envelope) -> Envelope:
        try:
            document = await self.document_loader(event.entity_type, event.document_id)
        except Exception as e:
            logger.warning(
                "realtime.enrich_failed",
                entity=event.entity_type,
                document_id=event.document_id,
                error=str(e),
            )
            return envelope
        if document is None:
            logger.debug(
                "realtime.enrich_miss",
                entity=event.entity_type,
                document_id=event.document_id,
            )
            return envelope
        return Envelope(type=envelope.type, data=document)

    # ─── Fan-out ──────────────────────────────────────────

    async def broadcast(self, envelope: Envelope) -> int:
        """Send an envelope to every open connection. Returns deliveries."""
        frame = envelope.to_json()
        targets = self.registry.snapshot()
        logger.debug("realtime.broadcast", type=envelope.type, connections=len(targets))

        delivered = 0
        for connection in targets:
            # Removed earlier in this same loop (or by its receive loop)
            if connection not in self.registry:
                continue
            if await self._send(connection, frame):
                delivered += 1
        return delivered

    async def _send(self, connection: ClientConnection, frame: str) -> bool:
        try:
            if self.send_timeout is None:
                await connection.send_text(frame)
            else:
                await asyncio.wait_for(connection.send_text(frame), self.send_timeout)
        except asyncio.TimeoutError:
            self._drop(connection, "send timed out")
            self._close_in_background(connection, code=1011, reason="Send timed out")
            return False
        except Exception as e:
            self._drop(connection, str(e) or type(e).__name__)
            return False
        self.stats.frames_sent += 1
        return True

    def _drop(self, connection: ClientConnection, error: str) -> None:
        self.stats.send_failures += 1
        logger.warning(
            "realtime.send_failed",
            connection_id=getattr(connection, "id", None),
            error=error,
        )
        connection.mark_closed()
        self.registry.unregister(connection)

    def _close_in_background(self, connection: ClientConnection, code: int, reason: str) -> None:
        task = asyncio.create_task(connection.close(code=code, reason=reason))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    # ─── Client → server ──────────────────────────────────

    async def handle_client_message(
        self, connection: ClientConnection, text: str
    ) -> Optional[dict[str, Any]]:
        """Handle one inbound frame. Malformed input is logged and dropped.

        Returns the parsed message, or None if it was discarded.
        """
        try:
            message = json.loads(text)
        except (json.JSONDecodeError, TypeError) as e:
            message = None
            error = str(e)
        else:
            error = "expected a JSON object"

        if not isinstance(message, dict):
            self.stats.malformed_messages += 1
            logger.warning(
                "realtime.client_message_invalid",
                connection_id=connection.id,
                error=error,
            )
            return None

        logger.info(
            "realtime.client_message",
            connection_id=connection.id,
            type=message.get("type"),
        )
        if message.get("type") == "ping":
            await self._send(connection, json.dumps({"type": "pong"}))
        return message

    # ─── Dispatch loop ────────────────────────────────────

    async def run(self, feed: ChangeFeed) -> None:
        """Consume the feed until it stops, broadcasting events in order."""
        self.stats.started_at = datetime.now(timezone.utc)
        logger.info("realtime.dispatch_started")
        async for event in feed:
            try:
                await self.on_change(event)
            except Exception:
                logger.exception("realtime.dispatch_error", event=repr(event))
                self.stats.errors += 1
        logger.info("realtime.dispatch_stopped")

    async def close_all(self, code: int = 1001, reason: str = "Server shutting down") -> None:
        """Close every registered connection and empty the registry."""
        for connection in self.registry.snapshot():
            await connection.close(code=code, reason=reason)
        self.registry.clear()
        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)

    def get_stats(self) -> dict:
        """Return broadcaster statistics for monitoring."""
        return {
            "connections": len(self.registry),
            "events": self.stats.events,
            "frames_sent": self.stats.frames_sent,
            "send_failures": self.stats.send_failures,
            "malformed_messages": self.stats.malformed_messages,
            "errors": self.stats.errors,
            "started_at": (
                self.stats.started_at.isoformat()
                if self.stats.started_at
                else None
            ),
        }
