"""Change feed — a subscription that yields ChangeEvents in arrival order.

Learn: asyncpg and redis both hand us notifications through callbacks or
their own read loops. Instead of broadcasting from inside those callbacks,
every backend just parses the record and pushes it onto an asyncio.Queue.
The broadcaster then consumes the feed with one plain loop:

    async for event in feed:
        await broadcaster.on_change(event)

The only suspension point is "waiting for the next event". stop() ends
the iteration; start() after stop() resumes it (the feed is restartable).

Two backends:
- PostgresChangeFeed — LISTEN on the channel fed by the table triggers
  (see the initial migration). This is the default.
- RedisChangeFeed — SUBSCRIBE to a channel that other services publish
  change records to (see realtime.pubsub.publish_change).

Startup failures raise ChangeFeedError. The lifespan lets that propagate
so the server refuses to start instead of silently serving no updates.
"""

import asyncio
import json
from typing import AsyncIterator, Optional

import asyncpg
import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from plantvibes.exceptions import ChangeFeedError
from plantvibes.realtime.events import ChangeEvent, parse_change

logger = structlog.get_logger()

# Queue marker that ends the current iteration
_STOP = object()


class ChangeFeed:
    """Queue-backed feed. Backends subclass this and call push()."""

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self.running = False

    async def start(self) -> None:
        self.running = True

    async def stop(self) -> None:
        if self.running:
            self.running = False
            self._queue.put_nowait(_STOP)

    def push(self, event: ChangeEvent) -> None:
        self._queue.put_nowait(event)

    def push_raw(self, payload: str | bytes, source: str) -> None:
        """Decode one JSON change record and enqueue it. Bad JSON is dropped."""
        try:
            raw = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as e:
            logger.warning("realtime.feed_payload_invalid", source=source, error=str(e))
            return
        self.push(parse_change(raw))

    async def events(self) -> AsyncIterator[ChangeEvent]:
        while True:
            item = await self._queue.get()
            if item is _STOP:
                return
            yield item

    def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        return self.events()


def asyncpg_dsn(database_url: str) -> str:
    """Convert a SQLAlchemy URL (postgresql+asyncpg://) to a plain asyncpg DSN."""
    return database_url.replace("+asyncpg", "")


class PostgresChangeFeed(ChangeFeed):
    """LISTEN on a pg_notify channel with a dedicated asyncpg connection."""

    def __init__(self, dsn: str, channel: str = "entity_changed"):
        super().__init__()
        self.dsn = dsn
        self.channel = channel
        self._conn: Optional[asyncpg.Connection] = None

    async def start(self) -> None:
        try:
            self._conn = await asyncpg.connect(self.dsn)
            await self._conn.add_listener(self.channel, self._on_notify)
        except (
            OSError,
            asyncio.TimeoutError,
            asyncpg.PostgresError,
            asyncpg.InterfaceError,
        ) as e:
            if self._conn is not None:
                await self._conn.close()
                self._conn = None
            raise ChangeFeedError(
                f"Could not LISTEN on Postgres channel {self.channel!r}: {e}"
            ) from e
        self._conn.add_termination_listener(self._on_terminated)
        await super().start()
        logger.info("realtime.feed_listening", backend="postgres", channel=self.channel)

    def _on_notify(self, conn, pid, channel, payload):
        """Synchronous asyncpg callback — parse and enqueue only."""
        self.push_raw(payload, source=f"postgres:{channel}")

    def _on_terminated(self, conn):
        # NOTIFYs sent while nobody LISTENs are lost; no replay.
        logger.error("realtime.feed_connection_lost", backend="postgres", channel=self.channel)

    async def stop(self) -> None:
        if self._conn is not None:
            try:
                await self._conn.remove_listener(self.channel, self._on_notify)
            finally:
                await self._conn.close()
                self._conn = None
        await super().stop()


class RedisChangeFeed(ChangeFeed):
    """SUBSCRIBE to a Redis channel carrying change records."""

    def __init__(self, redis_url: str, channel: str = "plantvibes:changes"):
        super().__init__()
        self.redis_url = redis_url
        self.channel = channel
        self._redis: Optional[aioredis.Redis] = None
        self._pubsub = None
        self._reader: Optional[asyncio.Task] = None

    async def start(self) -> None:
        self._redis = aioredis.from_url(
            self.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        try:
            await self._redis.ping()
            self._pubsub = self._redis.pubsub()
            await self._pubsub.subscribe(self.channel)
        except (OSError, RedisError) as e:
            await self._redis.aclose()
            self._redis = None
            raise ChangeFeedError(
                f"Could not subscribe to Redis channel {self.channel!r}: {e}"
            ) from e
        await super().start()
        self._reader = asyncio.create_task(self._read_loop())
        logger.info("realtime.feed_listening", backend="redis", channel=self.channel)

    async def _read_loop(self) -> None:
        try:
            async for message in self._pubsub.listen():
                if message["type"] == "message":
                    self.push_raw(message["data"], source=f"redis:{self.channel}")
        except asyncio.CancelledError:
            pass
        except RedisError:
            logger.exception("realtime.feed_connection_lost", backend="redis", channel=self.channel)

    async def stop(self) -> None:
        if self._reader is not None:
            self._reader.cancel()
            self._reader = None
        if self._pubsub is not None:
            await self._pubsub.unsubscribe(self.channel)
            await self._pubsub.aclose()
            self._pubsub = None
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        await super().stop()


def build_change_feed(settings) -> ChangeFeed:
    """Pick the feed backend configured in settings."""
    if settings.change_feed_backend == "redis":
        return RedisChangeFeed(settings.redis_url, settings.redis_change_channel)
    return PostgresChangeFeed(asyncpg_dsn(settings.database_url), settings.change_channel)
