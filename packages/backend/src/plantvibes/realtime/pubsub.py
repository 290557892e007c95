"""Redis publishing of change records.

Learn: Redis pub/sub is fire-and-forget. If no backend is subscribed, the
record is lost. That's fine for live UI updates (the frontend can always
re-fetch). Services that write through something other than the watched
Postgres tables publish here so RedisChangeFeed picks the change up.

The record shape is the same one the Postgres triggers emit, so both
feed backends share parse_change().
"""

import json
from typing import Any, Optional

import redis.asyncio as aioredis

from plantvibes.realtime.events import OP_DELETE, OP_INSERT, OP_UPDATE

VALID_OPS = (OP_INSERT, OP_UPDATE, OP_DELETE)


def build_change_record(
    op: str,
    entity: str,
    document_id: Optional[str] = None,
    document: Optional[dict[str, Any]] = None,
    changes: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Build a wire change record.

    insert/delete carry the full document; update carries the id and the
    changed fields only.
    """
    if op not in VALID_OPS:
        raise ValueError(f"Unknown op {op!r}; expected one of {', '.join(VALID_OPS)}")
    if op == OP_UPDATE and document_id is None:
        raise ValueError("update records need a document id")

    record: dict[str, Any] = {"op": op, "entity": entity}
    if document_id is not None:
        record["id"] = str(document_id)
    if op == OP_UPDATE:
        record["changes"] = changes or {}
    else:
        record["document"] = document or {}
    return record


async def publish_change(
    redis: aioredis.Redis,
    channel: str,
    record: dict[str, Any],
) -> int:
    """Publish a change record. Returns the number of subscribers reached."""
    return await redis.publish(channel, json.dumps(record, default=str))
