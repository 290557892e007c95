"""Change events and the envelopes sent to clients.

Learn: A ChangeEvent is a normalized record of one mutation on a watched
table. It is a closed set of variants:

    Inserted(entity_type, document)                 → "<entity>Added"
    Updated(entity_type, changed_fields, document_id) → "<entity>Updated"
    Deleted(entity_type, document)                  → "<entity>Deleted"
    Unhandled(entity_type, raw)                     → "unhandled"

to_envelope() covers every variant, and parse_change() never raises:
anything it cannot classify (a new op kind, a missing field) becomes
Unhandled, so clients still see that *something* changed.

Wire change record (built by the table triggers and by publish_change):

    {"op": "insert" | "update" | "delete",
     "entity": "plant",
     "id": "...",
     "document": {...},   # insert / delete
     "changes": {...}}    # update
"""

import json
from dataclasses import dataclass, field
from typing import Any, Union

UNHANDLED = "unhandled"

OP_INSERT = "insert"
OP_UPDATE = "update"
OP_DELETE = "delete"


@dataclass(frozen=True)
class Inserted:
    entity_type: str
    document: dict[str, Any]

    @property
    def payload(self) -> dict[str, Any]:
        return self.document


@dataclass(frozen=True)
class Updated:
    entity_type: str
    changed_fields: dict[str, Any]
    document_id: str

    @property
    def payload(self) -> dict[str, Any]:
        return {"id": self.document_id, **self.changed_fields}


@dataclass(frozen=True)
class Deleted:
    entity_type: str
    document: dict[str, Any]

    @property
    def payload(self) -> dict[str, Any]:
        return self.document


@dataclass(frozen=True)
class Unhandled:
    entity_type: str
    raw: Any = field(default=None)

    @property
    def payload(self) -> Any:
        return self.raw


ChangeEvent = Union[Inserted, Updated, Deleted, Unhandled]


@dataclass(frozen=True)
class Envelope:
    """The {type, data} notification pushed to every client."""

    type: str
    data: Any

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "data": self.data}

    def to_json(self) -> str:
        # default=str renders UUIDs and datetimes coming from the DB layer
        return json.dumps(self.to_dict(), default=str)


def envelope_type(event: ChangeEvent) -> str:
    """Map an event variant to its client-facing type string."""
    if isinstance(event, Inserted):
        return f"{event.entity_type}Added"
    if isinstance(event, Updated):
        return f"{event.entity_type}Updated"
    if isinstance(event, Deleted):
        return f"{event.entity_type}Deleted"
    return UNHANDLED


def to_envelope(event: ChangeEvent) -> Envelope:
    """Build the envelope for an event. Total: never raises."""
    return Envelope(type=envelope_type(event), data=getattr(event, "payload", event))


def parse_change(raw: Any) -> ChangeEvent:
    """Turn a wire change record into a ChangeEvent.

    Unknown ops and incomplete records degrade to Unhandled.
    """
    if not isinstance(raw, dict):
        return Unhandled(entity_type="", raw=raw)

    entity = raw.get("entity")
    op = raw.get("op")
    if not isinstance(entity, str) or not entity:
        return Unhandled(entity_type="", raw=raw)

    if op == OP_INSERT and isinstance(raw.get("document"), dict):
        return Inserted(entity_type=entity, document=raw["document"])

    if op == OP_DELETE and isinstance(raw.get("document"), dict):
        return Deleted(entity_type=entity, document=raw["document"])

    if op == OP_UPDATE and raw.get("id") is not None:
        changes = raw.get("changes")
        return Updated(
            entity_type=entity,
            changed_fields=changes if isinstance(changes, dict) else {},
            document_id=str(raw["id"]),
        )

    return Unhandled(entity_type=entity, raw=raw)
