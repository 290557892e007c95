"""Change event tests — kind → type mapping and wire record parsing."""

import json
import uuid

import pytest

from plantvibes.realtime.events import (
    Deleted,
    Envelope,
    Inserted,
    Unhandled,
    Updated,
    parse_change,
    to_envelope,
)


# ─── Mapping table ─────────────────────────────────────────


@pytest.mark.parametrize(
    "event, expected_type",
    [
        (Inserted("plant", {"id": "p1", "name": "Rose"}), "plantAdded"),
        (Updated("plant", {"name": "Tulip"}, "p1"), "plantUpdated"),
        (Deleted("plant", {"id": "p1"}), "plantDeleted"),
        (Inserted("user", {"id": "u1", "email": "a@b.c"}), "userAdded"),
        (Updated("user", {"lastname": "Doe"}, "u1"), "userUpdated"),
        (Deleted("vibration", {"id": "v1"}), "vibrationDeleted"),
        (Inserted("vibration", {"id": "v1"}), "vibrationAdded"),
        (Unhandled("plant", {"op": "truncate"}), "unhandled"),
    ],
)
def test_envelope_type_mapping(event, expected_type):
    assert to_envelope(event).type == expected_type


def test_inserted_data_is_document_unchanged():
    document = {"id": "p1", "name": "Rose", "tags": ["red", {"nested": True}]}
    envelope = to_envelope(Inserted("plant", document))
    assert envelope.data == document


def test_deleted_data_is_document_unchanged():
    document = {"id": "p1", "name": "Rose"}
    assert to_envelope(Deleted("plant", document)).data == document


def test_updated_data_is_id_plus_changed_fields():
    envelope = to_envelope(Updated("plant", {"name": "Tulip"}, "p1"))
    assert envelope.data == {"id": "p1", "name": "Tulip"}


def test_unhandled_carries_raw_payload():
    raw = {"op": "drop", "entity": "plant"}
    envelope = to_envelope(Unhandled("plant", raw))
    assert envelope == Envelope(type="unhandled", data=raw)


def test_to_envelope_never_raises_on_unknown_objects():
    envelope = to_envelope(object())
    assert envelope.type == "unhandled"


def test_envelope_json_shape():
    envelope = Envelope(type="plantAdded", data={"id": "p1", "name": "Rose"})
    assert json.loads(envelope.to_json()) == {
        "type": "plantAdded",
        "data": {"id": "p1", "name": "Rose"},
    }


def test_envelope_json_renders_uuids_as_strings():
    pid = uuid.uuid4()
    envelope = Envelope(type="plantAdded", data={"id": pid})
    assert json.loads(envelope.to_json())["data"]["id"] == str(pid)


# ─── Wire record parsing ───────────────────────────────────


def test_parse_insert():
    event = parse_change({
        "op": "insert", "entity": "plant", "id": "p1",
        "document": {"id": "p1", "name": "Rose"},
    })
    assert event == Inserted("plant", {"id": "p1", "name": "Rose"})


def test_parse_update():
    event = parse_change({
        "op": "update", "entity": "user", "id": "u1", "changes": {"email": "x@y.z"},
    })
    assert event == Updated("user", {"email": "x@y.z"}, "u1")


def test_parse_update_without_changes_defaults_to_empty():
    event = parse_change({"op": "update", "entity": "plant", "id": 42})
    assert event == Updated("plant", {}, "42")


def test_parse_delete():
    event = parse_change({
        "op": "delete", "entity": "vibration", "id": "v1", "document": {"id": "v1"},
    })
    assert event == Deleted("vibration", {"id": "v1"})


@pytest.mark.parametrize(
    "raw",
    [
        {"op": "replace", "entity": "plant", "id": "p1", "document": {}},
        {"op": "insert", "entity": "plant"},               # no document
        {"op": "update", "entity": "plant", "changes": {}},  # no id
        {"entity": "plant"},
    ],
)
def test_parse_unknown_or_incomplete_is_unhandled(raw):
    event = parse_change(raw)
    assert event == Unhandled("plant", raw)
    assert to_envelope(event) == Envelope(type="unhandled", data=raw)


@pytest.mark.parametrize("raw", [[1, 2], "text", None, {"op": "insert"}, {"entity": ""}])
def test_parse_non_records_is_unhandled(raw):
    event = parse_change(raw)
    assert isinstance(event, Unhandled)
    assert event.raw == raw
