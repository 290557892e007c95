"""Change record publishing + CLI tests."""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from plantvibes.cli.main import main
from plantvibes.realtime.events import Deleted, Inserted, Updated, parse_change
from plantvibes.realtime.pubsub import build_change_record, publish_change


# ─── Records ───────────────────────────────────────────────


def test_records_parse_back_into_events():
    """Published records use the same shape the triggers emit."""
    insert = build_change_record("insert", "plant", "p1", document={"id": "p1", "name": "Rose"})
    update = build_change_record("update", "plant", "p1", changes={"name": "Tulip"})
    delete = build_change_record("delete", "plant", "p1", document={"id": "p1"})

    assert parse_change(insert) == Inserted("plant", {"id": "p1", "name": "Rose"})
    assert parse_change(update) == Updated("plant", {"name": "Tulip"}, "p1")
    assert parse_change(delete) == Deleted("plant", {"id": "p1"})


def test_update_record_requires_id():
    with pytest.raises(ValueError, match="document id"):
        build_change_record("update", "plant", changes={"name": "x"})


def test_unknown_op_rejected():
    with pytest.raises(ValueError, match="Unknown op"):
        build_change_record("upsert", "plant")


@pytest.mark.asyncio
async def test_publish_change_sends_json():
    redis = SimpleNamespace(publish=AsyncMock(return_value=2))
    record = build_change_record("insert", "user", "u1", document={"id": "u1"})

    receivers = await publish_change(redis, "plantvibes:changes", record)

    assert receivers == 2
    channel, payload = redis.publish.await_args.args
    assert channel == "plantvibes:changes"
    assert json.loads(payload) == record


# ─── CLI ───────────────────────────────────────────────────


def test_cli_version():
    result = CliRunner().invoke(main, ["--version"])
    assert result.exit_code == 0
    assert "plantvibes" in result.output


def test_cli_publish_insert():
    with patch("plantvibes.cli.main._publish_impl", AsyncMock(return_value=1)) as publish:
        result = CliRunner().invoke(
            main, ["publish", "insert", "plant", "--data", '{"id": "p1", "name": "Rose"}'],
        )
    assert result.exit_code == 0, result.output
    record, channel = publish.await_args.args
    assert record == {"op": "insert", "entity": "plant", "document": {"id": "p1", "name": "Rose"}}
    assert channel is None
    assert "Delivered to 1 subscriber(s)" in result.output


def test_cli_publish_update_needs_id():
    result = CliRunner().invoke(main, ["publish", "update", "plant", "--data", '{"name": "x"}'])
    assert result.exit_code == 2
    assert "document id" in result.output


@pytest.mark.parametrize("data", ["{broken", "[1, 2]"])
def test_cli_publish_rejects_bad_data(data):
    result = CliRunner().invoke(main, ["publish", "insert", "plant", "--data", data])
    assert result.exit_code == 2
    assert "--data" in result.output
