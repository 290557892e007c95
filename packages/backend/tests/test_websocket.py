"""WebSocket endpoint + app lifecycle tests.

Learn: FastAPI's TestClient drives the /ws endpoint in-process. Without a
`with TestClient(app)` block the lifespan does not run, so the `app`
fixture plugs a registry/broadcaster into app.state by hand. The lifespan
tests patch build_change_feed with an in-memory ChangeFeed, so the whole
pipeline runs without Postgres: feed → dispatch loop → socket.
"""

from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from plantvibes.exceptions import ChangeFeedError
from plantvibes.main import create_app
from plantvibes.realtime.events import Deleted, Inserted
from plantvibes.realtime.feed import ChangeFeed

ROSE = {"id": "p1", "name": "Rose"}


# ═══════════════════════════════════════════════════════════
# Endpoint
# ═══════════════════════════════════════════════════════════


def test_ping_pong_and_registration(app, registry):
    client = TestClient(app)
    with client.websocket_connect("/ws") as ws:
        ws.send_text('{"type": "ping"}')
        assert ws.receive_json() == {"type": "pong"}
        assert len(registry) == 1
        assert registry.snapshot()[0].is_open


def test_malformed_message_keeps_connection_open(app, registry, broadcaster):
    client = TestClient(app)
    with client.websocket_connect("/ws") as ws:
        ws.send_text("this is not json")
        ws.send_text('{"type": "ping"}')
        # The first frame back is the pong: nothing was sent for the bad input
        assert ws.receive_json() == {"type": "pong"}
        assert len(registry) == 1
    assert broadcaster.stats.malformed_messages == 1


def test_disconnect_unregisters(app, registry):
    client = TestClient(app)
    with client.websocket_connect("/ws") as ws:
        ws.send_text('{"type": "ping"}')
        ws.receive_json()
        connection = registry.snapshot()[0]
    assert len(registry) == 0
    assert not connection.is_open


# ═══════════════════════════════════════════════════════════
# Lifespan
# ═══════════════════════════════════════════════════════════


def test_change_reaches_client_through_lifespan_pipeline():
    feed = ChangeFeed()
    with patch("plantvibes.main.build_change_feed", return_value=feed):
        app = create_app()
        with TestClient(app) as client:
            assert feed.running
            with client.websocket_connect("/ws") as first, \
                    client.websocket_connect("/ws") as second:
                for ws in (first, second):
                    ws.send_text('{"type": "ping"}')
                    assert ws.receive_json() == {"type": "pong"}

                client.portal.call(feed.push, Inserted("plant", ROSE))
                client.portal.call(feed.push, Deleted("plant", ROSE))

                for ws in (first, second):
                    assert ws.receive_json() == {"type": "plantAdded", "data": ROSE}
                    assert ws.receive_json() == {"type": "plantDeleted", "data": ROSE}

            assert app.state.broadcaster.get_stats()["events"] == 2
    assert not feed.running


def test_change_feed_failure_aborts_startup():
    class UnreachableFeed(ChangeFeed):
        async def start(self):
            raise ChangeFeedError("Could not LISTEN on Postgres channel 'entity_changed'")

    with patch("plantvibes.main.build_change_feed", return_value=UnreachableFeed()):
        app = create_app()
        with pytest.raises(ChangeFeedError):
            with TestClient(app):
                pass


# ═══════════════════════════════════════════════════════════
# Health
# ═══════════════════════════════════════════════════════════


def test_health_reports_realtime_stats(app):
    broken_engine = MagicMock()
    broken_engine.connect.side_effect = OSError("connection refused")

    with patch("plantvibes.api.health.engine", broken_engine):
        resp = TestClient(app).get("/api/v1/health")

    assert resp.status_code == 200
    data = resp.json()
    assert data["server"] == "ok"
    assert "version" in data
    assert data["status"] == "degraded"
    assert data["postgres"].startswith("error")
    assert data["realtime"]["connections"] == 0
    assert data["realtime"]["feed"] == "postgres"
    assert data["realtime"]["feed_running"] is False
