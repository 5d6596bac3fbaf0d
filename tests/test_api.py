"""Tests for the REST API (Flask test client, fake engine and media)."""

import pytest

from streamkeeper.__about__ import __version__
from streamkeeper.playback.faults import MSG_CONNECTION_LOST
from streamkeeper.server.app import create_app
from streamkeeper.server.runtime import PlaybackRuntime

from fakes import STREAM_URL, FakeEngineFactory, FakeMedia


class TestHealthAndStatus:
    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["status"] == "ok"
        assert data["version"] == __version__
        assert data["loop_running"] is True
        assert data["mpv_connected"] is False

    def test_status(self, client):
        data = client.get("/api/status").get_json()
        assert data["state"] == "starting"
        assert data["session_id"] == 1
        assert data["stream_url"] == STREAM_URL
        assert data["is_loading"] is True
        assert data["is_muted"] is True

    def test_cors_header(self, client):
        resp = client.get("/api/health")
        assert resp.headers["Access-Control-Allow-Origin"] == "*"


class TestOperations:
    def test_retry_starts_new_session(self, client):
        resp = client.post("/api/retry")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["ok"] is True
        assert data["session_id"] == 2
        assert data["retry_attempts"] == 0

    def test_reload(self, client):
        data = client.post("/api/reload").get_json()
        assert data["session_id"] == 2

    def test_toggle_mute(self, client):
        assert client.post("/api/mute/toggle").get_json()["is_muted"] is False
        assert client.post("/api/mute/toggle").get_json()["is_muted"] is True

    def test_unmute(self, client):
        assert client.post("/api/unmute").get_json()["is_muted"] is False

    def test_click_unmutes(self, client):
        assert client.post("/api/click").get_json()["is_muted"] is False
        assert client.post("/api/click").get_json()["is_muted"] is False

    def test_get_not_allowed(self, client):
        assert client.get("/api/retry").status_code == 405


class TestSignals:
    def test_visibility(self, client):
        resp = client.post("/api/signals/visibility", json={"hidden": True})
        assert resp.status_code == 200
        assert client.get("/api/status").get_json()["health_check_running"] is False
        client.post("/api/signals/visibility", json={"hidden": False})
        assert client.get("/api/status").get_json()["health_check_running"] is True

    @pytest.mark.parametrize("body", [None, {}, {"hidden": "yes"}])
    def test_visibility_requires_bool(self, client, body):
        resp = client.post("/api/signals/visibility", json=body)
        assert resp.status_code == 400

    def test_offline(self, client):
        client.post("/api/signals/offline")
        data = client.get("/api/status").get_json()
        assert data["error_message"] == MSG_CONNECTION_LOST
        assert data["health_check_running"] is False

    def test_online_schedules_reconnect(self, client):
        client.post("/api/signals/online")
        data = client.get("/api/status").get_json()
        assert data["reconnect_pending"] is True
        assert data["retry_attempts"] == 1
        assert data["state"] == "recovering"

    def test_interaction(self, client):
        assert client.post("/api/signals/interaction").status_code == 200

    def test_unknown_signal(self, client):
        assert client.post("/api/signals/resize").status_code == 404


class TestEvents:
    def test_recent_includes_signals_and_state(self, client):
        client.post("/api/signals/offline")
        events = client.get("/api/events/recent").get_json()
        types = [e["type"] for e in events]
        assert "signal" in types
        assert "state" in types
        signal = next(e for e in events if e["type"] == "signal")
        assert signal["title"] == "offline"

    def test_recent_limit(self, client):
        for _ in range(5):
            client.post("/api/signals/interaction")
        assert len(client.get("/api/events/recent?limit=2").get_json()) == 2

    def test_recent_bad_limit(self, client):
        assert client.get("/api/events/recent?limit=abc").status_code == 400


class TestNotRunning:
    @pytest.fixture
    def idle_client(self, config):
        runtime = PlaybackRuntime(config, engine_factory=FakeEngineFactory(), media=FakeMedia())
        app = create_app(config, runtime=runtime, start=False)
        app.config["TESTING"] = True
        return app.test_client()

    def test_status_unavailable(self, idle_client):
        assert idle_client.get("/api/status").status_code == 503

    def test_operation_unavailable(self, idle_client):
        assert idle_client.post("/api/retry").status_code == 503

    def test_health_still_answers(self, idle_client):
        data = idle_client.get("/api/health").get_json()
        assert data["loop_running"] is False
