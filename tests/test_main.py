"""
HTTP Control Surface Tests
==========================

Tests for the FastAPI endpoints, driving a StreamController built with a
fake rendering surface and a Python child process as the encoder.
"""

import time

import pytest
from fastapi.testclient import TestClient

from pagecast import main
from pagecast.session import StreamController

from conftest import (
    DRAIN_SCRIPT,
    FakeSurface,
    ScriptProfile,
    factory_for,
    make_settings,
    python_supervisor,
)


@pytest.fixture
def surface():
    return FakeSurface(present={"#play"})


@pytest.fixture
def controller(surface):
    return StreamController(
        make_settings(),
        surface_factory=factory_for(surface),
        supervisor=python_supervisor(),
        profile=ScriptProfile(DRAIN_SCRIPT),
    )


@pytest.fixture
def client(monkeypatch, controller):
    monkeypatch.setattr(main.settings.stream, "target_url", "rtmps://ingest/app/key")
    monkeypatch.setattr(main.settings.stream, "source_url", None)
    monkeypatch.setattr(main.settings.stream, "web_page_url", None)
    monkeypatch.setattr(main.settings.stream, "autostart", False)
    monkeypatch.setattr(main, "create_controller", lambda: controller)

    with TestClient(main.app) as test_client:
        yield test_client


class TestInfoEndpoints:
    """Tests for /, /health and /status."""

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["service"] == "pagecast"

    def test_health_when_idle(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["streaming"] is False
        assert body["error"] is None

    def test_status_when_idle(self, client):
        body = client.get("/status").json()
        assert body["active"] is False
        assert body["error"] is None
        assert body["state"] == "idle"


class TestControlEndpoints:
    """Tests for /start and /stop."""

    def test_start_status_stop(self, client, surface):
        response = client.post("/start", json={
            "webPageUrl": "https://example.com/player",
            "playButtonSelector": "#missing, #play",
        })
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["mode"] == "rendered_page"
        assert body["activation"]["selector"] == "#play"

        status = client.get("/status").json()
        assert status["active"] is True
        assert status["mode"] == "rendered_page"
        assert status["source"] == "https://example.com/player"
        assert client.get("/health").json()["streaming"] is True

        response = client.post("/stop")
        assert response.status_code == 200
        assert response.json()["success"] is True
        assert surface.closed
        assert client.get("/status").json()["state"] == "idle"

    def test_page_url_wins_over_direct_url(self, client):
        response = client.post("/start", json={
            "url": "rtsp://camera/stream",
            "webPageUrl": "https://example.com/player",
        })
        assert response.status_code == 200
        assert response.json()["mode"] == "rendered_page"
        client.post("/stop")

    def test_direct_url(self, client, surface):
        response = client.post("/start", json={"url": "rtsp://camera/stream"})
        assert response.status_code == 200
        assert response.json()["mode"] == "direct_url"
        assert surface.events == []
        client.post("/stop")

    def test_start_conflict(self, client):
        assert client.post("/start", json={"url": "rtsp://camera/stream"}).status_code == 200

        response = client.post("/start", json={"url": "rtsp://camera/other"})
        assert response.status_code == 409
        assert "error" in response.json()
        client.post("/stop")

    def test_start_without_source(self, client):
        response = client.post("/start")
        assert response.status_code == 400
        assert response.json()["error"] == "Either url or webPageUrl is required"

    def test_start_falls_back_to_configured_source(self, client, monkeypatch):
        monkeypatch.setattr(main.settings.stream, "source_url", "rtsp://camera/default")
        response = client.post("/start", json={})
        assert response.status_code == 200
        assert response.json()["source"]["url"] == "rtsp://camera/default"
        client.post("/stop")

    def test_setup_failure(self, client, surface):
        surface.navigation_error = "net::ERR_CONNECTION_REFUSED"

        response = client.post("/start", json={"webPageUrl": "https://unreachable.invalid"})
        assert response.status_code == 500
        body = response.json()
        assert "ERR_CONNECTION_REFUSED" in body["error"]
        assert body["failure_code"] == "SETUP_FAILURE"

        status = client.get("/status").json()
        assert status["active"] is False
        assert status["state"] == "failed"
        assert status["failure_code"] == "SETUP_FAILURE"

    def test_stop_without_stream(self, client):
        response = client.post("/stop")
        assert response.status_code == 400
        assert response.json() == {"error": "No active stream"}


class TestLifespan:
    """Tests for startup validation and auto-start."""

    def test_missing_target_fails_fast(self, monkeypatch):
        monkeypatch.setattr(main.settings.stream, "target_url", None)
        with pytest.raises(RuntimeError):
            with TestClient(main.app):
                pass

    def test_autostart_configured_page(self, monkeypatch, controller, surface):
        monkeypatch.setattr(main.settings.stream, "target_url", "rtmps://ingest/app/key")
        monkeypatch.setattr(main.settings.stream, "source_url", None)
        monkeypatch.setattr(main.settings.stream, "web_page_url", "https://example.com/live")
        monkeypatch.setattr(main.settings.stream, "play_button_selector", "#play")
        monkeypatch.setattr(main.settings.stream, "autostart", True)
        monkeypatch.setattr(main.settings.stream, "autostart_delay_sec", 0)
        monkeypatch.setattr(main, "create_controller", lambda: controller)

        with TestClient(main.app) as client:
            deadline = time.monotonic() + 10.0
            status = client.get("/status").json()
            while not status["active"] and time.monotonic() < deadline:
                time.sleep(0.05)
                status = client.get("/status").json()

            assert status["active"] is True
            assert status["source"] == "https://example.com/live"

        # Lifespan shutdown stops the stream
        assert surface.closed
        assert controller.status().state == "idle"
