"""
Configuration Tests
===================

Tests for YAML loading and environment variable overrides.
"""

import pytest
from pydantic import ValidationError

from pagecast.config import DEFAULT_PLAY_BUTTON_SELECTOR, Settings, load_config
from pagecast.stream import OverflowPolicy


ENV_VARS = (
    "RTMPS_URL",
    "SOURCE_URL",
    "WEB_PAGE_URL",
    "PLAY_BUTTON_SELECTOR",
    "FPS",
    "FFMPEG_PATH",
    "PAGECAST_QUEUE_POLICY",
    "PAGECAST_QUEUE_MAX_SIZE",
    "PAGECAST_FIRST_FRAME_TIMEOUT",
    "PAGECAST_LOG_LEVEL",
    "PAGECAST_LOG_FORMAT",
    "PORT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults(tmp_path):
    settings = load_config(str(tmp_path / "missing.yaml"))

    assert settings.stream.target_url is None
    assert settings.stream.frame_rate == 3
    assert settings.stream.play_button_selector == DEFAULT_PLAY_BUTTON_SELECTOR
    assert settings.queue.policy is OverflowPolicy.UNBOUNDED
    assert settings.capture.image_format == "png"
    assert settings.capture.navigation_timeout_ms == 30000
    assert "--autoplay-policy=no-user-gesture-required" in settings.capture.launch_args
    assert settings.encoder.grace_period_sec == 1.0
    assert settings.server.port == 3000


def test_yaml_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "stream:\n"
        "  target_url: rtmps://ingest/app/key\n"
        "  frame_rate: 2\n"
        "queue:\n"
        "  policy: drop_oldest\n"
        "  max_size: 10\n"
    )

    settings = load_config(str(path))
    assert settings.stream.target_url == "rtmps://ingest/app/key"
    assert settings.stream.frame_rate == 2
    assert settings.queue.policy is OverflowPolicy.DROP_OLDEST
    assert settings.queue.max_size == 10


def test_env_overrides_yaml(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text("stream:\n  frame_rate: 2\n")

    monkeypatch.setenv("RTMPS_URL", "rtmps://ingest/app/env-key")
    monkeypatch.setenv("WEB_PAGE_URL", "https://example.com/live")
    monkeypatch.setenv("PLAY_BUTTON_SELECTOR", "#play")
    monkeypatch.setenv("FPS", "5")
    monkeypatch.setenv("PAGECAST_QUEUE_POLICY", "drop_oldest")
    monkeypatch.setenv("PORT", "8080")

    settings = load_config(str(path))
    assert settings.stream.target_url == "rtmps://ingest/app/env-key"
    assert settings.stream.web_page_url == "https://example.com/live"
    assert settings.stream.play_button_selector == "#play"
    assert settings.stream.frame_rate == 5
    assert settings.queue.policy is OverflowPolicy.DROP_OLDEST
    assert settings.server.port == 8080


@pytest.mark.parametrize("fps", ["0", "6"])
def test_frame_rate_bounds(tmp_path, monkeypatch, fps):
    monkeypatch.setenv("FPS", fps)
    with pytest.raises(ValidationError):
        load_config(str(tmp_path / "missing.yaml"))


def test_rejects_unknown_image_format():
    with pytest.raises(ValidationError):
        Settings.model_validate({"capture": {"image_format": "webp"}})
