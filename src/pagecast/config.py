"""
pagecast Configuration
======================

This module handles configuration loading for the streaming service.

Configuration Sources (in order of precedence):
    1. Environment variables (highest priority)
    2. config.yaml file
    3. Default values (lowest priority)

Environment Variable Mapping:
    RTMPS_URL                    -> stream.target_url (required at startup)
    SOURCE_URL                   -> stream.source_url
    WEB_PAGE_URL                 -> stream.web_page_url
    PLAY_BUTTON_SELECTOR         -> stream.play_button_selector
    FPS                          -> stream.frame_rate (1-5)
    FFMPEG_PATH                  -> encoder.ffmpeg_path
    PAGECAST_QUEUE_POLICY        -> queue.policy
    PAGECAST_QUEUE_MAX_SIZE      -> queue.max_size
    PAGECAST_FIRST_FRAME_TIMEOUT -> capture.first_frame_timeout_sec
    PAGECAST_LOG_LEVEL           -> logging.level
    PAGECAST_LOG_FORMAT          -> logging.format
    PORT                         -> server.port

Example:
    from pagecast.config import settings

    print(settings.stream.frame_rate)
    print(settings.queue.policy)
"""

import os
import logging
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field

from pagecast.capture.surface import DEFAULT_LAUNCH_ARGS
from pagecast.stream.buffer import OverflowPolicy


logger = logging.getLogger(__name__)


DEFAULT_PLAY_BUTTON_SELECTOR = (
    'button[aria-label="Play"], button[aria-label="play"], '
    'button[aria-label*="play" i], .play-button, [class*="play"], '
    'button:has-text("Play")'
)


# =============================================================================
# Configuration Models
# =============================================================================

class ServiceConfig(BaseModel):
    """Service identification configuration."""

    name: str = Field(default="pagecast", description="Service name")
    version: str = Field(default="v0.1.0", description="Service version")


class StreamConfig(BaseModel):
    """Stream source and destination configuration."""

    target_url: Optional[str] = Field(
        default=None,
        description="RTMP(S) ingest URL receiving the published stream",
    )
    source_url: Optional[str] = Field(
        default=None,
        description="Default direct media URL (direct_url mode)",
    )
    web_page_url: Optional[str] = Field(
        default=None,
        description="Default page URL (rendered_page mode)",
    )
    play_button_selector: str = Field(
        default=DEFAULT_PLAY_BUTTON_SELECTOR,
        description="Comma-delimited selector list used to start playback",
    )
    frame_rate: int = Field(
        default=3,
        ge=1,
        le=5,
        description="Capture and output frames per second",
    )
    autostart: bool = Field(
        default=True,
        description="Start streaming on boot when a default source is configured",
    )
    autostart_delay_sec: float = Field(
        default=2.0,
        ge=0,
        description="Delay before the automatic start",
    )


class CaptureConfig(BaseModel):
    """Rendering surface and screencast configuration."""

    viewport_width: int = Field(default=1280, ge=16, description="Viewport width")
    viewport_height: int = Field(default=720, ge=16, description="Viewport height")
    headless: bool = Field(default=True, description="Run Chromium headless")
    launch_args: List[str] = Field(
        default_factory=lambda: list(DEFAULT_LAUNCH_ARGS),
        description="Chromium command-line flags",
    )
    image_format: str = Field(
        default="png",
        pattern="^(png|jpeg)$",
        description="Screencast image format: 'png' or 'jpeg'",
    )
    jpeg_quality: int = Field(default=80, ge=1, le=100, description="JPEG quality")
    navigation_timeout_ms: int = Field(
        default=30000,
        ge=1000,
        description="Page navigation timeout",
    )
    wait_until: str = Field(
        default="networkidle",
        description="Load state completing navigation",
    )
    post_navigation_delay_sec: float = Field(
        default=2.0,
        ge=0,
        description="Settle time after navigation before activation",
    )
    first_frame_timeout_sec: float = Field(
        default=10.0,
        gt=0,
        description="Max wait for the first frame before going active anyway",
    )
    keep_alive_interval_sec: float = Field(
        default=5.0,
        ge=0,
        description="Interval of the in-page keep-alive probe (0 = disabled)",
    )


class ActivationConfig(BaseModel):
    """Playback activation configuration."""

    selector_timeout_ms: int = Field(
        default=5000,
        ge=100,
        description="Max wait per selector",
    )
    activation_budget_ms: int = Field(
        default=15000,
        ge=100,
        description="Max total wait across all selectors",
    )
    settle_delay_sec: float = Field(
        default=1.0,
        ge=0,
        description="Wait after a successful click",
    )
    evaluate_timeout_ms: int = Field(
        default=3000,
        ge=100,
        description="Max wait for each in-page script (heuristic, gesture, media probe)",
    )


class QueueConfig(BaseModel):
    """Frame queue configuration."""

    policy: OverflowPolicy = Field(
        default=OverflowPolicy.UNBOUNDED,
        description="Overflow policy: 'unbounded' or 'drop_oldest'",
    )
    max_size: int = Field(
        default=50,
        ge=1,
        description="Queue cap for the drop_oldest policy",
    )


class EncoderConfig(BaseModel):
    """Encoder process configuration."""

    ffmpeg_path: str = Field(default="ffmpeg", description="ffmpeg executable")
    scale_width: int = Field(default=640, ge=16, description="Output width")
    grace_period_sec: float = Field(
        default=1.0,
        gt=0,
        description="Wait between SIGTERM and SIGKILL",
    )
    diagnostics_lines: int = Field(
        default=50,
        ge=1,
        description="stderr lines kept for failure reports",
    )


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=3000, ge=1, le=65535, description="Bind port")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log format: json or text")


class Settings(BaseModel):
    """
    Main settings class for pagecast.

    Loads configuration from YAML file and environment variables.
    Environment variables take precedence over file values.
    """

    service: ServiceConfig = Field(default_factory=ServiceConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    capture: CaptureConfig = Field(default_factory=CaptureConfig)
    activation: ActivationConfig = Field(default_factory=ActivationConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    encoder: EncoderConfig = Field(default_factory=EncoderConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# =============================================================================
# Configuration Loading
# =============================================================================

def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load configuration from YAML file and environment variables.

    Priority (highest to lowest):
        1. Environment variables
        2. YAML config file
        3. Default values

    Args:
        config_path: Path to config.yaml. If None, searches common locations.

    Returns:
        Settings: Loaded configuration
    """
    # Find config file
    if config_path is None:
        search_paths = [
            Path("config.yaml"),
            Path("config.yml"),
            Path("/app/config.yaml"),
            Path(__file__).parent.parent.parent / "config.yaml",
        ]
        for path in search_paths:
            if path.exists():
                config_path = str(path)
                break

    # Load from YAML if exists
    config_data = {}
    if config_path and Path(config_path).exists():
        logger.info(f"Loading config from: {config_path}")
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
    else:
        logger.debug("No config file found, using defaults and environment variables")

    # Apply environment variable overrides
    _apply_env_overrides(config_data)

    return Settings.model_validate(config_data)


def _apply_env_overrides(config_data: dict) -> None:
    """Apply environment variable overrides to config data."""

    # Stream settings
    if env_target := os.environ.get("RTMPS_URL"):
        config_data.setdefault("stream", {})["target_url"] = env_target
    if env_source := os.environ.get("SOURCE_URL"):
        config_data.setdefault("stream", {})["source_url"] = env_source
    if env_page := os.environ.get("WEB_PAGE_URL"):
        config_data.setdefault("stream", {})["web_page_url"] = env_page
    if env_selector := os.environ.get("PLAY_BUTTON_SELECTOR"):
        config_data.setdefault("stream", {})["play_button_selector"] = env_selector
    if env_fps := os.environ.get("FPS"):
        config_data.setdefault("stream", {})["frame_rate"] = int(env_fps)

    # Capture settings
    if env_first := os.environ.get("PAGECAST_FIRST_FRAME_TIMEOUT"):
        config_data.setdefault("capture", {})["first_frame_timeout_sec"] = float(env_first)

    # Queue settings
    if env_policy := os.environ.get("PAGECAST_QUEUE_POLICY"):
        config_data.setdefault("queue", {})["policy"] = env_policy
    if env_queue := os.environ.get("PAGECAST_QUEUE_MAX_SIZE"):
        config_data.setdefault("queue", {})["max_size"] = int(env_queue)

    # Encoder settings
    if env_ffmpeg := os.environ.get("FFMPEG_PATH"):
        config_data.setdefault("encoder", {})["ffmpeg_path"] = env_ffmpeg

    # Server settings
    if env_port := os.environ.get("PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)

    # Logging settings
    if env_log := os.environ.get("PAGECAST_LOG_LEVEL"):
        config_data.setdefault("logging", {})["level"] = env_log
    if env_format := os.environ.get("PAGECAST_LOG_FORMAT"):
        config_data.setdefault("logging", {})["format"] = env_format


def setup_logging(settings: Settings) -> None:
    """Configure logging based on settings."""
    log_level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    if settings.logging.format == "json":
        log_format = '{"time": "%(asctime)s", "level": "%(levelname)s", "module": "%(name)s", "message": "%(message)s"}'
    else:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


# =============================================================================
# Global Settings Instance
# =============================================================================

# Global settings instance - loaded on import
settings = load_config()
setup_logging(settings)
