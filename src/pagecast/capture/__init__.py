"""
Capture Module
==============

Rendering surface and playback activation.

This module provides the front of the capture-to-publish pipeline:
    - ChromiumSurface: Playwright-driven headless Chromium with a CDP screencast
    - SurfaceDriver: Protocol implemented by ChromiumSurface and test fakes
    - PlaybackActivator: Selector / heuristic / gesture cascade
"""

from pagecast.capture.surface import (
    DEFAULT_LAUNCH_ARGS,
    ChromiumSurface,
    SurfaceDriver,
    every_nth_frame,
)
from pagecast.capture.activator import (
    KEEP_ALIVE_SCRIPT,
    ActivationResult,
    PlaybackActivator,
    parse_selector_list,
)


__all__ = [
    "DEFAULT_LAUNCH_ARGS",
    "ChromiumSurface",
    "SurfaceDriver",
    "every_nth_frame",
    "KEEP_ALIVE_SCRIPT",
    "ActivationResult",
    "PlaybackActivator",
    "parse_selector_list",
]
