"""
pagecast
========

Capture-to-publish pipeline that turns a media URL or a live-rendered web page
into a continuous RTMPS/FLV stream for a remote ingest endpoint.

The pipeline runs on a single asyncio event loop and is sized for small hosted
containers (a few frames per second, one stream per process).

Components:
    - capture: Headless Chromium surface and playback activation
    - stream: Frame queue and rate-limited emitter
    - encoder: ffmpeg argument profiles and process supervision
    - session: Stream session aggregate, state machine and controller

Example:
    from pagecast.config import settings
    from pagecast.session import StreamController

    # The service is started via the FastAPI application
    # See main.py for the entry point
"""

__version__ = "0.1.0"
__author__ = "pagecast contributors"

__all__ = [
    "__version__",
]
