"""
pagecast Main Application
=========================

FastAPI entry point for the capture-to-publish service.

A headless browser renders a page, its screencast frames are queued,
paced at a fixed frame rate into ffmpeg's stdin and published to an
RTMPS endpoint. Direct media URLs skip the browser and go straight to
ffmpeg.

Endpoints:
    GET  /        - Service information
    GET  /health  - Liveness probe (+ streaming flag)
    GET  /status  - Status projection of the stream session
    POST /start   - Start a stream (400 / 409 / 500 on failure)
    POST /stop    - Stop the active stream (400 when none)
"""

import asyncio
import logging
import os
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from pagecast.config import settings
from pagecast.errors import SessionConflict, SessionNotActive, SetupFailure
from pagecast.models.input import StartRequest
from pagecast.models.source import SourceRef
from pagecast.session import StreamController


logger = logging.getLogger(__name__)


# =============================================================================
# Global State
# =============================================================================

_controller: Optional[StreamController] = None
_autostart_task: Optional[asyncio.Task] = None
_startup_time: float = 0.0


# =============================================================================
# Getters
# =============================================================================

def get_controller() -> Optional[StreamController]:
    return _controller


# =============================================================================
# Controller Factory
# =============================================================================

def create_controller() -> StreamController:
    """
    Create the stream controller from settings.

    Fails fast if no publish target is configured.
    """
    if not settings.stream.target_url:
        raise RuntimeError(
            "RTMPS_URL environment variable is required "
            "(or stream.target_url in config.yaml)"
        )
    return StreamController(settings)


def default_source() -> Optional[SourceRef]:
    """Source configured through SOURCE_URL / WEB_PAGE_URL, if any."""
    return StartRequest().resolve(
        default_source_url=settings.stream.source_url,
        default_web_page_url=settings.stream.web_page_url,
        default_selector=settings.stream.play_button_selector,
    )


async def autostart(controller: StreamController, source: SourceRef) -> None:
    """Start the configured default stream after a short delay."""
    await asyncio.sleep(settings.stream.autostart_delay_sec)
    logger.info(f"Auto-starting {source.mode.value} stream")
    try:
        await controller.start(source)
    except SetupFailure as e:
        logger.error(f"Auto-start failed: {e}")
    except SessionConflict:
        logger.info("Auto-start skipped, a stream was started manually")


# =============================================================================
# Lifespan Management
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager with graceful shutdown."""
    global _controller, _autostart_task, _startup_time

    # Startup
    _startup_time = time.time()
    logger.info(f"Starting {settings.service.name} {settings.service.version}")

    port = int(os.environ.get("PORT", settings.server.port))
    logger.info(f"Configured port: {port}")

    _controller = create_controller()
    logger.info(f"Frame rate: {settings.stream.frame_rate} FPS")

    source = default_source()
    if settings.stream.autostart and source is not None:
        _autostart_task = asyncio.create_task(
            autostart(_controller, source),
            name="stream_autostart",
        )

    yield

    # Shutdown
    logger.info("Shutting down gracefully...")

    if _autostart_task and not _autostart_task.done():
        _autostart_task.cancel()
        try:
            await _autostart_task
        except asyncio.CancelledError:
            pass

    if _controller:
        await _controller.shutdown()

    logger.info("Shutdown complete")


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="pagecast",
    description="Headless page capture published to RTMPS",
    version=settings.service.version,
    lifespan=lifespan,
)


# =============================================================================
# HTTP Endpoints
# =============================================================================

@app.get("/")
async def root() -> JSONResponse:
    """Service information endpoint."""
    return JSONResponse({
        "service": "pagecast",
        "version": settings.service.version,
        "name": settings.service.name,
        "status": "running",
        "frame_rate": settings.stream.frame_rate,
    })


@app.get("/health")
async def health() -> JSONResponse:
    """
    Liveness probe - is the process alive?

    Always returns 200 if the service is running.
    """
    controller = get_controller()
    return JSONResponse({
        "status": "ok",
        "streaming": controller.machine.is_active if controller else False,
        "error": controller.machine.error if controller else None,
        "uptime_seconds": round(time.time() - _startup_time, 1),
    })


@app.get("/status")
async def status() -> JSONResponse:
    """Status projection of the stream session."""
    controller = get_controller()

    if controller is None:
        return JSONResponse(
            {"error": "Service not initialized"},
            status_code=503,
        )

    return JSONResponse(controller.status().model_dump(mode="json"))


@app.post("/start")
async def start(request: Optional[StartRequest] = None) -> JSONResponse:
    """
    Start a stream.

    Body fields are optional; missing ones fall back to the configured
    defaults, and a page URL wins over a direct URL.
    """
    controller = get_controller()
    if controller is None:
        return JSONResponse({"error": "Service not initialized"}, status_code=503)

    source = (request or StartRequest()).resolve(
        default_source_url=settings.stream.source_url,
        default_web_page_url=settings.stream.web_page_url,
        default_selector=settings.stream.play_button_selector,
    )
    if source is None:
        return JSONResponse(
            {"error": "Either url or webPageUrl is required"},
            status_code=400,
        )

    try:
        session = await controller.start(source)
    except SessionConflict as e:
        return JSONResponse({"error": str(e)}, status_code=409)
    except SetupFailure as e:
        return JSONResponse(
            {
                "error": str(e),
                "failure_code": e.code.value if e.code else None,
            },
            status_code=500,
        )

    return JSONResponse({
        "success": True,
        "message": "Stream started",
        "mode": session.mode.value,
        "source": source.model_dump(mode="json"),
        "frame_rate": session.frame_rate,
        "activation": session.activation.to_dict() if session.activation else None,
    })


@app.post("/stop")
async def stop() -> JSONResponse:
    """Stop the active stream."""
    controller = get_controller()
    if controller is None:
        return JSONResponse({"error": "No active stream"}, status_code=400)

    try:
        await controller.stop()
    except SessionNotActive as e:
        return JSONResponse({"error": str(e)}, status_code=400)

    return JSONResponse({"success": True, "message": "Stream stopped"})


# =============================================================================
# Main Entry Point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    port = int(os.environ.get("PORT", settings.server.port))

    uvicorn.run(
        "pagecast.main:app",
        host=settings.server.host,
        port=port,
        reload=False,
    )
