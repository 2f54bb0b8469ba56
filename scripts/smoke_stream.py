#!/usr/bin/env python3
"""
Stream Smoke Test Script
========================

Standalone script to exercise the full capture-to-publish pipeline.

This script:
    1. Opens a page in headless Chromium (or takes a direct media URL)
    2. Publishes it to the given RTMP(S) target for a configurable duration
    3. Logs pipeline stats every few seconds
    4. Reports final summary

Prerequisites:
    - ffmpeg on PATH (with TLS support for rtmps:// targets)
    - Playwright's Chromium: playwright install chromium
    - A reachable ingest, e.g. a local nginx-rtmp at rtmp://localhost/live/test

Usage:
    python scripts/smoke_stream.py --page https://example.com --target rtmp://localhost/live/test
    python scripts/smoke_stream.py --url https://x/video.m3u8 --duration 30
"""

import argparse
import asyncio
import logging
import os
import sys
import time

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from pagecast.config import load_config
from pagecast.errors import SetupFailure
from pagecast.models.input import StartRequest
from pagecast.session import SessionState, StreamController


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
)
logger = logging.getLogger(__name__)


async def run_smoke(
    page_url: str,
    media_url: str,
    selectors: str,
    target_url: str,
    frame_rate: int,
    duration: int,
    report_interval: int,
) -> dict:
    """
    Run one stream session and collect its metrics.

    Args:
        page_url: Page to render (wins over media_url)
        media_url: Direct media URL
        selectors: Play-button selector list
        target_url: RTMP(S) ingest URL
        frame_rate: Frames per second
        duration: Run time in seconds
        report_interval: Seconds between progress reports

    Returns:
        Final metrics dict
    """
    settings = load_config()
    settings.stream.target_url = target_url
    settings.stream.frame_rate = frame_rate

    source = StartRequest(
        url=media_url or None,
        web_page_url=page_url or None,
        play_button_selector=selectors or None,
    ).resolve(default_selector=settings.stream.play_button_selector)
    if source is None:
        raise SystemExit("Either --page or --url is required")

    logger.info("=" * 60)
    logger.info("Stream Smoke Test")
    logger.info("=" * 60)
    logger.info(f"Source: {source.model_dump(mode='json')}")
    logger.info(f"Frame rate: {frame_rate} FPS")
    logger.info(f"Duration: {duration} seconds")
    logger.info("=" * 60)

    controller = StreamController(settings)

    try:
        await controller.start(source)
    except SetupFailure as e:
        logger.error(f"Stream failed to start: {e}")
        return {"started": False, "error": str(e), "frames_sent": 0}

    start_time = time.time()
    last_report_time = start_time
    last_sent = 0

    try:
        while controller.state is SessionState.ACTIVE:
            elapsed = time.time() - start_time
            if elapsed >= duration:
                logger.info(f"Test duration ({duration}s) reached")
                break

            time_since_report = time.time() - last_report_time
            if time_since_report >= report_interval:
                metrics = controller.status().metrics
                emitter = metrics.get("emitter", {})
                queue = metrics.get("queue", {})
                sent = emitter.get("frames_sent", 0)
                fps = (sent - last_sent) / time_since_report if time_since_report > 0 else 0

                logger.info("-" * 40)
                logger.info(f"Progress Report (elapsed: {elapsed:.0f}s)")
                logger.info(f"  Frames received: {metrics.get('frames_received', 'n/a')}")
                logger.info(f"  Frames sent: {sent}")
                logger.info(f"  Output FPS: {fps:.1f}")
                logger.info(f"  Queue size: {queue.get('size', 0)}")
                logger.info(f"  Queue dropped: {queue.get('dropped_count', 0)}")
                logger.info(f"  Backpressure events: {emitter.get('backpressure_events', 0)}")

                last_report_time = time.time()
                last_sent = sent

            await asyncio.sleep(0.5)
    finally:
        status = controller.status()
        if controller.state is SessionState.ACTIVE:
            await controller.stop()
        else:
            await controller.shutdown()

    total_time = time.time() - start_time
    emitter = status.metrics.get("emitter", {})
    queue = status.metrics.get("queue", {})
    frames_sent = emitter.get("frames_sent", 0)

    logger.info("=" * 60)
    logger.info("FINAL SUMMARY")
    logger.info("=" * 60)
    logger.info(f"Total runtime: {total_time:.1f} seconds")
    logger.info(f"Final state: {status.state}")
    logger.info(f"Error: {status.error}")
    logger.info(f"Frames sent: {frames_sent}")
    logger.info(f"Queue high watermark: {queue.get('high_watermark', 0)}")
    logger.info(f"Slipped ticks: {emitter.get('slipped_ticks', 0)}")
    logger.info("=" * 60)

    ok = status.error is None and (frames_sent > 0 or status.mode is None or status.mode.value == "direct_url")
    if ok:
        logger.info("✅ SMOKE PASSED")
    else:
        logger.error("❌ SMOKE FAILED")

    return {
        "started": True,
        "ok": ok,
        "duration": total_time,
        "error": status.error,
        "frames_sent": frames_sent,
    }


def main():
    parser = argparse.ArgumentParser(
        description="Smoke test for the capture-to-publish pipeline"
    )
    parser.add_argument(
        "--page",
        type=str,
        default=os.environ.get("WEB_PAGE_URL", ""),
        help="Page URL to render and capture",
    )
    parser.add_argument(
        "--url",
        type=str,
        default=os.environ.get("SOURCE_URL", ""),
        help="Direct media URL",
    )
    parser.add_argument(
        "--selector",
        type=str,
        default=os.environ.get("PLAY_BUTTON_SELECTOR", ""),
        help="Play-button selector list",
    )
    parser.add_argument(
        "--target",
        type=str,
        default=os.environ.get("RTMPS_URL", "rtmp://localhost/live/test"),
        help="RTMP(S) ingest URL",
    )
    parser.add_argument(
        "--fps",
        type=int,
        default=3,
        choices=range(1, 6),
        help="Frames per second (default: 3)",
    )
    parser.add_argument(
        "--duration",
        type=int,
        default=60,
        help="Test duration in seconds (default: 60)",
    )
    parser.add_argument(
        "--report-interval",
        type=int,
        default=5,
        help="Seconds between progress reports (default: 5)",
    )

    args = parser.parse_args()

    result = asyncio.run(run_smoke(
        page_url=args.page,
        media_url=args.url,
        selectors=args.selector,
        target_url=args.target,
        frame_rate=args.fps,
        duration=args.duration,
        report_interval=args.report_interval,
    ))

    sys.exit(0 if result.get("ok") else 1)


if __name__ == "__main__":
    main()
