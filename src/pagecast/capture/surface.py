"""
Rendering Surface
=================

Headless Chromium driven through Playwright, with a CDP screencast feed.

This module provides:
    - SurfaceDriver: Protocol of the capabilities the pipeline needs
    - ChromiumSurface: Playwright implementation

Capabilities:
    - navigate to a URL with a completion signal and timeout
    - wait for / click an element with timeout
    - evaluate a script in the page
    - subscribe to the screencast feed: (image bytes, ack token) pairs
    - acknowledge frames (Chromium pauses the feed until each frame is acked)
    - close the whole browser session

Design Rules:
    - Frames are base64-decoded here and handed over as raw bytes
    - A surface that disconnects on its own is NOT recovered; the owner is
      told through on_closed and the session fails
"""

import base64
import binascii
import logging
from typing import Any, Callable, List, Optional, Protocol

from playwright.async_api import (
    Browser,
    CDPSession,
    Error as PlaywrightError,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from pagecast.errors import SetupFailure


logger = logging.getLogger(__name__)


DEFAULT_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--disable-gpu",
    "--autoplay-policy=no-user-gesture-required",
]

# Chromium paints at ~30 fps; screencast everyNthFrame is derived from it
SURFACE_PAINT_RATE = 30


def every_nth_frame(frame_rate: int) -> int:
    """Screencast decimation factor for a target frame rate."""
    return max(1, SURFACE_PAINT_RATE // max(1, frame_rate))


class SurfaceDriver(Protocol):
    """
    Protocol for rendering surfaces.

    Implemented by ChromiumSurface (production) and by fakes in tests.
    """

    async def open(self) -> None:
        ...

    async def navigate(self, url: str, timeout_ms: int, wait_until: str) -> None:
        ...

    async def wait_for_selector(self, selector: str, timeout_ms: int) -> bool:
        ...

    async def click(self, selector: str, timeout_ms: int) -> None:
        ...

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        ...

    async def start_screencast(
        self,
        on_frame: Callable[[bytes], None],
        image_format: str,
        quality: int,
        every_nth_frame: int,
    ) -> None:
        ...

    async def stop_screencast(self) -> None:
        ...

    async def close(self) -> None:
        ...


class ChromiumSurface:
    """
    Playwright-driven headless Chromium page.

    Attributes:
        viewport_width: Page viewport width (also the screencast max width)
        viewport_height: Page viewport height (also the screencast max height)
        frames_received: Screencast frames received so far

    Example:
        surface = ChromiumSurface(viewport_width=1280, viewport_height=720)
        await surface.open()
        await surface.navigate("https://example.org", timeout_ms=30000)
        await surface.start_screencast(buffer_frame, image_format="png")
        ...
        await surface.close()
    """

    def __init__(
        self,
        viewport_width: int = 1280,
        viewport_height: int = 720,
        headless: bool = True,
        launch_args: Optional[List[str]] = None,
        on_closed: Optional[Callable[[str], None]] = None,
    ) -> None:
        """
        Initialize surface (nothing is launched until open()).

        Args:
            viewport_width: Viewport width in pixels
            viewport_height: Viewport height in pixels
            headless: Run Chromium headless
            launch_args: Chromium command-line flags
            on_closed: Called with a reason if the browser or page goes away
                without close() having been called
        """
        self.viewport_width = viewport_width
        self.viewport_height = viewport_height
        self.headless = headless
        self.launch_args = list(launch_args if launch_args is not None else DEFAULT_LAUNCH_ARGS)
        self.on_closed = on_closed
        self.frames_received: int = 0

        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._page: Optional[Page] = None
        self._cdp: Optional[CDPSession] = None
        self._on_frame: Optional[Callable[[bytes], None]] = None
        self._closing: bool = False

    @property
    def page(self) -> Optional[Page]:
        return self._page

    @property
    def is_open(self) -> bool:
        return self._page is not None and not self._closing

    async def open(self) -> None:
        """
        Launch Chromium and open one page.

        Raises:
            SetupFailure: Chromium could not be launched
        """
        args = self.launch_args + [
            f"--window-size={self.viewport_width},{self.viewport_height}"
        ]
        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.headless,
                args=args,
            )
            self._page = await self._browser.new_page(
                viewport={
                    "width": self.viewport_width,
                    "height": self.viewport_height,
                }
            )
        except PlaywrightError as e:
            await self.close()
            raise SetupFailure(f"Failed to launch browser: {e}") from e

        self._browser.on("disconnected", lambda _browser: self._lost("browser disconnected"))
        self._page.on("crash", lambda _page: self._lost("page crashed"))
        logger.info(
            f"Browser launched ({self.viewport_width}x{self.viewport_height}, "
            f"headless={self.headless})"
        )

    async def navigate(
        self,
        url: str,
        timeout_ms: int = 30000,
        wait_until: str = "networkidle",
    ) -> None:
        """
        Navigate and wait for the load signal.

        Raises:
            SetupFailure: Navigation failed or timed out
        """
        page = self._require_page()
        logger.info(f"Navigating to {url}...")
        try:
            await page.goto(url, wait_until=wait_until, timeout=timeout_ms)
        except PlaywrightError as e:
            raise SetupFailure(f"Navigation to {url} failed: {e}") from e

    async def wait_for_selector(self, selector: str, timeout_ms: int) -> bool:
        """Wait for an element to be attached. Returns False on timeout."""
        page = self._require_page()
        try:
            handle = await page.wait_for_selector(
                selector,
                timeout=timeout_ms,
                state="attached",
            )
        except PlaywrightTimeoutError:
            return False
        return handle is not None

    async def click(self, selector: str, timeout_ms: int) -> None:
        """Click the first element matching selector. Raises PlaywrightError on failure."""
        page = self._require_page()
        await page.click(selector, timeout=timeout_ms)

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        """Evaluate a JavaScript expression or function in the page."""
        page = self._require_page()
        return await page.evaluate(script, arg)

    async def start_screencast(
        self,
        on_frame: Callable[[bytes], None],
        image_format: str = "png",
        quality: int = 80,
        every_nth_frame: int = 1,
    ) -> None:
        """
        Subscribe to the CDP screencast feed.

        Args:
            on_frame: Called with the decoded image bytes of every frame
            image_format: "png" or "jpeg"
            quality: JPEG quality (ignored for PNG)
            every_nth_frame: Deliver one frame out of every N painted frames
        """
        page = self._require_page()
        self._on_frame = on_frame

        self._cdp = await page.context.new_cdp_session(page)
        for domain in ("Page.enable", "Runtime.enable", "DOM.enable"):
            await self._cdp.send(domain)

        self._cdp.on("Page.screencastFrame", self._handle_screencast_frame)

        params = {
            "format": image_format,
            "maxWidth": self.viewport_width,
            "maxHeight": self.viewport_height,
            "everyNthFrame": every_nth_frame,
        }
        if image_format == "jpeg":
            params["quality"] = quality

        logger.info("Starting screen capture via CDP...")
        await self._cdp.send("Page.startScreencast", params)

    async def acknowledge_frame(self, token: Any) -> None:
        """Acknowledge a screencast frame so Chromium keeps sending."""
        if self._cdp is None or self._closing:
            return
        try:
            await self._cdp.send("Page.screencastFrameAck", {"sessionId": token})
        except PlaywrightError as e:
            logger.debug(f"Frame ack failed: {e}")

    async def stop_screencast(self) -> None:
        """Stop the screencast feed and detach the CDP session."""
        self._on_frame = None
        cdp, self._cdp = self._cdp, None
        if cdp is None:
            return
        try:
            await cdp.send("Page.stopScreencast")
            await cdp.detach()
        except PlaywrightError as e:
            logger.warning(f"Error stopping screencast: {e}")

    async def close(self) -> None:
        """Close the page, the browser and the Playwright driver."""
        self._closing = True
        await self.stop_screencast()

        if self._browser is not None:
            logger.info("Closing browser...")
            try:
                await self._browser.close()
            except PlaywrightError as e:
                logger.warning(f"Error closing browser: {e}")
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except PlaywrightError as e:
                logger.warning(f"Error stopping Playwright: {e}")

        self._page = None
        self._browser = None
        self._playwright = None

    async def _handle_screencast_frame(self, params: dict) -> None:
        """CDP event handler: decode, hand over, acknowledge."""
        token = params.get("sessionId")
        try:
            data = base64.b64decode(params["data"])
        except (KeyError, binascii.Error, ValueError) as e:
            logger.error(f"Error processing frame: {e}")
            data = b""

        if data and self._on_frame is not None:
            self.frames_received += 1
            self._on_frame(data)

        await self.acknowledge_frame(token)

    def _lost(self, reason: str) -> None:
        if self._closing:
            return
        logger.error(f"Rendering surface lost: {reason}")
        if self.on_closed is not None:
            self.on_closed(reason)

    def _require_page(self) -> Page:
        if self._page is None:
            raise SetupFailure("Rendering surface is not open")
        return self._page
