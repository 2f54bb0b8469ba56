"""
Stream Session
==============

One logical stream: the aggregate that owns every pipeline resource.

Resource Order:
    created:   Surface → Activator (one-shot) → Queue → Encoder
    released:  Encoder → Queue → Surface

Whatever triggers the teardown (stop request, encoder crash, broken
pipe, surface loss), close() releases resources in that reverse order
and never returns with the encoder still running.

Modes:
    rendered_page: the full surface → queue → emitter → encoder chain
    direct_url:    only the encoder; the URL is handed to it directly
"""

import asyncio
import logging
import time
from contextlib import suppress
from dataclasses import dataclass
from typing import Callable, List, Optional

from pagecast.capture.activator import KEEP_ALIVE_SCRIPT, ActivationResult, PlaybackActivator
from pagecast.capture.surface import SurfaceDriver, every_nth_frame
from pagecast.encoder.profile import EncoderProfile
from pagecast.encoder.supervisor import EncoderHandle, EncoderOutcome, EncoderProcessSupervisor
from pagecast.errors import (
    EncoderCrash,
    EncoderExit,
    PagecastError,
    PipeBroken,
    SetupFailure,
    SurfaceFailure,
)
from pagecast.models.source import RenderedPageSource, SourceRef, StreamMode
from pagecast.stream.buffer import FrameBuffer, OverflowPolicy
from pagecast.stream.emitter import RateLimitedEmitter
from pagecast.stream.frame import Frame


logger = logging.getLogger(__name__)


SurfaceFactory = Callable[[Callable[[str], None]], SurfaceDriver]


@dataclass(frozen=True)
class CaptureOptions:
    """
    Per-session capture settings.

    Attributes:
        navigation_timeout_ms: Page load timeout
        wait_until: Playwright load state that completes navigation
        post_navigation_delay: Seconds to let the page settle before activation
        first_frame_timeout: Max seconds to wait for the first frame in STARTING
        keep_alive_interval: Seconds between keep-alive probes (0 disables)
        image_format: Screencast image format ("png" or "jpeg")
        jpeg_quality: Screencast JPEG quality
        queue_policy: FrameBuffer overflow policy
        queue_max_size: FrameBuffer cap for drop_oldest
        emitter_stop_timeout: Seconds to wait for the emitter task on teardown
    """

    navigation_timeout_ms: int = 30000
    wait_until: str = "networkidle"
    post_navigation_delay: float = 2.0
    first_frame_timeout: float = 10.0
    keep_alive_interval: float = 5.0
    image_format: str = "png"
    jpeg_quality: int = 80
    queue_policy: OverflowPolicy = OverflowPolicy.UNBOUNDED
    queue_max_size: int = 50
    emitter_stop_timeout: float = 2.0


class StreamSession:
    """
    Aggregate for one stream.

    Attributes:
        source: What is being streamed
        mode: Streaming mode derived from source
        frame_rate: Frames per second (1-5)
        surface: Rendering surface (rendered_page only)
        activation: Outcome of the playback activation
        buffer: Frame queue (rendered_page only)
        emitter: Rate-limited emitter (rendered_page only)
        encoder: Encoder process handle
        failure: First classified runtime failure, if any
        teardown_order: Resources released by close(), in order
    """

    def __init__(
        self,
        source: SourceRef,
        target_url: str,
        frame_rate: int,
        supervisor: EncoderProcessSupervisor,
        profile: EncoderProfile,
        surface_factory: Optional[SurfaceFactory] = None,
        activator: Optional[PlaybackActivator] = None,
        options: Optional[CaptureOptions] = None,
        on_failure: Optional[Callable[["StreamSession", PagecastError], None]] = None,
        on_ended: Optional[Callable[["StreamSession"], None]] = None,
    ) -> None:
        if isinstance(source, RenderedPageSource) and surface_factory is None:
            raise ValueError("rendered_page sessions need a surface_factory")

        self.source = source
        self.mode = StreamMode(source.mode)
        self.target_url = target_url
        self.frame_rate = frame_rate
        self.options = options or CaptureOptions()

        self._supervisor = supervisor
        self._profile = profile
        self._surface_factory = surface_factory
        self._activator = activator or PlaybackActivator()
        self._on_failure = on_failure
        self._on_ended = on_ended

        self.surface: Optional[SurfaceDriver] = None
        self.activation: Optional[ActivationResult] = None
        self.buffer: Optional[FrameBuffer] = None
        self.emitter: Optional[RateLimitedEmitter] = None
        self.encoder: Optional[EncoderHandle] = None
        self.failure: Optional[PagecastError] = None
        self.started_at: Optional[float] = None
        self.teardown_order: List[str] = []

        self._capturing = asyncio.Event()
        self._stop_requested = asyncio.Event()
        self._settled = asyncio.Event()
        self._started: bool = False
        self._next_sequence: int = 0
        self._emitter_task: Optional[asyncio.Task] = None
        self._keep_alive_task: Optional[asyncio.Task] = None
        self._close_task: Optional[asyncio.Task] = None

    @property
    def capturing(self) -> bool:
        return self._capturing.is_set()

    # =========================================================================
    # Startup
    # =========================================================================

    async def start(self) -> None:
        """
        Create all resources in order and wait for the first frame.

        Raises:
            SetupFailure: Any setup step failed; resources created so far
                have been released.
        """
        logger.info(
            f"Starting {self.mode.value} session at {self.frame_rate} FPS"
        )
        try:
            if isinstance(self.source, RenderedPageSource):
                await self._open_surface(self.source)
                await self._activate(self.source)
                self._create_queue()
                await self._start_screencast()

            await self._spawn_encoder()

            if isinstance(self.source, RenderedPageSource):
                self._start_emitter()
                self._start_keep_alive()
                await self._wait_for_first_frame()
        except SetupFailure:
            await self.close()
            raise
        except Exception as e:
            logger.error(f"Error setting up stream: {e}")
            await self.close()
            raise SetupFailure(str(e)) from e

        if self.failure is not None:
            await self.close()
            raise SetupFailure(str(self.failure), code=self.failure.code) from self.failure

        self._started = True
        self.started_at = time.time()
        logger.info(f"Stream session active ({self.mode.value})")

    async def _open_surface(self, source: RenderedPageSource) -> None:
        self.surface = self._surface_factory(self._on_surface_lost)
        await self.surface.open()
        await self.surface.navigate(
            source.page_url,
            self.options.navigation_timeout_ms,
            self.options.wait_until,
        )
        if self.options.post_navigation_delay > 0:
            await asyncio.sleep(self.options.post_navigation_delay)

    async def _activate(self, source: RenderedPageSource) -> None:
        self.activation = await self._activator.activate(self.surface, source.selectors)

    def _create_queue(self) -> None:
        self.buffer = FrameBuffer(
            policy=self.options.queue_policy,
            maxsize=self.options.queue_max_size,
        )
        self._capturing.set()

    async def _start_screencast(self) -> None:
        await self.surface.start_screencast(
            self._on_frame,
            image_format=self.options.image_format,
            quality=self.options.jpeg_quality,
            every_nth_frame=every_nth_frame(self.frame_rate),
        )

    async def _spawn_encoder(self) -> None:
        arguments = self._profile.arguments(self.source, self.frame_rate, self.target_url)
        self.encoder = await self._supervisor.spawn(arguments, on_exit=self._on_encoder_exit)

    def _start_emitter(self) -> None:
        self.emitter = RateLimitedEmitter(
            buffer=self.buffer,
            sink=self.encoder,
            frame_rate=self.frame_rate,
            capturing=self._capturing,
            on_failure=self._fail,
            on_first_frame=self._settled.set,
        )
        self._emitter_task = asyncio.create_task(
            self.emitter.run(),
            name="frame_emitter",
        )
        self._emitter_task.add_done_callback(self._on_emitter_done)

    def _on_emitter_done(self, task: asyncio.Task) -> None:
        if task.cancelled() or task.exception() is None:
            return
        self._fail(PipeBroken(f"Frame emitter stopped: {task.exception()}"))

    def _start_keep_alive(self) -> None:
        if self.options.keep_alive_interval <= 0:
            return
        self._keep_alive_task = asyncio.create_task(
            self._keep_alive(),
            name="surface_keep_alive",
        )

    async def _wait_for_first_frame(self) -> None:
        try:
            await asyncio.wait_for(
                self._settled.wait(),
                timeout=self.options.first_frame_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"No frame reached the encoder within "
                f"{self.options.first_frame_timeout:.1f}s, continuing"
            )

    # =========================================================================
    # Runtime callbacks
    # =========================================================================

    def _on_frame(self, data: bytes) -> None:
        """Screencast callback: wrap and enqueue."""
        if not self._capturing.is_set() or self.buffer is None:
            return
        frame = Frame(
            sequence=self._next_sequence,
            timestamp=time.time(),
            data=data,
        )
        self._next_sequence += 1
        self.buffer.put(frame)

    def _on_encoder_exit(self, outcome: EncoderOutcome) -> None:
        if outcome.requested:
            return

        error = outcome.to_error()
        if error is not None:
            self._fail(error)
            return

        if self._started:
            logger.info("Encoder finished on its own, ending session")
            self._capturing.clear()
            if self._on_ended is not None:
                self._on_ended(self)
        else:
            self._fail(SetupFailure("Encoder exited before the stream started"))

    def _on_surface_lost(self, reason: str) -> None:
        self._fail(SurfaceFailure(f"Rendering surface lost: {reason}"))

    def _fail(self, error: PagecastError) -> None:
        """Record a runtime failure and stop the capture loops."""
        if self.failure is not None:
            # A broken pipe usually shows up before the exit status it causes
            if isinstance(self.failure, PipeBroken) and isinstance(error, (EncoderExit, EncoderCrash)):
                logger.error(f"Stream session failure classified: {error}")
                self.failure = error
                if self._started and self._on_failure is not None:
                    self._on_failure(self, error)
            return

        if self._stop_requested.is_set():
            return

        self.failure = error
        self._capturing.clear()
        self._settled.set()
        logger.error(f"Stream session failed: {error}")
        if self._started and self._on_failure is not None:
            self._on_failure(self, error)

    async def _keep_alive(self) -> None:
        """Periodic harmless page evaluation while capturing."""
        interval = self.options.keep_alive_interval
        while self._capturing.is_set():
            try:
                await asyncio.wait_for(self._stop_requested.wait(), timeout=interval)
                break
            except asyncio.TimeoutError:
                pass
            if not self._capturing.is_set() or self.surface is None:
                break
            try:
                await self.surface.evaluate(KEEP_ALIVE_SCRIPT)
            except Exception as e:
                logger.debug(f"Keep-alive probe failed: {e}")

    # =========================================================================
    # Teardown
    # =========================================================================

    async def close(self) -> None:
        """
        Release all resources in reverse creation order.

        Safe to call more than once and from concurrent callers; the
        teardown runs once.
        """
        if self._close_task is None:
            self._close_task = asyncio.create_task(self._teardown(), name="session_teardown")
        await asyncio.shield(self._close_task)

    async def _teardown(self) -> None:
        self._stop_requested.set()
        self._capturing.clear()

        if self.encoder is not None:
            if isinstance(self.failure, PipeBroken) and self.encoder.running:
                # The exit status explains the broken pipe; let it arrive first
                with suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(
                        self.encoder.wait(),
                        timeout=self._supervisor.grace_period,
                    )
            await self._supervisor.stop(self.encoder)
            self.teardown_order.append("encoder")

        await self._stop_task(self._emitter_task, self.options.emitter_stop_timeout)
        await self._stop_task(self._keep_alive_task, 1.0)

        if self.buffer is not None:
            cleared = self.buffer.clear()
            if cleared:
                logger.info(f"Discarded {cleared} queued frames")
            self.teardown_order.append("queue")

        if self.surface is not None:
            try:
                await self.surface.stop_screencast()
            finally:
                await self.surface.close()
            self.teardown_order.append("surface")

        logger.info(f"Stream session closed ({', '.join(self.teardown_order) or 'nothing to release'})")

    @staticmethod
    async def _stop_task(task: Optional[asyncio.Task], timeout: float) -> None:
        if task is None or task.done():
            return
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        except asyncio.TimeoutError:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        except Exception as e:
            logger.warning(f"Task {task.get_name()} ended with error: {e}")

    # =========================================================================
    # Observability
    # =========================================================================

    def metrics(self) -> dict:
        """Pipeline metrics for the status projection."""
        data: dict = {}
        if self.buffer is not None:
            data["queue"] = self.buffer.metrics()
        if self.emitter is not None:
            data["emitter"] = self.emitter.metrics.to_dict()
        if self.encoder is not None:
            data["encoder"] = {
                "pid": self.encoder.pid,
                "running": self.encoder.running,
            }
        frames_received = getattr(self.surface, "frames_received", None)
        if frames_received is not None:
            data["frames_received"] = frames_received
        return data
