"""
Rate-Limited Emitter
====================

Cooperative timer loop that moves frames from the FrameBuffer into the
encoder's input pipe at the configured frame rate.

Tick Rules:
    - One tick every 1 / frame_rate seconds, on an absolute schedule
      (ticks may slip under load; the next tick is then one interval
      after "now", never immediate)
    - At most one frame is popped and written per tick
    - A write that hits backpressure suspends the loop until the pipe has
      drained; nothing is popped meanwhile
    - A broken pipe stops the loop for good

Design Rules:
    - FIFO: frames are written in the order they were enqueued
    - A frame is never written twice and never retried
    - The capturing flag is checked at every tick boundary
"""

import asyncio
import logging
from typing import Callable, Optional, Protocol

from pagecast.errors import PipeBroken
from pagecast.stream.buffer import FrameBuffer


logger = logging.getLogger(__name__)


class FrameSink(Protocol):
    """
    Byte sink the emitter writes frames into.

    Implemented by EncoderHandle. write() must suspend while the
    underlying pipe is congested and raise PipeBroken once it is closed.
    """

    async def write(self, data: bytes) -> bool:
        """
        Write one frame payload.

        Returns:
            True if the pipe accepted the data without backpressure,
            False if the write had to wait for the pipe to drain.
        """
        ...


class EmitterMetrics:
    """Metrics for RateLimitedEmitter observability."""

    __slots__ = (
        "ticks",
        "frames_sent",
        "bytes_sent",
        "backpressure_events",
        "slipped_ticks",
        "last_sequence",
    )

    def __init__(self) -> None:
        self.ticks: int = 0
        self.frames_sent: int = 0
        self.bytes_sent: int = 0
        self.backpressure_events: int = 0
        self.slipped_ticks: int = 0
        self.last_sequence: int = -1

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "ticks": self.ticks,
            "frames_sent": self.frames_sent,
            "bytes_sent": self.bytes_sent,
            "backpressure_events": self.backpressure_events,
            "slipped_ticks": self.slipped_ticks,
            "last_sequence": self.last_sequence,
        }


class RateLimitedEmitter:
    """
    Paces frames from a FrameBuffer into a FrameSink.

    Attributes:
        buffer: Source of frames
        sink: Destination pipe (encoder stdin)
        frame_rate: Frames per second
        metrics: Operational metrics

    Example:
        capturing = asyncio.Event()
        capturing.set()
        emitter = RateLimitedEmitter(
            buffer=buffer,
            sink=encoder_handle,
            frame_rate=3,
            capturing=capturing,
            on_failure=session.fail,
        )
        task = asyncio.create_task(emitter.run())

        # Later: clear the flag and the loop exits at the next tick
        capturing.clear()
        await task
    """

    def __init__(
        self,
        buffer: FrameBuffer,
        sink: FrameSink,
        frame_rate: float,
        capturing: asyncio.Event,
        on_failure: Optional[Callable[[Exception], None]] = None,
        on_first_frame: Optional[Callable[[], None]] = None,
    ) -> None:
        """
        Initialize emitter.

        Args:
            buffer: FrameBuffer to pop frames from
            sink: FrameSink receiving the frame payloads
            frame_rate: Target frames per second (> 0)
            capturing: Shared flag; the loop runs while it is set
            on_failure: Called once with PipeBroken if the pipe closes while capturing
            on_first_frame: Called once after the first successful write
        """
        if frame_rate <= 0:
            raise ValueError("frame_rate must be > 0")

        self.buffer = buffer
        self.sink = sink
        self.frame_rate = frame_rate
        self.metrics = EmitterMetrics()

        self._interval = 1.0 / frame_rate
        self._capturing = capturing
        self._on_failure = on_failure
        self._on_first_frame = on_first_frame
        self._stopped: bool = False

    @property
    def interval(self) -> float:
        """Seconds between ticks."""
        return self._interval

    @property
    def stopped(self) -> bool:
        """Whether the loop stopped because the pipe broke."""
        return self._stopped

    async def run(self) -> None:
        """
        Run the tick loop until the capturing flag is cleared or the pipe breaks.
        """
        loop = asyncio.get_running_loop()
        next_tick = loop.time()

        logger.info(
            f"Emitter started: {self.frame_rate} fps "
            f"({self._interval * 1000:.0f} ms per tick)"
        )

        while self._capturing.is_set():
            self.metrics.ticks += 1

            frame = self.buffer.get_nowait()
            if frame is not None:
                try:
                    drained = await self.sink.write(frame.data)
                except PipeBroken as e:
                    self._stopped = True
                    self._handle_broken_pipe(e)
                    return

                self.metrics.frames_sent += 1
                self.metrics.bytes_sent += frame.size
                self.metrics.last_sequence = frame.sequence
                if not drained:
                    self.metrics.backpressure_events += 1
                    logger.debug(
                        f"Pipe congested at frame {frame.sequence}, "
                        f"queue size {self.buffer.size}"
                    )
                if self.metrics.frames_sent == 1 and self._on_first_frame:
                    self._on_first_frame()

            if not self._capturing.is_set():
                break

            next_tick += self._interval
            delay = next_tick - loop.time()
            if delay < 0:
                # Slipped (slow drain or loaded loop): next tick one interval from now
                self.metrics.slipped_ticks += 1
                next_tick = loop.time() + self._interval
                delay = self._interval
            await asyncio.sleep(delay)

        logger.info(
            f"Emitter stopped after {self.metrics.frames_sent} frames "
            f"({self.buffer.size} left in queue)"
        )

    def _handle_broken_pipe(self, error: PipeBroken) -> None:
        """Swallow the broken pipe during teardown, report it otherwise."""
        if error.expected or not self._capturing.is_set():
            logger.info("Encoder pipe closed during teardown, emitter stopped")
            return

        logger.error(f"Encoder pipe broken while capturing: {error}")
        if self._on_failure:
            self._on_failure(error)
