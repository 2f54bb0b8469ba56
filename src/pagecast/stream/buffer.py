"""
Frame Buffer
=============

In-process FIFO queue between the screencast feed and the emitter.

This module provides the FrameBuffer class. The screencast handler is the
only producer and the emitter is the only consumer; both run on the same
event loop, so no locking is needed.

Overflow Policies:
    - unbounded:   no cap. Memory grows if the encoder stalls for a long
                   time; the growth is visible through metrics().
    - drop_oldest: cap at maxsize and discard the oldest frame on overflow.

Design Rules:
    - FIFO order is preserved; frames are never reordered
    - Frames are only discarded by the drop_oldest policy
    - Does NOT process or modify frames
"""

import asyncio
import logging
from enum import Enum
from typing import Optional

from pagecast.stream.frame import Frame


logger = logging.getLogger(__name__)


class OverflowPolicy(str, Enum):
    """Behaviour of the buffer when the encoder falls behind."""

    UNBOUNDED = "unbounded"
    DROP_OLDEST = "drop_oldest"


class FrameBuffer:
    """
    Async FIFO queue for captured frames.

    Attributes:
        policy: Overflow policy
        maxsize: Cap for the drop_oldest policy (0 when unbounded)
        dropped_count: Number of frames dropped due to overflow

    Example:
        buffer = FrameBuffer(policy=OverflowPolicy.DROP_OLDEST, maxsize=50)

        # Producer (screencast callback)
        buffer.put(frame)

        # Consumer (emitter tick)
        frame = buffer.get_nowait()
    """

    def __init__(
        self,
        policy: OverflowPolicy = OverflowPolicy.UNBOUNDED,
        maxsize: int = 50,
    ) -> None:
        """
        Initialize frame buffer.

        Args:
            policy: Overflow policy
            maxsize: Maximum frames to buffer under drop_oldest. Must be >= 1.
                Ignored for the unbounded policy.
        """
        policy = OverflowPolicy(policy)
        if policy is OverflowPolicy.DROP_OLDEST and maxsize < 1:
            raise ValueError("maxsize must be >= 1")

        self._policy = policy
        self._maxsize = maxsize if policy is OverflowPolicy.DROP_OLDEST else 0
        self._queue: asyncio.Queue[Frame] = asyncio.Queue(maxsize=self._maxsize)
        self._dropped_count: int = 0
        self._total_put: int = 0
        self._high_watermark: int = 0

    @property
    def policy(self) -> OverflowPolicy:
        """Configured overflow policy."""
        return self._policy

    @property
    def maxsize(self) -> int:
        """Maximum buffer size (0 = unbounded)."""
        return self._maxsize

    @property
    def size(self) -> int:
        """Current number of frames in buffer."""
        return self._queue.qsize()

    @property
    def dropped_count(self) -> int:
        """Number of frames dropped due to overflow."""
        return self._dropped_count

    @property
    def total_put(self) -> int:
        """Total frames ever put into buffer."""
        return self._total_put

    def put(self, frame: Frame) -> bool:
        """
        Append a frame, dropping the oldest one if the buffer is capped and full.

        Args:
            frame: Frame to add

        Returns:
            True if the frame was added without dropping,
            False if the oldest frame was dropped to make room.
        """
        self._total_put += 1
        dropped = False

        if self._queue.full():
            try:
                self._queue.get_nowait()
                self._dropped_count += 1
                dropped = True
                logger.warning(
                    f"Buffer full, dropped oldest frame. "
                    f"Total dropped: {self._dropped_count}"
                )
            except asyncio.QueueEmpty:
                pass

        self._queue.put_nowait(frame)
        self._high_watermark = max(self._high_watermark, self._queue.qsize())
        return not dropped

    def get_nowait(self) -> Optional[Frame]:
        """
        Get the oldest frame without waiting.

        Returns:
            Oldest frame if available, None otherwise.
        """
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def clear(self) -> int:
        """
        Clear all frames from buffer.

        Returns:
            Number of frames cleared.
        """
        cleared = 0
        while True:
            try:
                self._queue.get_nowait()
                cleared += 1
            except asyncio.QueueEmpty:
                break
        return cleared

    def metrics(self) -> dict:
        """
        Get buffer metrics for observability.

        Returns:
            Dict with policy, size, maxsize, high_watermark, dropped_count, total_put
        """
        return {
            "policy": self._policy.value,
            "size": self.size,
            "maxsize": self._maxsize,
            "high_watermark": self._high_watermark,
            "dropped_count": self._dropped_count,
            "total_put": self._total_put,
        }
