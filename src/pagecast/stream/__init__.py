"""
Stream Module
=============

Frame queueing and paced emission components.

This module provides the middle of the capture-to-publish pipeline:
    - Frame: Typed frame data model (internal representation)
    - FrameBuffer: FIFO queue with an explicit overflow policy
    - RateLimitedEmitter: Tick loop writing frames into the encoder pipe

Example:
    from pagecast.stream import Frame, FrameBuffer, RateLimitedEmitter

    buffer = FrameBuffer()
    emitter = RateLimitedEmitter(
        buffer=buffer,
        sink=encoder_handle,
        frame_rate=3,
        capturing=capturing,
    )
    task = asyncio.create_task(emitter.run())

    # Screencast callback
    buffer.put(Frame(sequence=0, timestamp=time.time(), data=png_bytes))
"""

from pagecast.stream.frame import Frame
from pagecast.stream.buffer import FrameBuffer, OverflowPolicy
from pagecast.stream.emitter import EmitterMetrics, FrameSink, RateLimitedEmitter


__all__ = [
    "Frame",
    "FrameBuffer",
    "OverflowPolicy",
    "EmitterMetrics",
    "FrameSink",
    "RateLimitedEmitter",
]
