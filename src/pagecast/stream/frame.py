"""
Frame Data Model
=================

Internal frame representation for the capture pipeline.

This module defines the typed Frame class that is passed from the
screencast feed, through the capture queue, to the emitter.

Design Rules:
    - This is the ONLY frame format handled by the queue and the emitter
    - Does NOT decode or re-encode image data
    - Sequence numbers are assigned once, at arrival
"""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Frame:
    """
    Captured frame from the rendering surface.

    Immutable (frozen) so a frame cannot change between the moment
    it is enqueued and the moment it is written to the encoder.

    Attributes:
        sequence: Monotonically increasing counter within one session
        timestamp: UNIX timestamp when the frame arrived
        data: Encoded image bytes (PNG or JPEG, already base64-decoded)
    """

    sequence: int
    timestamp: float
    data: bytes

    @property
    def size(self) -> int:
        """Payload size in bytes."""
        return len(self.data)

    def __repr__(self) -> str:
        """Compact repr that doesn't dump the image payload."""
        return (
            f"Frame(sequence={self.sequence}, "
            f"timestamp={self.timestamp:.3f}, "
            f"size={len(self.data)})"
        )
