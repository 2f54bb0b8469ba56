"""
Status Schema
=============

Pydantic model for the status projection returned by ``GET /status``.

Contract:
    {
        "active": true,
        "error": null,
        ...extra fields for observability
    }

``active`` and ``error`` are the minimal contract; the other fields are
informational and may grow.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from pagecast.models.failure_codes import FailureCode
from pagecast.models.source import StreamMode


class StreamStatus(BaseModel):
    """
    Status projection of the stream controller.

    Attributes:
        active: Whether a stream is currently being published
        error: Last classified error (while failed)
        state: Lifecycle state
        failure_code: Machine-readable failure code
        mode: Mode of the current/last session
        source: Page or media URL of the current/last session
        frame_rate: Frames per second
        started_at: UNIX timestamp when the session went active
        activation: Playback activation outcome (rendered_page only)
        metrics: Pipeline metrics
    """

    active: bool = Field(..., description="Whether a stream is being published")
    error: Optional[str] = Field(default=None, description="Last classified error")
    state: str = Field(..., description="Lifecycle state")
    failure_code: Optional[FailureCode] = Field(default=None, description="Failure code")
    mode: Optional[StreamMode] = Field(default=None, description="Streaming mode")
    source: Optional[str] = Field(default=None, description="Source URL")
    frame_rate: int = Field(..., ge=1, le=5, description="Frames per second")
    started_at: Optional[float] = Field(default=None, description="Activation time")
    activation: Optional[Dict[str, Any]] = Field(default=None, description="Activation outcome")
    metrics: Dict[str, Any] = Field(default_factory=dict, description="Pipeline metrics")
