"""
Data Models
===========

Pydantic models and enums for pagecast.

Models:
    Source:
        - StreamMode: direct_url / rendered_page
        - DirectUrlSource, RenderedPageSource: tagged source union (SourceRef)

    Input:
        - StartRequest: Body of POST /start

    Output:
        - StreamStatus: Status projection

    Failures:
        - FailureCode: Machine-readable failure classification
"""

from pagecast.models.failure_codes import FailureCode
from pagecast.models.source import DirectUrlSource, RenderedPageSource, SourceRef, StreamMode
from pagecast.models.input import StartRequest
from pagecast.models.output import StreamStatus

__all__ = [
    # Source
    "StreamMode",
    "DirectUrlSource",
    "RenderedPageSource",
    "SourceRef",
    # Input
    "StartRequest",
    # Output
    "StreamStatus",
    # Failures
    "FailureCode",
]
