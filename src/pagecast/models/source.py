"""
Source Models
=============

Tagged union describing what a stream session publishes.

    DirectUrlSource    - a media URL handed straight to the encoder
    RenderedPageSource - a web page rendered in headless Chromium, captured
                         frame by frame, plus the selector list used to
                         start playback

Both are pydantic models so they can be validated from HTTP payloads and
configuration alike.
"""

from enum import Enum
from typing import Literal, Union

from pydantic import BaseModel, Field


class StreamMode(str, Enum):
    """Streaming mode of a session."""

    DIRECT_URL = "direct_url"
    RENDERED_PAGE = "rendered_page"


class DirectUrlSource(BaseModel):
    """Media URL passed through to the encoder without a frame pipeline."""

    mode: Literal[StreamMode.DIRECT_URL] = StreamMode.DIRECT_URL
    url: str = Field(..., min_length=1, description="Media URL (RTSP, HLS, file, ...)")


class RenderedPageSource(BaseModel):
    """Web page captured through the rendering surface's screencast feed."""

    mode: Literal[StreamMode.RENDERED_PAGE] = StreamMode.RENDERED_PAGE
    page_url: str = Field(..., min_length=1, description="Page to render")
    selectors: str = Field(
        default="",
        description="Comma/semicolon-delimited selector list used to start playback",
    )


SourceRef = Union[DirectUrlSource, RenderedPageSource]
