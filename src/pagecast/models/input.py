"""
Start Request Schema
====================

Pydantic model for the body of ``POST /start``.

The JSON keys follow the control surface contract:
    {
        "url": "rtsp://camera/stream",          # direct_url mode
        "webPageUrl": "https://x/page",         # rendered_page mode (wins)
        "playButtonSelector": "button.play"     # optional selector list
    }

Missing fields fall back to the configured defaults (SOURCE_URL,
WEB_PAGE_URL, PLAY_BUTTON_SELECTOR).
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from pagecast.models.source import DirectUrlSource, RenderedPageSource, SourceRef


class StartRequest(BaseModel):
    """
    Body of a start request.

    Attributes:
        url: Direct media URL
        web_page_url: Page URL to render and capture
        play_button_selector: Selector list for playback activation
    """

    model_config = ConfigDict(populate_by_name=True)

    url: Optional[str] = Field(default=None, description="Direct media URL")
    web_page_url: Optional[str] = Field(
        default=None,
        alias="webPageUrl",
        description="Page URL to render and capture",
    )
    play_button_selector: Optional[str] = Field(
        default=None,
        alias="playButtonSelector",
        description="Comma-delimited selector list",
    )

    def resolve(
        self,
        default_source_url: Optional[str] = None,
        default_web_page_url: Optional[str] = None,
        default_selector: str = "",
    ) -> Optional[SourceRef]:
        """
        Build the source reference, falling back to configured defaults.

        A page URL (from the request or the defaults) wins over a direct URL.

        Returns:
            SourceRef, or None when no source is available at all
        """
        source_url = self.url or default_source_url
        web_page_url = self.web_page_url or default_web_page_url

        if web_page_url:
            return RenderedPageSource(
                page_url=web_page_url,
                selectors=self.play_button_selector or default_selector,
            )
        if source_url:
            return DirectUrlSource(url=source_url)
        return None
