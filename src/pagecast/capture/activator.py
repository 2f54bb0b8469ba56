"""
Playback Activator
==================

Best-effort attempt to start media playback on a rendered page.

Strategies are tried in order; the first one that succeeds wins:
    1. selector  - each caller-supplied selector: wait, click, settle
    2. heuristic - click the first interactive element mentioning "play"
    3. gesture   - click <body> and resume an AudioContext so autoplay
                   policies see a user gesture

Design Rules:
    - Never raises; a miss degrades to capture without playback
    - Bounded: selector waits share activation_budget_ms, and every page
      script evaluation is capped by evaluate_timeout_ms (a timeout is a miss)
    - The outcome is recorded for observability, it does not gate capture
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Union

from pagecast.capture.surface import SurfaceDriver


logger = logging.getLogger(__name__)


HEURISTIC_SCRIPT = """
() => {
    const candidates = document.querySelectorAll(
        'button, [role="button"], a, input[type="button"], input[type="submit"], [onclick], [aria-label]'
    );
    for (const el of candidates) {
        const label = [
            el.innerText || el.textContent || '',
            el.getAttribute('aria-label') || '',
            el.getAttribute('title') || '',
            el.value || '',
        ].join(' ').toLowerCase();
        if (label.includes('play')) {
            el.click();
            return el.outerHTML.slice(0, 120);
        }
    }
    return null;
}
"""

GESTURE_SCRIPT = """
async () => {
    if (document.body) {
        document.body.click();
    }
    const Ctx = window.AudioContext || window.webkitAudioContext;
    if (!Ctx) {
        return false;
    }
    try {
        const ctx = new Ctx();
        await ctx.resume();
        return ctx.state === 'running';
    } catch (e) {
        return false;
    }
}
"""

MEDIA_PLAYING_SCRIPT = """
() => Array.from(document.querySelectorAll('video, audio')).some(
    (m) => !m.paused && !m.ended && m.readyState > 2
)
"""

KEEP_ALIVE_SCRIPT = "() => Boolean(window.AudioContext || window.webkitAudioContext)"


@dataclass
class ActivationResult:
    """
    Outcome of a playback activation attempt.

    Attributes:
        success: Whether a strategy clicked something meant to start playback
        strategy: "selector", "heuristic", "gesture" or "none"
        selector: Selector that was clicked (selector strategy only)
        element: Short description of the element clicked by the heuristic
        attempted: Selectors tried, in order
        media_playing: Whether a playing <video>/<audio> was observed afterwards
    """

    success: bool
    strategy: str
    selector: Optional[str] = None
    element: Optional[str] = None
    attempted: List[str] = field(default_factory=list)
    media_playing: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


Strategy = Callable[[SurfaceDriver, List[str]], Awaitable[Optional[ActivationResult]]]


def parse_selector_list(raw: Union[str, Sequence[str], None]) -> List[str]:
    """
    Split a comma/semicolon-delimited selector list.

    Separators inside quotes, brackets or parentheses are kept, so
    ``button[aria-label*="play, now" i], .play`` yields two selectors.
    """
    if raw is None:
        return []
    if not isinstance(raw, str):
        return [s.strip() for s in raw if s and s.strip()]

    selectors: List[str] = []
    current: List[str] = []
    depth = 0
    quote: Optional[str] = None

    for char in raw:
        if quote:
            if char == quote:
                quote = None
        elif char in "\"'":
            quote = char
        elif char in "([":
            depth += 1
        elif char in ")]":
            depth = max(0, depth - 1)
        elif char in ",;" and depth == 0:
            selectors.append("".join(current).strip())
            current = []
            continue
        current.append(char)

    selectors.append("".join(current).strip())
    return [s for s in selectors if s]


class PlaybackActivator:
    """
    Ordered first-success-wins cascade of playback strategies.

    Attributes:
        selector_timeout_ms: Max wait per selector
        activation_budget_ms: Max total time spent waiting on selectors
        settle_delay: Seconds to wait after a successful click
        evaluate_timeout_ms: Max wait for each in-page script evaluation

    Example:
        activator = PlaybackActivator(selector_timeout_ms=5000)
        result = await activator.activate(surface, "button.play, .play-button")
        if not result.success:
            logger.warning("Capturing without playback")
    """

    def __init__(
        self,
        selector_timeout_ms: int = 5000,
        activation_budget_ms: int = 15000,
        settle_delay: float = 1.0,
        evaluate_timeout_ms: int = 3000,
        strategies: Optional[List[Strategy]] = None,
    ) -> None:
        self.selector_timeout_ms = selector_timeout_ms
        self.activation_budget_ms = activation_budget_ms
        self.settle_delay = settle_delay
        self.evaluate_timeout_ms = evaluate_timeout_ms
        self.strategies: List[Strategy] = strategies if strategies is not None else [
            self.try_selectors,
            self.try_heuristic,
            self.try_gesture,
        ]

    async def activate(
        self,
        surface: SurfaceDriver,
        selectors: Union[str, Sequence[str], None],
    ) -> ActivationResult:
        """
        Run the strategy cascade.

        Args:
            surface: Surface already navigated to the target page
            selectors: Raw selector list or sequence of selectors

        Returns:
            ActivationResult of the first successful strategy, or a failed
            result with strategy "none".
        """
        parsed = parse_selector_list(selectors)
        logger.info(f"Looking for play button with selectors: {parsed}")

        result: Optional[ActivationResult] = None
        for strategy in self.strategies:
            try:
                result = await strategy(surface, parsed)
            except Exception as e:
                name = getattr(strategy, "__name__", repr(strategy))
                logger.debug(f"Activation strategy {name} failed: {e}")
                result = None
            if result is not None:
                break

        if result is None:
            result = ActivationResult(success=False, strategy="none", attempted=parsed)

        result.media_playing = await self._media_playing(surface)

        if result.success:
            logger.info(
                f"Playback activated via {result.strategy}"
                + (f" ({result.selector})" if result.selector else "")
                + f", media playing: {result.media_playing}"
            )
        else:
            logger.warning(
                "Could not activate playback; capture continues "
                f"(last strategy: {result.strategy})"
            )
        return result

    async def try_selectors(
        self,
        surface: SurfaceDriver,
        selectors: List[str],
    ) -> Optional[ActivationResult]:
        """Wait for and click each selector in order."""
        attempted: List[str] = []
        deadline = time.monotonic() + self.activation_budget_ms / 1000.0

        for selector in selectors:
            remaining_ms = int((deadline - time.monotonic()) * 1000)
            if remaining_ms <= 0:
                logger.debug("Activation budget exhausted")
                break
            timeout_ms = min(self.selector_timeout_ms, remaining_ms)
            attempted.append(selector)

            try:
                if not await surface.wait_for_selector(selector, timeout_ms):
                    logger.debug(f"Selector not found: {selector}")
                    continue
                await surface.click(selector, timeout_ms)
            except Exception as e:
                logger.debug(f"Could not click {selector!r}: {e}")
                continue

            logger.info(f"Play button clicked: {selector}")
            await asyncio.sleep(self.settle_delay)
            return ActivationResult(
                success=True,
                strategy="selector",
                selector=selector,
                attempted=attempted,
            )

        return None

    async def try_heuristic(
        self,
        surface: SurfaceDriver,
        selectors: List[str],
    ) -> Optional[ActivationResult]:
        """Click the first interactive element whose label mentions "play"."""
        clicked = await self._evaluate(surface, HEURISTIC_SCRIPT)
        if not clicked:
            return None

        await asyncio.sleep(self.settle_delay)
        return ActivationResult(
            success=True,
            strategy="heuristic",
            element=str(clicked),
            attempted=list(selectors),
        )

    async def try_gesture(
        self,
        surface: SurfaceDriver,
        selectors: List[str],
    ) -> Optional[ActivationResult]:
        """Synthetic gesture; never counts as confirmed playback."""
        logger.info("Trying alternative: clicking on body to enable autoplay...")
        await self._evaluate(surface, GESTURE_SCRIPT)
        await asyncio.sleep(self.settle_delay)
        return ActivationResult(
            success=False,
            strategy="gesture",
            attempted=list(selectors),
        )

    async def _evaluate(self, surface: SurfaceDriver, script: str) -> Any:
        """Evaluate a page script, returning None if it does not settle in time."""
        try:
            return await asyncio.wait_for(
                surface.evaluate(script),
                timeout=self.evaluate_timeout_ms / 1000.0,
            )
        except asyncio.TimeoutError:
            logger.debug(f"Page script did not settle within {self.evaluate_timeout_ms} ms")
            return None

    async def _media_playing(self, surface: SurfaceDriver) -> bool:
        try:
            return bool(await self._evaluate(surface, MEDIA_PLAYING_SCRIPT))
        except Exception as e:
            logger.debug(f"Media probe failed: {e}")
            return False
