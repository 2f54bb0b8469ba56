"""
Test Configuration
==================

Pytest fixtures and test doubles for pagecast.

The encoder is exercised with real child processes: ScriptProfile makes
the supervisor run ``python -c <script>`` instead of ffmpeg, so exit
codes, signals and pipe behaviour are the operating system's own.
"""

import asyncio
import sys
from typing import Any, Callable, Dict, Iterable, List, Optional

import pytest

from pagecast.capture.activator import PlaybackActivator
from pagecast.config import Settings
from pagecast.encoder.supervisor import EncoderProcessSupervisor
from pagecast.errors import PipeBroken, SetupFailure
from pagecast.session.stream import CaptureOptions


# =============================================================================
# Encoder stand-ins
# =============================================================================

# Reads stdin until EOF, like ffmpeg reading image2pipe
DRAIN_SCRIPT = (
    "import sys\n"
    "while sys.stdin.buffer.read(65536):\n"
    "    pass\n"
)

# Reads the first frame, lingers, then dies by SIGSEGV
CRASH_SCRIPT = (
    "import os, signal, sys, time\n"
    "signal.signal(signal.SIGSEGV, signal.SIG_DFL)\n"
    "sys.stdin.buffer.read(1)\n"
    "time.sleep(0.3)\n"
    "os.kill(os.getpid(), signal.SIGSEGV)\n"
)

# Reads the first frame, lingers, reports an error and exits 1
EXIT_SCRIPT = (
    "import sys, time\n"
    "sys.stdin.buffer.read(1)\n"
    "time.sleep(0.3)\n"
    "sys.stderr.write('rtmps://ingest: Connection refused error\\n')\n"
    "sys.stderr.flush()\n"
    "sys.exit(1)\n"
)

# Finishes on its own with code 0 (a direct source that ended)
FINISH_SCRIPT = (
    "import time\n"
    "time.sleep(0.3)\n"
)


class ScriptProfile:
    """EncoderProfile stand-in that runs a Python script instead of ffmpeg."""

    def __init__(self, script: str) -> None:
        self.script = script
        self.calls: List[tuple] = []

    def arguments(self, source: Any, frame_rate: int, target_url: str) -> List[str]:
        self.calls.append((source, frame_rate, target_url))
        return ["-c", self.script]


def python_supervisor(grace_period: float = 1.0) -> EncoderProcessSupervisor:
    return EncoderProcessSupervisor(executable=sys.executable, grace_period=grace_period)


def make_settings(target_url: str = "rtmps://live.example.com/app/KEY") -> Settings:
    """Settings with the production delays removed."""
    settings = Settings()
    settings.stream.target_url = target_url
    settings.stream.frame_rate = 5
    settings.capture.post_navigation_delay_sec = 0
    settings.capture.first_frame_timeout_sec = 3.0
    settings.capture.keep_alive_interval_sec = 0.05
    settings.activation.selector_timeout_ms = 200
    settings.activation.settle_delay_sec = 0
    settings.activation.evaluate_timeout_ms = 300
    return settings


# =============================================================================
# Surface fake
# =============================================================================

class FakeSurface:
    """
    In-memory SurfaceDriver.

    Selectors in ``present`` can be waited for and clicked; ``evaluate``
    answers from ``evaluate_results`` keyed by script text; the screencast
    pushes ``frame_data`` every ``frame_interval`` seconds.
    """

    def __init__(
        self,
        present: Iterable[str] = (),
        evaluate_results: Optional[Dict[str, Any]] = None,
        frame_interval: float = 0.02,
        frame_data: bytes = b"\x89PNG-frame",
        navigation_error: Optional[str] = None,
        click_errors: Iterable[str] = (),
    ) -> None:
        self.present = set(present)
        self.evaluate_results = dict(evaluate_results or {})
        self.frame_interval = frame_interval
        self.frame_data = frame_data
        self.navigation_error = navigation_error
        self.click_errors = set(click_errors)

        self.events: List[Any] = []
        self.waited: List[str] = []
        self.clicked: List[str] = []
        self.evaluated: List[str] = []
        self.screencast_options: Dict[str, Any] = {}
        self.frames_received = 0
        self.closed = False
        self.on_closed: Optional[Callable[[str], None]] = None
        self._feed_task: Optional[asyncio.Task] = None

    async def open(self) -> None:
        self.events.append("open")

    async def navigate(self, url: str, timeout_ms: int, wait_until: str) -> None:
        self.events.append(("navigate", url))
        if self.navigation_error:
            raise SetupFailure(self.navigation_error)

    async def wait_for_selector(self, selector: str, timeout_ms: int) -> bool:
        self.waited.append(selector)
        return selector in self.present

    async def click(self, selector: str, timeout_ms: int) -> None:
        if selector in self.click_errors:
            raise RuntimeError(f"element {selector} is detached")
        self.clicked.append(selector)

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self.evaluated.append(script)
        value = self.evaluate_results.get(script)
        if isinstance(value, Exception):
            raise value
        return value

    async def start_screencast(
        self,
        on_frame: Callable[[bytes], None],
        image_format: str = "png",
        quality: int = 80,
        every_nth_frame: int = 1,
    ) -> None:
        self.events.append("start_screencast")
        self.screencast_options = {
            "image_format": image_format,
            "quality": quality,
            "every_nth_frame": every_nth_frame,
        }
        self._feed_task = asyncio.create_task(self._feed(on_frame))

    async def _feed(self, on_frame: Callable[[bytes], None]) -> None:
        while True:
            await asyncio.sleep(self.frame_interval)
            self.frames_received += 1
            on_frame(self.frame_data)

    async def stop_screencast(self) -> None:
        self.events.append("stop_screencast")
        task, self._feed_task = self._feed_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def close(self) -> None:
        self.events.append("close")
        self.closed = True

    def lose(self, reason: str = "browser disconnected") -> None:
        """Simulate the browser going away on its own."""
        if self.on_closed is not None:
            self.on_closed(reason)


def factory_for(surface: FakeSurface) -> Callable[[Callable[[str], None]], FakeSurface]:
    """Surface factory always handing out the given fake."""

    def factory(on_closed: Callable[[str], None]) -> FakeSurface:
        surface.on_closed = on_closed
        return surface

    return factory


# =============================================================================
# Sink fake
# =============================================================================

class RecordingSink:
    """FrameSink recording writes and their loop times."""

    def __init__(
        self,
        drained: bool = True,
        fail_after: Optional[int] = None,
        expected: bool = False,
    ) -> None:
        self.drained = drained
        self.fail_after = fail_after
        self.expected = expected
        self.writes: List[bytes] = []
        self.times: List[float] = []

    async def write(self, data: bytes) -> bool:
        if self.fail_after is not None and len(self.writes) >= self.fail_after:
            raise PipeBroken(expected=self.expected)
        self.writes.append(data)
        self.times.append(asyncio.get_running_loop().time())
        return self.drained


async def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Poll predicate until it holds or timeout elapses."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() >= deadline:
            return False
        await asyncio.sleep(0.02)
    return True


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def fast_options() -> CaptureOptions:
    """Capture options without the production settle delays."""
    return CaptureOptions(
        post_navigation_delay=0,
        first_frame_timeout=3.0,
        keep_alive_interval=0.05,
        emitter_stop_timeout=1.0,
    )


@pytest.fixture
def fast_activator() -> PlaybackActivator:
    """Activator with short waits and no settle delay."""
    return PlaybackActivator(
        selector_timeout_ms=200,
        activation_budget_ms=1000,
        settle_delay=0,
        evaluate_timeout_ms=300,
    )
