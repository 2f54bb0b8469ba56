"""
Stream Controller
=================

Process-wide owner of the (single) stream session.

The controller exposes exactly the operations the HTTP shell needs:
    - start(source)  -> StreamSession   (SetupFailure / SessionConflict)
    - stop()                            (SessionNotActive)
    - status()       -> StreamStatus

and receives runtime failures from the session through a callback, which
is the only way they reach callers (via the status projection).

Design Rules:
    - State lives in one SessionStateMachine, not in module globals
    - A start while STARTING/ACTIVE/STOPPING is rejected, never queued
    - No automatic retries; a new start after FAILED is the caller's call
"""

import asyncio
import logging
from typing import Callable, Optional

from pagecast.capture.activator import PlaybackActivator
from pagecast.capture.surface import ChromiumSurface, SurfaceDriver
from pagecast.config import Settings
from pagecast.encoder.profile import EncoderProfile
from pagecast.encoder.supervisor import EncoderProcessSupervisor
from pagecast.errors import (
    PagecastError,
    SessionConflict,
    SessionNotActive,
    SetupFailure,
)
from pagecast.models.output import StreamStatus
from pagecast.models.source import DirectUrlSource, SourceRef
from pagecast.session.stream import CaptureOptions, StreamSession, SurfaceFactory
from pagecast.session.transitions import SessionState, SessionStateMachine


logger = logging.getLogger(__name__)


def chromium_surface_factory(settings: Settings) -> SurfaceFactory:
    """Surface factory building ChromiumSurface instances from settings."""

    def factory(on_closed: Callable[[str], None]) -> SurfaceDriver:
        return ChromiumSurface(
            viewport_width=settings.capture.viewport_width,
            viewport_height=settings.capture.viewport_height,
            headless=settings.capture.headless,
            launch_args=settings.capture.launch_args,
            on_closed=on_closed,
        )

    return factory


class StreamController:
    """
    At-most-one-session controller.

    Attributes:
        settings: Service settings
        machine: Session state machine
        session: Current (or last) stream session

    Example:
        controller = StreamController(settings)
        await controller.start(RenderedPageSource(page_url="https://x/page"))
        print(controller.status().active)
        await controller.stop()
    """

    def __init__(
        self,
        settings: Settings,
        surface_factory: Optional[SurfaceFactory] = None,
        supervisor: Optional[EncoderProcessSupervisor] = None,
        profile: Optional[EncoderProfile] = None,
        activator: Optional[PlaybackActivator] = None,
    ) -> None:
        """
        Initialize controller.

        Args:
            settings: Service settings (target URL, frame rate, timeouts...)
            surface_factory: Builds rendering surfaces (default: Chromium)
            supervisor: Encoder supervisor (default: from settings.encoder)
            profile: Encoder argument profile (default: from settings)
            activator: Playback activator (default: from settings.activation)
        """
        self.settings = settings
        self.machine = SessionStateMachine()
        self.session: Optional[StreamSession] = None

        self._surface_factory = surface_factory or chromium_surface_factory(settings)
        self._supervisor = supervisor or EncoderProcessSupervisor(
            executable=settings.encoder.ffmpeg_path,
            grace_period=settings.encoder.grace_period_sec,
            diagnostics_lines=settings.encoder.diagnostics_lines,
        )
        self._profile = profile or EncoderProfile(
            scale_width=settings.encoder.scale_width,
            image_format=settings.capture.image_format,
        )
        self._activator = activator or PlaybackActivator(
            selector_timeout_ms=settings.activation.selector_timeout_ms,
            activation_budget_ms=settings.activation.activation_budget_ms,
            settle_delay=settings.activation.settle_delay_sec,
            evaluate_timeout_ms=settings.activation.evaluate_timeout_ms,
        )
        self._teardown_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> SessionState:
        return self.machine.state

    # =========================================================================
    # Operations
    # =========================================================================

    async def start(self, source: SourceRef) -> StreamSession:
        """
        Start a new session.

        Raises:
            SessionConflict: A session is starting, active or stopping
            SetupFailure: The session could not be started (state -> FAILED)
        """
        if not self.machine.can_start:
            raise SessionConflict(f"Stream is already {self.machine.state.value}")

        target_url = self.settings.stream.target_url
        if not target_url:
            raise SetupFailure("RTMPS_URL is not configured")

        self.machine.transition(SessionState.STARTING)
        await self._await_teardown()

        session = self._build_session(source, target_url)
        self.session = session

        try:
            await session.start()
        except SetupFailure as e:
            self.machine.transition(SessionState.FAILED, str(e), e.code)
            raise

        self.machine.transition(SessionState.ACTIVE)
        return session

    async def stop(self) -> None:
        """
        Stop the active session and release its resources in order.

        Raises:
            SessionNotActive: No session is active
        """
        if not self.machine.is_active or self.session is None:
            raise SessionNotActive("No active stream")

        self.machine.transition(SessionState.STOPPING, "stop requested")
        try:
            await self.session.close()
        finally:
            self.machine.transition(SessionState.IDLE)

    async def shutdown(self) -> None:
        """Release everything on process termination."""
        if self.machine.is_active:
            logger.info("Shutdown requested, stopping stream...")
            await self.stop()
        elif self.session is not None and self.machine.state is SessionState.STARTING:
            logger.info("Shutdown requested while starting, aborting session...")
            await self.session.close()
        await self._await_teardown()

    def status(self) -> StreamStatus:
        """Build the status projection."""
        session = self.session
        source_url = None
        if session is not None:
            source = session.source
            source_url = source.url if isinstance(source, DirectUrlSource) else source.page_url

        return StreamStatus(
            active=self.machine.is_active,
            error=self.machine.error,
            state=self.machine.state.value,
            failure_code=self.machine.failure_code,
            mode=session.mode if session else None,
            source=source_url,
            frame_rate=session.frame_rate if session else self.settings.stream.frame_rate,
            started_at=session.started_at if session else None,
            activation=session.activation.to_dict() if session and session.activation else None,
            metrics=session.metrics() if session else {},
        )

    # =========================================================================
    # Session wiring
    # =========================================================================

    def _build_session(self, source: SourceRef, target_url: str) -> StreamSession:
        capture = self.settings.capture
        options = CaptureOptions(
            navigation_timeout_ms=capture.navigation_timeout_ms,
            wait_until=capture.wait_until,
            post_navigation_delay=capture.post_navigation_delay_sec,
            first_frame_timeout=capture.first_frame_timeout_sec,
            keep_alive_interval=capture.keep_alive_interval_sec,
            image_format=capture.image_format,
            jpeg_quality=capture.jpeg_quality,
            queue_policy=self.settings.queue.policy,
            queue_max_size=self.settings.queue.max_size,
        )
        return StreamSession(
            source=source,
            target_url=target_url,
            frame_rate=self.settings.stream.frame_rate,
            supervisor=self._supervisor,
            profile=self._profile,
            surface_factory=self._surface_factory,
            activator=self._activator,
            options=options,
            on_failure=self._on_session_failure,
            on_ended=self._on_session_ended,
        )

    def _on_session_failure(self, session: StreamSession, error: PagecastError) -> None:
        """Runtime failure reported by the active session."""
        if session is not self.session:
            return

        if self.machine.state is SessionState.ACTIVE:
            self.machine.transition(SessionState.FAILED, str(error), error.code)
            self._schedule_teardown(session, then_idle=False)
        elif self.machine.state is SessionState.FAILED:
            self.machine.update_error(str(error), error.code)

    def _on_session_ended(self, session: StreamSession) -> None:
        """The encoder finished cleanly on its own (e.g. the source ended)."""
        if session is not self.session or not self.machine.is_active:
            return
        self.machine.transition(SessionState.STOPPING, "encoder finished")
        self._schedule_teardown(session, then_idle=True)

    def _schedule_teardown(self, session: StreamSession, then_idle: bool) -> None:
        self._teardown_task = asyncio.create_task(
            self._teardown(session, then_idle),
            name="session_background_teardown",
        )

    async def _teardown(self, session: StreamSession, then_idle: bool) -> None:
        try:
            await session.close()
        except Exception as e:
            logger.error(f"Error tearing down session: {e}")
        finally:
            if then_idle and self.machine.state is SessionState.STOPPING:
                self.machine.transition(SessionState.IDLE)

    async def _await_teardown(self) -> None:
        task, self._teardown_task = self._teardown_task, None
        if task is not None and not task.done():
            await task
