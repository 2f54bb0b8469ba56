"""
Error Types
===========

Exception hierarchy for the capture-to-publish pipeline.

Propagation:
    - SetupFailure propagates synchronously out of StreamController.start()
    - PipeBroken, EncoderExit and EncoderCrash are runtime failures; they
      reach callers only through the status projection
    - SessionConflict / SessionNotActive reject control requests
    - Activation misses are NOT exceptions (see ActivationResult)
"""

from typing import Optional

from pagecast.models.failure_codes import FailureCode


class PagecastError(Exception):
    """Base class for all pagecast errors."""

    code: Optional[FailureCode] = None


class SetupFailure(PagecastError):
    """Fatal error while a session is starting (navigation, spawn, ...)."""

    code = FailureCode.SETUP_FAILURE

    def __init__(self, message: str, code: Optional[FailureCode] = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code


class SurfaceFailure(PagecastError):
    """The rendering surface went away while capturing."""

    code = FailureCode.SURFACE_FAILURE


class PipeBroken(PagecastError):
    """The encoder's input pipe is closed."""

    code = FailureCode.PIPE_BROKEN

    def __init__(self, message: str = "Encoder input pipe closed", expected: bool = False) -> None:
        super().__init__(message)
        self.expected = expected


class EncoderExit(PagecastError):
    """The encoder exited with a non-zero code."""

    code = FailureCode.ENCODER_EXIT

    def __init__(self, returncode: int, detail: Optional[str] = None) -> None:
        message = f"Encoder exited with code {returncode}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.returncode = returncode


class EncoderCrash(PagecastError):
    """The encoder was killed by an abnormal-termination signal."""

    code = FailureCode.ENCODER_CRASH

    def __init__(self, signal_name: str, detail: Optional[str] = None) -> None:
        message = (
            f"Encoder crashed ({signal_name}). The ffmpeg build may lack "
            f"secure transport (TLS/RTMPS) support"
        )
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.signal_name = signal_name


class SessionConflict(PagecastError):
    """A start was requested while a session is starting or active."""


class SessionNotActive(PagecastError):
    """A stop was requested while no session is active."""


class InvalidTransition(PagecastError):
    """A session state transition that the state machine does not allow."""
