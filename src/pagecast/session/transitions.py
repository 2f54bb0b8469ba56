"""
Session State Machine
=====================

Deterministic lifecycle of the (single) stream session of a process.

States:
    IDLE → STARTING → ACTIVE → STOPPING → IDLE
    STARTING → FAILED, ACTIVE → FAILED
    FAILED → STARTING

Rules:
    - At most one session is STARTING or ACTIVE at a time; a start request
      in any other state than IDLE/FAILED is rejected, not queued
    - FAILED keeps the last error until the next start clears it
    - Every transition is logged with its reason
"""

import logging
import time
from enum import Enum
from typing import Dict, FrozenSet, Optional

from pagecast.errors import InvalidTransition
from pagecast.models.failure_codes import FailureCode


logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """
    Lifecycle states of a stream session.

    Attributes:
        IDLE: No stream; a start is accepted
        STARTING: Resources being created
        ACTIVE: Frames (or the direct URL) are being published
        STOPPING: Resources being released after a stop request
        FAILED: The last session failed; a start is accepted
    """

    IDLE = "idle"
    STARTING = "starting"
    ACTIVE = "active"
    STOPPING = "stopping"
    FAILED = "failed"


ALLOWED_TRANSITIONS: Dict[SessionState, FrozenSet[SessionState]] = {
    SessionState.IDLE: frozenset({SessionState.STARTING}),
    SessionState.STARTING: frozenset({SessionState.ACTIVE, SessionState.FAILED}),
    SessionState.ACTIVE: frozenset({SessionState.STOPPING, SessionState.FAILED}),
    SessionState.STOPPING: frozenset({SessionState.IDLE}),
    SessionState.FAILED: frozenset({SessionState.STARTING}),
}

START_STATES = frozenset({SessionState.IDLE, SessionState.FAILED})


class SessionStateMachine:
    """
    Tracks the current SessionState and the last classified error.

    Attributes:
        state: Current state
        error: Last error message (only while FAILED)
        failure_code: Machine-readable code of the last error
        entered_at: UNIX timestamp of the last transition
    """

    def __init__(self) -> None:
        self.state: SessionState = SessionState.IDLE
        self.error: Optional[str] = None
        self.failure_code: Optional[FailureCode] = None
        self.entered_at: float = time.time()

    @property
    def can_start(self) -> bool:
        return self.state in START_STATES

    @property
    def is_active(self) -> bool:
        return self.state is SessionState.ACTIVE

    def transition(
        self,
        target: SessionState,
        reason: Optional[str] = None,
        failure_code: Optional[FailureCode] = None,
    ) -> None:
        """
        Move to target state.

        Args:
            target: Desired state
            reason: Error message (FAILED) or log context
            failure_code: Classification for FAILED

        Raises:
            InvalidTransition: target is not reachable from the current state
        """
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransition(
                f"Cannot go from {self.state.value} to {target.value}"
            )

        previous = self.state
        self.state = target
        self.entered_at = time.time()

        if target is SessionState.STARTING:
            self.error = None
            self.failure_code = None
        elif target is SessionState.FAILED:
            self.error = reason or "Unknown error"
            self.failure_code = failure_code

        logger.info(
            f"Session state: {previous.value} -> {target.value}"
            + (f" ({reason})" if reason else "")
        )

    def update_error(self, message: str, failure_code: Optional[FailureCode]) -> None:
        """Replace the recorded error of a FAILED session with a more precise one."""
        if self.state is SessionState.FAILED:
            self.error = message
            self.failure_code = failure_code
