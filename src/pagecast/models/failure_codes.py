"""
Failure Codes
=============

Fixed set of machine-readable codes for classified stream failures.

Every failure recorded in the status projection carries exactly ONE code
alongside its human-readable message.

Rules:
    - One clear cause per code
    - Codes are stable; messages may change
"""

from enum import Enum


class FailureCode(str, Enum):
    """
    Machine-readable failure classification.

    Attributes:
        SETUP_FAILURE: Navigation, encoder spawn or other setup error
        SURFACE_FAILURE: Rendering surface closed or crashed while capturing
        PIPE_BROKEN: Encoder input pipe closed while the session was active
        ENCODER_EXIT: Encoder exited with a non-zero code
        ENCODER_CRASH: Encoder killed by an abnormal-termination signal
    """

    SETUP_FAILURE = "SETUP_FAILURE"
    SURFACE_FAILURE = "SURFACE_FAILURE"
    PIPE_BROKEN = "PIPE_BROKEN"
    ENCODER_EXIT = "ENCODER_EXIT"
    ENCODER_CRASH = "ENCODER_CRASH"
