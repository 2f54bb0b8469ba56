"""
Session Module
==============

Stream session lifecycle.

This module implements the control half of the pipeline:
    - transitions.py: SessionState and the deterministic state machine
    - stream.py: StreamSession, the aggregate owning every resource
    - controller.py: StreamController, the at-most-one-session owner

Key Design Decisions:
    - Resources are created Surface → Queue → Encoder, released in reverse
    - Runtime failures reach callers only through the status projection
    - No automatic restarts
"""

from pagecast.session.transitions import SessionState, SessionStateMachine
from pagecast.session.stream import CaptureOptions, StreamSession
from pagecast.session.controller import StreamController

__all__ = [
    "SessionState",
    "SessionStateMachine",
    "CaptureOptions",
    "StreamSession",
    "StreamController",
]
