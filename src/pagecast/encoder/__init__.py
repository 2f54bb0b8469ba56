"""
Encoder Module
==============

External encoder (ffmpeg) integration.

This module provides:
    - EncoderProfile: Fixed codec/bitrate argument profiles per streaming mode
    - EncoderProcessSupervisor: Spawns and stops encoder processes
    - EncoderHandle: Input pipe, diagnostics and exit state of one process
    - classify_exit: Exit code / signal classification

DESIGN RULES:
    - One process per session, never reused
    - Two-phase stop (SIGTERM, grace period, SIGKILL)
    - Exit classification drives the session's failure state
"""

from pagecast.encoder.profile import EncoderProfile
from pagecast.encoder.supervisor import (
    EncoderHandle,
    EncoderOutcome,
    EncoderProcessSupervisor,
    ExitKind,
    classify_exit,
    redact_url,
)


__all__ = [
    "EncoderProfile",
    "EncoderHandle",
    "EncoderOutcome",
    "EncoderProcessSupervisor",
    "ExitKind",
    "classify_exit",
    "redact_url",
]
