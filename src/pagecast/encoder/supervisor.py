"""
Encoder Process Supervisor
==========================

Spawns, watches and tears down the external encoder (ffmpeg) process.

This module provides:
    - EncoderProcessSupervisor: spawns one process per session
    - EncoderHandle: wraps the process's stdin, stderr tail and exit state
    - classify_exit: maps a return code to normal / exit / crash

Exit Classification:
    code 0, or any exit after stop() began -> NORMAL
    killed by SIGSEGV/SIGBUS/SIGILL/SIGABRT/SIGFPE -> CRASH (EncoderCrash)
    any other non-zero code or signal        -> EXIT  (EncoderExit)

Stop Sequence:
    close stdin -> SIGTERM -> wait grace period -> SIGKILL -> reap

Design Rules:
    - stderr is diagnostic text; only the exit status decides faults
    - stderr is split on CR and LF; progress records never enter the tail
    - A broken pipe is expected once stop() began, an error before that
    - stop() never returns with the process still running
"""

import asyncio
import logging
import re
import shutil
import signal
from collections import deque
from contextlib import suppress
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Deque, List, Optional, Sequence, Tuple
from urllib.parse import urlsplit, urlunsplit

from pagecast.errors import EncoderCrash, EncoderExit, PagecastError, PipeBroken, SetupFailure


logger = logging.getLogger(__name__)


CRASH_SIGNALS = frozenset({
    signal.SIGSEGV,
    signal.SIGBUS,
    signal.SIGILL,
    signal.SIGABRT,
    signal.SIGFPE,
})

# Substrings marking an ffmpeg stderr line worth logging at ERROR
ERROR_MARKERS = ("error", "Error", "failed", "Failed")

# Periodic "frame=... fps=... bitrate=..." status records, kept out of the tail
PROGRESS_RECORD = re.compile(r"^(frame|size)=\s*\S")

RECORD_SEPARATOR = re.compile(rb"[\r\n]")

STDERR_CHUNK_SIZE = 4096

# Longest stderr record kept in the tail (and so in failure messages)
MAX_LINE_CHARS = 512


class ExitKind(str, Enum):
    """Classified encoder exit."""

    NORMAL = "normal"
    EXIT = "exit"
    CRASH = "crash"


@dataclass(frozen=True)
class EncoderOutcome:
    """
    Final state of an encoder process.

    Attributes:
        kind: Classified exit kind
        returncode: Raw asyncio return code (negative = killed by signal)
        signal_name: Name of the terminating signal, if any
        requested: Whether the exit followed a stop() request
        diagnostics: Tail of the process's stderr output
    """

    kind: ExitKind
    returncode: Optional[int]
    signal_name: Optional[str] = None
    requested: bool = False
    diagnostics: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def last_error_line(self) -> Optional[str]:
        """Most recent stderr line carrying an error marker."""
        for line in reversed(self.diagnostics):
            if any(marker in line for marker in ERROR_MARKERS):
                return line
        return None

    def to_error(self) -> Optional[PagecastError]:
        """Exception describing this outcome, or None for a normal exit."""
        if self.kind is ExitKind.CRASH:
            return EncoderCrash(self.signal_name or "signal", self.last_error_line)
        if self.kind is ExitKind.EXIT:
            code = self.returncode if self.returncode is not None else -1
            detail = self.last_error_line
            if self.signal_name and not detail:
                detail = f"terminated by {self.signal_name}"
            return EncoderExit(code, detail)
        return None


def _signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return f"signal {signum}"


def classify_exit(returncode: Optional[int], stopping: bool) -> Tuple[ExitKind, Optional[str]]:
    """
    Classify an encoder exit.

    Args:
        returncode: asyncio return code; negative values mean "killed by signal"
        stopping: Whether stop() had been requested before the exit

    Returns:
        (kind, signal_name) tuple
    """
    signal_name = None
    if returncode is not None and returncode < 0:
        signal_name = _signal_name(-returncode)

    if stopping or returncode == 0:
        return ExitKind.NORMAL, signal_name
    if returncode is not None and returncode < 0 and -returncode in CRASH_SIGNALS:
        return ExitKind.CRASH, signal_name
    return ExitKind.EXIT, signal_name


def redact_url(url: str) -> str:
    """Hide the stream key (last path segment) of an ingest URL for logging."""
    parts = urlsplit(url)
    if not parts.scheme or not parts.path.strip("/"):
        return url
    head, _, _key = parts.path.rpartition("/")
    return urlunsplit((parts.scheme, parts.netloc, f"{head}/***", "", ""))


class EncoderHandle:
    """
    One running encoder process.

    Attributes:
        pid: OS process id
        running: Whether the process has not exited yet
        stopping: Whether stop() was requested
        outcome: EncoderOutcome once the process exited
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        diagnostics_lines: int = 50,
        on_exit: Optional[Callable[[EncoderOutcome], None]] = None,
    ) -> None:
        self._process = process
        self._diagnostics: Deque[str] = deque(maxlen=diagnostics_lines)
        self._on_exit = on_exit
        self._stopping: bool = False
        self._outcome: Optional[EncoderOutcome] = None
        self._exited = asyncio.Event()
        self._stderr_task: Optional[asyncio.Task] = None
        self._watch_task: Optional[asyncio.Task] = None

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def running(self) -> bool:
        return self._outcome is None and self._process.returncode is None

    @property
    def stopping(self) -> bool:
        return self._stopping

    @property
    def outcome(self) -> Optional[EncoderOutcome]:
        return self._outcome

    @property
    def diagnostics(self) -> List[str]:
        """Tail of stderr output captured so far."""
        return list(self._diagnostics)

    def start_watching(self) -> None:
        """Start the stderr reader and the exit watcher tasks."""
        self._stderr_task = asyncio.create_task(
            self._read_stderr(),
            name=f"encoder_stderr_{self.pid}",
        )
        self._watch_task = asyncio.create_task(
            self._watch_exit(),
            name=f"encoder_watch_{self.pid}",
        )

    async def write(self, data: bytes) -> bool:
        """
        Write bytes to the encoder's stdin, waiting for the pipe to drain if needed.

        Returns:
            True if accepted without backpressure, False if the write had to
            wait for the pipe to drain.

        Raises:
            PipeBroken: stdin is closed or the process is gone. ``expected`` is
                True when stop() had already been requested.
        """
        stdin = self._process.stdin
        if stdin is None or stdin.is_closing() or not self.running:
            raise PipeBroken(expected=self._stopping)

        try:
            stdin.write(data)
            congested = self._congested(stdin)
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise PipeBroken(
                f"Encoder input pipe closed: {e}",
                expected=self._stopping,
            ) from e
        return not congested

    @staticmethod
    def _congested(writer: asyncio.StreamWriter) -> bool:
        transport = writer.transport
        _low, high = transport.get_write_buffer_limits()
        return transport.get_write_buffer_size() > high

    async def wait(self) -> EncoderOutcome:
        """Wait for the process to exit and return its outcome."""
        await self._exited.wait()
        assert self._outcome is not None
        return self._outcome

    async def stop(self, grace_period: float = 1.0) -> EncoderOutcome:
        """
        Two-phase stop: SIGTERM, grace period, then SIGKILL.

        Args:
            grace_period: Seconds to wait after SIGTERM before SIGKILL

        Returns:
            The process outcome (NORMAL unless the process had already exited)
        """
        if self.running:
            self._stopping = True
            stdin = self._process.stdin
            if stdin is not None and not stdin.is_closing():
                stdin.close()

            logger.info(f"Stopping encoder (pid={self.pid}) with SIGTERM")
            with suppress(ProcessLookupError):
                self._process.terminate()

            try:
                await asyncio.wait_for(self._exited.wait(), timeout=grace_period)
            except asyncio.TimeoutError:
                logger.warning(
                    f"Encoder (pid={self.pid}) still running after "
                    f"{grace_period:.1f}s, sending SIGKILL"
                )
                with suppress(ProcessLookupError):
                    self._process.kill()

        return await self.wait()

    async def _read_stderr(self) -> None:
        """Collect stderr records into the diagnostic tail."""
        stream = self._process.stderr
        if stream is None:
            return

        pending = b""
        while True:
            chunk = await stream.read(STDERR_CHUNK_SIZE)
            if not chunk:
                break
            # ffmpeg ends progress records with \r and messages with \n
            *records, pending = RECORD_SEPARATOR.split(pending + chunk)
            if len(pending) > MAX_LINE_CHARS:
                records.append(pending)
                pending = b""
            for raw in records:
                self._record_stderr(raw)

        if pending:
            self._record_stderr(pending)

    def _record_stderr(self, raw: bytes) -> None:
        line = raw.decode("utf-8", errors="replace").strip()
        if not line:
            return
        if PROGRESS_RECORD.match(line):
            logger.debug(f"ffmpeg: {line}")
            return

        line = line[:MAX_LINE_CHARS]
        self._diagnostics.append(line)
        if any(marker in line for marker in ERROR_MARKERS):
            logger.error(f"ffmpeg: {line}")
        else:
            logger.debug(f"ffmpeg: {line}")

    async def _watch_exit(self) -> None:
        """Wait for exit, classify it and notify the owner."""
        returncode = await self._process.wait()

        if self._stderr_task is not None:
            try:
                await asyncio.wait_for(self._stderr_task, timeout=0.5)
            except asyncio.TimeoutError:
                self._stderr_task.cancel()

        kind, signal_name = classify_exit(returncode, self._stopping)
        self._outcome = EncoderOutcome(
            kind=kind,
            returncode=returncode,
            signal_name=signal_name,
            requested=self._stopping,
            diagnostics=tuple(self._diagnostics),
        )
        self._exited.set()

        if kind is ExitKind.NORMAL:
            logger.info(f"Encoder (pid={self.pid}) exited with code {returncode}")
        elif kind is ExitKind.CRASH:
            logger.error(f"Encoder (pid={self.pid}) crashed: {signal_name}")
        else:
            logger.error(f"Encoder (pid={self.pid}) exited with code {returncode}")

        if self._on_exit is not None:
            self._on_exit(self._outcome)


class EncoderProcessSupervisor:
    """
    Spawns encoder processes with a fixed executable and stop policy.

    Attributes:
        executable: ffmpeg binary (name on PATH or absolute path)
        grace_period: Seconds between SIGTERM and SIGKILL
        diagnostics_lines: Number of stderr lines kept per process

    Example:
        supervisor = EncoderProcessSupervisor("ffmpeg", grace_period=1.0)
        handle = await supervisor.spawn(args, on_exit=session.on_encoder_exit)
        await handle.write(png_bytes)
        await supervisor.stop(handle)
    """

    def __init__(
        self,
        executable: str = "ffmpeg",
        grace_period: float = 1.0,
        diagnostics_lines: int = 50,
    ) -> None:
        self.executable = executable
        self.grace_period = grace_period
        self.diagnostics_lines = diagnostics_lines

    def resolve_executable(self) -> str:
        """Resolve the executable on PATH, falling back to the configured value."""
        return shutil.which(self.executable) or self.executable

    async def spawn(
        self,
        arguments: Sequence[str],
        on_exit: Optional[Callable[[EncoderOutcome], None]] = None,
    ) -> EncoderHandle:
        """
        Start one encoder process.

        Args:
            arguments: Arguments after the executable
            on_exit: Called once with the classified outcome when the process exits

        Returns:
            EncoderHandle for the running process

        Raises:
            SetupFailure: The process could not be started
        """
        executable = self.resolve_executable()
        printable = [redact_url(arg) if "://" in arg else arg for arg in arguments]
        logger.info(f"Encoder command: {executable} {' '.join(printable)}")

        try:
            process = await asyncio.create_subprocess_exec(
                executable,
                *arguments,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise SetupFailure(f"Failed to start encoder '{executable}': {e}") from e

        handle = EncoderHandle(
            process,
            diagnostics_lines=self.diagnostics_lines,
            on_exit=on_exit,
        )
        handle.start_watching()
        logger.info(f"Encoder started (pid={handle.pid})")
        return handle

    async def stop(self, handle: EncoderHandle) -> EncoderOutcome:
        """Stop a handle using the configured grace period."""
        return await handle.stop(self.grace_period)
