"""Helpers shared by the supervised child processes"""
import asyncio
import contextlib
import logging
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Optional

_logger = logging.getLogger("aethel-audio")

DIAGNOSTIC_TAIL_LINES = 40
REAP_TIMEOUT_SECONDS = 2.0
STDERR_READ_SIZE = 16 * 1024
MAX_STDERR_LINE_BYTES = 4 * 1024


@dataclass(frozen=True)
class ProcessOutcome:
    """Terminal result of one child process."""

    returncode: Optional[int]
    diagnostics: str = ""
    timed_out: bool = False
    overflowed: bool = False
    killed: bool = False

    @property
    def succeeded(self) -> bool:
        return self.returncode == 0 and not (self.timed_out or self.overflowed or self.killed)


class DiagnosticTail:
    """Keeps the last lines a tool wrote to stderr."""

    def __init__(self, max_lines: int = DIAGNOSTIC_TAIL_LINES):
        self._lines: Deque[str] = deque(maxlen=max_lines)

    def append(self, line: str) -> None:
        self._lines.append(line)

    def text(self) -> str:
        return "\n".join(self._lines)


async def pump_stderr(
    name: str,
    stream: Optional[asyncio.StreamReader],
    tail: DiagnosticTail,
    on_line: Optional[Callable[[str], bool]] = None,
) -> None:
    """
    Drain a child's stderr line by line.

    ``on_line`` may consume a line (returning True) so it is kept out of the
    diagnostic tail, e.g. machine-readable progress output. The pipe is read in
    fixed-size chunks; a line longer than ``MAX_STDERR_LINE_BYTES`` is
    truncated and the rest of it discarded.
    """
    if stream is None:
        return

    def emit(raw: bytes) -> None:
        if len(raw) > MAX_STDERR_LINE_BYTES:
            raw = raw[:MAX_STDERR_LINE_BYTES] + b" [truncated]"
        text = raw.decode(errors="ignore").rstrip()
        if not text:
            return
        if on_line is not None and on_line(text):
            return
        tail.append(text)
        _logger.debug("[%s] %s", name, text)

    pending = bytearray()
    # set while discarding the rest of a line that was already truncated
    skipping = False
    while True:
        chunk = await stream.read(STDERR_READ_SIZE)
        if not chunk:
            break
        pending += chunk
        while True:
            newline = pending.find(b"\n")
            if newline < 0:
                break
            line = bytes(pending[:newline])
            del pending[: newline + 1]
            if skipping:
                skipping = False
                continue
            emit(line)
        if len(pending) > MAX_STDERR_LINE_BYTES:
            if not skipping:
                emit(bytes(pending))
                skipping = True
            pending.clear()
    if pending and not skipping:
        emit(bytes(pending))


def kill_process(process: Optional[asyncio.subprocess.Process]) -> bool:
    """Send SIGKILL if the process is still running. Returns True if a signal was sent."""
    if process is None or process.returncode is not None:
        return False
    with contextlib.suppress(ProcessLookupError):
        process.kill()
        return True
    return False


async def reap_process(process: Optional[asyncio.subprocess.Process], timeout: float = REAP_TIMEOUT_SECONDS) -> None:
    if process is None:
        return
    with contextlib.suppress(asyncio.TimeoutError):
        await asyncio.wait_for(process.wait(), timeout=timeout)


async def cancel_task(task: Optional[asyncio.Task], timeout: float = REAP_TIMEOUT_SECONDS) -> None:
    """Cancel a helper task and wait for it without re-raising its result."""
    if task is None:
        return
    if not task.done():
        task.cancel()
        await asyncio.wait({task}, timeout=timeout)
    if task.done() and not task.cancelled() and task.exception() is not None:
        _logger.error("Helper task failed name=%s error=%r", task.get_name(), task.exception())
