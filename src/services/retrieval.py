"""Supervision of the yt-dlp retrieval process"""
import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional

from src.config import Settings
from src.cookies import cookie_args

from .errors import RateLimited, RetrievalFailed, is_rate_limited
from .process import (
    DiagnosticTail,
    ProcessOutcome,
    cancel_task,
    kill_process,
    pump_stderr,
    reap_process,
)

_logger = logging.getLogger("aethel-audio")


class OutputMode(str, Enum):
    stream = "stream"
    file = "file"


@dataclass(frozen=True)
class RetrievalOptions:
    """How a retrieval should deliver its bytes."""

    output_path: Optional[Path] = None
    cookie_file: Optional[str] = None

    @classmethod
    def stream(cls, cookie_file: Optional[str] = None) -> "RetrievalOptions":
        return cls(output_path=None, cookie_file=cookie_file)

    @classmethod
    def to_file(cls, path: Path, cookie_file: Optional[str] = None) -> "RetrievalOptions":
        return cls(output_path=Path(path), cookie_file=cookie_file)

    @property
    def mode(self) -> OutputMode:
        return OutputMode.stream if self.output_path is None else OutputMode.file


class RetrievalHandle:
    """
    Owns one running yt-dlp process.

    In stream mode the raw bytes are read through ``read()``, which also
    enforces the output cap. ``wait()`` resolves to a single ProcessOutcome
    and ``check()`` turns a failed outcome into a typed error.
    """

    def __init__(
        self,
        media_id: str,
        process: asyncio.subprocess.Process,
        options: RetrievalOptions,
        timeout: float,
        max_output_bytes: int,
        retry_after: int = 60,
    ):
        self.media_id = media_id
        self.options = options
        self.timeout = timeout
        self.max_output_bytes = max_output_bytes
        self.retry_after = retry_after
        self.bytes_read = 0
        self.timed_out = False
        self.overflowed = False
        self.at_eof = False
        self._process = process
        self._killed = False
        self._outcome: Optional[ProcessOutcome] = None
        self._started_at = time.monotonic()
        self._tail = DiagnosticTail()
        self._stderr_task = asyncio.create_task(
            pump_stderr("yt-dlp", process.stderr, self._tail),
            name=f"yt-dlp-stderr-{media_id}",
        )
        self._watchdog = asyncio.get_running_loop().call_later(timeout, self._on_timeout)

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode

    @property
    def alive(self) -> bool:
        return self._process.returncode is None

    @property
    def diagnostics(self) -> str:
        return self._tail.text()

    def _on_timeout(self) -> None:
        if not self.alive:
            return
        self.timed_out = True
        _logger.warning("Retrieval timed out media_id=%s timeout=%.1fs", self.media_id, self.timeout)
        kill_process(self._process)

    async def read(self, n: int = 64 * 1024) -> bytes:
        """Read raw source bytes; returns b"" at end of stream or once the cap is hit."""
        if self.options.mode is not OutputMode.stream or self._process.stdout is None:
            raise RuntimeError("read() is only available for stream retrievals")
        if self.overflowed:
            return b""
        chunk = await self._process.stdout.read(n)
        if not chunk:
            self.at_eof = True
            return chunk
        self.bytes_read += len(chunk)
        if self.bytes_read > self.max_output_bytes:
            self.overflowed = True
            _logger.warning(
                "Retrieval exceeded output cap media_id=%s bytes=%d cap=%d",
                self.media_id,
                self.bytes_read,
                self.max_output_bytes,
            )
            kill_process(self._process)
            return b""
        return chunk

    async def wait(self) -> ProcessOutcome:
        if self._outcome is not None:
            return self._outcome
        returncode = await self._process.wait()
        self._watchdog.cancel()
        await asyncio.wait({self._stderr_task}, timeout=1.0)
        if self._outcome is None:
            self._outcome = ProcessOutcome(
                returncode=returncode,
                diagnostics=self._tail.text(),
                timed_out=self.timed_out,
                overflowed=self.overflowed,
                killed=self._killed,
            )
            _logger.info(
                "Retrieval finished media_id=%s rc=%s bytes=%d elapsed_ms=%d",
                self.media_id,
                returncode,
                self.bytes_read,
                int((time.monotonic() - self._started_at) * 1000),
            )
        return self._outcome

    def check(self, outcome: ProcessOutcome) -> None:
        """
        Raise if the outcome does not describe a usable source.

        Raises:
            RateLimited: when the tool output signals upstream throttling
            RetrievalFailed: on timeout, overflow, nonzero exit or empty output
        """
        diagnostics = outcome.diagnostics
        if outcome.timed_out:
            raise RetrievalFailed(f"Download timed out after {self.timeout:.0f}s", diagnostics=diagnostics)
        if outcome.overflowed:
            raise RetrievalFailed(
                f"Download exceeded the {self.max_output_bytes} byte limit", diagnostics=diagnostics
            )
        if outcome.returncode != 0:
            if is_rate_limited(diagnostics):
                raise RateLimited(
                    diagnostics or "Upstream rate limit", retry_after=self.retry_after, diagnostics=diagnostics
                )
            detail = diagnostics or "no diagnostic output"
            raise RetrievalFailed(f"yt-dlp exited with code {outcome.returncode}: {detail}", diagnostics=diagnostics)

        if self.options.mode is OutputMode.file:
            path = self.options.output_path
            if path is None or not path.exists():
                raise RetrievalFailed("Download failed - temp file not created", diagnostics=diagnostics)
            size = path.stat().st_size
            if size == 0:
                raise RetrievalFailed("Download failed - temp file is empty", diagnostics=diagnostics)
            if size > self.max_output_bytes:
                raise RetrievalFailed(
                    f"Download exceeded the {self.max_output_bytes} byte limit", diagnostics=diagnostics
                )
        elif self.bytes_read == 0:
            raise RetrievalFailed("Download failed - no data received", diagnostics=diagnostics)

    def kill(self) -> None:
        """Terminate the process. Safe to call repeatedly and after exit."""
        self._watchdog.cancel()
        if kill_process(self._process):
            self._killed = True
            _logger.info("Retrieval killed media_id=%s pid=%s", self.media_id, self.pid)

    async def close(self) -> None:
        self.kill()
        await reap_process(self._process)
        await cancel_task(self._stderr_task)


class RetrievalSupervisor:
    """Spawns yt-dlp processes with bounded runtime and output."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def build_command(self, media_id: str, options: RetrievalOptions) -> List[str]:
        cmd: List[str] = [
            *self.settings.ytdlp_command,
            "-f",
            "bestaudio",
            "--no-playlist",
            "--no-warnings",
            "--quiet",
            "--max-filesize",
            str(self.settings.max_output_bytes),
        ]
        cmd += cookie_args(options.cookie_file, "[Retrieval]")
        if options.mode is OutputMode.file:
            # yt-dlp treats "%" in -o as a template marker
            cmd += ["--no-part", "-o", str(options.output_path).replace("%", "%%")]
        else:
            cmd += ["-o", "-"]
        cmd += ["--", self.settings.media_url(media_id)]
        return cmd

    async def start(self, media_id: str, options: RetrievalOptions) -> RetrievalHandle:
        cmd = self.build_command(media_id, options)
        stdout = asyncio.subprocess.PIPE if options.mode is OutputMode.stream else asyncio.subprocess.DEVNULL
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=stdout,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            _logger.error("Failed to spawn yt-dlp media_id=%s cmd=%s error=%s", media_id, cmd[0], exc)
            raise RetrievalFailed(f"Could not start yt-dlp: {exc}") from exc

        _logger.info(
            "Retrieval started media_id=%s pid=%s mode=%s",
            media_id,
            process.pid,
            options.mode.value,
        )
        _logger.debug("Retrieval command media_id=%s argv=%s", media_id, cmd)
        return RetrievalHandle(
            media_id=media_id,
            process=process,
            options=options,
            timeout=self.settings.retrieval_timeout_seconds,
            max_output_bytes=self.settings.max_output_bytes,
            retry_after=self.settings.rate_limit_retry_after_seconds,
        )
