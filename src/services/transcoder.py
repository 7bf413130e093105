"""ffmpeg transcode pipeline producing AAC in fragmented MP4"""
import asyncio
import contextlib
import logging
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol, Union

from src.config import Settings

from .errors import TranscodeFailed
from .process import (
    DiagnosticTail,
    ProcessOutcome,
    cancel_task,
    kill_process,
    pump_stderr,
    reap_process,
)

_logger = logging.getLogger("aethel-audio")

# key=value lines written by "-progress pipe:2"
_PROGRESS_LINE = re.compile(r"^[a-z0-9_]+=")
_OUT_TIME = re.compile(r"^out_time=(\d+):(\d{2}):(\d{2}(?:\.\d+)?)$")


class ByteSource(Protocol):
    async def read(self, n: int = ...) -> bytes: ...


TranscodeSource = Union[str, Path, ByteSource]


@dataclass(frozen=True)
class TargetSpec:
    codec: str = "aac"
    channels: int = 2
    bitrate_kbps: int = 128
    container: str = "mp4"
    media_type: str = "audio/mp4"
    extension: str = "m4a"


AAC_STEREO_128K = TargetSpec()


@dataclass
class TranscodeProgress:
    seconds: float = 0.0
    percent: Optional[float] = None


class TranscodeHandle:
    """
    Owns one running ffmpeg process.

    The terminal outcome is a future that settles exactly once, so a handle
    can never report failure after success or report twice.
    """

    def __init__(
        self,
        label: str,
        process: asyncio.subprocess.Process,
        source: TranscodeSource,
        target: TargetSpec,
        duration: Optional[float] = None,
        chunk_size: int = 64 * 1024,
    ):
        self.label = label
        self.target = target
        self.duration = duration
        self.progress = TranscodeProgress()
        self.input_started = asyncio.Event()
        self.bytes_in = 0
        self._process = process
        self._chunk_size = chunk_size
        self._killed = False
        self._last_logged_decile = -1
        self._started_at = time.monotonic()
        self._tail = DiagnosticTail()
        self._result: asyncio.Future = asyncio.get_running_loop().create_future()
        self._stderr_task = asyncio.create_task(
            pump_stderr("ffmpeg", process.stderr, self._tail, self._on_stderr_line),
            name=f"ffmpeg-stderr-{label}",
        )
        self._pump_task: Optional[asyncio.Task] = None
        if isinstance(source, (str, Path)):
            self.input_started.set()
        else:
            self._pump_task = asyncio.create_task(self._pump_input(source), name=f"ffmpeg-input-{label}")
        self._monitor_task = asyncio.create_task(self._monitor_exit(), name=f"ffmpeg-exit-{label}")

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode

    @property
    def alive(self) -> bool:
        return self._process.returncode is None

    def _on_stderr_line(self, line: str) -> bool:
        if not _PROGRESS_LINE.match(line):
            return False
        match = _OUT_TIME.match(line)
        if match:
            hours, minutes, seconds = match.groups()
            self.progress.seconds = int(hours) * 3600 + int(minutes) * 60 + float(seconds)
            if self.duration:
                self.progress.percent = min(100.0, self.progress.seconds / self.duration * 100)
                decile = int(self.progress.percent // 10)
                if decile > self._last_logged_decile:
                    self._last_logged_decile = decile
                    _logger.info("Converting label=%s progress=%d%%", self.label, int(self.progress.percent))
        return True

    async def _pump_input(self, source: ByteSource) -> None:
        stdin = self._process.stdin
        assert stdin is not None
        try:
            while True:
                chunk = await source.read(self._chunk_size)
                if not chunk:
                    break
                if not self.input_started.is_set():
                    self.input_started.set()
                    _logger.debug("Transcoder received first input bytes label=%s", self.label)
                self.bytes_in += len(chunk)
                stdin.write(chunk)
                # drain() blocks while ffmpeg's pipe is full, which stalls the producer
                await stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            _logger.debug("Transcoder closed its input early label=%s bytes_in=%d", self.label, self.bytes_in)
        except Exception:
            _logger.exception("Transcoder input pump failed label=%s", self.label)
            kill_process(self._process)
        finally:
            if not stdin.is_closing():
                stdin.close()
            with contextlib.suppress(BrokenPipeError, ConnectionResetError):
                await stdin.wait_closed()

    async def _monitor_exit(self) -> None:
        returncode = await self._process.wait()
        await asyncio.wait({self._stderr_task}, timeout=1.0)
        outcome = ProcessOutcome(returncode=returncode, diagnostics=self._tail.text(), killed=self._killed)
        elapsed_ms = int((time.monotonic() - self._started_at) * 1000)
        if outcome.succeeded:
            _logger.info("Conversion completed label=%s elapsed_ms=%d", self.label, elapsed_ms)
        elif self._killed:
            _logger.debug("Transcoder terminated label=%s rc=%s", self.label, returncode)
        else:
            _logger.warning("Transcoder failed label=%s rc=%s elapsed_ms=%d", self.label, returncode, elapsed_ms)
        self._settle(outcome)

    def _settle(self, outcome: ProcessOutcome) -> None:
        if not self._result.done():
            self._result.set_result(outcome)

    async def read(self, n: int = 64 * 1024) -> bytes:
        assert self._process.stdout is not None
        return await self._process.stdout.read(n)

    async def wait(self) -> ProcessOutcome:
        return await asyncio.shield(self._result)

    def check(self, outcome: ProcessOutcome) -> None:
        """Raise TranscodeFailed unless the outcome is a clean exit."""
        if outcome.succeeded:
            return
        detail = outcome.diagnostics or "no diagnostic output"
        raise TranscodeFailed(f"ffmpeg exited with code {outcome.returncode}: {detail}", diagnostics=outcome.diagnostics)

    def kill(self) -> None:
        """Terminate ffmpeg and stop feeding it. Idempotent."""
        if self._pump_task is not None and not self._pump_task.done():
            self._pump_task.cancel()
        if kill_process(self._process):
            self._killed = True
            _logger.info("Transcoder killed label=%s pid=%s", self.label, self.pid)

    async def close(self) -> None:
        self.kill()
        await reap_process(self._process)
        await cancel_task(self._pump_task)
        await cancel_task(self._stderr_task)
        await cancel_task(self._monitor_task)
        self._settle(ProcessOutcome(returncode=self._process.returncode, diagnostics=self._tail.text(), killed=True))


class TranscodePipeline:
    """Starts ffmpeg for a file path or a live byte stream."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def build_command(self, source: TranscodeSource, target: TargetSpec = AAC_STEREO_128K) -> List[str]:
        from_file = isinstance(source, (str, Path))
        cmd: List[str] = [*self.settings.ffmpeg_command, "-hide_banner", "-loglevel", "error"]
        if from_file:
            cmd += ["-nostdin", "-i", str(source)]
        else:
            cmd += ["-i", "pipe:0"]
        cmd += [
            "-vn",
            "-c:a",
            target.codec,
            "-b:a",
            f"{target.bitrate_kbps}k",
            "-ac",
            str(target.channels),
            # stdout is not seekable, so the moov atom has to come first
            "-movflags",
            "frag_keyframe+empty_moov",
            "-f",
            target.container,
            "-progress",
            "pipe:2",
            "-nostats",
            "pipe:1",
        ]
        return cmd

    async def start(
        self,
        source: TranscodeSource,
        target: TargetSpec = AAC_STEREO_128K,
        duration: Optional[float] = None,
        label: str = "-",
    ) -> TranscodeHandle:
        cmd = self.build_command(source, target)
        from_file = isinstance(source, (str, Path))
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL if from_file else asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            _logger.error("Failed to spawn ffmpeg label=%s cmd=%s error=%s", label, cmd[0], exc)
            raise TranscodeFailed(f"Could not start ffmpeg: {exc}") from exc

        _logger.info("FFmpeg started label=%s pid=%s input=%s", label, process.pid, "file" if from_file else "stream")
        _logger.debug("FFmpeg command label=%s argv=%s", label, cmd)
        return TranscodeHandle(
            label=label,
            process=process,
            source=source,
            target=target,
            duration=duration,
            chunk_size=self.settings.chunk_size,
        )
