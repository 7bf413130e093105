"""Delivery sessions tying retrieval, transcoding and the HTTP body together"""
import asyncio
import logging
import time
import uuid
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, Callable, Dict, List, Optional

from src.config import Settings

from .errors import AudioServiceError, ClientAborted, TranscodeFailed
from .metadata import MetadataService
from .process import ProcessOutcome
from .retrieval import RetrievalHandle, RetrievalOptions, RetrievalSupervisor
from .transcoder import AAC_STEREO_128K, TargetSpec, TranscodeHandle, TranscodePipeline

_logger = logging.getLogger("aethel-audio")

# How long to wait for yt-dlp to exit when the transcoder stopped reading before its EOF.
RETRIEVAL_EXIT_GRACE_SECONDS = 1.0


class SessionState(str, Enum):
    created = "created"
    retrieving = "retrieving"
    transcoding = "transcoding"
    streaming = "streaming"
    completed = "completed"
    failed = "failed"
    aborted = "aborted"


TERMINAL_STATES = frozenset({SessionState.completed, SessionState.failed, SessionState.aborted})


class DeliverySession:
    """
    One in-flight download.

    The session exclusively owns its retrieval handle, its transcode handle
    and its temp file. ``close()`` is the single teardown path: it kills
    whatever is still running and deletes the temp file, once, whichever
    terminal state was reached.
    """

    def __init__(
        self,
        media_id: str,
        settings: Settings,
        supervisor: RetrievalSupervisor,
        pipeline: TranscodePipeline,
        target: TargetSpec = AAC_STEREO_128K,
        duration: Optional[float] = None,
        on_close: Optional[Callable[["DeliverySession"], None]] = None,
    ):
        self.id = uuid.uuid4().hex[:12]
        self.media_id = media_id
        self.settings = settings
        self.supervisor = supervisor
        self.pipeline = pipeline
        self.target = target
        self.duration = duration
        self.state = SessionState.created
        self.retrieval: Optional[RetrievalHandle] = None
        self.transcode: Optional[TranscodeHandle] = None
        self.temp_path: Optional[Path] = None
        self.error: Optional[BaseException] = None
        self.bytes_sent = 0
        self._first_chunk = b""
        self._closed = False
        self._on_close = on_close
        self._started_at = time.monotonic()

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def filename(self) -> str:
        return f"{self.media_id}.{self.target.extension}"

    def _transition(self, new_state: SessionState) -> None:
        if self.terminal:
            return
        _logger.debug(
            "Session state session_id=%s media_id=%s %s->%s",
            self.id,
            self.media_id,
            self.state.value,
            new_state.value,
        )
        self.state = new_state

    # ----------------------------
    # Start-up (before headers)
    # ----------------------------

    async def open(self) -> None:
        """
        Start the pipeline and wait for the first transcoded bytes.

        Any failure here happens before response headers exist, so it is
        raised as an AudioServiceError for the HTTP layer to render.
        """
        _logger.info(
            "Session open session_id=%s media_id=%s mode=%s",
            self.id,
            self.media_id,
            self.settings.delivery_mode,
        )
        try:
            if self.settings.stream_mode:
                await self._start_from_stream()
            else:
                await self._start_from_file()
            self._first_chunk = await self._read_first_chunk()
            self._transition(SessionState.streaming)
        except AudioServiceError as exc:
            self.fail(exc)
            await self.close()
            raise
        except asyncio.CancelledError:
            self.abort()
            await self.close()
            raise
        except Exception as exc:
            _logger.exception("Session failed unexpectedly session_id=%s media_id=%s", self.id, self.media_id)
            error = AudioServiceError(str(exc), error="Failed to download audio")
            self.fail(error)
            await self.close()
            raise error from exc

    async def _start_from_stream(self) -> None:
        self._transition(SessionState.retrieving)
        self.retrieval = await self.supervisor.start(
            self.media_id,
            RetrievalOptions.stream(self.settings.cookies_file),
        )
        self.transcode = await self.pipeline.start(
            self.retrieval,
            self.target,
            duration=self.duration,
            label=f"{self.media_id}/{self.id}",
        )
        if await self._first_input_handed_over():
            self._transition(SessionState.transcoding)

    async def _first_input_handed_over(self) -> bool:
        """Wait until the transcoder receives source bytes or exits, whichever comes first."""
        assert self.transcode is not None
        started = asyncio.ensure_future(self.transcode.input_started.wait())
        finished = asyncio.ensure_future(self.transcode.wait())
        try:
            await asyncio.wait({started, finished}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            started.cancel()
            finished.cancel()
        return self.transcode.input_started.is_set()

    async def _start_from_file(self) -> None:
        self._transition(SessionState.retrieving)
        temp_dir = Path(self.settings.temp_dir)
        temp_dir.mkdir(parents=True, exist_ok=True)
        self.temp_path = temp_dir / f"temp_{self.media_id}_{self.id}.audio"
        self.retrieval = await self.supervisor.start(
            self.media_id,
            RetrievalOptions.to_file(self.temp_path, self.settings.cookies_file),
        )
        outcome = await self.retrieval.wait()
        self.retrieval.check(outcome)
        _logger.info("Downloaded to temp file session_id=%s path=%s", self.id, self.temp_path)

        self._transition(SessionState.transcoding)
        self.transcode = await self.pipeline.start(
            self.temp_path,
            self.target,
            duration=self.duration,
            label=f"{self.media_id}/{self.id}",
        )

    async def _read_first_chunk(self) -> bytes:
        assert self.transcode is not None
        chunk = await self.transcode.read(self.settings.chunk_size)
        if chunk:
            return chunk
        await self._raise_for_outcomes()
        raise TranscodeFailed("Conversion produced no output")

    async def _retrieval_outcome(self) -> Optional[ProcessOutcome]:
        """
        The retrieval outcome, once yt-dlp has exited.

        After its output was read to the end yt-dlp is only exiting, so the
        wait is bounded by its own watchdog. Otherwise the transcoder stopped
        reading early and yt-dlp gets the grace period before it is ignored.
        """
        if self.retrieval is None:
            return None
        if self.retrieval.at_eof:
            return await self.retrieval.wait()
        waiter = asyncio.ensure_future(self.retrieval.wait())
        done, _ = await asyncio.wait({waiter}, timeout=RETRIEVAL_EXIT_GRACE_SECONDS)
        if not done:
            waiter.cancel()
            return None
        return waiter.result()

    async def _raise_for_outcomes(self) -> None:
        """Raise the root-cause error, if any, once the transcoder output has ended."""
        assert self.transcode is not None
        transcode_outcome = await self.transcode.wait()
        retrieval_outcome = await self._retrieval_outcome()
        # a failed source explains a failed conversion, so it is reported first
        if retrieval_outcome is not None and self.retrieval is not None:
            self.retrieval.check(retrieval_outcome)
        self.transcode.check(transcode_outcome)

    # ----------------------------
    # Streaming (after headers)
    # ----------------------------

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        assert self.transcode is not None
        try:
            if self._first_chunk:
                chunk, self._first_chunk = self._first_chunk, b""
                self.bytes_sent += len(chunk)
                yield chunk
            while True:
                chunk = await self.transcode.read(self.settings.chunk_size)
                if self.state is SessionState.aborted:
                    # the client is gone; nothing more may be written
                    return
                if not chunk:
                    break
                self.bytes_sent += len(chunk)
                yield chunk
            await self._raise_for_outcomes()
            self._transition(SessionState.completed)
            _logger.info(
                "Delivery completed session_id=%s media_id=%s bytes=%d elapsed_ms=%d",
                self.id,
                self.media_id,
                self.bytes_sent,
                int((time.monotonic() - self._started_at) * 1000),
            )
        except asyncio.CancelledError:
            self.abort()
            raise
        except AudioServiceError as exc:
            _logger.error(
                "Delivery failed after headers were sent session_id=%s media_id=%s bytes=%d error=%s",
                self.id,
                self.media_id,
                self.bytes_sent,
                exc.message,
            )
            self.fail(exc)
            raise
        except Exception as exc:
            _logger.exception("Delivery stream failed session_id=%s media_id=%s", self.id, self.media_id)
            self.fail(exc)
            raise

    # ----------------------------
    # Terminal transitions
    # ----------------------------

    def fail(self, error: BaseException) -> None:
        if self.terminal:
            return
        self.error = error
        self._transition(SessionState.failed)
        _logger.warning("Session failed session_id=%s media_id=%s error=%s", self.id, self.media_id, error)

    def abort(self) -> None:
        if self.terminal:
            return
        self.error = ClientAborted(f"Client disconnected from session {self.id}")
        self._transition(SessionState.aborted)
        _logger.info("Client disconnected session_id=%s media_id=%s bytes=%d", self.id, self.media_id, self.bytes_sent)

    async def close(self) -> None:
        """Release every resource the session owns. Runs once; later calls are no-ops."""
        if self._closed:
            return
        self._closed = True
        if not self.terminal:
            # left without completing or failing, so the client went away
            self.abort()

        handles = [h for h in (self.transcode, self.retrieval) if h is not None]
        for handle in handles:
            handle.kill()
        self._remove_temp_files()
        if self._on_close is not None:
            self._on_close(self)

        for handle in handles:
            await handle.close()
        # killed tools may still have flushed a file before exiting
        self._remove_temp_files()
        _logger.info(
            "Session closed session_id=%s media_id=%s state=%s bytes=%d",
            self.id,
            self.media_id,
            self.state.value,
            self.bytes_sent,
        )

    def _remove_temp_files(self) -> None:
        if self.temp_path is None:
            return
        for path in self.temp_path.parent.glob(f"{self.temp_path.name}*"):
            try:
                path.unlink(missing_ok=True)
                _logger.info("Temp file deleted session_id=%s path=%s", self.id, path)
            except OSError:
                _logger.exception("Failed to delete temp file session_id=%s path=%s", self.id, path)


class DeliveryService:
    """Creates delivery sessions and tracks the ones still open."""

    def __init__(
        self,
        settings: Settings,
        supervisor: RetrievalSupervisor,
        pipeline: TranscodePipeline,
        metadata: Optional[MetadataService] = None,
    ):
        self.settings = settings
        self.supervisor = supervisor
        self.pipeline = pipeline
        self.metadata = metadata
        self._sessions: Dict[str, DeliverySession] = {}

    @property
    def active(self) -> List[DeliverySession]:
        return list(self._sessions.values())

    def create(self, media_id: str) -> DeliverySession:
        duration = self.metadata.cached_duration(media_id) if self.metadata is not None else None
        session = DeliverySession(
            media_id=media_id,
            settings=self.settings,
            supervisor=self.supervisor,
            pipeline=self.pipeline,
            duration=duration,
            on_close=self._forget,
        )
        self._sessions[session.id] = session
        return session

    def _forget(self, session: DeliverySession) -> None:
        self._sessions.pop(session.id, None)

    async def shutdown(self) -> None:
        sessions = self.active
        if sessions:
            _logger.info("Closing open sessions count=%d", len(sessions))
        for session in sessions:
            await session.close()
