"""
Shared fixtures and test utilities.

yt-dlp and ffmpeg are replaced by small Python scripts run through
sys.executable, so the pipeline is exercised with real child processes.
"""

import itertools
import os
import sys
import textwrap
from collections.abc import AsyncGenerator, Callable, Generator
from pathlib import Path
from typing import List, Optional

import pytest
from httpx import ASGITransport, AsyncClient

os.environ.update({
    "LOG_LEVEL": "DEBUG",
    "VERIFY_TOOLS": "false",
})

from src.app.application import create_app
from src.config import Settings
from src.state.models import FormatDescriptor, MediaCatalog

from .fakes import FFMPEG_PASSTHROUGH, YTDLP_OK, StubResolver


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Provide the directory sessions write their temp files to."""
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def make_tool(tmp_path: Path) -> Callable[[str, str], List[str]]:
    """Write a fake tool script and return the command that runs it."""
    tools = tmp_path / "tools"
    tools.mkdir()
    counter = itertools.count()

    def _make(name: str, source: str) -> List[str]:
        script = tools / f"{name}_{next(counter)}.py"
        script.write_text(textwrap.dedent(source))
        return [sys.executable, str(script)]

    return _make


@pytest.fixture
def make_settings(make_tool, temp_dir: Path) -> Callable[..., Settings]:
    """Build Settings wired to fake tools; keyword overrides win."""

    def _make(ytdlp: str = YTDLP_OK, ffmpeg: str = FFMPEG_PASSTHROUGH, **overrides) -> Settings:
        values = {
            "ytdlp_command": make_tool("yt_dlp_fake", ytdlp),
            "ffmpeg_command": make_tool("ffmpeg_fake", ffmpeg),
            "temp_dir": str(temp_dir),
            "retrieval_timeout_seconds": 20.0,
            "verify_tools": False,
            "chunk_size": 4096,
            "log_level": "DEBUG",
        }
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def settings(make_settings) -> Settings:
    return make_settings()


@pytest.fixture
def abc123_catalog() -> MediaCatalog:
    """One audio-only encoding of 4,000,000 bytes and one muxed encoding of 20,000,000."""
    return MediaCatalog(
        id="abc123",
        title="Sample Track",
        duration_seconds=250,
        formats=(
            FormatDescriptor(
                format_id="251",
                has_audio=True,
                has_video=False,
                bitrate_kbps=128,
                file_size_bytes=4_000_000,
                codec_container="webm",
                quality_label="medium",
            ),
            FormatDescriptor(
                format_id="18",
                has_audio=True,
                has_video=True,
                file_size_bytes=20_000_000,
                codec_container="mp4",
                quality_label="360p",
            ),
        ),
    )


@pytest.fixture
def stub_resolver(abc123_catalog: MediaCatalog) -> StubResolver:
    return StubResolver(catalog=abc123_catalog)


@pytest.fixture
def make_app(make_settings, stub_resolver) -> Generator[Callable]:
    """Create FastAPI apps backed by fake tools; executors are shut down afterwards."""
    apps = []

    def _make(settings: Optional[Settings] = None, resolver=None):
        app = create_app(settings or make_settings(), resolver=resolver or stub_resolver)
        apps.append(app)
        return app

    yield _make

    for app in apps:
        app.state.metadata.shutdown()


@pytest.fixture
def app(make_app):
    return make_app()


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient]:
    """Provide an async HTTP client for testing the FastAPI app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def sample_video_info() -> dict:
    """Provide a sanitized yt-dlp info dict."""
    return {
        "id": "dQw4w9WgXcQ",
        "title": "Sample Video",
        "uploader": "Test Channel",
        "duration": 213,
        "webpage_url": "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
        "formats": [
            {
                "format_id": "137",
                "ext": "mp4",
                "acodec": "none",
                "vcodec": "avc1.640028",
                "filesize": 50_000_000,
                "format_note": "1080p",
            },
            {
                "format_id": "140",
                "ext": "m4a",
                "acodec": "mp4a.40.2",
                "vcodec": "none",
                "abr": 129.5,
                "filesize": 3_400_000,
                "format_note": "medium",
            },
            {
                "format_id": "251",
                "ext": "webm",
                "acodec": "opus",
                "vcodec": "none",
                "abr": 135.2,
                "filesize_approx": 3_600_000,
                "format_note": "medium",
            },
            {
                "format_id": "18",
                "ext": "mp4",
                "acodec": "mp4a.40.2",
                "vcodec": "avc1.42001E",
                "filesize": 12_000_000,
                "format_note": "360p",
            },
        ],
    }
