"""yt-dlp process supervision"""
import pytest

from src.services.errors import RateLimited, RetrievalFailed
from src.services.retrieval import OutputMode, RetrievalOptions, RetrievalSupervisor

from .fakes import (
    SOURCE_BYTES,
    YTDLP_HANGS,
    YTDLP_RATE_LIMITED,
    YTDLP_SILENT,
    YTDLP_UNAVAILABLE,
)


async def read_all(handle) -> bytes:
    data = b""
    while True:
        chunk = await handle.read(4096)
        if not chunk:
            return data
        data += chunk


class TestBuildCommand:
    def test_stream_mode(self, settings):
        cmd = RetrievalSupervisor(settings).build_command("abc123", RetrievalOptions.stream())
        assert cmd[: len(settings.ytdlp_command)] == settings.ytdlp_command
        assert cmd[-2:] == ["--", "https://www.youtube.com/watch?v=abc123"]
        assert cmd[cmd.index("-f") + 1] == "bestaudio"
        assert cmd[cmd.index("-o") + 1] == "-"
        assert cmd[cmd.index("--max-filesize") + 1] == str(settings.max_output_bytes)
        assert "--cookies" not in cmd

    def test_file_mode_escapes_template_markers(self, settings, tmp_path):
        path = tmp_path / "temp_100%_x.audio"
        cmd = RetrievalSupervisor(settings).build_command("abc123", RetrievalOptions.to_file(path))
        assert "--no-part" in cmd
        assert cmd[cmd.index("-o") + 1] == str(path).replace("%", "%%")

    def test_cookie_file_is_passed_through(self, settings, tmp_path):
        cookies = tmp_path / "cookies.txt"
        cookies.write_text("# Netscape HTTP Cookie File\n")
        cmd = RetrievalSupervisor(settings).build_command("abc123", RetrievalOptions.stream(str(cookies)))
        assert cmd[cmd.index("--cookies") + 1] == str(cookies)

    def test_missing_cookie_file_is_skipped(self, settings, tmp_path):
        options = RetrievalOptions.stream(str(tmp_path / "missing.txt"))
        assert "--cookies" not in RetrievalSupervisor(settings).build_command("abc123", options)


def test_options_mode(tmp_path):
    assert RetrievalOptions.stream().mode is OutputMode.stream
    assert RetrievalOptions.to_file(tmp_path / "a").mode is OutputMode.file


async def test_stream_retrieval_succeeds(settings):
    handle = await RetrievalSupervisor(settings).start("abc123", RetrievalOptions.stream())
    try:
        data = await read_all(handle)
        outcome = await handle.wait()
    finally:
        await handle.close()

    assert data == SOURCE_BYTES
    assert outcome.returncode == 0
    assert outcome.succeeded
    handle.check(outcome)
    assert handle.bytes_read == len(SOURCE_BYTES)


async def test_file_retrieval_writes_the_file(settings, temp_dir):
    path = temp_dir / "temp_abc123.audio"
    handle = await RetrievalSupervisor(settings).start("abc123", RetrievalOptions.to_file(path))
    try:
        outcome = await handle.wait()
        handle.check(outcome)
    finally:
        await handle.close()

    assert path.read_bytes() == SOURCE_BYTES


async def test_nonzero_exit_carries_diagnostics(make_settings, temp_dir):
    settings = make_settings(ytdlp=YTDLP_UNAVAILABLE)
    handle = await RetrievalSupervisor(settings).start(
        "abc123", RetrievalOptions.to_file(temp_dir / "temp_abc123.audio")
    )
    try:
        outcome = await handle.wait()
    finally:
        await handle.close()

    assert outcome.returncode == 1
    with pytest.raises(RetrievalFailed) as excinfo:
        handle.check(outcome)
    assert "Video unavailable" in excinfo.value.message
    assert "Video unavailable" in excinfo.value.diagnostics


async def test_rate_limit_is_classified(make_settings):
    settings = make_settings(ytdlp=YTDLP_RATE_LIMITED, rate_limit_retry_after_seconds=90)
    handle = await RetrievalSupervisor(settings).start("abc123", RetrievalOptions.stream())
    try:
        assert await read_all(handle) == b""
        outcome = await handle.wait()
    finally:
        await handle.close()

    with pytest.raises(RateLimited) as excinfo:
        handle.check(outcome)
    assert excinfo.value.status_code == 429
    assert excinfo.value.retry_after == 90
    assert excinfo.value.headers() == {"Retry-After": "90"}


async def test_clean_exit_without_data_is_a_failure(make_settings, temp_dir):
    settings = make_settings(ytdlp=YTDLP_SILENT)
    stream = await RetrievalSupervisor(settings).start("abc123", RetrievalOptions.stream())
    to_file = await RetrievalSupervisor(settings).start(
        "abc123", RetrievalOptions.to_file(temp_dir / "temp_abc123.audio")
    )
    try:
        await read_all(stream)
        stream_outcome = await stream.wait()
        file_outcome = await to_file.wait()
    finally:
        await stream.close()
        await to_file.close()

    with pytest.raises(RetrievalFailed, match="no data received"):
        stream.check(stream_outcome)
    with pytest.raises(RetrievalFailed, match="not created"):
        to_file.check(file_outcome)


async def test_timeout_kills_the_process(make_settings, temp_dir):
    settings = make_settings(ytdlp=YTDLP_HANGS, retrieval_timeout_seconds=0.5)
    handle = await RetrievalSupervisor(settings).start(
        "abc123", RetrievalOptions.to_file(temp_dir / "temp_abc123.audio")
    )
    try:
        outcome = await handle.wait()
    finally:
        await handle.close()

    assert outcome.timed_out
    assert not handle.alive
    with pytest.raises(RetrievalFailed, match="timed out"):
        handle.check(outcome)


async def test_output_cap_kills_the_process(make_settings):
    settings = make_settings(max_output_bytes=1_000)
    handle = await RetrievalSupervisor(settings).start("abc123", RetrievalOptions.stream())
    try:
        data = await read_all(handle)
        outcome = await handle.wait()
    finally:
        await handle.close()

    assert len(data) <= 1_000
    assert outcome.overflowed
    with pytest.raises(RetrievalFailed, match="limit"):
        handle.check(outcome)


async def test_kill_is_idempotent(make_settings, temp_dir):
    settings = make_settings(ytdlp=YTDLP_HANGS)
    handle = await RetrievalSupervisor(settings).start(
        "abc123", RetrievalOptions.to_file(temp_dir / "temp_abc123.audio")
    )
    handle.kill()
    handle.kill()
    outcome = await handle.wait()
    handle.kill()
    await handle.close()
    await handle.close()

    assert outcome.killed
    assert not outcome.succeeded
    assert handle.returncode is not None
    assert await handle.wait() is outcome


async def test_missing_executable_is_a_retrieval_failure(make_settings, tmp_path):
    settings = make_settings(ytdlp_command=[str(tmp_path / "no-such-yt-dlp")])
    with pytest.raises(RetrievalFailed, match="Could not start yt-dlp"):
        await RetrievalSupervisor(settings).start("abc123", RetrievalOptions.stream())

