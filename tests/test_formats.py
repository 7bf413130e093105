"""Format selection and size estimation"""

import pytest

from src.routes.schemas import AudioInfoResponse
from src.services.errors import NotFound
from src.services.formats import (
    build_audio_info,
    catalog_from_info,
    descriptor_from_format,
    estimate_transcoded_size,
    select_best_audio,
    select_reference_video,
)
from src.state.models import FormatDescriptor, MediaCatalog


def audio(format_id: str, size=None, approx=None, **kwargs) -> FormatDescriptor:
    return FormatDescriptor(
        format_id=format_id,
        has_audio=True,
        has_video=False,
        file_size_bytes=size,
        approx_size_bytes=approx,
        **kwargs,
    )


def muxed(format_id: str, size=None) -> FormatDescriptor:
    return FormatDescriptor(format_id=format_id, has_audio=True, has_video=True, file_size_bytes=size)


def video_only(format_id: str, size=None) -> FormatDescriptor:
    return FormatDescriptor(format_id=format_id, has_audio=False, has_video=True, file_size_bytes=size)


class TestSelectBestAudio:
    def test_picks_largest_audio_only(self):
        formats = [audio("a", 1_000), muxed("m", 50_000), audio("b", 3_000), audio("c", 2_000)]
        assert select_best_audio(formats).format_id == "b"

    def test_ignores_muxed_and_video_only(self):
        assert select_best_audio([muxed("m", 10), video_only("v", 20)]) is None

    def test_empty_catalog(self):
        assert select_best_audio([]) is None

    def test_tie_keeps_first_seen(self):
        formats = [audio("first", 500), audio("second", 500)]
        assert select_best_audio(formats).format_id == "first"

    def test_exact_size_preferred_over_approximate(self):
        descriptor = audio("a", size=1_000, approx=9_000)
        assert descriptor.reported_size == 1_000
        formats = [descriptor, audio("b", approx=2_000)]
        assert select_best_audio(formats).format_id == "b"

    def test_unknown_sizes_still_select(self):
        assert select_best_audio([audio("x"), audio("y")]).format_id == "x"


def test_reference_video_includes_video_only_and_muxed():
    formats = [audio("a", 100), muxed("m", 5_000), video_only("v", 9_000)]
    assert select_reference_video(formats).format_id == "v"


class TestEstimateTranscodedSize:
    def test_three_quarters_of_source(self):
        assert estimate_transcoded_size(1_000_000) == 750_000

    def test_floors(self):
        assert estimate_transcoded_size(1_001) == 750

    def test_tiny_source_never_zero(self):
        assert estimate_transcoded_size(1) == 1

    def test_unknown_size_uses_bitrate_and_duration(self):
        assert estimate_transcoded_size(0, 10) == 160_000
        assert estimate_transcoded_size(None, 2.5) == 40_000

    def test_nothing_known(self):
        assert estimate_transcoded_size(0) == 0


def test_abc123_scenario(abc123_catalog):
    info = build_audio_info(abc123_catalog)
    body = AudioInfoResponse.from_info(info).model_dump(by_alias=True)

    assert body["bitrate"] == 128
    assert body["audioSize"] == 3_000_000
    assert body["videoSize"] == 20_000_000
    assert body["format"] == "m4a"
    assert body["videoId"] == "abc123"
    assert body["estimatedAudioSizeBytes"] == 3_000_000
    assert body["quality"] == "medium"


def test_video_size_falls_back_to_multiple_of_audio():
    catalog = MediaCatalog(id="x", duration_seconds=60, formats=(audio("a", 400_000),))
    info = build_audio_info(catalog)
    assert info.estimated_audio_size_bytes == 300_000
    assert info.estimated_video_size_bytes == 1_200_000


def test_defaults_for_missing_bitrate_and_quality():
    info = build_audio_info(MediaCatalog(id="x", formats=(audio("a", 1_000),)))
    assert info.bitrate_kbps == 128
    assert info.quality_label == "medium"
    assert info.container_format == "m4a"


def test_no_audio_only_format_is_not_found():
    catalog = MediaCatalog(id="x", formats=(muxed("m", 1_000),))
    with pytest.raises(NotFound) as excinfo:
        build_audio_info(catalog)
    assert excinfo.value.status_code == 404
    assert excinfo.value.error == "No audio formats found"


def test_descriptor_from_yt_dlp_format():
    descriptor = descriptor_from_format(
        {"format_id": "251", "ext": "webm", "acodec": "opus", "vcodec": "none", "abr": "135.2", "filesize_approx": 3_600_000.0}
    )
    assert descriptor.is_audio_only
    assert descriptor.bitrate_kbps == pytest.approx(135.2)
    assert descriptor.file_size_bytes is None
    assert descriptor.reported_size == 3_600_000
    assert descriptor.quality_label is None


def test_catalog_from_info(sample_video_info):
    catalog = catalog_from_info(sample_video_info, "dQw4w9WgXcQ")
    assert catalog.duration_seconds == 213
    assert len(catalog.formats) == 4

    info = build_audio_info(catalog)
    # approx 3.6 MB beats exact 3.4 MB
    assert info.bitrate_kbps == pytest.approx(135.2)
    assert info.estimated_audio_size_bytes == 2_700_000
    assert info.estimated_video_size_bytes == 50_000_000


def test_catalog_without_formats():
    catalog = catalog_from_info({"title": None, "duration": None}, "x")
    assert catalog.formats == ()
    assert catalog.title == ""
    assert catalog.duration_seconds == 0
