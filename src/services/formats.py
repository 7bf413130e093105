"""Format selection and size estimation"""
import math
from typing import Any, Dict, Iterable, Optional

from src.state.models import FormatDescriptor, MediaCatalog, ResolvedAudioInfo

from .errors import NotFound

TARGET_BITRATE_KBPS = 128
TARGET_CONTAINER_FORMAT = "m4a"
DEFAULT_QUALITY_LABEL = "medium"
# AAC at 128k is roughly three quarters of the usual opus/webm source size.
TRANSCODE_SIZE_RATIO = 0.75
# Display-only guess when no video encoding reports a size.
VIDEO_SIZE_FALLBACK_FACTOR = 3


def _largest(formats: Iterable[FormatDescriptor]) -> Optional[FormatDescriptor]:
    best: Optional[FormatDescriptor] = None
    for fmt in formats:
        # strict comparison keeps the first-seen descriptor on ties
        if best is None or fmt.reported_size > best.reported_size:
            best = fmt
    return best


def select_best_audio(formats: Iterable[FormatDescriptor]) -> Optional[FormatDescriptor]:
    """Pick the audio-only descriptor with the largest reported size."""
    return _largest(f for f in formats if f.is_audio_only)


def select_reference_video(formats: Iterable[FormatDescriptor]) -> Optional[FormatDescriptor]:
    """Pick the largest descriptor carrying video, used for size display only."""
    return _largest(f for f in formats if f.has_video)


def estimate_transcoded_size(source_bytes: Optional[int], duration_seconds: Optional[float] = None) -> int:
    """
    Estimate the AAC output size for a source of ``source_bytes``.

    Falls back to the target bitrate times the duration when the source size
    is unknown, and only returns 0 when neither is available.
    """
    if source_bytes and source_bytes > 0:
        estimate = math.floor(source_bytes * TRANSCODE_SIZE_RATIO)
        return estimate if estimate > 0 else source_bytes
    if duration_seconds and duration_seconds > 0:
        return math.floor(TARGET_BITRATE_KBPS * 1000 / 8 * duration_seconds)
    return 0


def estimate_video_size(reference: Optional[FormatDescriptor], audio_bytes: int) -> int:
    if reference is not None and reference.reported_size > 0:
        return reference.reported_size
    return audio_bytes * VIDEO_SIZE_FALLBACK_FACTOR


def _optional_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def descriptor_from_format(fmt: Dict[str, Any]) -> FormatDescriptor:
    """Build a FormatDescriptor from one entry of yt-dlp's ``formats`` list."""
    return FormatDescriptor(
        format_id=str(fmt.get("format_id") or ""),
        has_audio=fmt.get("acodec") != "none",
        has_video=fmt.get("vcodec") != "none",
        bitrate_kbps=_optional_float(fmt.get("abr")),
        file_size_bytes=_optional_int(fmt.get("filesize")),
        approx_size_bytes=_optional_int(fmt.get("filesize_approx")),
        codec_container=str(fmt.get("ext") or ""),
        quality_label=fmt.get("format_note") or None,
    )


def catalog_from_info(info: Dict[str, Any], media_id: str) -> MediaCatalog:
    """Build an immutable MediaCatalog from a sanitized yt-dlp info dict."""
    return MediaCatalog(
        id=media_id,
        title=str(info.get("title") or ""),
        duration_seconds=_optional_float(info.get("duration")) or 0,
        formats=tuple(descriptor_from_format(f) for f in info.get("formats") or []),
    )


def build_audio_info(catalog: MediaCatalog) -> ResolvedAudioInfo:
    """
    Project a catalog into the info served to clients.

    Raises:
        NotFound: when the catalog has no audio-only encoding
    """
    best_audio = select_best_audio(catalog.formats)
    if best_audio is None:
        raise NotFound(f"No audio-only format available for {catalog.id}")

    audio_bytes = best_audio.reported_size
    estimated_audio = estimate_transcoded_size(audio_bytes, catalog.duration_seconds)
    reference = select_reference_video(catalog.formats)

    return ResolvedAudioInfo(
        id=catalog.id,
        title=catalog.title,
        duration_seconds=catalog.duration_seconds,
        estimated_video_size_bytes=estimate_video_size(reference, audio_bytes or estimated_audio),
        estimated_audio_size_bytes=estimated_audio,
        bitrate_kbps=best_audio.bitrate_kbps or TARGET_BITRATE_KBPS,
        container_format=TARGET_CONTAINER_FORMAT,
        quality_label=best_audio.quality_label or DEFAULT_QUALITY_LABEL,
    )
