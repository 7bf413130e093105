"""Media catalog data models"""
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class FormatDescriptor(BaseModel):
    """One encoding reported for a media item"""

    model_config = ConfigDict(frozen=True)

    format_id: str = ""
    has_audio: bool
    has_video: bool
    bitrate_kbps: Optional[float] = None
    file_size_bytes: Optional[int] = None
    approx_size_bytes: Optional[int] = None
    codec_container: str = ""
    quality_label: Optional[str] = None

    @property
    def is_audio_only(self) -> bool:
        return self.has_audio and not self.has_video

    @property
    def reported_size(self) -> int:
        """Exact size when reported, else the approximate one, else 0."""
        if self.file_size_bytes:
            return self.file_size_bytes
        if self.approx_size_bytes:
            return self.approx_size_bytes
        return 0


class MediaCatalog(BaseModel):
    """All encodings resolved for one media identifier"""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str = ""
    duration_seconds: float = 0
    formats: Tuple[FormatDescriptor, ...] = Field(default_factory=tuple)


class ResolvedAudioInfo(BaseModel):
    """Cacheable projection served by the info endpoint"""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    duration_seconds: float
    estimated_video_size_bytes: int
    estimated_audio_size_bytes: int
    bitrate_kbps: float
    container_format: str
    quality_label: str
