"""Response models"""
from typing import List

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.state.models import ResolvedAudioInfo


class ServiceDescriptor(BaseModel):
    status: str = "ok"
    service: str
    version: str
    downloader: str = "yt-dlp"
    endpoints: List[str] = Field(default_factory=list)


class HealthResponse(BaseModel):
    status: str = "healthy"
    timestamp: str


class ClearCacheResponse(BaseModel):
    message: str
    size: int = 0


class ErrorResponse(BaseModel):
    error: str
    message: str


class RateLimitedResponse(ErrorResponse):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    retry_after_seconds: int


class AudioInfoResponse(BaseModel):
    """Audio info in camelCase, plus the field names older clients read."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    media_id: str
    title: str
    duration_seconds: float
    estimated_video_size_bytes: int
    estimated_audio_size_bytes: int
    bitrate_kbps: float
    container_format: str
    quality_label: str

    # legacy names
    video_id: str
    duration: float
    video_size: int
    audio_size: int
    bitrate: float
    format: str
    quality: str

    @classmethod
    def from_info(cls, info: ResolvedAudioInfo) -> "AudioInfoResponse":
        return cls(
            media_id=info.id,
            title=info.title,
            duration_seconds=info.duration_seconds,
            estimated_video_size_bytes=info.estimated_video_size_bytes,
            estimated_audio_size_bytes=info.estimated_audio_size_bytes,
            bitrate_kbps=info.bitrate_kbps,
            container_format=info.container_format,
            quality_label=info.quality_label,
            video_id=info.id,
            duration=info.duration_seconds,
            video_size=info.estimated_video_size_bytes,
            audio_size=info.estimated_audio_size_bytes,
            bitrate=info.bitrate_kbps,
            format=info.container_format,
            quality=info.quality_label,
        )
