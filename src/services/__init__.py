from .errors import (
    AudioServiceError,
    ClientAborted,
    InvalidMediaId,
    NotFound,
    RateLimited,
    RetrievalFailed,
    TranscodeFailed,
)
from .formats import (
    build_audio_info,
    catalog_from_info,
    estimate_transcoded_size,
    select_best_audio,
    select_reference_video,
)
from .metadata import MetadataService, YtDlpCatalogResolver
from .retrieval import RetrievalHandle, RetrievalOptions, RetrievalSupervisor
from .session import DeliveryService, DeliverySession, SessionState
from .transcoder import AAC_STEREO_128K, TargetSpec, TranscodeHandle, TranscodePipeline

__all__ = [
    "AudioServiceError",
    "ClientAborted",
    "InvalidMediaId",
    "NotFound",
    "RateLimited",
    "RetrievalFailed",
    "TranscodeFailed",
    "build_audio_info",
    "catalog_from_info",
    "estimate_transcoded_size",
    "select_best_audio",
    "select_reference_video",
    "MetadataService",
    "YtDlpCatalogResolver",
    "RetrievalHandle",
    "RetrievalOptions",
    "RetrievalSupervisor",
    "DeliveryService",
    "DeliverySession",
    "SessionState",
    "AAC_STEREO_128K",
    "TargetSpec",
    "TranscodeHandle",
    "TranscodePipeline",
]
