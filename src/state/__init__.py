from .cache import CacheSweeper, MetadataCache
from .models import FormatDescriptor, MediaCatalog, ResolvedAudioInfo

__all__ = [
    "CacheSweeper",
    "MetadataCache",
    "FormatDescriptor",
    "MediaCatalog",
    "ResolvedAudioInfo",
]
