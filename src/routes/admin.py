"""Administrative routes"""
import logging

from fastapi import APIRouter, Depends

from src.state.cache import MetadataCache
from .deps import get_cache
from .schemas import ClearCacheResponse

router = APIRouter()
_logger = logging.getLogger("aethel-audio")


@router.post("/api/clear-cache", response_model=ClearCacheResponse)
async def api_clear_cache(cache: MetadataCache = Depends(get_cache)):
    """
    Empty the metadata cache unconditionally.
    """
    removed = cache.clear()
    _logger.info("Cache cleared via API removed=%d", removed)
    return ClearCacheResponse(message=f"Cache cleared, {removed} entries removed", size=cache.size())
