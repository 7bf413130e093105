"""Audio info route"""
import logging

from fastapi import APIRouter, Depends

from src.services.errors import AudioServiceError
from src.services.metadata import MetadataService
from .deps import get_metadata_service, validate_media_id
from .schemas import AudioInfoResponse, ErrorResponse, RateLimitedResponse

router = APIRouter()
_logger = logging.getLogger("aethel-audio")


@router.get(
    "/api/audio-info/{media_id}",
    response_model=AudioInfoResponse,
    responses={
        404: {"model": ErrorResponse},
        429: {"model": RateLimitedResponse},
        500: {"model": ErrorResponse},
    },
)
async def api_audio_info(media_id: str, metadata: MetadataService = Depends(get_metadata_service)):
    """
    Resolve the best audio-only format of a media item and estimate its size after conversion.
    """
    validate_media_id(media_id)
    _logger.info("Audio info request media_id=%s", media_id)
    try:
        info = await metadata.get_audio_info(media_id)
    except AudioServiceError:
        raise
    except Exception as exc:
        _logger.exception("Audio info failed media_id=%s error=%s", media_id, exc)
        raise AudioServiceError(str(exc), error="Failed to get audio info") from exc

    _logger.info("Audio info retrieved media_id=%s title=%r", media_id, info.title)
    return AudioInfoResponse.from_info(info)
