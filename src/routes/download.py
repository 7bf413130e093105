"""Audio download route"""
import logging

from fastapi import APIRouter, Depends

from src.services.session import DeliveryService
from .deps import get_delivery_service, validate_media_id
from .responses import AudioStreamResponse
from .schemas import ErrorResponse, RateLimitedResponse

router = APIRouter()
_logger = logging.getLogger("aethel-audio")


@router.get(
    "/api/download-audio/{media_id}",
    responses={
        200: {"content": {"audio/mp4": {}}},
        429: {"model": RateLimitedResponse},
        500: {"model": ErrorResponse},
    },
)
async def api_download_audio(media_id: str, delivery: DeliveryService = Depends(get_delivery_service)):
    """
    Download the best audio-only format and stream it back as AAC in an MPEG-4 container.
    """
    validate_media_id(media_id)
    _logger.info("Downloading audio media_id=%s", media_id)

    session = delivery.create(media_id)
    # open() closes the session itself when it raises
    await session.open()
    return AudioStreamResponse(session)
