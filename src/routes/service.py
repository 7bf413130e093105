"""Service descriptor and liveness routes"""
import datetime

from fastapi import APIRouter, Depends

from src.config import Settings
from .deps import get_settings
from .schemas import HealthResponse, ServiceDescriptor

router = APIRouter()

ENDPOINTS = [
    "GET /api/audio-info/{mediaId}",
    "GET /api/download-audio/{mediaId}",
    "GET /health",
    "POST /api/clear-cache",
]


@router.get("/", response_model=ServiceDescriptor)
async def service_descriptor(settings: Settings = Depends(get_settings)):
    """
    Describe the service and the endpoints it exposes.
    """
    return ServiceDescriptor(
        service=settings.service_name,
        version=settings.service_version,
        endpoints=ENDPOINTS,
    )


@router.get("/health", response_model=HealthResponse)
async def health():
    return HealthResponse(timestamp=datetime.datetime.now(datetime.timezone.utc).isoformat())
