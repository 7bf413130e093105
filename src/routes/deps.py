"""Request-scoped access to the services built by the application factory"""
import re

from fastapi import Request

from src.config import Settings
from src.services.errors import InvalidMediaId
from src.services.metadata import MetadataService
from src.services.session import DeliveryService
from src.state.cache import MetadataCache

_MEDIA_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def validate_media_id(media_id: str) -> str:
    """Reject identifiers that could not be a media id before any tool runs."""
    if not _MEDIA_ID_PATTERN.match(media_id):
        raise InvalidMediaId(f"Invalid media id: {media_id[:80]!r}")
    return media_id


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_cache(request: Request) -> MetadataCache:
    return request.app.state.cache


def get_metadata_service(request: Request) -> MetadataService:
    return request.app.state.metadata


def get_delivery_service(request: Request) -> DeliveryService:
    return request.app.state.delivery
