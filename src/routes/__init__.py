from .service import router as service_router
from .info import router as info_router
from .download import router as download_router
from .admin import router as admin_router

__all__ = [
    "service_router",
    "info_router",
    "download_router",
    "admin_router",
]
