"""FastAPI application setup"""
import logging
import shutil
import sys
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .middleware import RequestContextMiddleware, RequestIdFilter
from src.config import Settings
from src.routes import (
    admin_router,
    download_router,
    info_router,
    service_router,
)
from src.services.errors import AudioServiceError
from src.services.metadata import MetadataService, YtDlpCatalogResolver
from src.services.retrieval import RetrievalSupervisor
from src.services.session import DeliveryService
from src.services.transcoder import TranscodePipeline
from src.state.cache import CacheSweeper, MetadataCache

_logger = logging.getLogger("aethel-audio")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s request_id=%(request_id)s %(message)s"


def _setup_logger(level: str = "INFO") -> None:
    """Configure application logging"""
    if not _logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.addFilter(RequestIdFilter())
        _logger.addHandler(handler)
    _logger.setLevel(level.upper())
    _logger.propagate = False
    _logger.debug("Logger initialized level=%s", level.upper())


def verify_tools(settings: Settings) -> None:
    """Log whether the external tools can be found; the service still starts without them."""
    for name, command in (("yt-dlp", settings.ytdlp_command), ("ffmpeg", settings.ffmpeg_command)):
        executable = command[0] if command else ""
        if executable and (shutil.which(executable) or executable == sys.executable):
            _logger.info("%s ready command=%s", name, " ".join(command))
        else:
            _logger.warning("%s executable not found command=%s", name, " ".join(command) or "-")


async def audio_service_error_handler(request: Request, exc: AudioServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        _logger.error("Request failed path=%s error=%s message=%s", request.url.path, exc.error, exc.message)
    else:
        _logger.info("Request rejected path=%s status=%d error=%s", request.url.path, exc.status_code, exc.error)
    return JSONResponse(status_code=exc.status_code, content=exc.to_body(), headers=exc.headers())


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    if settings.verify_tools:
        verify_tools(settings)
    sweeper = CacheSweeper(app.state.cache, interval=settings.cache_sweep_interval_seconds)
    sweeper.start()
    _logger.info("%s %s ready", settings.service_name, settings.service_version)
    try:
        yield
    finally:
        await sweeper.stop()
        await app.state.delivery.shutdown()
        app.state.metadata.shutdown()


def create_app(settings: Optional[Settings] = None, resolver=None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or Settings.from_env()
    _setup_logger(settings.log_level)

    app = FastAPI(
        title=settings.service_name,
        version=settings.service_version,
        description="Resolve and stream normalized AAC audio for remote media using yt-dlp and ffmpeg",
        lifespan=lifespan,
    )

    cache = MetadataCache(ttl=settings.cache_ttl_seconds)
    metadata = MetadataService(
        cache,
        resolver or YtDlpCatalogResolver(settings),
        max_workers=settings.max_workers,
    )
    app.state.settings = settings
    app.state.cache = cache
    app.state.metadata = metadata
    app.state.delivery = DeliveryService(
        settings,
        RetrievalSupervisor(settings),
        TranscodePipeline(settings),
        metadata=metadata,
    )

    app.add_exception_handler(AudioServiceError, audio_service_error_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition", "X-Request-ID"],
    )
    app.add_middleware(RequestContextMiddleware)

    app.include_router(service_router)
    app.include_router(info_router)
    app.include_router(download_router)
    app.include_router(admin_router)

    return app


def start_api(app: FastAPI, settings: Settings) -> None:
    """Run the API with uvicorn."""
    _logger.info("Starting uvicorn host=%s port=%s", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
