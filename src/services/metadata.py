"""Media metadata resolution backed by yt-dlp"""
import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional

import yt_dlp
from yt_dlp.utils import DownloadError

from src.config import Settings
from src.cookies import apply_cookie_options
from src.state.cache import MetadataCache
from src.state.models import MediaCatalog, ResolvedAudioInfo

from .errors import NotFound, RateLimited, is_rate_limited
from .formats import build_audio_info, catalog_from_info

_logger = logging.getLogger("aethel-audio")

CatalogResolver = Callable[[str], MediaCatalog]


class YtDlpCatalogResolver:
    """Resolves a MediaCatalog with yt-dlp's extractor, without downloading."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def get_info(self, url: str, quiet: bool = True) -> Optional[Dict[str, Any]]:
        opts: Dict[str, Any] = {
            "quiet": quiet,
            "no_warnings": quiet,
            "skip_download": True,
            "noplaylist": True,
        }
        apply_cookie_options(opts, self.settings.cookies_file, "[AudioInfo]")
        _logger.debug("yt-dlp get_info url=%s quiet=%s", url, quiet)
        with yt_dlp.YoutubeDL(opts) as ydl:
            info = ydl.extract_info(url, download=False)
            return ydl.sanitize_info(info) if info else None

    def __call__(self, media_id: str) -> MediaCatalog:
        url = self.settings.media_url(media_id)
        start = time.monotonic()
        try:
            info = self.get_info(url)
        except DownloadError as exc:
            message = str(exc)
            if is_rate_limited(message):
                _logger.warning("Upstream rate limited media_id=%s", media_id)
                raise RateLimited(
                    message,
                    retry_after=self.settings.rate_limit_retry_after_seconds,
                ) from exc
            raise
        if not info:
            raise NotFound("Video not found", error="Video not found")
        catalog = catalog_from_info(info, media_id)
        _logger.info(
            "Resolved catalog media_id=%s formats=%d elapsed_ms=%d",
            media_id,
            len(catalog.formats),
            int((time.monotonic() - start) * 1000),
        )
        return catalog


class MetadataService:
    """Cache-first lookup of ResolvedAudioInfo."""

    def __init__(
        self,
        cache: MetadataCache,
        resolver: CatalogResolver,
        max_workers: int = 4,
    ):
        self.cache = cache
        self.resolver = resolver
        # One executor for all lookups rather than a pool per call.
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="yt-dlp-worker")

    async def run_in_threadpool(self, func, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, lambda: func(*args, **kwargs))

    async def get_catalog(self, media_id: str) -> MediaCatalog:
        return await self.run_in_threadpool(self.resolver, media_id)

    async def get_audio_info(self, media_id: str) -> ResolvedAudioInfo:
        cached = self.cache.get(media_id)
        if cached is not None:
            _logger.debug("Audio info cache hit media_id=%s", media_id)
            return cached

        _logger.debug("Audio info cache miss media_id=%s", media_id)
        catalog = await self.get_catalog(media_id)
        info = build_audio_info(catalog)
        self.cache.put(media_id, info)
        return info

    def cached_duration(self, media_id: str) -> Optional[float]:
        info = self.cache.get(media_id)
        if info is None or not info.duration_seconds:
            return None
        return info.duration_seconds

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)
