"""Time-bounded metadata cache"""
import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Optional, TypeVar

_logger = logging.getLogger("aethel-audio")

V = TypeVar("V")

DEFAULT_TTL_SECONDS = 3600.0
DEFAULT_SWEEP_INTERVAL_SECONDS = 600.0


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    value: V
    created_at: float


class MetadataCache(Generic[V]):
    """
    Process-wide cache of resolved media metadata.

    Entries older than ``ttl`` are never returned, whether or not the
    background sweep has reclaimed them yet.
    """

    def __init__(self, ttl: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry[V]] = {}
        self._lock = threading.Lock()

    def _expired(self, entry: CacheEntry[V], now: float) -> bool:
        return now - entry.created_at >= self.ttl

    def get(self, key: str) -> Optional[V]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._expired(entry, self._clock()):
                del self._entries[key]
                _logger.debug("Cache entry expired key=%s", key)
                return None
            return entry.value

    def put(self, key: str, value: V) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(value=value, created_at=self._clock())

    def clear(self) -> int:
        with self._lock:
            removed = len(self._entries)
            self._entries.clear()
        _logger.info("Cache cleared removed=%d", removed)
        return removed

    def purge_expired(self) -> int:
        with self._lock:
            now = self._clock()
            stale = [key for key, entry in self._entries.items() if self._expired(entry, now)]
            for key in stale:
                del self._entries[key]
        if stale:
            _logger.info("Cache sweep removed=%d", len(stale))
        return len(stale)

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None


class CacheSweeper:
    """Periodically purges expired entries from a MetadataCache."""

    def __init__(self, cache: MetadataCache, interval: float = DEFAULT_SWEEP_INTERVAL_SECONDS):
        self.cache = cache
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        _logger.info("Cache sweeper started interval=%.1fs", self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        _logger.info("Cache sweeper stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                self.cache.purge_expired()
            except Exception:
                _logger.exception("Cache sweep failed")
