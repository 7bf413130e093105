"""Configuration management"""
import os
import shlex
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Read .env (if present)
load_dotenv()

DEFAULT_SERVICE_NAME = "AETHEL Audio Backend"
DEFAULT_SERVICE_VERSION = "2.0.0"
DEFAULT_MEDIA_URL_TEMPLATE = "https://www.youtube.com/watch?v={media_id}"
DEFAULT_MAX_OUTPUT_BYTES = 200 * 1024 * 1024


def _env_truthy(value: Optional[str], *, default: bool = False) -> bool:
    """Parse common truthy/falsey strings from environment variables."""
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "t", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "f", "no", "n", "off"}:
        return False
    return default


def _env_command(name: str, default: List[str]) -> List[str]:
    """Split a command line from the environment into an argument list."""
    value = os.getenv(name)
    if not value or not value.strip():
        return list(default)
    return shlex.split(value)


def _env_list(name: str, default: List[str]) -> List[str]:
    value = os.getenv(name)
    if value is None:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseModel):
    """
    Service configuration loaded from environment variables.

    - cache_ttl_seconds / cache_sweep_interval_seconds: metadata cache lifetime and sweep period
    - ytdlp_command / ffmpeg_command: argument-list prefixes for the external tools
    - retrieval_timeout_seconds / max_output_bytes: limits applied to every retrieval process
    - delivery_mode: "stream" pipes yt-dlp into ffmpeg, "file" downloads to a temp file first
    """

    service_name: str = Field(default=DEFAULT_SERVICE_NAME)
    service_version: str = Field(default=DEFAULT_SERVICE_VERSION)
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    log_level: str = Field(default="INFO")

    cache_ttl_seconds: float = Field(default=3600.0, gt=0)
    cache_sweep_interval_seconds: float = Field(default=600.0, gt=0)

    ytdlp_command: List[str] = Field(default_factory=lambda: [sys.executable, "-m", "yt_dlp"])
    ffmpeg_command: List[str] = Field(default_factory=lambda: ["ffmpeg"])
    cookies_file: Optional[str] = Field(default=None)
    media_url_template: str = Field(default=DEFAULT_MEDIA_URL_TEMPLATE)

    retrieval_timeout_seconds: float = Field(default=600.0, gt=0)
    max_output_bytes: int = Field(default=DEFAULT_MAX_OUTPUT_BYTES, gt=0)
    delivery_mode: str = Field(default="stream", pattern="^(stream|file)$")
    temp_dir: str = Field(default_factory=lambda: str(Path("./tmp").resolve()))
    chunk_size: int = Field(default=64 * 1024, gt=0)

    rate_limit_retry_after_seconds: int = Field(default=60, ge=0)
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    max_workers: int = Field(default=4, gt=0)
    verify_tools: bool = Field(default=True)

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        return cls(
            host=os.getenv("HOST", defaults.host),
            port=int(os.getenv("PORT", str(defaults.port))),
            log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
            cache_ttl_seconds=float(os.getenv("CACHE_TTL_SECONDS", str(defaults.cache_ttl_seconds))),
            cache_sweep_interval_seconds=float(
                os.getenv("CACHE_SWEEP_INTERVAL_SECONDS", str(defaults.cache_sweep_interval_seconds))
            ),
            ytdlp_command=_env_command("YTDLP_COMMAND", defaults.ytdlp_command),
            ffmpeg_command=_env_command("FFMPEG_COMMAND", defaults.ffmpeg_command),
            cookies_file=os.getenv("COOKIES_FILE") or None,
            media_url_template=os.getenv("MEDIA_URL_TEMPLATE", defaults.media_url_template),
            retrieval_timeout_seconds=float(
                os.getenv("RETRIEVAL_TIMEOUT_SECONDS", str(defaults.retrieval_timeout_seconds))
            ),
            max_output_bytes=int(os.getenv("MAX_OUTPUT_BYTES", str(defaults.max_output_bytes))),
            delivery_mode=os.getenv("DELIVERY_MODE", defaults.delivery_mode).strip().lower(),
            temp_dir=os.getenv("TEMP_DIR", defaults.temp_dir),
            chunk_size=int(os.getenv("CHUNK_SIZE", str(defaults.chunk_size))),
            rate_limit_retry_after_seconds=int(
                os.getenv("RATE_LIMIT_RETRY_AFTER_SECONDS", str(defaults.rate_limit_retry_after_seconds))
            ),
            cors_origins=_env_list("CORS_ORIGINS", defaults.cors_origins),
            max_workers=int(os.getenv("MAX_WORKERS", str(defaults.max_workers))),
            verify_tools=_env_truthy(os.getenv("VERIFY_TOOLS"), default=defaults.verify_tools),
        )

    @property
    def stream_mode(self) -> bool:
        return self.delivery_mode == "stream"

    def media_url(self, media_id: str) -> str:
        return self.media_url_template.format(media_id=media_id)


def get_settings() -> Settings:
    """Load settings from the current environment"""
    return Settings.from_env()
