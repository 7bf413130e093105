"""Error taxonomy shared by the audio pipeline and the HTTP layer"""
import re
from typing import Any, Dict, Optional

_RATE_LIMIT_PATTERN = re.compile(r"http error 429|too many requests|rate[- ]limit", re.IGNORECASE)


def is_rate_limited(text: Optional[str]) -> bool:
    """Return True when tool output carries an upstream throttling marker."""
    if not text:
        return False
    return bool(_RATE_LIMIT_PATTERN.search(text))


class AudioServiceError(Exception):
    """Base class for failures that map onto an HTTP error body."""

    status_code = 500
    error = "Internal error"

    def __init__(self, message: str, *, error: Optional[str] = None, diagnostics: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if error is not None:
            self.error = error
        self.diagnostics = diagnostics

    def to_body(self) -> Dict[str, Any]:
        return {"error": self.error, "message": self.message}

    def headers(self) -> Dict[str, str]:
        return {}


class InvalidMediaId(AudioServiceError):
    status_code = 400
    error = "Invalid media id"


class NotFound(AudioServiceError):
    """No audio-only encoding could be resolved for the media item."""

    status_code = 404
    error = "No audio formats found"


class RateLimited(AudioServiceError):
    """The upstream source is throttling requests."""

    status_code = 429
    error = "Rate limited"

    def __init__(self, message: str, *, retry_after: int = 60, diagnostics: Optional[str] = None):
        super().__init__(message, diagnostics=diagnostics)
        self.retry_after = retry_after

    def to_body(self) -> Dict[str, Any]:
        body = super().to_body()
        body["retryAfterSeconds"] = self.retry_after
        return body

    def headers(self) -> Dict[str, str]:
        return {"Retry-After": str(self.retry_after)}


class RetrievalFailed(AudioServiceError):
    """The fetch tool exited nonzero, timed out, overflowed or produced nothing."""

    error = "Failed to download audio"


class TranscodeFailed(AudioServiceError):
    """The transcoder exited nonzero or rejected its input."""

    error = "Conversion failed"


class ClientAborted(Exception):
    """The client disconnected; there is no response obligation left."""
