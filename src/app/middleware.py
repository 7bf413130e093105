"""Request context middleware"""
import contextvars
import logging
import time
import uuid

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

_logger = logging.getLogger("aethel-audio")

request_id_ctx: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="-")


class RequestIdFilter(logging.Filter):
    """Attach request_id to all log records for correlation."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_ctx.get()
        return True


class RequestContextMiddleware:
    """
    Tags each request with an id and logs its start and end.

    Written as a plain ASGI middleware so streamed bodies and client
    disconnects pass through untouched.
    """

    def __init__(self, app: ASGIApp, header_name: str = "X-Request-ID"):
        self.app = app
        self.header_name = header_name

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = Headers(scope=scope).get(self.header_name) or str(uuid.uuid4())
        token = request_id_ctx.set(request_id)
        start = time.monotonic()
        status_code = 500
        method = scope.get("method", "-")
        path = scope.get("path", "-")

        async def send_with_request_id(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
                headers = MutableHeaders(scope=message)
                headers[self.header_name] = request_id
            await send(message)

        try:
            _logger.info("Request start method=%s path=%s", method, path)
            await self.app(scope, receive, send_with_request_id)
        finally:
            elapsed_ms = int((time.monotonic() - start) * 1000)
            _logger.info("Request end method=%s path=%s status=%d elapsed_ms=%d", method, path, status_code, elapsed_ms)
            request_id_ctx.reset(token)
