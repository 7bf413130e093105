"""Streaming response bound to a delivery session"""
import logging
from typing import Optional

import anyio
from starlette.requests import ClientDisconnect
from starlette.responses import StreamingResponse
from starlette.types import Receive, Scope, Send

from src.services.session import DeliverySession

_logger = logging.getLogger("aethel-audio")


class AudioStreamResponse(StreamingResponse):
    """
    Streams a session's transcoded bytes and always closes the session.

    The body is sent while a second task listens for ``http.disconnect``;
    whichever finishes first cancels the other. A disconnect aborts the
    session and kills its processes before any further chunk is written.
    Errors raised after the headers went out are re-raised so the server
    drops the connection instead of finishing the body.
    """

    def __init__(self, session: DeliverySession):
        super().__init__(
            session.iter_bytes(),
            media_type=session.target.media_type,
            headers={
                "Content-Disposition": f'attachment; filename="{session.filename}"',
                "Cache-Control": "no-store",
            },
        )
        self.session = session

    async def _listen_for_disconnect(self, receive: Receive) -> None:
        while True:
            message = await receive()
            if message["type"] == "http.disconnect":
                break

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        error: Optional[Exception] = None
        try:
            async with anyio.create_task_group() as task_group:

                async def stream() -> None:
                    nonlocal error
                    try:
                        await self.stream_response(send)
                    except (OSError, ClientDisconnect):
                        self.session.abort()
                    except Exception as exc:
                        error = exc
                    finally:
                        task_group.cancel_scope.cancel()

                task_group.start_soon(stream)
                await self._listen_for_disconnect(receive)
                self.session.abort()
                task_group.cancel_scope.cancel()
        finally:
            await self.session.close()

        if error is not None:
            raise error
