"""ASGI response that runs a chat stream pipeline over an SSE session."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from starlette.background import BackgroundTask
from starlette.responses import Response
from starlette.types import Receive, Scope, Send

from ..core.sse import SSE_HEADERS, SSESession

logger = logging.getLogger("cliproxy")

Pipeline = Callable[[SSESession], Awaitable[None]]


class ChatStreamResponse(Response):
    """Streams whatever ``pipeline`` writes to its :class:`SSESession`.

    A sibling task watches ``receive`` for ``http.disconnect`` and marks the
    session closed. The session is always ended once the pipeline returns.
    """

    media_type = "text/event-stream"

    def __init__(
        self,
        pipeline: Pipeline,
        status_code: int = 200,
        background: Optional[BackgroundTask] = None,
    ) -> None:
        self.pipeline = pipeline
        self.status_code = status_code
        self.background = background
        self.init_headers(dict(SSE_HEADERS))

    async def _listen_for_disconnect(self, receive: Receive, session: SSESession) -> None:
        while True:
            message = await receive()
            if message["type"] == "http.disconnect":
                session.mark_closed("client disconnected")
                return

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        session = SSESession(send)
        await session.open(self.status_code)
        listener = asyncio.create_task(self._listen_for_disconnect(receive, session))
        try:
            await self.pipeline(session)
        finally:
            listener.cancel()
            await session.end()
            if self.background is not None:
                await self.background()
