"""SSE (Server-Sent Events) framing and the per-request stream session."""

import json
import logging
from typing import Any, Awaitable, Callable, Mapping, MutableMapping, Optional

from .exceptions import error_payload

logger = logging.getLogger("cliproxy")

Send = Callable[[MutableMapping[str, Any]], Awaitable[None]]

DONE_EVENT = b"data: [DONE]\n\n"

SSE_HEADERS = {
    "content-type": "text/event-stream",
    "cache-control": "no-cache",
    "connection": "keep-alive",
    "x-accel-buffering": "no",
}


def format_sse_event(payload: Any) -> bytes:
    """Frame one JSON payload as an SSE ``data:`` event."""
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8")


class SSESession:
    """Write side of one SSE response over an ASGI ``send`` callable.

    Once closed (client gone, transport failure or :meth:`end`), every write
    is a silent no-op returning ``False``.
    """

    def __init__(self, send: Send) -> None:
        self._send = send
        self._opened = False
        self._closed = False
        self._ended = False
        self._payload_writes = 0
        self.close_reason: Optional[str] = None

    @property
    def opened(self) -> bool:
        return self._opened

    @property
    def closed(self) -> bool:
        return self._closed

    def has_written_any(self) -> bool:
        """True once at least one payload event (not ``[DONE]``) went out."""
        return self._payload_writes > 0

    def mark_closed(self, reason: str) -> None:
        if self._closed:
            return
        self._closed = True
        self.close_reason = reason
        logger.debug("SSE session closed: %s", reason)

    async def open(
        self, status_code: int = 200, headers: Optional[Mapping[str, str]] = None
    ) -> None:
        if self._opened:
            return
        merged = dict(SSE_HEADERS)
        if headers:
            merged.update({k.lower(): v for k, v in headers.items()})
        raw_headers = [
            (key.encode("latin-1"), value.encode("latin-1"))
            for key, value in merged.items()
        ]
        await self._send(
            {"type": "http.response.start", "status": status_code, "headers": raw_headers}
        )
        self._opened = True

    async def _send_body(self, body: bytes, more_body: bool = True) -> bool:
        try:
            await self._send(
                {"type": "http.response.body", "body": body, "more_body": more_body}
            )
        except Exception as exc:
            self.mark_closed(f"transport error: {exc}")
            return False
        return True

    async def write(self, payload: Any) -> bool:
        """Send one payload event. Returns False if nothing was sent."""
        if self._closed:
            return False
        if not self._opened:
            raise RuntimeError("SSE session written before open()")
        if not await self._send_body(format_sse_event(payload)):
            return False
        self._payload_writes += 1
        return True

    async def write_error(self, exc: BaseException) -> bool:
        return await self.write(error_payload(exc))

    async def end(self) -> None:
        """Send ``[DONE]`` and finish the response body. Safe to call twice."""
        if self._ended:
            return
        self._ended = True
        if not self._opened:
            self.mark_closed("ended before open")
            return
        if not self._closed:
            await self._send_body(DONE_EVENT)
        await self._send_body(b"", more_body=False)
        self.mark_closed("ended")
