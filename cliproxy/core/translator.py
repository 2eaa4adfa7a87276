"""Translation of CLI output into OpenAI chat-completion payloads.

:class:`StreamTranslator` drives one SSE stream: it consumes CLI output
lines, classifies and filters them and writes chunk deltas through an
:class:`~cliproxy.core.sse.SSESession`. :func:`translate_completion` is the
buffered counterpart used for non-streaming requests.
"""

import json
import logging
import time
from contextlib import aclosing
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Optional

from ..types import ChatMessage, Delta
from .chunks import (
    SILENT_KINDS,
    AssistantText,
    CanonicalChunk,
    ErrorChunk,
    ToolCallData,
    ToolCalls,
)
from .content_filter import clean_completion_text, filter_content
from .exceptions import NoOutputError, StreamProtocolError
from .normalizer import normalize_line
from .payloads import build_stream_chunk, new_completion_id
from .sse import SSESession

logger = logging.getLogger("cliproxy")

FALLBACK_MESSAGE = "I'm unable to provide a response at the moment."

ContentObserver = Callable[[str], None]


@dataclass
class TranslationState:
    """Mutable state of a single stream. Never shared between requests."""

    role_sent: bool = False
    content_sent: bool = False
    accumulated_text: str = ""
    chunk_count: int = 0
    closed: bool = False

    def append_text(self, text: str) -> None:
        self.accumulated_text += text


class StreamTranslator:
    """Stream state machine: Idle -> RoleSent -> ContentAccumulating* -> Finalized."""

    def __init__(
        self,
        request_model: str,
        completion_id: Optional[str] = None,
        created: Optional[int] = None,
    ) -> None:
        self.model = request_model
        self.completion_id = completion_id or new_completion_id()
        self.created = created if created is not None else int(time.time())
        self.state = TranslationState()

    async def run(
        self,
        lines: AsyncIterator[str],
        session: SSESession,
        on_content: Optional[ContentObserver] = None,
    ) -> str:
        """Translate ``lines`` onto ``session`` and return the streamed text.

        Raises the first fatal error after writing it to the session as an
        error payload. Never ends the session.
        """
        state = self.state
        async with aclosing(lines):
            try:
                async for line in lines:
                    if self._observe_closed(session):
                        return state.accumulated_text
                    chunk = normalize_line(line)
                    state.chunk_count += 1
                    await self._dispatch(chunk, session, on_content)
                if self._observe_closed(session):
                    return state.accumulated_text
                await self._finalize(session, on_content)
                return state.accumulated_text
            except Exception as exc:
                if not session.closed:
                    logger.debug(
                        "Writing stream error payload (partial output sent: %s): %s",
                        session.has_written_any(),
                        exc,
                    )
                    await session.write_error(exc)
                raise

    def _observe_closed(self, session: SSESession) -> bool:
        if session.closed and not self.state.closed:
            self.state.closed = True
            logger.info(
                "Client stream closed after %d chunks, stopping translation",
                self.state.chunk_count,
            )
        return self.state.closed

    async def _dispatch(
        self,
        chunk: CanonicalChunk,
        session: SSESession,
        on_content: Optional[ContentObserver],
    ) -> None:
        if isinstance(chunk, AssistantText):
            await self._ensure_role(session)
            text = filter_content(chunk.content)
            if text:
                await self._emit_content(session, text, on_content)
        elif isinstance(chunk, ToolCalls):
            await self._ensure_role(session)
            await self._write_delta(session, {"tool_calls": chunk.to_openai()})
            self.state.content_sent = True
        elif isinstance(chunk, ErrorChunk):
            raise StreamProtocolError(chunk.message)
        elif chunk.kind in SILENT_KINDS:
            logger.debug("Skipping %s chunk", chunk.kind)

    async def _ensure_role(self, session: SSESession) -> None:
        if self.state.role_sent:
            return
        await self._write_delta(session, {"role": "assistant", "content": ""})
        self.state.role_sent = True

    async def _emit_content(
        self,
        session: SSESession,
        text: str,
        on_content: Optional[ContentObserver],
    ) -> None:
        await self._write_delta(session, {"content": text})
        self.state.append_text(text)
        self.state.content_sent = True
        if on_content is not None:
            on_content(text)

    async def _finalize(
        self, session: SSESession, on_content: Optional[ContentObserver]
    ) -> None:
        state = self.state
        if state.chunk_count == 0:
            raise NoOutputError()
        if state.role_sent and not state.content_sent:
            logger.warning("Claude CLI produced no content, sending fallback message")
            await self._emit_content(session, FALLBACK_MESSAGE, on_content)
        elif not state.role_sent:
            await self._ensure_role(session)
        await self._write_delta(session, {}, finish_reason="stop")

    async def _write_delta(
        self, session: SSESession, delta: Delta, finish_reason: Optional[str] = None
    ) -> bool:
        payload = build_stream_chunk(
            self.completion_id, self.created, self.model, delta, finish_reason
        )
        return await session.write(payload)


def _is_stream_json(output: str) -> bool:
    lines = [line.strip() for line in output.splitlines() if line.strip()]
    if not lines:
        return False
    for line in lines:
        if not line.startswith("{"):
            return False
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            return False
        if not isinstance(event, dict) or "type" not in event:
            return False
    return True


def translate_completion(output: str, has_tools: bool = False) -> ChatMessage:
    """Turn the buffered output of one CLI run into an assistant message."""
    text_parts: list[str] = []
    tool_calls: list[ToolCallData] = []

    if _is_stream_json(output):
        for line in output.splitlines():
            chunk = normalize_line(line)
            if isinstance(chunk, AssistantText):
                text_parts.append(chunk.content)
            elif isinstance(chunk, ToolCalls):
                tool_calls.extend(chunk.calls)
            elif isinstance(chunk, ErrorChunk):
                raise StreamProtocolError(chunk.message)
    else:
        text_parts.append(output or "")

    content = clean_completion_text("".join(text_parts))

    if tool_calls:
        return {
            "role": "assistant",
            "content": content or None,
            "tool_calls": [call.to_openai() for call in tool_calls],
        }

    if has_tools and content:
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError:
            logger.debug("Response is not tool call JSON, treating as regular text")
        else:
            if isinstance(parsed, dict) and isinstance(parsed.get("tool_calls"), list):
                return {
                    "role": "assistant",
                    "content": parsed.get("content") or None,
                    "tool_calls": parsed["tool_calls"],
                }

    return {"role": "assistant", "content": content}
