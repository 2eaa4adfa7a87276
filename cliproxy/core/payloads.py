"""Builders for OpenAI ``chat.completion`` and ``chat.completion.chunk`` objects."""

import time
import uuid
from typing import Optional

from ..types import ChatCompletionChunk, ChatCompletionResponse, ChatMessage, Delta, Usage


def new_completion_id() -> str:
    return f"chatcmpl-{uuid.uuid4().hex}"


def build_stream_chunk(
    completion_id: str,
    created: int,
    model: str,
    delta: Delta,
    finish_reason: Optional[str] = None,
) -> ChatCompletionChunk:
    return {
        "id": completion_id,
        "object": "chat.completion.chunk",
        "created": created,
        "model": model,
        "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
    }


def build_completion_response(
    model: str,
    message: ChatMessage,
    usage: Usage,
    completion_id: Optional[str] = None,
    created: Optional[int] = None,
) -> ChatCompletionResponse:
    """Build a non-streaming response around one assistant message."""
    finish_reason = "tool_calls" if message.get("tool_calls") else "stop"
    return {
        "id": completion_id or new_completion_id(),
        "object": "chat.completion",
        "created": created if created is not None else int(time.time()),
        "model": model,
        "choices": [{"index": 0, "message": message, "finish_reason": finish_reason}],
        "usage": usage,
    }
