"""Types for chat representation on both sides of the bridge.

This module defines type schemas for:
- OpenAI-compatible types: the request and response shapes served to clients
- CLI output types: the JSON-lines events printed by the Claude CLI in
  ``stream-json`` mode, as far as the bridge relies on them
"""

from typing import Any
from typing_extensions import TypedDict


# =============================================================================
# OpenAI-Compatible Types
# =============================================================================


class FunctionCall(TypedDict, total=False):
    """A function call within a tool call (OpenAI format).

    Attributes:
        name: Name of the function to call.
        arguments: JSON string containing the arguments to pass to the
            function. Relayed verbatim, never interpreted.
    """
    name: str | None
    arguments: str | None


class ToolCall(TypedDict, total=False):
    """A tool call in a chat response (OpenAI format).

    Attributes:
        id: Unique identifier for this tool call.
        type: Type of tool call. Always "function" here.
        function: The function to call with its arguments.
        index: Position in the tool_calls array (streaming only).
    """
    id: str
    type: str
    function: FunctionCall
    index: int


class ContentPart(TypedDict, total=False):
    """A content part for multi-modal messages (OpenAI format).

    Only "text" parts reach the CLI; "image_url" parts are replaced by a
    placeholder line.
    """
    type: str
    text: str | None
    image_url: dict[str, Any] | None


class ChatMessage(TypedDict, total=False):
    """A message in a chat conversation (OpenAI format).

    Attributes:
        role: "system", "user" or "assistant".
        content: Text content, a list of ContentPart, or None when only
            tool_calls is present.
        name: Optional name for the speaker.
        tool_calls: Array of tool calls from the assistant.
    """
    role: str
    content: str | list[ContentPart] | None
    name: str | None
    tool_calls: list[ToolCall] | None


class ChatRequest(TypedDict, total=False):
    """A validated chat completion request.

    Message content is always flattened to a string by validation.
    """
    model: str
    messages: list[ChatMessage]
    stream: bool
    enable_tools: bool
    tools: list[dict[str, Any]] | None
    functions: list[dict[str, Any]] | None
    temperature: float
    top_p: float
    max_tokens: int
    n: int
    stop: list[str]


class Delta(TypedDict, total=False):
    """A streamed delta of a choice in a chat completion (OpenAI format).

    Exactly one of these shapes is sent per chunk:
    ``{role, content}`` (role announcement), ``{content}``,
    ``{tool_calls}`` or ``{}`` (terminal).
    """
    role: str | None
    content: str | None
    tool_calls: list[ToolCall] | None


class Choice(TypedDict, total=False):
    """A choice in a chat completion response (OpenAI format).

    Attributes:
        index: Always 0, the bridge produces a single choice.
        delta: The incremental content for streaming responses.
        message: The complete message for non-streaming responses.
        finish_reason: "stop", "tool_calls" or None while streaming.
    """
    index: int
    delta: Delta | None
    message: ChatMessage | None
    finish_reason: str | None


class Usage(TypedDict, total=False):
    """Estimated token usage. Counts are approximations, not tokenizer output."""
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


class ChatCompletionChunk(TypedDict, total=False):
    """A streamed chunk of a chat completion response (OpenAI format)."""
    id: str
    object: str
    created: int
    model: str
    choices: list[Choice]


class ChatCompletionResponse(TypedDict, total=False):
    """A complete (non-streaming) chat completion response (OpenAI format)."""
    id: str
    object: str
    created: int
    model: str
    choices: list[Choice]
    usage: Usage


class ErrorBody(TypedDict, total=False):
    message: str
    type: str
    code: str
    field: str | None


class ErrorResponse(TypedDict):
    error: ErrorBody


# =============================================================================
# CLI Output Types
# =============================================================================
# One JSON object per stdout line in stream-json mode. Other shapes (plain
# text, flat text objects, direct tool_calls) are tolerated by the normalizer.


class CLIContentBlock(TypedDict, total=False):
    """A content block inside a CLI assistant/user message.

    Attributes:
        type: "text", "thinking", "tool_use" or "tool_result".
        text: Text content (for "text" blocks).
        id: Block identifier (for "tool_use" blocks).
        name: Tool name (for "tool_use" blocks).
        input: Tool input (for "tool_use" blocks).
        content: Nested content (for "tool_result" blocks).
    """
    type: str
    text: str | None
    id: str | None
    name: str | None
    input: dict[str, Any] | None
    content: str | list[Any] | None


class CLIMessage(TypedDict, total=False):
    id: str
    role: str
    model: str
    content: list[CLIContentBlock] | str


class CLIEvent(TypedDict, total=False):
    """A single stream-json line.

    Attributes:
        type: "system", "assistant", "user", "result" or "error".
        subtype: e.g. "init" for system events, "success" for results.
        message: The wrapped message for "assistant"/"user" events.
        is_error: Set on "result" events when the run failed.
        result: Final text on "result" events.
    """
    type: str
    subtype: str | None
    message: CLIMessage | None
    session_id: str | None
    is_error: bool | None
    result: str | None
