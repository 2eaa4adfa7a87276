"""Type definitions for the bridge."""

from .chat import (
    ChatCompletionChunk,
    ChatCompletionResponse,
    ChatMessage,
    ChatRequest,
    Choice,
    CLIContentBlock,
    CLIEvent,
    CLIMessage,
    ContentPart,
    Delta,
    ErrorResponse,
    FunctionCall,
    ToolCall,
    Usage,
)

__all__ = [
    "ChatCompletionChunk",
    "ChatCompletionResponse",
    "ChatMessage",
    "ChatRequest",
    "Choice",
    "CLIContentBlock",
    "CLIEvent",
    "CLIMessage",
    "ContentPart",
    "Delta",
    "ErrorResponse",
    "FunctionCall",
    "ToolCall",
    "Usage",
]
