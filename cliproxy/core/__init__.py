"""Core module initialization."""

from .bridge import ClaudeCLI
from .chunk_iterator import ChunkIterator, iter_lines
from .chunks import (
    AssistantText,
    CanonicalChunk,
    EmptyChunk,
    ErrorChunk,
    SystemChunk,
    ToolCallData,
    ToolCalls,
    UnknownChunk,
)
from .content_filter import clean_completion_text, filter_content
from .exceptions import (
    NoOutputError,
    ProxyError,
    SpawnFailure,
    StreamProtocolError,
    SubprocessExitFailure,
)
from .normalizer import normalize_line
from .registry import get_bridge, get_settings, set_bridge
from .runner import CLIInvocation, CLIOptions, CLIProcess, CLIResult
from .sse import SSESession, format_sse_event
from .translator import StreamTranslator, TranslationState, translate_completion

__all__ = [
    "AssistantText",
    "CanonicalChunk",
    "ChunkIterator",
    "ClaudeCLI",
    "CLIInvocation",
    "CLIOptions",
    "CLIProcess",
    "CLIResult",
    "EmptyChunk",
    "ErrorChunk",
    "NoOutputError",
    "ProxyError",
    "SSESession",
    "SpawnFailure",
    "StreamProtocolError",
    "StreamTranslator",
    "SubprocessExitFailure",
    "SystemChunk",
    "ToolCallData",
    "ToolCalls",
    "TranslationState",
    "UnknownChunk",
    "clean_completion_text",
    "filter_content",
    "format_sse_event",
    "get_bridge",
    "get_settings",
    "iter_lines",
    "normalize_line",
    "set_bridge",
    "translate_completion",
]
