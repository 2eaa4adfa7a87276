"""Canonical chunk model flowing through the streaming pipeline.

Every line the CLI prints is classified into exactly one of these variants
by :func:`cliproxy.core.normalizer.normalize_line`, independent of which
output shape the CLI used.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Union

from ..types import ToolCall


@dataclass(frozen=True)
class ToolCallData:
    """One tool invocation relayed to the client as opaque data."""

    id: str
    name: str
    arguments: str

    def to_openai(self, index: int | None = None) -> ToolCall:
        call: ToolCall = {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }
        if index is not None:
            call["index"] = index
        return call


@dataclass(frozen=True)
class AssistantText:
    kind: ClassVar[str] = "assistant_text"
    content: str


@dataclass(frozen=True)
class ToolCalls:
    kind: ClassVar[str] = "tool_calls"
    calls: tuple[ToolCallData, ...]

    def to_openai(self) -> list[ToolCall]:
        return [call.to_openai(index) for index, call in enumerate(self.calls)]


@dataclass(frozen=True)
class SystemChunk:
    """CLI bookkeeping output (init, result, user echo)."""

    kind: ClassVar[str] = "system"
    raw: Any = field(default=None, compare=False)


@dataclass(frozen=True)
class ErrorChunk:
    kind: ClassVar[str] = "error"
    message: str


@dataclass(frozen=True)
class EmptyChunk:
    kind: ClassVar[str] = "empty"


@dataclass(frozen=True)
class UnknownChunk:
    kind: ClassVar[str] = "unknown"
    raw: Any = field(default=None, compare=False)


CanonicalChunk = Union[
    AssistantText, ToolCalls, SystemChunk, ErrorChunk, EmptyChunk, UnknownChunk
]

# Chunks that carry nothing for the client.
SILENT_KINDS = frozenset({SystemChunk.kind, EmptyChunk.kind, UnknownChunk.kind})
