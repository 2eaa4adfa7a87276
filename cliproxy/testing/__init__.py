"""Testing utilities for in-process bridge simulations."""

from .assertions import (
    DONE,
    assert_chat_stream_valid,
    assert_openai_chat_valid,
    parse_sse_events,
    stream_content,
    stream_deltas,
    stream_errors,
)
from .fake_cli import FakeCLI
from .harness import BridgeHarness

__all__ = [
    # Core simulation classes
    "BridgeHarness",
    "FakeCLI",
    # SSE helpers
    "DONE",
    "parse_sse_events",
    "stream_content",
    "stream_deltas",
    "stream_errors",
    # Assertions
    "assert_chat_stream_valid",
    "assert_openai_chat_valid",
]
