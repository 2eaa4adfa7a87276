"""Classification of raw CLI output lines into canonical chunks.

The Claude CLI prints several structurally different shapes depending on
version and flags:

    {"type":"system","subtype":"init",...}
    {"type":"assistant","message":{"content":[{"type":"text","text":"Hi"}]}}
    {"type":"assistant","message":{"content":[{"type":"tool_use","id":"t1",...}]}}
    {"type":"user","message":{"content":[{"type":"tool_result",...}]}}
    {"type":"result","subtype":"success","result":"Hi",...}
    {"content":[{"type":"text","text":"Hi"}]}
    {"tool_calls":[{"id":"call_1","type":"function","function":{...}}]}
    {"type":"text","content":"Hi"}
    plain text

:func:`normalize_line` maps each of them onto exactly one
:mod:`cliproxy.core.chunks` variant with a single ordered match.
"""

import json
import logging
import secrets
import time
from typing import Any, Mapping

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
from .exceptions import MalformedLineError

logger = logging.getLogger("cliproxy")

SYSTEM_EVENT_TYPES = frozenset({"system", "result", "user"})
_ID_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


def generate_call_id() -> str:
    """Return a unique id for a tool call the CLI did not label."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"call_{int(time.time() * 1000)}_{suffix}"


def normalize_line(line: str) -> CanonicalChunk:
    """Classify one line of CLI output. Never raises."""
    try:
        if line is None or not line.strip():
            return EmptyChunk()
        stripped = line.strip()
        try:
            parsed = _parse_structured(stripped)
        except MalformedLineError:
            return AssistantText(stripped)
        return normalize_event(parsed)
    except Exception as exc:
        logger.debug("Error normalizing CLI output line: %s", exc)
        return ErrorChunk(str(exc) or exc.__class__.__name__)


def _parse_structured(line: str) -> Any:
    try:
        return json.loads(line)
    except (json.JSONDecodeError, ValueError) as exc:
        raise MalformedLineError(f"not JSON: {exc}") from exc


def normalize_event(event: Any) -> CanonicalChunk:
    """Classify an already-decoded CLI event, first match wins."""
    if isinstance(event, str):
        return AssistantText(event)
    if not isinstance(event, Mapping):
        return UnknownChunk(event)

    event_type = event.get("type")

    if event_type in SYSTEM_EVENT_TYPES:
        if event_type == "result" and event.get("is_error"):
            logger.warning(
                "Claude CLI reported an unsuccessful result: subtype=%s",
                event.get("subtype"),
            )
        return SystemChunk(event)

    if event_type == "error":
        return ErrorChunk(_error_message(event))

    if event_type == "assistant" and isinstance(event.get("message"), Mapping):
        content = event["message"].get("content")
        if isinstance(content, list):
            tool_blocks = _tool_use_blocks(content)
            if tool_blocks:
                return ToolCalls(tuple(_tool_call_from_block(b) for b in tool_blocks))
            return AssistantText(extract_text(content))
        if isinstance(content, str):
            return AssistantText(content)

    content = event.get("content")
    tool_calls = event.get("tool_calls")
    if (isinstance(tool_calls, list) and tool_calls) or (
        isinstance(content, list) and _tool_use_blocks(content)
    ):
        return _parse_tool_calls(event)

    if isinstance(content, list):
        return AssistantText(extract_text(content))

    if event_type == "text" and isinstance(content, str) and content:
        return AssistantText(content)

    logger.debug("Unrecognized CLI output shape: keys=%s", sorted(event.keys()))
    return UnknownChunk(event)


def extract_text(content: Any) -> str:
    """Concatenate the text of a content block list, in order."""
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""
    parts: list[str] = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, Mapping):
            if block.get("text"):
                parts.append(str(block["text"]))
            elif block.get("content"):
                parts.append(extract_text(block["content"]))
    return "".join(parts)


def _tool_use_blocks(content: list[Any]) -> list[Mapping[str, Any]]:
    return [
        block
        for block in content
        if isinstance(block, Mapping) and block.get("type") == "tool_use"
    ]


def _compact_json(value: Any) -> str:
    """Serialize like ``JSON.stringify``: no spaces, non-ASCII kept as is."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def _tool_call_from_block(block: Mapping[str, Any]) -> ToolCallData:
    return ToolCallData(
        id=block.get("id") or generate_call_id(),
        name=block.get("name") or "",
        arguments=_compact_json(block.get("input") or {}),
    )


def _tool_call_from_openai(entry: Any) -> ToolCallData | None:
    if not isinstance(entry, Mapping):
        return None
    function = entry.get("function")
    if isinstance(function, Mapping):
        name = function.get("name")
        arguments = function.get("arguments")
    else:
        name = entry.get("name")
        arguments = entry.get("arguments", entry.get("input"))
    if arguments is None:
        arguments = "{}"
    elif not isinstance(arguments, str):
        arguments = _compact_json(arguments)
    return ToolCallData(
        id=entry.get("id") or generate_call_id(),
        name=name or "",
        arguments=arguments,
    )


def _parse_tool_calls(event: Mapping[str, Any]) -> CanonicalChunk:
    calls: list[ToolCallData] = []
    direct = event.get("tool_calls")
    content = event.get("content")
    if isinstance(direct, list) and direct:
        for entry in direct:
            call = _tool_call_from_openai(entry)
            if call is not None:
                calls.append(call)
    elif isinstance(content, list):
        calls = [_tool_call_from_block(block) for block in _tool_use_blocks(content)]

    if calls:
        return ToolCalls(tuple(calls))
    return AssistantText(extract_text(content))


def _error_message(event: Mapping[str, Any]) -> str:
    error = event.get("error")
    if isinstance(error, Mapping):
        message = error.get("message")
        if message:
            return str(message)
        return _compact_json(error)
    if isinstance(error, str) and error:
        return error
    message = event.get("message")
    if isinstance(message, str) and message:
        return message
    return "Claude stream error"
