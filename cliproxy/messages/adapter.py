"""Conversion of OpenAI chat requests into Claude CLI prompts and options.

The CLI is stateless from the bridge's point of view: every request carries
the full conversation, which is rendered as a ``Human:``/``Assistant:``
transcript on stdin. System messages go to a separate system prompt file.
"""

from __future__ import annotations

import json
import logging
import math
import secrets
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterable, Optional, Sequence

from ..core.runner import CLIOptions
from ..types import ChatMessage, ChatRequest, Usage

if TYPE_CHECKING:
    from ..config_loader import BridgeSettings

logger = logging.getLogger("cliproxy")

IMAGE_PLACEHOLDER = "[Image provided but not displayed in text mode]"
CONTINUE_PROMPT = "Human: Please continue."

TOOL_REPLY_TEMPLATE = """When you determine a tool should be used, respond with ONLY this JSON format (no other text):
{{
  "tool_calls": [
    {{
      "id": "{call_id}",
      "type": "function",
      "function": {{
        "name": "exact_tool_name",
        "arguments": "{{\\"param\\": \\"value\\"}}"
      }}
    }}
  ],
  "content": null
}}

IMPORTANT: If the user's request requires using one of these tools (like asking about weather when you have get_weather), you MUST return the JSON above. Do not say you cannot access it."""


@dataclass(frozen=True)
class PromptParts:
    system_prompt: Optional[str]
    prompt: str


def normalize_message_content(content: Any) -> str:
    """Flatten OpenAI message content to plain text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        lines: list[str] = []
        for part in content:
            if not isinstance(part, dict):
                continue
            if part.get("type") == "text" and part.get("text"):
                lines.append(str(part["text"]))
            elif part.get("type") == "image_url":
                lines.append(IMAGE_PLACEHOLDER)
        return "\n".join(lines).strip()
    if content is None:
        return ""
    return str(content)


def build_tool_instruction(tools: Iterable[dict[str, Any]]) -> str:
    """Describe the offered tools and the JSON reply shape the CLI must use."""
    lines = ["You have access to the following tools/functions:", ""]
    for tool in tools:
        function = tool.get("function") if isinstance(tool, dict) else None
        if not isinstance(function, dict):
            continue
        lines.append(
            f"- {function.get('name')}: {function.get('description') or 'No description'}"
        )
        if function.get("parameters"):
            lines.append(f"  Parameters: {json.dumps(function['parameters'])}")
    call_id = f"call_{int(time.time() * 1000)}_{secrets.token_hex(4)}"
    lines.append("")
    lines.append(TOOL_REPLY_TEMPLATE.format(call_id=call_id))
    return "\n".join(lines)


def messages_to_prompt(
    messages: Sequence[ChatMessage],
    tools: Optional[Sequence[dict[str, Any]]] = None,
) -> PromptParts:
    """Render a conversation as a system prompt plus a transcript prompt."""
    system_parts: list[str] = []
    turns: list[str] = []

    for message in messages:
        role = message.get("role")
        content = normalize_message_content(message.get("content"))
        if role == "system":
            system_parts.append(content)
        elif role == "user":
            turns.append(f"Human: {content}")
        elif role == "assistant":
            turns.append(f"Assistant: {content}")
        else:
            logger.warning("Unknown message role: %s", role)

    if messages and messages[-1].get("role") != "user":
        turns.append(CONTINUE_PROMPT)

    system_prompt = "\n".join(system_parts).strip()
    if tools:
        system_prompt = f"{system_prompt}\n\n{build_tool_instruction(tools)}".strip()

    return PromptParts(
        system_prompt=system_prompt or None,
        prompt="\n\n".join(turns).strip(),
    )


def request_tools(request: ChatRequest) -> list[dict[str, Any]]:
    """Return the tools of a request, accepting legacy ``functions`` too."""
    tools = list(request.get("tools") or [])
    for function in request.get("functions") or []:
        tools.append({"type": "function", "function": function})
    return tools


def request_to_cli_options(
    request: ChatRequest, settings: "BridgeSettings", stream: bool = False
) -> CLIOptions:
    """Map a validated request and the bridge settings to CLI options."""
    model = request.get("model")
    if settings.pass_model:
        logger.info("Using model: %s (passed to Claude CLI)", model)
    else:
        logger.info("Using model: %s (not passed to Claude CLI)", model)
        model = None

    tools = request_tools(request)
    if tools:
        names = [
            (tool.get("function") or {}).get("name") for tool in tools if isinstance(tool, dict)
        ]
        logger.info(
            "Request includes %d tools, returned as JSON instead of executed: %s",
            len(tools),
            names,
        )

    return CLIOptions(
        model=model,
        max_turns=settings.max_turns,
        stream=stream,
        allowed_tools=list(settings.allowed_tools),
        disallowed_tools=list(settings.disallowed_tools),
        permission_mode=settings.permission_mode,
    )


def estimate_tokens(text: Optional[str]) -> int:
    """Roughly one token per four characters. Not a tokenizer."""
    if not text or not isinstance(text, str):
        return 0
    return max(1, math.ceil(len(text) / 4))


def create_usage(prompt: str, completion: Optional[str]) -> Usage:
    prompt_tokens = estimate_tokens(prompt)
    completion_tokens = estimate_tokens(completion)
    return {
        "prompt_tokens": prompt_tokens,
        "completion_tokens": completion_tokens,
        "total_tokens": prompt_tokens + completion_tokens,
    }


def validate_message_flow(messages: Sequence[ChatMessage]) -> list[str]:
    """Advisory checks on turn order. Never rejects a request."""
    issues: list[str] = []
    if not messages:
        issues.append("Messages array is empty")
        return issues

    expecting_user = True
    system_seen = 0
    for index, message in enumerate(messages):
        role = message.get("role")
        if role == "system":
            system_seen += 1
            if index != 0 and system_seen == 1:
                issues.append("System message should be first message")
            continue
        if role == "user":
            if not expecting_user and index > 0:
                issues.append(
                    f"Unexpected user message at position {index} (expected assistant)"
                )
            expecting_user = False
        elif role == "assistant":
            if expecting_user:
                issues.append(
                    f"Unexpected assistant message at position {index} (expected user)"
                )
            expecting_user = True

    if messages[-1].get("role") != "user":
        issues.append("Conversation should typically end with user message")

    for issue in issues:
        logger.debug("Message flow: %s", issue)
    return issues
