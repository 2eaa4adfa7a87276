"""OpenAI chat message helpers.

Renders OpenAI-format conversations into the transcript prompt the Claude CLI
reads on stdin, and maps request parameters onto CLI options.
"""

from .adapter import (
    PromptParts,
    create_usage,
    estimate_tokens,
    messages_to_prompt,
    normalize_message_content,
    request_to_cli_options,
    request_tools,
    validate_message_flow,
)

__all__ = [
    "PromptParts",
    "create_usage",
    "estimate_tokens",
    "messages_to_prompt",
    "normalize_message_content",
    "request_to_cli_options",
    "request_tools",
    "validate_message_flow",
]
