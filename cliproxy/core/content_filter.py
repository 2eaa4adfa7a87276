"""Removal of CLI-internal markup from assistant text."""

import re

# Opening and closing tags may carry a namespace prefix.
TOOL_BLOCK_PATTERN = re.compile(
    r"<(?:antml:)?function_calls>.*?</(?:antml:)?function_calls>", re.DOTALL
)
THINKING_BLOCK_PATTERN = re.compile(
    r"<(?:antml:)?thinking>.*?</(?:antml:)?thinking>", re.DOTALL
)
TOOL_USE_MARKER_PATTERN = re.compile(r"\[Tool Use:.*?\]")
FILE_MARKER_PATTERN = re.compile(r"\[File: .*?\]")
COMMAND_MARKER_PATTERN = re.compile(r"\[Command: .*?\]")
ROLE_PREFIX_PATTERN = re.compile(r"^(?:Assistant|Human):\s*", re.MULTILINE)
EXCESS_NEWLINES_PATTERN = re.compile(r"\n\s*\n\s*\n")

STREAM_MARKUP_PATTERNS = (
    TOOL_BLOCK_PATTERN,
    THINKING_BLOCK_PATTERN,
    TOOL_USE_MARKER_PATTERN,
    FILE_MARKER_PATTERN,
)
COMPLETION_MARKUP_PATTERNS = STREAM_MARKUP_PATTERNS + (
    COMMAND_MARKER_PATTERN,
    ROLE_PREFIX_PATTERN,
)


def _strip_patterns(text: str, patterns: tuple[re.Pattern, ...]) -> str:
    # Removing one block can join the halves of another, so repeat until stable.
    while True:
        stripped = text
        for pattern in patterns:
            stripped = pattern.sub("", stripped)
        if stripped == text:
            return stripped
        text = stripped


def _collapse_whitespace(text: str) -> str:
    return EXCESS_NEWLINES_PATTERN.sub("\n\n", text).strip()


def filter_content(text):
    """Strip tool/thinking markup and file markers from streamed text.

    Blank-line runs are collapsed to a single empty line and the result is
    trimmed. Non-string input is returned unchanged.
    """
    if not text or not isinstance(text, str):
        return text
    return _collapse_whitespace(_strip_patterns(text, STREAM_MARKUP_PATTERNS))


def clean_completion_text(text) -> str:
    """Clean a buffered (non-streaming) CLI answer.

    Same as :func:`filter_content`, and also drops ``[Command: ...]`` markers
    and transcript-style ``Assistant:``/``Human:`` line prefixes.
    """
    if not text or not isinstance(text, str):
        return text or ""
    # Trimming can expose a role prefix at the new start of the text.
    while True:
        cleaned = _collapse_whitespace(_strip_patterns(text, COMPLETION_MARKUP_PATTERNS))
        if cleaned == text:
            return cleaned
        text = cleaned
