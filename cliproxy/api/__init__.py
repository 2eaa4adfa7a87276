"""API module for the bridge."""

from .routes import chat_completions, health, list_models
from .streaming import ChatStreamResponse
from .validation import validate_chat_request

__all__ = [
    "ChatStreamResponse",
    "chat_completions",
    "health",
    "list_models",
    "validate_chat_request",
]
