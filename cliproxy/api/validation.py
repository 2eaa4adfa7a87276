"""Validation of incoming chat completion requests."""

from typing import Any, Mapping

from ..core.exceptions import RequestValidationError
from ..messages.adapter import normalize_message_content
from ..types import ChatMessage, ChatRequest

VALID_ROLES = ("system", "user", "assistant")
MAX_STOP_SEQUENCES = 4


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_message(message: Any) -> ChatMessage:
    if not isinstance(message, Mapping):
        raise RequestValidationError("Message must be an object", "message")

    role = message.get("role")
    if not role or not isinstance(role, str):
        raise RequestValidationError(
            "Message role is required and must be a string", "message.role"
        )
    if role not in VALID_ROLES:
        raise RequestValidationError(
            f"Message role must be one of: {', '.join(VALID_ROLES)}", "message.role"
        )

    content = message.get("content")
    if not content:
        raise RequestValidationError("Message content is required", "message.content")
    if isinstance(content, list):
        has_text = any(
            isinstance(part, Mapping) and part.get("type") == "text" and part.get("text")
            for part in content
        )
        if not has_text:
            raise RequestValidationError(
                "Message must contain at least one text content block", "message.content"
            )
    elif not isinstance(content, str):
        raise RequestValidationError(
            "Message content must be a string or array", "message.content"
        )

    validated: ChatMessage = {"role": role, "content": normalize_message_content(content)}
    if isinstance(message.get("name"), str):
        validated["name"] = message["name"]
    return validated


def validate_chat_request(body: Any) -> ChatRequest:
    """Validate a decoded request body and return a normalized request.

    Raises:
        RequestValidationError: on the first invalid field.
    """
    if not isinstance(body, Mapping):
        raise RequestValidationError("Request body must be an object")

    model = body.get("model")
    if not model or not isinstance(model, str):
        raise RequestValidationError("Model is required and must be a string", "model")

    messages = body.get("messages")
    if not isinstance(messages, list):
        raise RequestValidationError("Messages is required and must be an array", "messages")
    if not messages:
        raise RequestValidationError("Messages array cannot be empty", "messages")

    validated_messages: list[ChatMessage] = []
    for index, message in enumerate(messages):
        try:
            validated_messages.append(validate_message(message))
        except RequestValidationError as exc:
            raise RequestValidationError(
                f"Invalid message at index {index}: {exc.message}", f"messages[{index}]"
            ) from exc

    validated: ChatRequest = {
        "model": model,
        "messages": validated_messages,
        "stream": bool(body.get("stream")),
        "enable_tools": bool(body.get("enable_tools")),
    }

    if body.get("tools"):
        validated["tools"] = body["tools"]
    if body.get("functions"):
        validated["functions"] = body["functions"]

    if body.get("temperature") is not None:
        temperature = body["temperature"]
        if not _is_number(temperature) or temperature < 0 or temperature > 2:
            raise RequestValidationError(
                "Temperature must be a number between 0 and 2", "temperature"
            )
        validated["temperature"] = temperature

    if body.get("max_tokens") is not None:
        max_tokens = body["max_tokens"]
        if not _is_int(max_tokens) or max_tokens < 1:
            raise RequestValidationError("max_tokens must be a positive integer", "max_tokens")
        validated["max_tokens"] = max_tokens

    if body.get("top_p") is not None:
        top_p = body["top_p"]
        if not _is_number(top_p) or top_p < 0 or top_p > 1:
            raise RequestValidationError("top_p must be a number between 0 and 1", "top_p")
        validated["top_p"] = top_p

    if body.get("n") is not None:
        n = body["n"]
        if not _is_int(n) or n != 1:
            raise RequestValidationError("n must be 1 (multiple responses not supported)", "n")
        validated["n"] = n

    if body.get("stop") is not None:
        stop = body["stop"]
        if isinstance(stop, str):
            validated["stop"] = [stop]
        elif isinstance(stop, list) and all(isinstance(item, str) for item in stop):
            if len(stop) > MAX_STOP_SEQUENCES:
                raise RequestValidationError(
                    "stop array cannot contain more than 4 elements", "stop"
                )
            validated["stop"] = list(stop)
        else:
            raise RequestValidationError("stop must be a string or array of strings", "stop")

    return validated
