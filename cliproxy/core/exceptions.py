"""Core exceptions for the bridge."""

from typing import Any, Optional


class ProxyError(Exception):
    """Base exception for bridge errors."""

    status_code = 500
    error_type = "api_error"
    code = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(ProxyError):
    """Raised when there's an issue with the configuration."""
    pass


class InvalidRequestError(ProxyError):
    """Raised when an incoming request is invalid."""

    status_code = 400
    error_type = "invalid_request_error"

    def __init__(self, message: str, code: str = "invalid_request") -> None:
        super().__init__(message)
        self.code = code


class RequestValidationError(ProxyError):
    """Raised when a chat completion request fails schema validation."""

    status_code = 422
    error_type = "validation_error"
    code = "invalid_request_error"

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class SpawnFailure(ProxyError):
    """The CLI executable could not be started."""

    error_type = "cli_error"
    code = "spawn_failed"


class SubprocessExitFailure(ProxyError):
    """The CLI exited with a non-zero status.

    The accumulated stdout is kept on the exception so callers can decide
    whether the partial output is usable.
    """

    status_code = 502
    error_type = "cli_error"
    code = "cli_exit_failure"

    def __init__(self, exit_code: Optional[int], output: str = "", stderr: str = "") -> None:
        message = f"Claude CLI exited with code {exit_code}"
        if output:
            message += f". Output: {output}"
        if stderr:
            message += f". Stderr: {stderr.strip()}"
        super().__init__(message)
        self.exit_code = exit_code
        self.output = output
        self.stderr = stderr


class NoOutputError(ProxyError):
    """The CLI exited cleanly without producing a single output line."""

    status_code = 502
    error_type = "cli_error"
    code = "no_output"

    def __init__(
        self,
        message: str = "No output from Claude CLI - check model name and authentication",
    ) -> None:
        super().__init__(message)


class StreamProtocolError(ProxyError):
    """The CLI signalled a failure in the middle of its output."""

    status_code = 502
    error_type = "streaming_error"
    code = "stream_error"


class MalformedLineError(ProxyError):
    """A single CLI output line is not valid JSON. Never leaves the normalizer."""
    pass


def error_payload(exc: BaseException) -> dict[str, Any]:
    """Build an OpenAI-style error object for an exception."""
    if isinstance(exc, ProxyError):
        error: dict[str, Any] = {
            "message": exc.message,
            "type": exc.error_type,
            "code": exc.code,
        }
        field = getattr(exc, "field", None)
        if field:
            error["field"] = field
        return {"error": error}
    return {
        "error": {
            "message": str(exc) or exc.__class__.__name__,
            "type": "internal_error",
            "code": "internal_error",
        }
    }
