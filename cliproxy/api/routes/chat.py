"""OpenAI-compatible chat completions endpoint."""

import json
import logging
from typing import Any, Mapping, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.background import BackgroundTask

from ...core.exceptions import InvalidRequestError, ProxyError, error_payload
from ...core.payloads import build_completion_response
from ...core.registry import get_bridge, get_settings
from ...core.runner import CLIOptions, CLIProcess
from ...core.sse import SSESession
from ...core.translator import StreamTranslator, translate_completion
from ...logging import RequestLogRecorder
from ...messages.adapter import (
    create_usage,
    messages_to_prompt,
    request_to_cli_options,
    request_tools,
    validate_message_flow,
)
from ...types import ChatRequest
from ...usage_metrics import RequestTracker, USAGE_COUNTERS
from ..streaming import ChatStreamResponse
from ..validation import validate_chat_request

logger = logging.getLogger("cliproxy")


def _fail(
    request_log: RequestLogRecorder, tracker: RequestTracker, exc: ProxyError
) -> None:
    request_log.record_error(exc.message, exc.code)
    request_log.record_response(
        exc.status_code, json.dumps(error_payload(exc)).encode("utf-8")
    )
    request_log.finalize("error")
    tracker.finish()


def _recorder_hook(request_log: RequestLogRecorder, system_prompt: Optional[str]):
    def on_process(process: CLIProcess) -> None:
        invocation = process.invocation
        request_log.record_cli_invocation(
            invocation.executable, list(invocation.args), invocation.cwd, system_prompt
        )

        def _on_exit(code: int) -> None:
            request_log.record_cli_exit(code, process.duration_ms)

        process.on_exit(_on_exit)

    return on_process


async def chat_completions(request: Request) -> Response:
    """Chat completions endpoint - OpenAI compatible.

    POST /v1/chat/completions
    """
    logger.info("Received chat completions request")
    tracker = USAGE_COUNTERS.start_request()
    settings = get_settings()
    path = request.url.path

    body = await request.body()
    try:
        payload: Any = json.loads(body or b"{}")
    except ValueError as exc:
        logger.error(f"Invalid JSON payload: {exc}")
        error = InvalidRequestError("Invalid JSON payload", code="invalid_json")
        request_log = RequestLogRecorder("unknown", False, path, enabled=settings.file_logging)
        request_log.record_request(request.method, request.url.query, request.headers, body)
        _fail(request_log, tracker, error)
        raise error from exc

    raw_model = payload.get("model") if isinstance(payload, Mapping) else None
    is_stream = bool(payload.get("stream")) if isinstance(payload, Mapping) else False
    request_log = RequestLogRecorder(
        raw_model if isinstance(raw_model, str) else "unknown",
        is_stream,
        path,
        enabled=settings.file_logging,
    )
    request_log.record_request(request.method, request.url.query, request.headers, body)

    try:
        chat_request = validate_chat_request(payload)
        tools = request_tools(chat_request)
        if tools and not settings.allow_request_tools:
            logger.warning("Tool/function calling attempted but not supported")
            raise InvalidRequestError(
                "Tool/function calling is not supported", code="invalid_request_error"
            )
        logger.info(
            f"Chat completion request: model={chat_request['model']}, "
            f"streaming={chat_request['stream']}"
        )
        parts = messages_to_prompt(chat_request["messages"], tools or None)
        validate_message_flow(chat_request["messages"])
        logger.debug(
            "Message processing: messages=%d system_prompt_len=%d prompt_len=%d",
            len(chat_request["messages"]),
            len(parts.system_prompt or ""),
            len(parts.prompt),
        )
        options = request_to_cli_options(chat_request, settings, stream=chat_request["stream"])
        options.system_prompt = parts.system_prompt
    except ProxyError as exc:
        logger.error(f"Rejected chat completion request: {exc.message}")
        _fail(request_log, tracker, exc)
        raise

    if chat_request["stream"]:
        return _stream_completion(chat_request, parts.prompt, options, request_log, tracker)
    return await _buffered_completion(
        chat_request, parts.prompt, options, bool(tools), request_log, tracker
    )


async def _buffered_completion(
    chat_request: ChatRequest,
    prompt: str,
    options: CLIOptions,
    has_tools: bool,
    request_log: RequestLogRecorder,
    tracker: RequestTracker,
) -> Response:
    bridge = get_bridge()
    try:
        result = await bridge.completion(
            prompt, options, on_process=_recorder_hook(request_log, options.system_prompt)
        )
        message = translate_completion(result.output, has_tools=has_tools)
    except ProxyError as exc:
        logger.error(f"Chat completion failed: {exc.message}")
        _fail(request_log, tracker, exc)
        raise

    request_log.record_cli_interaction(prompt, result.output, streaming=False)
    usage = create_usage(prompt, message.get("content") or "")
    response_body = build_completion_response(chat_request["model"], message, usage)
    request_log.record_usage_stats(usage)
    request_log.record_response(200, json.dumps(response_body).encode("utf-8"))
    request_log.finalize("success")
    tracker.finish()
    logger.info(f"Request for model {chat_request['model']} completed successfully")
    return JSONResponse(content=response_body)


def _stream_completion(
    chat_request: ChatRequest,
    prompt: str,
    options: CLIOptions,
    request_log: RequestLogRecorder,
    tracker: RequestTracker,
) -> Response:
    bridge = get_bridge()
    translator = StreamTranslator(chat_request["model"])

    async def pipeline(session: SSESession) -> None:
        request_log.record_stream_start(200)
        streamed: list[str] = []
        lines = bridge.stream_lines(
            prompt, options, on_process=_recorder_hook(request_log, options.system_prompt)
        )
        try:
            await translator.run(lines, session, on_content=streamed.append)
        except Exception as exc:
            message = exc.message if isinstance(exc, ProxyError) else str(exc)
            code = exc.code if isinstance(exc, ProxyError) else "internal_error"
            logger.error(f"Streaming request error: {message}")
            request_log.record_cli_interaction(prompt, "".join(streamed), streaming=True)
            request_log.record_error(message, code)
            request_log.finalize("error")
            return

        text = "".join(streamed)
        request_log.record_cli_interaction(prompt, text, streaming=True)
        request_log.record_usage_stats(create_usage(prompt, text))
        if translator.state.closed:
            request_log.finalize("client_disconnected")
        else:
            request_log.finalize("success")
            logger.info(f"Streaming request for model {chat_request['model']} completed")

    return ChatStreamResponse(pipeline, background=BackgroundTask(tracker.finish))
