"""Per-request log files and error tracking for the bridge."""

import asyncio
import base64
import json
import logging
import os
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Mapping, Optional

logger = logging.getLogger("cliproxy")

DEFAULT_LOG_ROOT = Path(__file__).resolve().parent.parent.parent.joinpath("logs")
REQUEST_LOG_DIR = DEFAULT_LOG_ROOT.joinpath("requests")
ERROR_LOG_DIR = DEFAULT_LOG_ROOT.joinpath("errors")
_PENDING_LOG_TASKS: set[asyncio.Task] = set()

_MASKED_HEADERS = {"authorization", "proxy-authorization", "cookie", "x-api-key"}


def configure_log_dir(root: Optional[str]) -> None:
    """Point request and error logs at ``root`` (default: ./logs)."""
    global REQUEST_LOG_DIR, ERROR_LOG_DIR
    base = Path(root) if root else DEFAULT_LOG_ROOT
    REQUEST_LOG_DIR = base.joinpath("requests")
    ERROR_LOG_DIR = base.joinpath("errors")


def _register_background_task(task: asyncio.Task) -> None:
    """Register a background task and set up cleanup."""
    _PENDING_LOG_TASKS.add(task)

    def _cleanup(_task: asyncio.Task) -> None:
        _PENDING_LOG_TASKS.discard(_task)

    task.add_done_callback(_cleanup)


async def wait_for_pending_logs() -> int:
    """Await every pending flush task. Returns how many there were."""
    pending = list(_PENDING_LOG_TASKS)
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)
    return len(pending)


def _safe_fragment(text: str) -> str:
    filtered = [ch if ch.isalnum() or ch in {"-", "_"} else "-" for ch in (text or "").strip()]
    collapsed = "".join(filtered).strip("-") or "unknown"
    return collapsed[:48]


def log_error_event(
    model_name: str,
    error_type: str,
    error_message: str,
    http_status: Optional[int] = None,
    request_path: Optional[str] = None,
    request_log_path: Optional[Path] = None,
    extra_context: Optional[dict[str, Any]] = None,
) -> Path:
    """
    Log an error event to the errors subdirectory for easy error tracking.

    This creates a separate, smaller log file per error for quick scanning.
    """
    ERROR_LOG_DIR.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.utcnow()
    timestamp_str = timestamp.strftime("%Y%m%d_%H%M%S")
    short_id = uuid.uuid4().hex[:4]
    filename = f"{timestamp_str}-{short_id}_{_safe_fragment(model_name)}.err"
    error_path = ERROR_LOG_DIR / filename

    lines = [
        f"timestamp={timestamp.isoformat()}Z",
        f"model={model_name or 'unknown'}",
        f"error_type={error_type}",
        f"error_message={error_message}",
    ]
    if http_status is not None:
        lines.append(f"http_status={http_status}")
    if request_path:
        lines.append(f"request_path={request_path}")
    if request_log_path:
        lines.append(f"full_log={request_log_path.name}")
    if extra_context:
        for key, value in extra_context.items():
            lines.append(f"{key}={value}")

    content = "\n".join(lines) + "\n"

    # Write async if possible, sync otherwise
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        error_path.write_text(content, encoding="utf-8")
        return error_path

    async def _write_error_log():
        await asyncio.to_thread(error_path.write_text, content, encoding="utf-8")

    _register_background_task(loop.create_task(_write_error_log()))
    return error_path


class RequestLogRecorder:
    """Capture one request's lifecycle and flush it asynchronously.

    With ``enabled=False`` nothing touches the disk; errors and the final
    outcome still go to the console logger.
    """

    def __init__(
        self,
        model_name: str,
        is_stream: bool,
        path: str,
        enabled: bool = True,
    ) -> None:
        self.model_name = model_name or "unknown"
        self.is_stream = is_stream
        self.request_path = path
        self.enabled = enabled
        timestamp = datetime.utcnow().strftime("%Y%m%d_%H%M%S")
        self.request_id = uuid.uuid4().hex[:8]
        filename = f"{timestamp}-{self.request_id[:4]}_{_safe_fragment(self.model_name)}.log"
        self.log_path = REQUEST_LOG_DIR / filename
        self._buffer = bytearray()
        self._finalized = False
        self._started_dt = datetime.utcnow()
        self._started = self._started_dt.isoformat() + "Z"
        self._last_http_status: Optional[int] = None
        self._error_logged = False
        self._request_json: Optional[dict[str, Any]] = None
        self._cli_json: Optional[dict[str, Any]] = None
        self._usage_stats: Optional[dict[str, Any]] = None
        self._outcome: Optional[str] = None
        if self.enabled:
            REQUEST_LOG_DIR.mkdir(parents=True, exist_ok=True)
            self._append_text(f"log_start={self._started}\n")

    def _append_text(self, text: str) -> None:
        if self.enabled:
            self._buffer.extend(text.encode("utf-8"))

    def record_request(
        self, method: str, query: str, headers: Mapping[str, str], body: bytes
    ) -> None:
        if self._finalized or not self.enabled:
            return
        body_text: Optional[str] = None
        body_json: Optional[Any] = None
        body_base64: Optional[str] = None
        body_is_json = False
        if body:
            try:
                body_text = body.decode("utf-8")
                try:
                    body_json = json.loads(body_text)
                    body_is_json = True
                except json.JSONDecodeError:
                    body_is_json = False
            except UnicodeDecodeError:
                body_base64 = base64.b64encode(body).decode("ascii")
        self._request_json = {
            "request_time": self._started,
            "request_id": self.request_id,
            "model": self.model_name,
            "is_stream": self.is_stream,
            "path": self.request_path,
            "method": method,
            "query": query or "",
            "headers": self._safe_headers(headers),
            "body_len": len(body),
            "body_is_json": body_is_json,
            "body": body_json if body_is_json else body_text,
            "body_base64": body_base64,
        }
        self._append_text(
            f"=== REQUEST ===\nmethod={method}\npath={self.request_path}\n"
            f"headers={json.dumps(self._safe_headers(headers), sort_keys=True)}\n"
            f"body_len={len(body)}\n-- REQUEST BODY START --\n"
        )
        if body:
            self._append_text(self._format_payload(body))
        self._append_text("-- REQUEST BODY END --\n")

    def record_cli_invocation(
        self,
        executable: str,
        args: list[str],
        cwd: Optional[str] = None,
        system_prompt: Optional[str] = None,
    ) -> None:
        if self._finalized or not self.enabled:
            return
        self._cli_json = {"executable": executable, "args": list(args), "cwd": cwd}
        self._append_text(
            f"=== CLI INVOCATION ===\ncommand={' '.join([executable, *args])}\n"
            f"cwd={cwd}\nsystem_prompt_len={len(system_prompt or '')}\n"
        )
        if system_prompt:
            self._append_text(f"-- SYSTEM PROMPT START --\n{system_prompt}\n-- SYSTEM PROMPT END --\n")

    def record_cli_interaction(self, prompt: str, response: str, streaming: bool) -> None:
        """Record the prompt sent on stdin and the assistant text it produced."""
        if self._finalized or not self.enabled:
            return
        self._append_text(
            f"=== CLI INTERACTION (streaming={streaming}) ===\n"
            f"prompt_len={len(prompt)}\n-- PROMPT START --\n{prompt}\n-- PROMPT END --\n"
            f"response_len={len(response or '')}\n-- RESPONSE START --\n{response or ''}\n-- RESPONSE END --\n"
        )

    def record_cli_exit(self, exit_code: Optional[int], duration_ms: Optional[int]) -> None:
        if self._finalized or not self.enabled:
            return
        self._append_text(f"cli_exit_code={exit_code}\ncli_duration_ms={duration_ms}\n")
        if self._cli_json is not None:
            self._cli_json.update({"exit_code": exit_code, "duration_ms": duration_ms})

    def record_response(self, status: int, body: bytes) -> None:
        if self._finalized:
            return
        self._last_http_status = status
        if not self.enabled:
            return
        self._append_text(
            f"=== RESPONSE ===\nstatus={status}\nbody_len={len(body)}\n-- RESPONSE BODY START --\n"
        )
        if body:
            self._append_text(self._format_payload(body))
        self._append_text("-- RESPONSE BODY END --\n")

    def record_stream_start(self, status: int) -> None:
        if self._finalized:
            return
        self._last_http_status = status
        self._append_text(f"=== STREAM RESPONSE ===\nstatus={status}\n")

    def record_error(self, message: str, error_type: Optional[str] = None) -> None:
        if self._finalized:
            return
        self._append_text(f"ERROR: {message}\n")
        if self._error_logged:
            return
        self._error_logged = True
        error_type = error_type or "unknown"
        if not self.enabled:
            logger.error("Request %s failed (%s): %s", self.request_id, error_type, message)
            return
        log_error_event(
            model_name=self.model_name,
            error_type=error_type,
            error_message=message,
            http_status=self._last_http_status,
            request_path=self.request_path,
            request_log_path=self.log_path,
        )

    def record_usage_stats(self, usage: Mapping[str, Any]) -> None:
        if self._finalized:
            return
        if usage:
            self._usage_stats = dict(usage)

    def finalize(self, outcome: str) -> None:
        if self._finalized:
            return
        self._finalized = True
        self._outcome = outcome
        finished_dt = datetime.utcnow()
        duration_ms = int((finished_dt - self._started_dt).total_seconds() * 1000)
        logger.info(
            "Request %s %s finished: %s in %dms",
            self.request_id,
            self.request_path,
            outcome,
            duration_ms,
        )
        if not self.enabled:
            return
        self._append_text(
            f"=== FINAL STATUS: {outcome} at {finished_dt.isoformat()}Z "
            f"duration_ms={duration_ms} ===\n"
        )
        if self._request_json is not None:
            self._request_json["outcome"] = outcome
            self._request_json["duration_ms"] = duration_ms

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._write_to_disk()
            return
        task = loop.create_task(self._flush_async())
        _register_background_task(task)

    @property
    def finalized(self) -> bool:
        return self._finalized

    @property
    def outcome(self) -> Optional[str]:
        return self._outcome

    async def _flush_async(self) -> None:
        await asyncio.to_thread(self._write_to_disk)

    def _write_to_disk(self) -> None:
        tmp_path = self.log_path.with_suffix(self.log_path.suffix + ".tmp")
        with tmp_path.open("wb") as fh:
            fh.write(bytes(self._buffer))
        os.replace(tmp_path, self.log_path)
        self._write_request_json()

    def _write_request_json(self) -> None:
        if not self._request_json:
            return
        json_path = self.log_path.with_suffix(".json")
        tmp_path = json_path.with_suffix(json_path.suffix + ".tmp")
        output_data = dict(self._request_json)
        if self._cli_json:
            output_data["cli"] = self._cli_json
        if self._usage_stats:
            output_data["usage"] = self._usage_stats
        content = json.dumps(output_data, ensure_ascii=True, indent=2)
        tmp_path.write_text(content + "\n", encoding="utf-8")
        os.replace(tmp_path, json_path)

    @staticmethod
    def _safe_headers(data: Mapping[str, str]) -> dict[str, str]:
        masked: dict[str, str] = {}
        for key, value in data.items():
            key, value = str(key), str(value)
            if key.lower() in _MASKED_HEADERS:
                if value.startswith("Bearer "):
                    token = value[7:]
                    masked[key] = f"Bearer {token[:3]}****" if token else value
                else:
                    masked[key] = value[:3] + "****" if len(value) > 3 else "****"
            else:
                masked[key] = value
        return masked

    def _format_payload(self, data: bytes) -> str:
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError:
            return "<non-utf8 binary data omitted>\n"

        stripped = text.strip()
        if stripped and stripped[0] in "{[":
            try:
                text = json.dumps(json.loads(stripped), ensure_ascii=False, indent=2)
            except json.JSONDecodeError:
                pass

        if text.endswith("\n"):
            return text
        return text + "\n"
