"""Claude CLI subprocess runner.

One :class:`CLIProcess` owns exactly one invocation of the CLI. The prompt is
written to stdin and stdin is closed right after (one-shot, no REPL). Output
is pumped concurrently from stdout and stderr and handed to listeners as
decoded text fragments.
"""

import asyncio
import codecs
import inspect
import logging
import os
import secrets
import signal
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping, Optional

from .exceptions import SpawnFailure, SubprocessExitFailure

logger = logging.getLogger("cliproxy")

READ_CHUNK_SIZE = 4096
SYSTEM_PROMPT_FILE_PREFIX = "claude-system-prompt-"

Listener = Callable[..., Optional[Awaitable[Any]]]
Remover = Callable[[], None]

_PENDING_CLI_TASKS: set[asyncio.Task] = set()


def _register_background_task(task: asyncio.Task) -> None:
    """Keep a reference to a supervisor task until it finishes."""
    _PENDING_CLI_TASKS.add(task)

    def _cleanup(_task: asyncio.Task) -> None:
        _PENDING_CLI_TASKS.discard(_task)

    task.add_done_callback(_cleanup)


@dataclass
class CLIOptions:
    """Per-request knobs that end up on the CLI command line."""

    model: Optional[str] = None
    system_prompt: Optional[str] = None
    max_turns: Optional[int] = None
    stream: bool = False
    allowed_tools: list[str] = field(default_factory=list)
    disallowed_tools: list[str] = field(default_factory=list)
    permission_mode: Optional[str] = None
    cwd: Optional[str] = None
    env: dict[str, str] = field(default_factory=dict)


def build_cli_args(
    options: CLIOptions, system_prompt_file: Optional[Path] = None
) -> list[str]:
    """Build the CLI argument vector. The prompt itself is never on argv."""
    args: list[str] = []
    if options.model:
        args.extend(["--model", options.model])
    if system_prompt_file is not None:
        args.extend(["--system-prompt-file", str(system_prompt_file)])
    if options.max_turns is not None:
        args.extend(["--max-turns", str(options.max_turns)])
    args.append("--print")
    if options.stream:
        args.extend(["--output-format", "stream-json", "--verbose"])
    if options.allowed_tools:
        args.extend(["--allowedTools", ",".join(options.allowed_tools)])
    if options.disallowed_tools:
        args.extend(["--disallowedTools", ",".join(options.disallowed_tools)])
    if options.permission_mode:
        args.extend(["--permission-mode", options.permission_mode])
    return args


def create_system_prompt_file(text: str) -> Path:
    """Write a system prompt to a uniquely named temp file."""
    filename = (
        f"{SYSTEM_PROMPT_FILE_PREFIX}{int(time.time() * 1000)}-"
        f"{secrets.token_hex(4)}.txt"
    )
    path = Path(tempfile.gettempdir()) / filename
    try:
        path.write_text(text, encoding="utf-8")
    except OSError as exc:
        raise SpawnFailure(f"Failed to create system prompt file: {exc}") from exc
    logger.debug("Created system prompt file %s", path)
    return path


def cleanup_system_prompt_file(path: Optional[Path]) -> None:
    """Remove a system prompt file. Failures are logged, never raised."""
    if path is None:
        return
    try:
        Path(path).unlink()
    except FileNotFoundError:
        return
    except OSError as exc:
        logger.warning("Failed to clean up system prompt file %s: %s", path, exc)
        return
    logger.debug("Removed system prompt file %s", path)


@dataclass(frozen=True)
class CLIInvocation:
    """Everything needed to spawn the CLI once."""

    executable: str
    args: tuple[str, ...]
    cwd: Optional[str] = None
    env: Optional[Mapping[str, str]] = None
    stdin_payload: str = ""
    system_prompt_file: Optional[Path] = None

    def describe(self) -> str:
        return " ".join([self.executable, *self.args])


@dataclass(frozen=True)
class CLIResult:
    output: str
    exit_code: int
    duration_ms: int
    stderr: str = ""


class CLIProcess:
    """A single running CLI subprocess with listener-based output events.

    Listeners may be plain callables or coroutine functions. Coroutine
    listeners are awaited in registration order before the next read, so a
    slow consumer slows down the pipe reader instead of growing a buffer.
    """

    _EVENTS = (
        "stdout_data",
        "stderr_data",
        "stdout_end",
        "stream_error",
        "exit",
        "spawn_error",
    )

    def __init__(self, invocation: CLIInvocation) -> None:
        self.invocation = invocation
        self.exit_code: Optional[int] = None
        self._listeners: dict[str, list[Listener]] = {name: [] for name in self._EVENTS}
        self._process: Optional[asyncio.subprocess.Process] = None
        self._supervisor: Optional[asyncio.Task] = None
        self._stdout_parts: list[str] = []
        self._stderr_parts: list[str] = []
        self._started_at: Optional[float] = None
        self._finished_at: Optional[float] = None
        self._spawn_attempted = False

    # ------------------------------------------------------------------
    # Listener registration
    # ------------------------------------------------------------------

    def _add_listener(self, event: str, callback: Listener) -> Remover:
        listeners = self._listeners[event]
        listeners.append(callback)

        def remove() -> None:
            if callback in listeners:
                listeners.remove(callback)

        return remove

    def on_stdout_data(self, callback: Listener) -> Remover:
        return self._add_listener("stdout_data", callback)

    def on_stderr_data(self, callback: Listener) -> Remover:
        return self._add_listener("stderr_data", callback)

    def on_stdout_end(self, callback: Listener) -> Remover:
        return self._add_listener("stdout_end", callback)

    def on_stream_error(self, callback: Listener) -> Remover:
        return self._add_listener("stream_error", callback)

    def on_exit(self, callback: Listener) -> Remover:
        return self._add_listener("exit", callback)

    def on_spawn_error(self, callback: Listener) -> Remover:
        return self._add_listener("spawn_error", callback)

    def listener_count(self) -> int:
        return sum(len(listeners) for listeners in self._listeners.values())

    async def _emit(self, event: str, *args: Any) -> None:
        for listener in list(self._listeners[event]):
            try:
                result = listener(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.error("CLI %s listener failed: %s", event, exc, exc_info=True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Spawn the CLI and start pumping its output."""
        if self._spawn_attempted:
            raise RuntimeError("CLI process already started")
        self._spawn_attempted = True
        invocation = self.invocation
        self._started_at = time.monotonic()
        logger.debug("Spawning Claude CLI: %s", invocation.describe())
        try:
            self._process = await asyncio.create_subprocess_exec(
                invocation.executable,
                *invocation.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=invocation.cwd,
                env=dict(invocation.env) if invocation.env is not None else None,
            )
        except OSError as exc:
            self._finished_at = time.monotonic()
            cleanup_system_prompt_file(invocation.system_prompt_file)
            error = SpawnFailure(_spawn_error_message(invocation.executable, exc))
            logger.error("Failed to spawn Claude CLI: %s", error.message)
            await self._emit("spawn_error", error)
            raise error from exc

        self._supervisor = asyncio.create_task(self._supervise())
        _register_background_task(self._supervisor)

    async def _supervise(self) -> int:
        process = self._process
        assert process is not None
        pumps = [
            asyncio.create_task(self._write_stdin(process)),
            asyncio.create_task(
                self._pump(process.stdout, self._stdout_parts, "stdout_data")
            ),
            asyncio.create_task(
                self._pump(process.stderr, self._stderr_parts, "stderr_data")
            ),
        ]
        try:
            await asyncio.gather(*pumps)
            code = await process.wait()
        except BaseException:
            for task in pumps:
                task.cancel()
            if process.returncode is None:
                _terminate(process)
            raise
        finally:
            self._finished_at = time.monotonic()
            cleanup_system_prompt_file(self.invocation.system_prompt_file)

        self.exit_code = code
        logger.debug(
            "Claude CLI exited with code %s after %sms", code, self.duration_ms
        )
        await self._emit("exit", code)
        return code

    async def _write_stdin(self, process: asyncio.subprocess.Process) -> None:
        if process.stdin is None:
            return
        try:
            if self.invocation.stdin_payload:
                process.stdin.write(self.invocation.stdin_payload.encode("utf-8"))
                await process.stdin.drain()
        except OSError as exc:
            logger.debug("Claude CLI stdin write failed: %s", exc)
        finally:
            process.stdin.close()

    async def _pump(
        self,
        stream: Optional[asyncio.StreamReader],
        parts: list[str],
        event: str,
    ) -> None:
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while True:
                data = await stream.read(READ_CHUNK_SIZE)
                if not data:
                    break
                text = decoder.decode(data)
                if text:
                    parts.append(text)
                    await self._emit(event, text)
            tail = decoder.decode(b"", final=True)
            if tail:
                parts.append(tail)
                await self._emit(event, tail)
        except (OSError, ValueError) as exc:
            logger.warning("Error reading Claude CLI %s: %s", event, exc)
            if event == "stdout_data":
                await self._emit("stream_error", exc)
            return
        if event == "stdout_data":
            await self._emit("stdout_end")

    async def wait(self) -> int:
        """Wait for the process to exit and return its exit code."""
        if self._supervisor is None:
            raise RuntimeError("CLI process has not been started")
        return await asyncio.shield(self._supervisor)

    def kill(self, sig: int = signal.SIGTERM) -> None:
        """Signal the process. No-op when it is not running."""
        if self._process is None or not self.is_running:
            return
        logger.debug("Sending signal %s to Claude CLI pid=%s", sig, self._process.pid)
        _send_signal(self._process, sig)

    async def run(self) -> CLIResult:
        """Run to completion and return the buffered output."""
        await self.start()
        code = await self.wait()
        if code != 0:
            raise SubprocessExitFailure(code, self.output, self.stderr_output)
        return CLIResult(
            output=self.output,
            exit_code=code,
            duration_ms=self.duration_ms or 0,
            stderr=self.stderr_output,
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def output(self) -> str:
        return "".join(self._stdout_parts)

    @property
    def stderr_output(self) -> str:
        return "".join(self._stderr_parts)

    @property
    def duration_ms(self) -> Optional[int]:
        if self._started_at is None:
            return None
        finished = self._finished_at if self._finished_at is not None else time.monotonic()
        return int((finished - self._started_at) * 1000)


def _send_signal(process: asyncio.subprocess.Process, sig: int) -> None:
    try:
        process.send_signal(sig)
    except ProcessLookupError:
        pass


def _terminate(process: asyncio.subprocess.Process) -> None:
    try:
        process.kill()
    except ProcessLookupError:
        pass


def _spawn_error_message(executable: str, exc: OSError) -> str:
    if isinstance(exc, FileNotFoundError):
        return (
            f"Claude CLI not found at '{executable}'. "
            "Install it or set cli.path / CLIPROXY_CLI_PATH"
        )
    if isinstance(exc, PermissionError):
        return f"Permission denied executing Claude CLI at '{executable}'"
    return f"Failed to start Claude CLI: {exc}"


def inherited_environment(*extra: Optional[Mapping[str, str]]) -> dict[str, str]:
    """Return ``os.environ`` overlaid with the given mappings, in order."""
    env = dict(os.environ)
    for mapping in extra:
        if mapping:
            env.update({str(k): str(v) for k, v in mapping.items()})
    return env
