"""Request-level orchestration of Claude CLI runs."""

from __future__ import annotations

import dataclasses
import logging
from contextlib import aclosing
from typing import TYPE_CHECKING, AsyncIterator, Callable, Optional

from ..usage_metrics import USAGE_COUNTERS, UsageCounters
from .chunk_iterator import ChunkIterator, iter_lines
from .exceptions import ProxyError, StreamProtocolError, SubprocessExitFailure
from .runner import (
    CLIInvocation,
    CLIOptions,
    CLIProcess,
    CLIResult,
    build_cli_args,
    create_system_prompt_file,
    inherited_environment,
)

if TYPE_CHECKING:
    from ..config_loader import BridgeSettings

logger = logging.getLogger("cliproxy")

VERIFY_PROMPT = "Hello"


class ClaudeCLI:
    """Runs the Claude CLI for chat requests using the configured settings."""

    def __init__(
        self, settings: "BridgeSettings", counters: Optional[UsageCounters] = None
    ) -> None:
        self.settings = settings
        self.counters = counters or USAGE_COUNTERS

    def build_invocation(self, prompt: str, options: CLIOptions) -> CLIInvocation:
        system_prompt_file = None
        if options.system_prompt:
            system_prompt_file = create_system_prompt_file(options.system_prompt)
        return CLIInvocation(
            executable=self.settings.cli_path,
            args=tuple(build_cli_args(options, system_prompt_file)),
            cwd=options.cwd or self.settings.cli_cwd,
            env=inherited_environment(self.settings.cli_env, options.env),
            stdin_payload=prompt,
            system_prompt_file=system_prompt_file,
        )

    def _new_process(self, prompt: str, options: CLIOptions) -> CLIProcess:
        invocation = self.build_invocation(prompt, options)
        process = CLIProcess(invocation)

        def _record_exit(code: int) -> None:
            self._record_invocation(process, code)

        def _record_spawn_error(_exc: BaseException) -> None:
            self._record_invocation(process, None)

        def _log_stderr(text: str) -> None:
            logger.debug("Claude CLI stderr: %s", text.rstrip())

        process.on_exit(_record_exit)
        process.on_spawn_error(_record_spawn_error)
        process.on_stderr_data(_log_stderr)
        return process

    def _record_invocation(self, process: CLIProcess, exit_code: Optional[int]) -> None:
        duration_ms = process.duration_ms or 0
        ok = exit_code == 0
        logger.info(
            "Claude CLI call: %s (%sms) %s",
            process.invocation.describe(),
            duration_ms,
            "ok" if ok else f"failed (exit={exit_code})",
        )
        self.counters.record_cli_invocation(exit_code, duration_ms)

    async def stream_lines(
        self,
        prompt: str,
        options: CLIOptions,
        on_process: Optional[Callable[[CLIProcess], None]] = None,
    ) -> AsyncIterator[str]:
        """Run the CLI in stream-json mode and yield its output lines.

        After the last line the exit status is checked; a non-zero exit
        raises :class:`SubprocessExitFailure` with the partial output.
        """
        options = dataclasses.replace(options, stream=True)
        process = self._new_process(prompt, options)
        chunks = ChunkIterator(process)
        if on_process is not None:
            on_process(process)
        completed = False
        try:
            await process.start()
            async with aclosing(iter_lines(chunks)) as lines:
                try:
                    async for line in lines:
                        yield line
                except OSError as exc:
                    raise StreamProtocolError(
                        f"Error reading Claude CLI output: {exc}"
                    ) from exc
            code = await process.wait()
            completed = True
            if process.stderr_output.strip():
                logger.warning("Claude CLI stderr output: %s", process.stderr_output.strip())
            if code != 0:
                raise SubprocessExitFailure(code, process.output, process.stderr_output)
        finally:
            await chunks.aclose()
            if not completed and process.is_running:
                if self.settings.kill_on_disconnect:
                    logger.info("Killing Claude CLI pid=%s after early stream close", process.pid)
                    process.kill()
                else:
                    logger.info(
                        "Stream closed early, Claude CLI pid=%s keeps running to completion",
                        process.pid,
                    )

    async def completion(
        self,
        prompt: str,
        options: CLIOptions,
        on_process: Optional[Callable[[CLIProcess], None]] = None,
    ) -> CLIResult:
        """Run the CLI once and return its buffered output."""
        options = dataclasses.replace(options, stream=False)
        process = self._new_process(prompt, options)
        if on_process is not None:
            on_process(process)
        return await process.run()

    async def verify(self) -> bool:
        """Check the CLI is installed and authenticated with a trivial prompt."""
        logger.info("Verifying Claude CLI...")
        try:
            await self.completion(VERIFY_PROMPT, CLIOptions())
        except ProxyError as exc:
            logger.error("Claude CLI verification failed: %s", exc.message)
            return False
        logger.info("Claude CLI verification successful")
        return True
