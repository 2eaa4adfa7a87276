"""Tests for the Claude CLI subprocess runner.

Every test spawns a real child process: a FakeCLI script run by the current
Python interpreter.
"""

import asyncio
import os
from pathlib import Path

import pytest

from cliproxy.core.exceptions import SpawnFailure, SubprocessExitFailure
from cliproxy.core.runner import (
    CLIInvocation,
    CLIOptions,
    CLIProcess,
    _PENDING_CLI_TASKS,
    build_cli_args,
    cleanup_system_prompt_file,
    create_system_prompt_file,
    inherited_environment,
)
from cliproxy.testing import FakeCLI


def _invocation(path: Path, cwd: Path, stdin: str = "Human: hi", **kwargs) -> CLIInvocation:
    return CLIInvocation(
        executable=str(path),
        args=tuple(kwargs.pop("args", ("--print",))),
        cwd=str(cwd),
        stdin_payload=stdin,
        **kwargs,
    )


class TestBuildCliArgs:
    """Tests for the CLI argument vector."""

    def test_minimal(self):
        assert build_cli_args(CLIOptions()) == ["--print"]

    def test_full_order(self, tmp_path):
        """Flags appear in a fixed order with --print in the middle."""
        prompt_file = tmp_path / "prompt.txt"
        options = CLIOptions(
            model="claude-x",
            max_turns=3,
            stream=True,
            allowed_tools=["Read", "Grep"],
            disallowed_tools=["Bash"],
            permission_mode="plan",
        )
        assert build_cli_args(options, prompt_file) == [
            "--model", "claude-x",
            "--system-prompt-file", str(prompt_file),
            "--max-turns", "3",
            "--print",
            "--output-format", "stream-json", "--verbose",
            "--allowedTools", "Read,Grep",
            "--disallowedTools", "Bash",
            "--permission-mode", "plan",
        ]

    def test_prompt_never_in_args(self):
        options = CLIOptions(system_prompt="be terse")
        assert "be terse" not in build_cli_args(options)


class TestSystemPromptFile:
    """Tests for the temporary system prompt file helpers."""

    def test_create_and_cleanup(self):
        path = create_system_prompt_file("You are helpful.")
        assert path.exists()
        assert path.name.startswith("claude-system-prompt-")
        assert path.read_text(encoding="utf-8") == "You are helpful."

        cleanup_system_prompt_file(path)
        assert not path.exists()

    def test_unique_names(self):
        first = create_system_prompt_file("a")
        second = create_system_prompt_file("b")
        try:
            assert first != second
        finally:
            cleanup_system_prompt_file(first)
            cleanup_system_prompt_file(second)

    def test_cleanup_missing_file_is_silent(self, tmp_path):
        cleanup_system_prompt_file(tmp_path / "missing.txt")
        cleanup_system_prompt_file(None)


def test_inherited_environment_overlays_in_order(monkeypatch):
    monkeypatch.setenv("CLIPROXY_TEST_BASE", "base")
    env = inherited_environment({"A": "1", "B": "1"}, None, {"B": "2"})
    assert env["CLIPROXY_TEST_BASE"] == "base"
    assert env["A"] == "1"
    assert env["B"] == "2"


class TestCLIProcess:
    """Tests for one CLI subprocess lifecycle."""

    @pytest.mark.asyncio
    async def test_run_collects_output_and_writes_stdin(self, tmp_path):
        """The prompt goes to stdin and stdout is buffered."""
        fake = FakeCLI(lines=["hello", "world"])
        path = fake.write(tmp_path)

        result = await CLIProcess(_invocation(path, tmp_path, stdin="Human: ping")).run()

        assert result.exit_code == 0
        assert result.output == "hello\nworld\n"
        assert result.duration_ms >= 0
        recorded = fake.recorded()
        assert recorded["stdin"] == "Human: ping"
        assert recorded["argv"] == ["--print"]
        assert Path(recorded["cwd"]).resolve() == tmp_path.resolve()

    @pytest.mark.asyncio
    async def test_environment_is_passed(self, tmp_path):
        fake = FakeCLI(lines=["ok"], env_keys=["CLIPROXY_FAKE_TOKEN"])
        path = fake.write(tmp_path)
        env = inherited_environment({"CLIPROXY_FAKE_TOKEN": "abc"})

        await CLIProcess(_invocation(path, tmp_path, env=env)).run()

        assert fake.recorded()["env"] == {"CLIPROXY_FAKE_TOKEN": "abc"}

    @pytest.mark.asyncio
    async def test_listeners_receive_data_end_and_exit(self, tmp_path):
        """Events fire in order: data..., end, exit."""
        fake = FakeCLI(lines=["a", "b"], stderr="warn\n")
        process = CLIProcess(_invocation(fake.write(tmp_path), tmp_path))
        events = []

        async def on_data(text):
            events.append(("data", text))

        process.on_stdout_data(on_data)
        process.on_stderr_data(lambda text: events.append(("stderr", text)))
        process.on_stdout_end(lambda: events.append(("end",)))
        process.on_exit(lambda code: events.append(("exit", code)))

        await process.start()
        assert await process.wait() == 0

        data = "".join(e[1] for e in events if e[0] == "data")
        assert data == "a\nb\n"
        assert ("stderr", "warn\n") in events
        names = [e[0] for e in events if e[0] != "stderr"]
        assert names.index("end") > max(i for i, n in enumerate(names) if n == "data")
        assert names[-1] == "exit"
        assert process.stderr_output == "warn\n"

    @pytest.mark.asyncio
    async def test_remover_detaches_listener(self, tmp_path):
        fake = FakeCLI(lines=["a"])
        process = CLIProcess(_invocation(fake.write(tmp_path), tmp_path))
        seen = []
        remove = process.on_stdout_data(seen.append)
        assert process.listener_count() == 1
        remove()
        assert process.listener_count() == 0

        await process.run()
        assert seen == []

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_pipeline(self, tmp_path):
        fake = FakeCLI(lines=["a"])
        process = CLIProcess(_invocation(fake.write(tmp_path), tmp_path))

        def broken(_text):
            raise ValueError("listener bug")

        process.on_stdout_data(broken)
        result = await process.run()
        assert result.output == "a\n"

    @pytest.mark.asyncio
    async def test_utf8_split_across_reads(self, tmp_path):
        """Multibyte characters written one byte at a time decode intact."""
        text = "héllo wörld ✓ 日本"
        fake = FakeCLI(lines=[text], byte_chunk_size=1)
        result = await CLIProcess(_invocation(fake.write(tmp_path), tmp_path)).run()
        assert result.output == text + "\n"

    @pytest.mark.asyncio
    async def test_non_zero_exit_raises_with_output(self, tmp_path):
        fake = FakeCLI(lines=["partial"], stderr="auth failed", exit_code=3)
        process = CLIProcess(_invocation(fake.write(tmp_path), tmp_path))

        with pytest.raises(SubprocessExitFailure) as excinfo:
            await process.run()

        assert excinfo.value.exit_code == 3
        assert excinfo.value.output == "partial\n"
        assert "auth failed" in excinfo.value.message
        assert process.exit_code == 3

    @pytest.mark.asyncio
    async def test_missing_executable_raises_spawn_failure(self, tmp_path):
        """A missing binary fails at start and notifies spawn_error listeners."""
        process = CLIProcess(_invocation(tmp_path / "no-such-claude", tmp_path))
        errors = []
        process.on_spawn_error(errors.append)

        with pytest.raises(SpawnFailure) as excinfo:
            await process.start()

        assert "not found" in excinfo.value.message
        assert len(errors) == 1
        assert not process.is_running

    @pytest.mark.asyncio
    async def test_spawn_failure_removes_system_prompt_file(self, tmp_path):
        prompt_file = create_system_prompt_file("sys")
        process = CLIProcess(
            _invocation(tmp_path / "no-such-claude", tmp_path, system_prompt_file=prompt_file)
        )
        with pytest.raises(SpawnFailure):
            await process.start()
        assert not prompt_file.exists()

    @pytest.mark.asyncio
    async def test_system_prompt_file_removed_after_exit(self, tmp_path):
        """The CLI can read the prompt file; it is gone once the process exits."""
        fake = FakeCLI(lines=["ok"])
        path = fake.write(tmp_path)
        prompt_file = create_system_prompt_file("Be brief.")
        invocation = _invocation(
            path,
            tmp_path,
            args=("--system-prompt-file", str(prompt_file), "--print"),
            system_prompt_file=prompt_file,
        )

        await CLIProcess(invocation).run()

        assert fake.recorded_system_prompt() == "Be brief."
        assert not prompt_file.exists()

    @pytest.mark.asyncio
    async def test_start_twice_raises(self, tmp_path):
        process = CLIProcess(_invocation(FakeCLI(lines=["x"]).write(tmp_path), tmp_path))
        await process.start()
        with pytest.raises(RuntimeError):
            await process.start()
        await process.wait()

    @pytest.mark.asyncio
    async def test_wait_before_start_raises(self, tmp_path):
        process = CLIProcess(_invocation(tmp_path / "claude", tmp_path))
        with pytest.raises(RuntimeError):
            await process.wait()

    @pytest.mark.asyncio
    async def test_kill_terminates_running_process(self, tmp_path):
        fake = FakeCLI(lines=["started"], sleep_after_s=30)
        process = CLIProcess(_invocation(fake.write(tmp_path), tmp_path))
        await process.start()
        assert process.is_running
        assert process.pid is not None

        process.kill()
        code = await asyncio.wait_for(process.wait(), timeout=10)

        assert code != 0
        assert not process.is_running

    @pytest.mark.asyncio
    async def test_kill_after_exit_is_noop(self, tmp_path):
        process = CLIProcess(_invocation(FakeCLI(lines=["x"]).write(tmp_path), tmp_path))
        await process.run()
        process.kill()

    @pytest.mark.asyncio
    async def test_supervisor_task_is_tracked_until_exit(self, tmp_path):
        process = CLIProcess(_invocation(FakeCLI(lines=["x"]).write(tmp_path), tmp_path))
        await process.start()
        assert process._supervisor in _PENDING_CLI_TASKS
        await process.wait()
        await asyncio.sleep(0)
        assert process._supervisor not in _PENDING_CLI_TASKS

    @pytest.mark.asyncio
    async def test_stdin_write_error_still_reaches_exit(self, tmp_path):
        """An I/O error on stdin does not stop output collection or the exit code."""

        class FailingStdin:
            def __init__(self):
                self.closed = False

            def write(self, data):
                pass

            async def drain(self):
                raise OSError(5, "Input/output error")

            def close(self):
                self.closed = True

        class StubProcess:
            returncode = None

            def __init__(self):
                self.stdin = FailingStdin()
                self.stdout = asyncio.StreamReader()
                self.stderr = asyncio.StreamReader()
                self.stdout.feed_data(b"still read\n")
                self.stdout.feed_eof()
                self.stderr.feed_eof()

            async def wait(self):
                self.returncode = 0
                return 0

        process = CLIProcess(_invocation(tmp_path / "unused", tmp_path))
        stub = StubProcess()
        process._process = stub

        assert await process._supervise() == 0
        assert process.exit_code == 0
        assert process.output == "still read\n"
        assert stub.stdin.closed

    @pytest.mark.asyncio
    async def test_large_output_with_unread_stdin(self, tmp_path):
        """Big stdin and big stdout at once do not deadlock."""
        fake = FakeCLI(raw_stdout="x" * 200_000)
        payload = "y" * 200_000
        result = await asyncio.wait_for(
            CLIProcess(_invocation(fake.write(tmp_path), tmp_path, stdin=payload)).run(),
            timeout=30,
        )
        assert len(result.output) == 200_000
        assert fake.recorded()["stdin"] == payload


def test_fake_cli_script_is_executable(tmp_path):
    path = FakeCLI(lines=["x"]).write(tmp_path)
    assert os.access(path, os.X_OK)
