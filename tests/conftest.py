"""Pytest configuration and fixtures for testing."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Generator

import pytest

from cliproxy.config_loader import BridgeSettings
from cliproxy.core import registry
from cliproxy.core.bridge import ClaudeCLI
from cliproxy.logging import configure_log_dir
from cliproxy.testing import BridgeHarness, FakeCLI
from cliproxy.usage_metrics import UsageCounters


@pytest.fixture(autouse=True)
def isolated_log_dir(tmp_path: Path) -> Generator[Path, None, None]:
    """Send request/error logs of every test into its own tmp directory."""
    log_dir = tmp_path / "logs"
    configure_log_dir(str(log_dir))
    yield log_dir
    configure_log_dir(None)


@pytest.fixture(autouse=True)
def restore_registry() -> Generator[None, None, None]:
    """Leave the global bridge registry as the test found it."""
    previous = (registry.bridge, registry.settings)
    yield
    registry.bridge, registry.settings = previous


# =============================================================================
# Settings / Bridge Builders
# =============================================================================


def build_settings(workdir: Path, cli_path: str | Path, **overrides: Any) -> BridgeSettings:
    """Build bridge settings pointing at a scripted CLI.

    Args:
        workdir: Working directory for the CLI
        cli_path: Path of the (fake) CLI executable
        **overrides: Any other BridgeSettings field

    Returns:
        BridgeSettings for tests
    """
    values: dict[str, Any] = {"cli_path": str(cli_path), "cli_cwd": str(workdir)}
    values.update(overrides)
    return BridgeSettings(**values)


@pytest.fixture
def make_bridge(tmp_path: Path) -> Callable[..., tuple[ClaudeCLI, FakeCLI]]:
    """Factory writing a FakeCLI and wrapping it in a ClaudeCLI bridge.

    Usage:
        def test_x(make_bridge):
            bridge, fake = make_bridge(FakeCLI.assistant_text("Hi"))
    """

    def _make(fake: FakeCLI, **overrides: Any) -> tuple[ClaudeCLI, FakeCLI]:
        path = fake.write(tmp_path / "bin")
        settings = build_settings(tmp_path, overrides.pop("cli_path", path), **overrides)
        return ClaudeCLI(settings, counters=UsageCounters()), fake

    return _make


@pytest.fixture
def make_harness(tmp_path: Path) -> Generator[Callable[..., BridgeHarness], None, None]:
    """Factory for BridgeHarness instances closed at teardown.

    Usage:
        def test_x(make_harness):
            harness = make_harness(FakeCLI.assistant_text("Hi"))
    """
    created: list[BridgeHarness] = []

    def _make(fake: FakeCLI | None, **overrides: Any) -> BridgeHarness:
        harness = BridgeHarness(fake, tmp_path / "bin", **overrides)
        created.append(harness)
        return harness

    try:
        yield _make
    finally:
        for harness in reversed(created):
            harness.close()


def chat_body(content: str = "Hello", stream: bool = False, **extra: Any) -> dict[str, Any]:
    """Minimal valid chat completion request body."""
    body: dict[str, Any] = {
        "model": "claude-test",
        "messages": [{"role": "user", "content": content}],
        "stream": stream,
    }
    body.update(extra)
    return body
