"""In-memory usage counters for the health endpoint."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Optional


class RequestTracker:
    """Track a single request lifecycle for in-memory counters."""

    def __init__(self, counters: "UsageCounters") -> None:
        self._counters = counters
        self._finished = False

    def finish(self) -> None:
        if self._finished:
            return
        self._finished = True
        self._counters.finish_request()


@dataclass
class UsageCounters:
    """Thread-safe counters for requests and CLI invocations."""

    _lock: Lock = field(default_factory=Lock, repr=False)
    _started_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    _received: int = 0
    _served: int = 0
    _ongoing: int = 0
    _cli_succeeded: int = 0
    _cli_failed: int = 0
    _cli_duration_ms: int = 0
    _last_exit_code: Optional[int] = None

    def start_request(self) -> RequestTracker:
        with self._lock:
            self._received += 1
            self._ongoing += 1
        return RequestTracker(self)

    def finish_request(self) -> None:
        with self._lock:
            self._served += 1
            if self._ongoing > 0:
                self._ongoing -= 1
            else:
                self._ongoing = 0

    def record_cli_invocation(self, exit_code: Optional[int], duration_ms: int) -> None:
        """Record one finished CLI run. ``exit_code`` is None when spawning failed."""
        with self._lock:
            if exit_code == 0:
                self._cli_succeeded += 1
            else:
                self._cli_failed += 1
            self._cli_duration_ms += max(0, int(duration_ms))
            self._last_exit_code = exit_code

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            invocations = self._cli_succeeded + self._cli_failed
            return {
                "started_at": self._started_at,
                "received": self._received,
                "served": self._served,
                "ongoing": self._ongoing,
                "cli": {
                    "invocations": invocations,
                    "succeeded": self._cli_succeeded,
                    "failed": self._cli_failed,
                    "total_duration_ms": self._cli_duration_ms,
                    "average_duration_ms": (
                        self._cli_duration_ms // invocations if invocations else 0
                    ),
                    "last_exit_code": self._last_exit_code,
                },
            }


USAGE_COUNTERS = UsageCounters()
