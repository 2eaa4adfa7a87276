"""Pull-style adapter over a :class:`CLIProcess`'s push events."""

import asyncio
import logging
from typing import Any, AsyncIterable, AsyncIterator

from .runner import CLIProcess

logger = logging.getLogger("cliproxy")

DEFAULT_MAX_BUFFERED = 256

_DATA = "data"
_END = "end"
_ERROR = "error"


class ChunkIterator:
    """Async iterator of raw stdout fragments from one CLI process.

    Fragments are yielded in arrival order. The buffer is bounded: when it is
    full the process listener waits for room, which in turn stops the pipe
    reader. End of output terminates iteration normally; a transport or
    spawn error is raised from ``__anext__``.

    Single use: iterating twice raises ``RuntimeError``.
    """

    def __init__(self, process: CLIProcess, max_buffered: int = DEFAULT_MAX_BUFFERED) -> None:
        self._queue: asyncio.Queue[tuple[str, Any]] = asyncio.Queue(maxsize=max_buffered)
        self._iterated = False
        self._finished = False
        self._removers = [
            process.on_stdout_data(self._on_data),
            process.on_stdout_end(self._on_end),
            process.on_stream_error(self._on_error),
            process.on_spawn_error(self._on_error),
        ]

    async def _on_data(self, text: str) -> None:
        if not self._finished:
            await self._queue.put((_DATA, text))

    async def _on_end(self) -> None:
        if not self._finished:
            await self._queue.put((_END, None))

    async def _on_error(self, exc: BaseException) -> None:
        if not self._finished:
            await self._queue.put((_ERROR, exc))

    def __aiter__(self) -> "ChunkIterator":
        if self._iterated:
            raise RuntimeError("ChunkIterator can only be iterated once")
        self._iterated = True
        return self

    async def __anext__(self) -> str:
        if self._finished:
            raise StopAsyncIteration
        kind, value = await self._queue.get()
        if kind == _DATA:
            return value
        self._release()
        if kind == _ERROR:
            raise value
        raise StopAsyncIteration

    @property
    def finished(self) -> bool:
        return self._finished

    def _release(self) -> None:
        self._finished = True
        for remove in self._removers:
            remove()
        self._removers = []
        # Free any producer still waiting on a full queue.
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break

    async def aclose(self) -> None:
        """Stop listening. The subprocess itself is left alone."""
        if not self._finished:
            logger.debug("Releasing CLI output iterator before end of stream")
        self._release()


async def iter_lines(fragments: AsyncIterable[str]) -> AsyncIterator[str]:
    """Reassemble newline-delimited lines from arbitrary text fragments."""
    pending = ""
    async for fragment in fragments:
        pending += fragment
        if "\n" not in pending:
            continue
        lines = pending.split("\n")
        pending = lines.pop()
        for line in lines:
            yield _strip_cr(line)
    if pending:
        tail = _strip_cr(pending)
        if tail:
            yield tail


def _strip_cr(line: str) -> str:
    return line[:-1] if line.endswith("\r") else line
