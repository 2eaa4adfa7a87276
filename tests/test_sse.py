"""Tests for SSE framing and the per-request stream session."""

import json

import pytest

from cliproxy.core.exceptions import StreamProtocolError
from cliproxy.core.sse import DONE_EVENT, SSESession, format_sse_event


class RecordingSend:
    """ASGI send callable that records messages and can be made to fail."""

    def __init__(self, fail_after=None):
        self.messages = []
        self.fail_after = fail_after

    async def __call__(self, message):
        if self.fail_after is not None and len(self.messages) >= self.fail_after:
            raise OSError("connection reset")
        self.messages.append(message)

    @property
    def bodies(self):
        return [m["body"] for m in self.messages if m["type"] == "http.response.body"]


def test_format_sse_event():
    """Payloads are framed as one data line with a blank line after."""
    assert format_sse_event({"a": "é"}) == 'data: {"a": "é"}\n\n'.encode("utf-8")


class TestSSESession:
    """Tests for SSESession."""

    @pytest.mark.asyncio
    async def test_open_sends_sse_headers(self):
        send = RecordingSend()
        session = SSESession(send)
        await session.open()

        start = send.messages[0]
        assert start["type"] == "http.response.start"
        assert start["status"] == 200
        headers = dict(start["headers"])
        assert headers[b"content-type"] == b"text/event-stream"
        assert headers[b"cache-control"] == b"no-cache"
        assert headers[b"x-accel-buffering"] == b"no"
        assert session.opened

    @pytest.mark.asyncio
    async def test_write_then_end(self):
        """end() sends [DONE] and the final empty body."""
        send = RecordingSend()
        session = SSESession(send)
        await session.open()

        assert await session.write({"x": 1}) is True
        await session.end()

        assert send.bodies == [format_sse_event({"x": 1}), DONE_EVENT, b""]
        assert send.messages[-1]["more_body"] is False
        assert session.closed
        assert session.has_written_any()

    @pytest.mark.asyncio
    async def test_end_is_idempotent(self):
        send = RecordingSend()
        session = SSESession(send)
        await session.open()
        await session.end()
        await session.end()
        assert send.bodies.count(DONE_EVENT) == 1

    @pytest.mark.asyncio
    async def test_write_after_close_is_noop(self):
        """Writes after the client left are dropped silently."""
        send = RecordingSend()
        session = SSESession(send)
        await session.open()
        session.mark_closed("client disconnected")

        assert await session.write({"x": 1}) is False
        assert not session.has_written_any()
        assert session.close_reason == "client disconnected"

    @pytest.mark.asyncio
    async def test_closed_session_end_skips_done(self):
        send = RecordingSend()
        session = SSESession(send)
        await session.open()
        session.mark_closed("client disconnected")
        await session.end()
        assert DONE_EVENT not in send.bodies

    @pytest.mark.asyncio
    async def test_transport_failure_closes_session(self):
        """A failing send marks the session closed instead of raising."""
        send = RecordingSend(fail_after=1)
        session = SSESession(send)
        await session.open()

        assert await session.write({"x": 1}) is False
        assert session.closed
        assert "transport error" in session.close_reason
        assert await session.write({"x": 2}) is False

    @pytest.mark.asyncio
    async def test_write_before_open_raises(self):
        session = SSESession(RecordingSend())
        with pytest.raises(RuntimeError):
            await session.write({"x": 1})

    @pytest.mark.asyncio
    async def test_write_error_payload(self):
        send = RecordingSend()
        session = SSESession(send)
        await session.open()

        await session.write_error(StreamProtocolError("CLI crashed"))

        payload = json.loads(send.bodies[0].decode("utf-8")[len("data: "):])
        assert payload == {
            "error": {"message": "CLI crashed", "type": "streaming_error", "code": "stream_error"}
        }

    @pytest.mark.asyncio
    async def test_end_before_open_sends_nothing(self):
        send = RecordingSend()
        session = SSESession(send)
        await session.end()
        assert send.messages == []
        assert session.closed
