"""Tests for translating CLI output into chat-completion payloads."""

import json

import pytest

from cliproxy.core.exceptions import NoOutputError, StreamProtocolError, SubprocessExitFailure
from cliproxy.core.sse import SSESession
from cliproxy.core.translator import FALLBACK_MESSAGE, StreamTranslator, translate_completion
from cliproxy.testing import assert_chat_stream_valid, parse_sse_events, stream_content, stream_deltas


class CollectingSend:
    def __init__(self):
        self.body = b""

    async def __call__(self, message):
        if message["type"] == "http.response.body":
            self.body += message["body"]


async def _lines(*items, error=None):
    for item in items:
        yield item if isinstance(item, str) else json.dumps(item)
    if error is not None:
        raise error


def _assistant(text):
    return {"type": "assistant", "message": {"content": [{"type": "text", "text": text}]}}


async def _run(lines, model="claude-test", on_content=None):
    """Run a translator to completion and return (events, translator, error)."""
    send = CollectingSend()
    session = SSESession(send)
    await session.open()
    translator = StreamTranslator(model)
    error = None
    try:
        await translator.run(lines, session, on_content=on_content)
    except Exception as exc:
        error = exc
    await session.end()
    return parse_sse_events(send.body), translator, error


class TestStreamTranslator:
    """Tests for the streaming state machine."""

    @pytest.mark.asyncio
    async def test_plain_text_output(self):
        """Plain text lines are streamed as content deltas."""
        events, translator, error = await _run(_lines("Hello", "world"))

        assert error is None
        assert_chat_stream_valid(events)
        assert stream_content(events) == "Helloworld"
        assert translator.state.accumulated_text == "Helloworld"

    @pytest.mark.asyncio
    async def test_stream_json_output(self):
        """System and result events are skipped; each text chunk is trimmed."""
        events, _, error = await _run(
            _lines(
                {"type": "system", "subtype": "init"},
                _assistant("Hi "),
                _assistant("there"),
                {"type": "result", "subtype": "success", "result": "Hi there"},
            )
        )

        assert error is None
        assert_chat_stream_valid(events)
        assert stream_content(events) == "Hithere"
        assert events[-2]["model"] == "claude-test"

    @pytest.mark.asyncio
    async def test_markup_is_filtered(self):
        events, _, _ = await _run(_lines(_assistant("<thinking>hmm</thinking>Answer")))
        assert stream_content(events) == "Answer"

    @pytest.mark.asyncio
    async def test_tool_use_becomes_tool_calls_delta(self):
        """tool_use blocks are relayed as a tool_calls delta."""
        tool_event = {
            "type": "assistant",
            "message": {
                "content": [{"type": "tool_use", "id": "toolu_9", "name": "Read", "input": {"path": "a"}}]
            },
        }
        events, _, error = await _run(_lines(tool_event))

        assert error is None
        assert_chat_stream_valid(events)
        tool_deltas = [d for d in stream_deltas(events) if "tool_calls" in d]
        assert len(tool_deltas) == 1
        call = tool_deltas[0]["tool_calls"][0]
        assert call["index"] == 0
        assert call["id"] == "toolu_9"
        assert call["function"]["name"] == "Read"
        assert call["function"]["arguments"] == '{"path":"a"}'

    @pytest.mark.asyncio
    async def test_error_event_writes_error_payload(self):
        """An error line aborts the stream with an error payload."""
        events, _, error = await _run(
            _lines(_assistant("partial"), {"type": "error", "error": {"message": "overloaded"}})
        )

        assert isinstance(error, StreamProtocolError)
        assert stream_content(events) == "partial"
        assert events[-2] == {
            "error": {"message": "overloaded", "type": "streaming_error", "code": "stream_error"}
        }
        assert events[-1] == "[DONE]"

    @pytest.mark.asyncio
    async def test_no_output_raises(self, caplog):
        """A run with zero output lines is an error, not an empty answer."""
        with caplog.at_level("DEBUG", logger="cliproxy"):
            events, _, error = await _run(_lines())

        assert "partial output sent: False" in caplog.text

        assert isinstance(error, NoOutputError)
        assert events[0]["error"]["code"] == "no_output"
        assert events[-1] == "[DONE]"

    @pytest.mark.asyncio
    async def test_only_system_events_still_finishes(self):
        """Bookkeeping-only output still yields role and terminal deltas."""
        events, _, error = await _run(
            _lines({"type": "system", "subtype": "init"}, {"type": "result", "subtype": "success"})
        )

        assert error is None
        assert_chat_stream_valid(events)
        assert stream_content(events) == ""

    @pytest.mark.asyncio
    async def test_fallback_when_all_content_filtered(self):
        """When every text chunk is filtered away a fallback message is sent."""
        events, translator, error = await _run(_lines(_assistant("<thinking>internal</thinking>")))

        assert error is None
        assert_chat_stream_valid(events)
        assert stream_content(events) == FALLBACK_MESSAGE
        assert translator.state.content_sent

    @pytest.mark.asyncio
    async def test_content_observer_sees_each_filtered_delta(self):
        observed = []
        _, translator, error = await _run(
            _lines(_assistant("One"), _assistant("<thinking>x</thinking>Two"), "Three"),
            on_content=observed.append,
        )

        assert error is None
        assert observed == ["One", "Two", "Three"]
        assert "".join(observed) == translator.state.accumulated_text

    @pytest.mark.asyncio
    async def test_content_observer_sees_fallback_message(self):
        observed = []
        _, translator, _ = await _run(
            _lines(_assistant("<thinking>internal</thinking>")), on_content=observed.append
        )

        assert observed == [FALLBACK_MESSAGE]
        assert translator.state.accumulated_text == FALLBACK_MESSAGE

    @pytest.mark.asyncio
    async def test_exit_failure_after_content(self, caplog):
        """A failure raised by the line source is written after prior content."""
        failure = SubprocessExitFailure(1, "Hello\n", "boom")
        with caplog.at_level("DEBUG", logger="cliproxy"):
            events, _, error = await _run(_lines("Hello", error=failure))

        assert "partial output sent: True" in caplog.text

        assert error is failure
        assert stream_content(events) == "Hello"
        assert events[-2]["error"]["code"] == "cli_exit_failure"

    @pytest.mark.asyncio
    async def test_closed_session_stops_translation(self):
        """Nothing is written once the client has gone away."""
        send = CollectingSend()
        session = SSESession(send)
        await session.open()
        translator = StreamTranslator("claude-test")
        session.mark_closed("client disconnected")

        text = await translator.run(_lines("Hello", "world"), session)

        assert text == ""
        assert send.body == b""
        assert translator.state.closed

    @pytest.mark.asyncio
    async def test_close_mid_stream_closes_line_source(self):
        """The line source is closed when the client disconnects mid-stream."""
        send = CollectingSend()
        session = SSESession(send)
        await session.open()
        translator = StreamTranslator("claude-test")
        closed = []

        async def source():
            try:
                yield "first"
                session.mark_closed("client disconnected")
                yield "second"
                yield "third"
            finally:
                closed.append(True)

        text = await translator.run(source(), session)

        assert text == "first"
        assert closed == [True]

    @pytest.mark.asyncio
    async def test_same_id_and_created_across_chunks(self):
        send = CollectingSend()
        session = SSESession(send)
        await session.open()
        translator = StreamTranslator("m", completion_id="chatcmpl-fixed", created=123)
        await translator.run(_lines("a", "b"), session)
        await session.end()

        chunks = [e for e in parse_sse_events(send.body) if isinstance(e, dict)]
        assert {c["id"] for c in chunks} == {"chatcmpl-fixed"}
        assert {c["created"] for c in chunks} == {123}


class TestTranslateCompletion:
    """Tests for the buffered translation."""

    def test_plain_text(self):
        message = translate_completion("Assistant: The answer is 4.\n")
        assert message == {"role": "assistant", "content": "The answer is 4."}

    def test_stream_json_output(self):
        output = "\n".join(
            json.dumps(event)
            for event in (
                {"type": "system", "subtype": "init"},
                _assistant("Hello "),
                _assistant("there"),
                {"type": "result", "result": "Hello there"},
            )
        )
        assert translate_completion(output)["content"] == "Hello there"

    def test_stream_json_tool_use(self):
        output = json.dumps(
            {
                "type": "assistant",
                "message": {"content": [{"type": "tool_use", "id": "t1", "name": "ls", "input": {}}]},
            }
        )
        message = translate_completion(output)
        assert message["content"] is None
        assert message["tool_calls"][0]["function"] == {"name": "ls", "arguments": "{}"}

    def test_stream_json_error_raises(self):
        output = json.dumps({"type": "error", "error": {"message": "bad"}})
        with pytest.raises(StreamProtocolError, match="bad"):
            translate_completion(output)

    def test_mixed_lines_are_plain_text(self):
        """Output is only parsed as events when every line is an event."""
        output = 'Here is JSON:\n{"type": "x"}'
        assert translate_completion(output)["content"] == output

    def test_tool_json_reply_when_tools_offered(self):
        reply = {
            "tool_calls": [
                {"id": "call_1", "type": "function", "function": {"name": "get_weather", "arguments": "{}"}}
            ],
            "content": None,
        }
        message = translate_completion(json.dumps(reply), has_tools=True)
        assert message["tool_calls"] == reply["tool_calls"]
        assert message["content"] is None

    def test_tool_json_ignored_without_tools(self):
        reply = json.dumps({"tool_calls": [], "content": None})
        assert translate_completion(reply)["content"] == reply

    def test_empty_output(self):
        assert translate_completion("") == {"role": "assistant", "content": ""}
