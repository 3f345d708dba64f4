"""Unit tests for StreamResult."""

import json
from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock, Mock

import pytest

from copilot_runtime.core.events import (
    DoneEvent,
    ErrorEvent,
    MessageDelta,
    MessageEnd,
    MessageStart,
    StreamEvent,
    ToolCallsEvent,
)
from copilot_runtime.core.exceptions import StreamConsumedError
from copilot_runtime.core.messages import Message, TokenUsage, ToolCall
from copilot_runtime.runtime.sse import STREAM_ERROR_CODE
from copilot_runtime.runtime.stream_result import AsgiResponseWriter, StreamResult

USAGE = TokenUsage(10, 5, 15)
CALL = ToolCall(id="c1", name="confirm_booking", args={"hotel": "Ritz"})


async def events(*items: StreamEvent) -> AsyncGenerator[StreamEvent]:
    for item in items:
        yield item


async def failing() -> AsyncGenerator[StreamEvent]:
    yield MessageStart(id="m")
    raise RuntimeError("loop crashed")


def text_stream(include_usage: bool = False) -> StreamResult:
    reply = Message.assistant(content="Hello world", id="m")
    return StreamResult(
        events(
            MessageStart(id="m"),
            MessageDelta(content="Hello"),
            MessageDelta(content=" world"),
            MessageEnd(),
            DoneEvent(messages=(reply,), usage=USAGE),
        ),
        include_usage=include_usage,
    )


class TestConsumption:
    """Tests for single consumption."""

    async def test_iterate(self):
        """Iterating yields every event."""
        result = text_stream()

        received = [event async for event in result]

        assert len(received) == 5
        assert result.consumed

    async def test_second_consumption_raises(self):
        """A stream can be consumed only once, whichever way."""
        result = text_stream()
        await result.collect()

        with pytest.raises(StreamConsumedError):
            await result.text()
        with pytest.raises(StreamConsumedError):
            result.to_response()

    async def test_text(self):
        assert await text_stream().text() == "Hello world"


class TestUsage:
    """Tests for token usage visibility."""

    async def test_usage_stripped_by_default(self):
        """Clients do not see usage unless the runtime includes it."""
        received = [event async for event in text_stream()]

        assert received[-1].usage is None

    async def test_usage_kept_when_included(self):
        received = [event async for event in text_stream(include_usage=True)]

        assert received[-1].usage == USAGE

    async def test_collect_can_request_usage(self):
        """collect() may keep usage for server-side accounting."""
        collected = await text_stream().collect(include_usage=True)

        assert collected.usage == USAGE
        assert collected.events[-1].usage == USAGE

    async def test_collected_result(self):
        """The collected result keeps text and created messages."""
        collected = await text_stream().collect()

        assert collected.text == "Hello world"
        assert [m.id for m in collected.messages] == ["m"]
        assert collected.usage is None
        assert collected.to_dict()["requiresAction"] is False


class TestHandlers:
    """Tests for event handlers registered with on()."""

    async def test_handlers_receive_events(self):
        """text, tool_call and done handlers fire while consuming."""
        on_text, on_call, on_done = Mock(), AsyncMock(), Mock()
        result = StreamResult(
            events(
                MessageStart(id="m"),
                MessageDelta(content="Booking"),
                ToolCallsEvent(tool_calls=(CALL,)),
                MessageEnd(),
                DoneEvent(requires_action=True, messages=()),
            )
        )
        result.on("text", on_text).on("tool_call", on_call).on("done", on_done)

        await result.collect()

        on_text.assert_called_once_with("Booking")
        on_call.assert_awaited_once_with(CALL)
        collected = on_done.call_args.args[0]
        assert collected.requires_action is True
        assert collected.tool_calls == [CALL]

    async def test_error_handler(self):
        on_error = Mock()
        result = StreamResult(events(MessageStart(id="m"), ErrorEvent(message="boom")))
        result.on("error", on_error)

        await result.collect()

        on_error.assert_called_once_with("boom")

    async def test_failing_handler_does_not_break_stream(self):
        """A raising handler is logged and the stream continues."""
        result = text_stream().on("text", Mock(side_effect=ValueError("handler bug")))

        assert await result.text() == "Hello world"

    def test_unknown_handler_name(self):
        with pytest.raises(ValueError, match="Unknown stream event"):
            text_stream().on("finish", Mock())

    async def test_source_failure_becomes_error_event(self):
        """An exception in the event source ends the stream with an error event."""
        received = [event async for event in StreamResult(failing())]

        assert received[-1] == ErrorEvent(message="loop crashed", code=STREAM_ERROR_CODE)


class TestResponses:
    """Tests for writing the stream to HTTP responses."""

    async def test_pipe_to_asgi_send(self):
        """SSE frames are written through a raw ASGI send callable."""
        sent = []

        async def send(message):
            sent.append(message)

        collected = await text_stream().pipe_to_response(AsgiResponseWriter(send))

        start = sent[0]
        assert start["type"] == "http.response.start"
        assert start["status"] == 200
        assert (b"content-type", b"text/event-stream") in start["headers"]
        bodies = [m["body"].decode() for m in sent[1:] if m["body"]]
        assert bodies[-1] == "data: [DONE]\n\n"
        assert json.loads(bodies[0].removeprefix("data: ")) == {"type": "message:start", "id": "m"}
        assert sent[-1] == {"type": "http.response.body", "body": b"", "more_body": False}
        assert collected.text == "Hello world"

    async def test_pipe_text(self):
        """Text piping writes only the deltas."""
        writer = AsyncMock()

        await text_stream().pipe_text_to_response(writer)

        chunks = [call.args[0] for call in writer.write.await_args_list]
        assert chunks == ["Hello", " world"]
        assert writer.start.await_args.args[1]["Content-Type"].startswith("text/plain")
        writer.end.assert_awaited_once()

    def test_to_response_headers(self):
        response = text_stream().to_response(headers={"X-Extra": "1"})

        assert response.media_type == "text/event-stream"
        assert response.headers["x-accel-buffering"] == "no"
        assert response.headers["x-extra"] == "1"
