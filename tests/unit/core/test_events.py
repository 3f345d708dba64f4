"""Unit tests for the unified event protocol."""

from copilot_runtime.core.events import (
    ActionEnd,
    DoneEvent,
    ErrorEvent,
    LoopComplete,
    LoopIteration,
    MessageDelta,
    MessageStart,
    ToolCallsEvent,
    UnknownEvent,
    is_terminal,
    parse_event,
)
from copilot_runtime.core.messages import Message, TokenUsage, ToolCall


class TestEventWireForm:
    """Tests for to_dict of events."""

    def test_tool_calls_use_camel_case(self):
        """tool_calls events carry toolCalls and the assistant message."""
        event = ToolCallsEvent(
            tool_calls=(ToolCall(id="c", name="f", args={"a": 1}),),
            assistant_message=Message.assistant(id="msg_1"),
        )

        payload = event.to_dict()

        assert payload["type"] == "tool_calls"
        assert payload["toolCalls"] == [{"id": "c", "name": "f", "args": {"a": 1}}]
        assert payload["assistantMessage"]["id"] == "msg_1"

    def test_action_end_reports_error_or_result(self):
        """action:end carries an error instead of a result when the tool failed."""
        assert ActionEnd(id="c", name="f", error="boom").to_dict() == {
            "type": "action:end",
            "id": "c",
            "name": "f",
            "error": "boom",
        }
        assert ActionEnd(id="c", name="f", result=3).to_dict()["result"] == 3

    def test_done_without_usage(self):
        """without_usage keeps everything but the usage."""
        done = DoneEvent(requires_action=True, messages=(), usage=TokenUsage(1, 1, 2))

        stripped = done.without_usage()

        assert stripped.usage is None
        assert stripped.requires_action is True
        assert "usage" not in stripped.to_dict()

    def test_loop_events_use_camel_case(self):
        """Loop progress events carry camelCase counters."""
        assert LoopIteration(iteration=2, max_iterations=20).to_dict() == {
            "type": "loop:iteration",
            "iteration": 2,
            "maxIterations": 20,
        }
        assert LoopComplete(iterations=3, max_iterations_reached=True).to_dict() == {
            "type": "loop:complete",
            "iterations": 3,
            "maxIterationsReached": True,
            "aborted": False,
        }


class TestParseEvent:
    """Tests for parse_event."""

    def test_parses_known_events(self):
        """Every known wire type maps to its event class."""
        assert parse_event({"type": "message:start", "id": "m"}) == MessageStart(id="m")
        assert parse_event({"type": "message:delta", "content": "hi"}) == MessageDelta(content="hi")
        assert parse_event({"type": "error", "message": "x", "code": "C"}) == ErrorEvent(
            message="x", code="C"
        )

    def test_parses_done_with_messages(self):
        """done events rebuild their messages and usage."""
        event = parse_event(
            {
                "type": "done",
                "requiresAction": True,
                "messages": [{"role": "assistant", "content": "hi", "id": "m1"}],
                "usage": {"prompt_tokens": 2, "completion_tokens": 3, "total_tokens": 5},
            }
        )

        assert isinstance(event, DoneEvent)
        assert event.requires_action is True
        assert event.messages[0].id == "m1"
        assert event.usage == TokenUsage(2, 3, 5)

    def test_parses_loop_events(self):
        """loop:iteration and loop:complete map to their event classes."""
        assert parse_event(
            {"type": "loop:iteration", "iteration": 1, "maxIterations": 5}
        ) == LoopIteration(iteration=1, max_iterations=5)
        event = parse_event(
            {
                "type": "loop:complete",
                "iterations": 4,
                "maxIterationsReached": False,
                "aborted": True,
            }
        )
        assert event == LoopComplete(iterations=4, aborted=True)

    def test_unknown_type_is_kept(self):
        """An unknown event type becomes UnknownEvent with its data."""
        event = parse_event({"type": "ui:hint", "text": "x"})

        assert event == UnknownEvent(type="ui:hint", data={"type": "ui:hint", "text": "x"})

    def test_malformed_known_event_does_not_raise(self):
        """A known type missing required fields degrades to UnknownEvent."""
        event = parse_event({"type": "message:start"})

        assert isinstance(event, UnknownEvent)
        assert event.type == "message:start"

    def test_non_mapping_does_not_raise(self):
        """Garbage input degrades to UnknownEvent."""
        assert isinstance(parse_event("garbage"), UnknownEvent)

    def test_round_trip(self):
        """to_dict output parses back to an equal event."""
        event = ToolCallsEvent(tool_calls=(ToolCall(id="c", name="f", args={"k": "v"}),))

        assert parse_event(event.to_dict()) == event


class TestIsTerminal:
    """Tests for is_terminal."""

    def test_done_and_error_are_terminal(self):
        """Only done and error end a stream."""
        assert is_terminal(DoneEvent())
        assert is_terminal(ErrorEvent(message="x"))
        assert not is_terminal(MessageDelta(content="x"))

    def test_loop_events_are_not_terminal(self):
        """Loop progress events never end a stream."""
        assert not is_terminal(LoopIteration(iteration=1, max_iterations=5))
        assert not is_terminal(LoopComplete(iterations=1))
