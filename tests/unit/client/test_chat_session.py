"""Unit tests for ChatSession driving an in-process runtime."""

import json
from unittest.mock import Mock

import pytest

from copilot_runtime.client.chat import ChatSession
from copilot_runtime.client.controller import ToolExecutionController
from copilot_runtime.client.transport import RuntimeTransport
from copilot_runtime.core.events import ActionStart, DoneEvent, ErrorEvent
from copilot_runtime.core.messages import Role
from copilot_runtime.core.tools import ToolDefinition, ToolLocation
from copilot_runtime.runtime.runtime import Runtime


@pytest.fixture
def confirm_handler() -> Mock:
    return Mock(return_value={"confirmed": True})


@pytest.fixture
def confirm_tool(confirm_handler: Mock) -> ToolDefinition:
    return ToolDefinition(
        name="confirm_booking",
        description="Ask the user to confirm a booking",
        location=ToolLocation.CLIENT,
        input_schema={"type": "object", "properties": {"hotel": {"type": "string"}}},
        handler=confirm_handler,
    )


@pytest.fixture
def booking_turns(tool_turn, text_turn):
    return [
        tool_turn(("call_book", "confirm_booking", {"hotel": "Ritz"})),
        text_turn("Booked."),
    ]


class TestClientToolRound:
    """Tests for client tool calls handed back by the runtime."""

    async def test_runs_client_tool_and_resubmits(
        self, scripted_model, booking_turns, confirm_tool, confirm_handler
    ):
        """The client runs its tool and resubmits until the model answers."""
        model, adapter = scripted_model(*booking_turns)
        session = ChatSession(
            RuntimeTransport(Runtime(model)), ToolExecutionController([confirm_tool])
        )

        reply = await session.send_message("Book the Ritz")

        assert reply.content == "Booked."
        assert adapter.calls == 2
        confirm_handler.assert_called_once()
        assert confirm_handler.call_args.args[0] == {"hotel": "Ritz"}
        assert [m.role for m in session.messages] == [
            Role.USER,
            Role.ASSISTANT,
            Role.TOOL,
            Role.ASSISTANT,
        ]
        tool_message = session.messages[2]
        assert tool_message.tool_call_id == "call_book"
        assert json.loads(tool_message.content) == {"confirmed": True}

    async def test_client_tools_are_declared(self, scripted_model, booking_turns, confirm_tool):
        """The client declares its tools with every request."""
        model, adapter = scripted_model(*booking_turns)
        session = ChatSession(
            RuntimeTransport(Runtime(model)), ToolExecutionController([confirm_tool])
        )

        await session.send_message("Book the Ritz")

        assert [tool.name for tool in adapter.requests[0].tools] == ["confirm_booking"]

    async def test_server_and_client_tools_in_one_exchange(
        self, scripted_model, tool_turn, text_turn, weather_tool, confirm_tool
    ):
        """Server tools run on the runtime, client tools on the client."""
        model, _ = scripted_model(
            tool_turn(("call_w", "get_weather", {"city": "Paris"})),
            tool_turn(("call_book", "confirm_booking", {"hotel": "Ritz"})),
            text_turn("Booked, and it is sunny."),
        )
        session = ChatSession(
            RuntimeTransport(Runtime(model, tools=[weather_tool])),
            ToolExecutionController([confirm_tool]),
        )

        events = [event async for event in session.stream_message("Plan my trip")]

        assert [e.name for e in events if isinstance(e, ActionStart)] == ["get_weather"]
        assert sum(isinstance(e, DoneEvent) for e in events) == 2
        assert session.messages[-1].content == "Booked, and it is sunny."

    async def test_client_iteration_ceiling(self, scripted_model, booking_turns, confirm_tool,
                                            confirm_handler):
        """The client refuses to run tools past its own ceiling."""
        model, adapter = scripted_model(*booking_turns)
        session = ChatSession(
            RuntimeTransport(Runtime(model)),
            ToolExecutionController([confirm_tool]),
            max_iterations=1,
            max_iterations_message="Stopped",
        )

        await session.send_message("Book the Ritz")

        assert session.max_iterations_reached is True
        assert adapter.calls == 1
        confirm_handler.assert_not_called()
        refusal = session.messages[-1]
        assert refusal.role == Role.TOOL
        assert json.loads(refusal.content) == {
            "success": False,
            "reason": "rejected",
            "message": "Stopped",
        }

    def test_rejects_invalid_ceiling(self, scripted_model):
        """max_iterations must be positive."""
        model, _ = scripted_model()

        with pytest.raises(ValueError):
            ChatSession(RuntimeTransport(Runtime(model)), max_iterations=0)


class TestFailures:
    """Tests for failed exchanges."""

    async def test_partial_reply_is_kept(self, scripted_model, error_turn):
        """Text streamed before a failure stays in the history."""
        model, _ = scripted_model(error_turn("upstream broke", partial="Hel"))
        session = ChatSession(RuntimeTransport(Runtime(model)))

        reply = await session.send_message("Hi")

        assert session.error == "upstream broke"
        assert reply.content == "Hel"
        assert [m.role for m in session.messages] == [Role.USER, Role.ASSISTANT]

    async def test_invalid_body_becomes_error_event(self, scripted_model):
        """A body the runtime refuses is reported as an error event."""
        model, adapter = scripted_model()
        transport = RuntimeTransport(Runtime(model))

        events = [event async for event in transport.stream({"messages": []})]

        assert adapter.calls == 0
        assert len(events) == 1
        assert isinstance(events[0], ErrorEvent)
        assert events[0].code == "INVALID_REQUEST"

    async def test_reset_clears_history(self, scripted_model, text_turn):
        """reset() forgets the conversation."""
        model, _ = scripted_model(text_turn("Hi!"))
        session = ChatSession(RuntimeTransport(Runtime(model)))
        await session.send_message("Hi")

        session.reset()

        assert session.messages == []
        assert session.error is None
