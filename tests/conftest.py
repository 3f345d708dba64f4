"""Shared test fixtures.

Provides a scripted model adapter so that the agent loop, the runtime and the
HTTP routes can be exercised without any vendor call, plus builders for the
event sequences a model turn produces.
"""

from collections.abc import AsyncIterator, Callable, Sequence
from typing import Any

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
from copilot_runtime.core.messages import TokenUsage, ToolCall, generate_message_id
from copilot_runtime.core.tools import ToolDefinition, ToolLocation
from copilot_runtime.providers.base import ChatRequest, CompletionResult
from copilot_runtime.providers.model import ModelHandle


class ScriptedAdapter:
    """Fake adapter that replays one scripted event list per model call.

    Every request is recorded so tests can assert on the history the loop
    sent. Running out of turns is reported as an error event, like a vendor
    failure would be.
    """

    provider = "fake"

    def __init__(self, turns: Sequence[Sequence[StreamEvent]] = ()):
        self.turns = [list(turn) for turn in turns]
        self.requests: list[ChatRequest] = []
        self.closed = False

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def stream(self, request: ChatRequest) -> AsyncIterator[StreamEvent]:
        self.requests.append(request)
        if not self.turns:
            yield MessageStart(id=generate_message_id())
            yield ErrorEvent(message="no scripted turn left", code="FAKE_ERROR")
            return
        for event in self.turns.pop(0):
            yield event

    async def complete(self, request: ChatRequest) -> CompletionResult:
        raise NotImplementedError

    async def aclose(self) -> None:
        self.closed = True


# =============================================================================
# Turn Builders
# =============================================================================


@pytest.fixture
def text_turn() -> Callable[..., list[StreamEvent]]:
    """Builder of a model turn that answers with text only."""

    def builder(*chunks: str, usage: TokenUsage | None = None) -> list[StreamEvent]:
        return [
            MessageStart(id=generate_message_id()),
            *(MessageDelta(content=chunk) for chunk in chunks),
            MessageEnd(),
            DoneEvent(requires_action=False, usage=usage),
        ]

    return builder


@pytest.fixture
def tool_turn() -> Callable[..., list[StreamEvent]]:
    """Builder of a model turn that requests tool calls.

    Calls are given as ``(id, name, args)`` tuples.
    """

    def builder(
        *calls: tuple[str, str, dict[str, Any]],
        text: str = "",
        usage: TokenUsage | None = None,
    ) -> list[StreamEvent]:
        events: list[StreamEvent] = [MessageStart(id=generate_message_id())]
        if text:
            events.append(MessageDelta(content=text))
        tool_calls = tuple(ToolCall(id=id_, name=name, args=args) for id_, name, args in calls)
        events.append(ToolCallsEvent(tool_calls=tool_calls))
        events.append(MessageEnd())
        events.append(DoneEvent(requires_action=True, usage=usage))
        return events

    return builder


@pytest.fixture
def error_turn() -> Callable[..., list[StreamEvent]]:
    """Builder of a model turn that fails after streaming some text."""

    def builder(message: str, partial: str = "", code: str = "FAKE_ERROR") -> list[StreamEvent]:
        events: list[StreamEvent] = [MessageStart(id=generate_message_id())]
        if partial:
            events.append(MessageDelta(content=partial))
        events.append(ErrorEvent(message=message, code=code))
        return events

    return builder


# =============================================================================
# Model and Tool Fixtures
# =============================================================================


@pytest.fixture
def scripted_model() -> Callable[..., tuple[ModelHandle, ScriptedAdapter]]:
    """Factory returning a model handle over a ScriptedAdapter and the adapter itself."""

    def factory(*turns: Sequence[StreamEvent]) -> tuple[ModelHandle, ScriptedAdapter]:
        adapter = ScriptedAdapter(turns)
        return ModelHandle(adapter, "fake-model"), adapter

    return factory


@pytest.fixture
def weather_tool() -> ToolDefinition:
    """Server tool returning a canned forecast."""

    async def get_weather(args: dict[str, Any], context) -> dict[str, Any]:
        return {"city": args["city"], "temperature": 22, "unit": "C"}

    return ToolDefinition(
        name="get_weather",
        description="Current weather for a city",
        input_schema={
            "type": "object",
            "properties": {"city": {"type": "string"}},
            "required": ["city"],
        },
        handler=get_weather,
    )


@pytest.fixture
def confirm_tool_schema() -> dict[str, Any]:
    """Wire declaration of a client tool, as a browser would send it."""
    return {
        "name": "confirm_booking",
        "description": "Ask the user to confirm a booking",
        "location": ToolLocation.CLIENT.value,
        "inputSchema": {
            "type": "object",
            "properties": {"hotel": {"type": "string"}},
        },
    }


@pytest.fixture
def user_body() -> Callable[..., dict[str, Any]]:
    """Builder of a chat request body holding one user message."""

    def builder(content: str = "What's the weather in Paris?", **extra: Any) -> dict[str, Any]:
        return {"messages": [{"role": "user", "content": content}], **extra}

    return builder
