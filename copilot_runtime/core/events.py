"""Unified streaming event protocol.

Every provider adapter emits these events, the runtime re-emits them to its
transports, and client-side reducers fold them into UI state. The wire form
(``to_dict``) keeps the camelCase keys expected by browser clients.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, ClassVar, TypeAlias

from copilot_runtime.core.exceptions import InvalidRequestError
from copilot_runtime.core.messages import Message, TokenUsage, ToolCall


class EventType(StrEnum):
    """Wire names of the unified events."""

    MESSAGE_START = "message:start"
    MESSAGE_DELTA = "message:delta"
    MESSAGE_END = "message:end"
    THINKING_DELTA = "thinking:delta"
    TOOL_CALLS = "tool_calls"
    ACTION_START = "action:start"
    ACTION_END = "action:end"
    LOOP_ITERATION = "loop:iteration"
    LOOP_COMPLETE = "loop:complete"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class MessageStart:
    type: ClassVar[str] = EventType.MESSAGE_START
    id: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "id": self.id}


@dataclass(frozen=True)
class MessageDelta:
    type: ClassVar[str] = EventType.MESSAGE_DELTA
    content: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "content": self.content}


@dataclass(frozen=True)
class ThinkingDelta:
    type: ClassVar[str] = EventType.THINKING_DELTA
    content: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "content": self.content}


@dataclass(frozen=True)
class MessageEnd:
    type: ClassVar[str] = EventType.MESSAGE_END

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type}


@dataclass(frozen=True)
class ToolCallsEvent:
    """Complete tool calls requested by the model in one turn.

    Attributes:
        tool_calls: Calls with fully parsed arguments
        assistant_message: The assistant message carrying the calls, when the
            runtime forwards client calls (the client appends it to its history)
    """

    type: ClassVar[str] = EventType.TOOL_CALLS
    tool_calls: tuple[ToolCall, ...]
    assistant_message: Message | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": self.type,
            "toolCalls": [call.to_dict() for call in self.tool_calls],
        }
        if self.assistant_message is not None:
            payload["assistantMessage"] = self.assistant_message.to_dict()
        return payload


@dataclass(frozen=True)
class ActionStart:
    """A server-side tool began executing."""

    type: ClassVar[str] = EventType.ACTION_START
    id: str
    name: str
    args: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "id": self.id, "name": self.name, "args": self.args}


@dataclass(frozen=True)
class ActionEnd:
    """A server-side tool finished, with either a result or an error."""

    type: ClassVar[str] = EventType.ACTION_END
    id: str
    name: str
    result: Any = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type, "id": self.id, "name": self.name}
        if self.error is not None:
            payload["error"] = self.error
        else:
            payload["result"] = self.result
        return payload


@dataclass(frozen=True)
class LoopIteration:
    """The agent loop started executing the tool batch of a model turn."""

    type: ClassVar[str] = EventType.LOOP_ITERATION
    iteration: int
    max_iterations: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "iteration": self.iteration,
            "maxIterations": self.max_iterations,
        }


@dataclass(frozen=True)
class LoopComplete:
    """The agent loop finished, emitted right before the terminal event.

    Attributes:
        iterations: Model turns that requested tools
        max_iterations_reached: True when the ceiling refused a batch
        aborted: True when the invocation ended on a model error
    """

    type: ClassVar[str] = EventType.LOOP_COMPLETE
    iterations: int
    max_iterations_reached: bool = False
    aborted: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "iterations": self.iterations,
            "maxIterationsReached": self.max_iterations_reached,
            "aborted": self.aborted,
        }


@dataclass(frozen=True)
class DoneEvent:
    """Terminal success event.

    Attributes:
        requires_action: True when the client must execute tool calls and resubmit
        messages: Messages created during the invocation, for the client to append
        usage: Token usage, stripped before reaching clients unless requested
    """

    type: ClassVar[str] = EventType.DONE
    requires_action: bool = False
    messages: tuple[Message, ...] | None = None
    usage: TokenUsage | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type, "requiresAction": self.requires_action}
        if self.messages is not None:
            payload["messages"] = [message.to_dict() for message in self.messages]
        if self.usage is not None:
            payload["usage"] = self.usage.to_dict()
        return payload

    def without_usage(self) -> "DoneEvent":
        return DoneEvent(requires_action=self.requires_action, messages=self.messages)


@dataclass(frozen=True)
class ErrorEvent:
    """Terminal failure event."""

    type: ClassVar[str] = EventType.ERROR
    message: str
    code: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type, "message": self.message}
        if self.code is not None:
            payload["code"] = self.code
        return payload


@dataclass(frozen=True)
class UnknownEvent:
    """An event kind this version does not understand, kept verbatim."""

    type: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {**self.data, "type": self.type}


StreamEvent: TypeAlias = (
    MessageStart
    | MessageDelta
    | ThinkingDelta
    | MessageEnd
    | ToolCallsEvent
    | ActionStart
    | ActionEnd
    | LoopIteration
    | LoopComplete
    | DoneEvent
    | ErrorEvent
    | UnknownEvent
)


def is_terminal(event: StreamEvent) -> bool:
    return isinstance(event, DoneEvent | ErrorEvent)


def parse_event(data: Mapping[str, Any]) -> StreamEvent:
    """Parse a wire event. Never raises: anything unrecognised becomes UnknownEvent."""
    if not isinstance(data, Mapping):
        return UnknownEvent(type="")
    try:
        return _parse_event(data)
    except (KeyError, TypeError, ValueError, AttributeError, InvalidRequestError):
        return UnknownEvent(type=str(data.get("type", "")), data=dict(data))


def _parse_event(data: Mapping[str, Any]) -> StreamEvent:
    match data.get("type"):
        case EventType.MESSAGE_START:
            return MessageStart(id=str(data["id"]))
        case EventType.MESSAGE_DELTA:
            return MessageDelta(content=str(data.get("content") or ""))
        case EventType.THINKING_DELTA:
            return ThinkingDelta(content=str(data.get("content") or ""))
        case EventType.MESSAGE_END:
            return MessageEnd()
        case EventType.TOOL_CALLS:
            raw_calls = data.get("toolCalls") or data.get("tool_calls") or []
            assistant = data.get("assistantMessage")
            return ToolCallsEvent(
                tool_calls=tuple(ToolCall.from_dict(call) for call in raw_calls),
                assistant_message=Message.from_dict(assistant) if assistant else None,
            )
        case EventType.ACTION_START:
            return ActionStart(
                id=str(data["id"]), name=str(data.get("name", "")), args=dict(data.get("args") or {})
            )
        case EventType.ACTION_END:
            return ActionEnd(
                id=str(data["id"]),
                name=str(data.get("name", "")),
                result=data.get("result"),
                error=data.get("error"),
            )
        case EventType.LOOP_ITERATION:
            return LoopIteration(
                iteration=int(data["iteration"]),
                max_iterations=int(data.get("maxIterations", data.get("max_iterations", 0))),
            )
        case EventType.LOOP_COMPLETE:
            return LoopComplete(
                iterations=int(data.get("iterations", 0)),
                max_iterations_reached=bool(
                    data.get("maxIterationsReached", data.get("max_iterations_reached", False))
                ),
                aborted=bool(data.get("aborted", False)),
            )
        case EventType.DONE:
            raw_messages = data.get("messages")
            raw_usage = data.get("usage")
            return DoneEvent(
                requires_action=bool(data.get("requiresAction", data.get("requires_action", False))),
                messages=(
                    tuple(Message.from_dict(message) for message in raw_messages)
                    if raw_messages is not None
                    else None
                ),
                usage=TokenUsage.from_dict(raw_usage) if raw_usage else None,
            )
        case EventType.ERROR:
            return ErrorEvent(message=str(data.get("message") or "Unknown error"), code=data.get("code"))
        case other:
            return UnknownEvent(type=str(other or ""), data=dict(data))
