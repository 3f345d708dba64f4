"""Pure reduction of unified events into the state of one assistant message.

``process_stream_chunk`` never raises and never mutates its input, so a UI
can fold any event sequence (including events from a newer server it does
not understand) and replaying the same sequence always yields the same state.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from typing import Any, Literal, TypeAlias

from copilot_runtime.core.events import (
    DoneEvent,
    ErrorEvent,
    MessageDelta,
    MessageEnd,
    MessageStart,
    StreamEvent,
    ThinkingDelta,
    ToolCallsEvent,
    parse_event,
)
from copilot_runtime.core.messages import Message, ToolCall

FinishReason: TypeAlias = Literal["stop", "error"]


@dataclass(frozen=True)
class StreamingMessageState:
    """Projection of an event stream onto one assistant message.

    Attributes:
        message_id: Id adopted from the latest ``message:start``
        content: Accumulated text
        thinking: Accumulated reasoning trace
        tool_calls: Calls from the latest ``tool_calls`` event
        requires_action: True when the client must run tools and resubmit
        finish_reason: None while streaming, then "stop" or "error"
        error: Message of the ``error`` event, if any
    """

    message_id: str | None = None
    content: str = ""
    thinking: str = ""
    tool_calls: tuple[ToolCall, ...] = ()
    requires_action: bool = False
    finish_reason: FinishReason | None = None
    error: str | None = None


def create_stream_state(message_id: str | None = None) -> StreamingMessageState:
    return StreamingMessageState(message_id=message_id)


def process_stream_chunk(
    event: StreamEvent | Mapping[str, Any], state: StreamingMessageState
) -> StreamingMessageState:
    """Fold one event (object or wire mapping) into the state.

    Once ``finish_reason`` is "error" the state no longer changes. A "stop"
    state only accepts what may trail ``message:end``: the ``tool_calls`` of
    the turn, the terminal ``done`` (carrying ``requiresAction``) or an
    ``error``.
    """
    if not hasattr(event, "to_dict"):
        event = parse_event(event)

    if state.finish_reason == "error":
        return state
    if state.finish_reason == "stop" and not isinstance(
        event, ToolCallsEvent | DoneEvent | ErrorEvent
    ):
        return state

    match event:
        case MessageStart(id=message_id):
            return replace(state, message_id=message_id)
        case MessageDelta(content=content):
            return replace(state, content=state.content + content)
        case ThinkingDelta(content=content):
            return replace(state, thinking=state.thinking + content)
        case ToolCallsEvent(tool_calls=tool_calls):
            return replace(state, tool_calls=tuple(tool_calls), requires_action=True)
        case MessageEnd():
            return replace(state, finish_reason="stop")
        case DoneEvent(requires_action=requires_action):
            return replace(state, requires_action=requires_action, finish_reason="stop")
        case ErrorEvent(message=message):
            return replace(state, finish_reason="error", error=message)
        case _:
            return state


def reduce_events(
    events: Iterable[StreamEvent | Mapping[str, Any]],
    state: StreamingMessageState | None = None,
) -> StreamingMessageState:
    state = state or create_stream_state()
    for event in events:
        state = process_stream_chunk(event, state)
    return state


def is_stream_complete(state: StreamingMessageState) -> bool:
    return state.finish_reason is not None


def has_content(state: StreamingMessageState) -> bool:
    return bool(state.content or state.thinking)


def state_to_message(state: StreamingMessageState) -> Message:
    """Assistant message carrying everything accumulated so far."""
    return Message.assistant(
        content=state.content,
        tool_calls=state.tool_calls,
        thinking=state.thinking or None,
        id=state.message_id,
    )
