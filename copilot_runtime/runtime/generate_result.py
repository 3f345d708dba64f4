"""Buffered result of a non-streaming runtime invocation."""

from collections.abc import AsyncIterable
from dataclasses import dataclass, field
from typing import Any

from fastapi.encoders import jsonable_encoder
from starlette.responses import JSONResponse

from copilot_runtime.core.events import (
    ActionEnd,
    ActionStart,
    DoneEvent,
    ErrorEvent,
    MessageDelta,
    StreamEvent,
    ToolCallsEvent,
)
from copilot_runtime.core.messages import Message, TokenUsage, ToolCall


@dataclass(frozen=True)
class ToolResultRecord:
    """Outcome of one server tool execution."""

    id: str
    name: str
    result: Any = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"id": self.id, "name": self.name}
        if self.error is not None:
            payload["error"] = self.error
        else:
            payload["result"] = self.result
        return payload


@dataclass
class GenerateResult:
    """Everything a non-streaming invocation produced.

    Attributes:
        text: Concatenated assistant text of every model turn
        messages: Messages created by the invocation
        tool_calls: Server calls that ran and client calls handed to the caller
        tool_results: Results of the server calls
        requires_action: True when the caller must run client tools and resubmit
        error: Message of the terminal error, if any
        error_code: Machine readable code of the terminal error
        usage: Token usage summed across model turns
    """

    text: str = ""
    messages: list[Message] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_results: list[ToolResultRecord] = field(default_factory=list)
    requires_action: bool = False
    error: str | None = None
    error_code: str | None = None
    usage: TokenUsage | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    @classmethod
    async def from_events(cls, events: AsyncIterable[StreamEvent]) -> "GenerateResult":
        result = cls()
        async for event in events:
            result.add(event)
        return result

    def add(self, event: StreamEvent) -> None:
        match event:
            case MessageDelta(content=content):
                self.text += content
            case ActionStart(id=call_id, name=name, args=args):
                self.tool_calls.append(ToolCall(id=call_id, name=name, args=args))
            case ActionEnd(id=call_id, name=name, result=result, error=error):
                self.tool_results.append(
                    ToolResultRecord(id=call_id, name=name, result=result, error=error)
                )
            case ToolCallsEvent(tool_calls=tool_calls):
                self.tool_calls.extend(tool_calls)
            case DoneEvent(requires_action=requires_action, messages=messages, usage=usage):
                self.messages.extend(messages or ())
                self.requires_action = requires_action
                self.usage = usage
            case ErrorEvent(message=message, code=code):
                self.error = message
                self.error_code = code

    def to_dict(self, include_usage: bool = False) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": self.success,
            "content": self.text,
            "messages": [message.to_dict() for message in self.messages],
            "toolCalls": [call.to_dict() for call in self.tool_calls],
            "toolResults": [record.to_dict() for record in self.tool_results],
            "requiresAction": self.requires_action,
        }
        if self.error is not None:
            payload["error"] = {"message": self.error, "code": self.error_code}
        if include_usage and self.usage is not None:
            payload["usage"] = self.usage.to_dict()
        return payload

    def to_response(self, include_usage: bool = False) -> JSONResponse:
        return JSONResponse(
            jsonable_encoder(self.to_dict(include_usage=include_usage)),
            status_code=200 if self.success else 500,
        )
