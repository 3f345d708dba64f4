"""Single-use wrapper around the event stream of one runtime invocation.

A StreamResult is handed out by ``Runtime.stream``; the caller picks exactly
one way to consume it: iterate the events, turn it into a Starlette response,
pipe it into a raw ASGI ``send`` or collect it into a ``CollectedResult``.
"""

import inspect
from collections.abc import AsyncGenerator, AsyncIterator, Callable, Mapping
from contextlib import aclosing
from dataclasses import dataclass, field, replace
from typing import Any, Protocol, TypeAlias

import structlog
from starlette.responses import StreamingResponse
from starlette.types import Send

from copilot_runtime.core.events import (
    DoneEvent,
    ErrorEvent,
    MessageDelta,
    StreamEvent,
    ToolCallsEvent,
)
from copilot_runtime.core.exceptions import StreamConsumedError
from copilot_runtime.core.messages import Message, TokenUsage, ToolCall
from copilot_runtime.runtime.sse import SSE_HEADERS, STREAM_ERROR_CODE, sse_frames

logger = structlog.get_logger(__name__)

TEXT_HEADERS: Mapping[str, str] = {
    "Content-Type": "text/plain; charset=utf-8",
    "Cache-Control": "no-cache",
}

HANDLER_NAMES = frozenset({"text", "tool_call", "done", "error"})

EventHandler: TypeAlias = Callable[[Any], Any]


@dataclass
class CollectedResult:
    """Everything one invocation produced, gathered while streaming.

    Attributes:
        text: Concatenated ``message:delta`` content of every model turn
        messages: Messages created by the invocation (from ``done``)
        tool_calls: Client tool calls forwarded to the caller
        requires_action: True when the caller must run tools and resubmit
        usage: Token usage, only kept when requested
        error: Message of the terminal error, if any
        events: Every event, in emission order
    """

    text: str = ""
    messages: list[Message] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    requires_action: bool = False
    usage: TokenUsage | None = None
    error: str | None = None
    events: list[StreamEvent] = field(default_factory=list)

    def add(self, event: StreamEvent) -> None:
        self.events.append(event)
        match event:
            case MessageDelta(content=content):
                self.text += content
            case ToolCallsEvent(tool_calls=tool_calls):
                self.tool_calls.extend(tool_calls)
            case DoneEvent(requires_action=requires_action, messages=messages, usage=usage):
                self.messages.extend(messages or ())
                self.requires_action = self.requires_action or requires_action
                if usage is not None:
                    self.usage = usage
            case ErrorEvent(message=message):
                self.error = message

    def without_usage(self) -> "CollectedResult":
        events = [
            event.without_usage() if isinstance(event, DoneEvent) else event
            for event in self.events
        ]
        return replace(self, usage=None, events=events)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "text": self.text,
            "messages": [message.to_dict() for message in self.messages],
            "toolCalls": [call.to_dict() for call in self.tool_calls],
            "requiresAction": self.requires_action,
        }
        if self.usage is not None:
            payload["usage"] = self.usage.to_dict()
        if self.error is not None:
            payload["error"] = self.error
        return payload


class ResponseWriter(Protocol):
    """Minimal streaming response sink for servers that are not Starlette."""

    async def start(self, status: int, headers: Mapping[str, str]) -> None: ...

    async def write(self, chunk: str) -> None: ...

    async def end(self) -> None: ...


class AsgiResponseWriter:
    """ResponseWriter over a raw ASGI ``send`` callable."""

    def __init__(self, send: Send):
        self._send = send

    async def start(self, status: int, headers: Mapping[str, str]) -> None:
        await self._send(
            {
                "type": "http.response.start",
                "status": status,
                "headers": [
                    (name.lower().encode("latin-1"), value.encode("latin-1"))
                    for name, value in headers.items()
                ],
            }
        )

    async def write(self, chunk: str) -> None:
        await self._send({"type": "http.response.body", "body": chunk.encode(), "more_body": True})

    async def end(self) -> None:
        await self._send({"type": "http.response.body", "body": b"", "more_body": False})


class StreamResult:
    """Events of one invocation, consumable exactly once.

    Handlers registered with ``on`` run whichever way the stream is consumed:
    ``text`` gets each delta, ``tool_call`` each forwarded client call,
    ``error`` the error message and ``done`` the final ``CollectedResult``.
    """

    def __init__(self, events: AsyncGenerator[StreamEvent], include_usage: bool = False):
        self._events = events
        self._include_usage = include_usage
        self._consumed = False
        self._handlers: dict[str, list[EventHandler]] = {}
        self._collected = CollectedResult()

    @property
    def consumed(self) -> bool:
        return self._consumed

    def on(self, name: str, handler: EventHandler) -> "StreamResult":
        if name not in HANDLER_NAMES:
            raise ValueError(
                f"Unknown stream event {name!r}, expected one of {sorted(HANDLER_NAMES)}"
            )
        self._handlers.setdefault(name, []).append(handler)
        return self

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        return self._observe(self._include_usage)

    def to_response(self, headers: Mapping[str, str] | None = None) -> StreamingResponse:
        frames = sse_frames(self._observe(self._include_usage))
        return StreamingResponse(
            frames, media_type="text/event-stream", headers={**SSE_HEADERS, **(headers or {})}
        )

    def to_text_response(self, headers: Mapping[str, str] | None = None) -> StreamingResponse:
        chunks = self._text_chunks(self._observe(self._include_usage))
        return StreamingResponse(
            chunks, media_type="text/plain", headers={**TEXT_HEADERS, **(headers or {})}
        )

    async def pipe_to_response(
        self, writer: ResponseWriter, headers: Mapping[str, str] | None = None
    ) -> CollectedResult:
        frames = sse_frames(self._observe(self._include_usage))
        await writer.start(200, {**SSE_HEADERS, **(headers or {})})
        try:
            async for frame in frames:
                await writer.write(frame)
        finally:
            await writer.end()
        return self._result(self._include_usage)

    async def pipe_text_to_response(
        self, writer: ResponseWriter, headers: Mapping[str, str] | None = None
    ) -> CollectedResult:
        chunks = self._text_chunks(self._observe(self._include_usage))
        await writer.start(200, {**TEXT_HEADERS, **(headers or {})})
        try:
            async for chunk in chunks:
                await writer.write(chunk)
        finally:
            await writer.end()
        return self._result(self._include_usage)

    async def collect(self, include_usage: bool | None = None) -> CollectedResult:
        """Drain the stream.

        Args:
            include_usage: Keep token usage in the result; defaults to the
                runtime's ``include_usage`` setting
        """
        include_usage = self._include_usage if include_usage is None else include_usage
        async for _ in self._observe(include_usage):
            pass
        return self._result(include_usage)

    async def text(self) -> str:
        return (await self.collect()).text

    def _take(self) -> AsyncGenerator[StreamEvent]:
        if self._consumed:
            raise StreamConsumedError()
        self._consumed = True
        return self._events

    def _observe(self, include_usage: bool) -> AsyncIterator[StreamEvent]:
        return self._watch(self._take(), include_usage)

    async def _watch(
        self, source: AsyncGenerator[StreamEvent], include_usage: bool
    ) -> AsyncIterator[StreamEvent]:
        """Yield the client view of the events while collecting and dispatching them."""
        collected = self._collected
        try:
            async with aclosing(source) as events:
                async for event in events:
                    collected.add(event)
                    await self._dispatch(event)
                    if isinstance(event, DoneEvent) and not include_usage:
                        event = event.without_usage()
                    yield event
        except Exception as e:
            logger.exception("stream_result_failed", error=str(e))
            error = ErrorEvent(message=str(e) or type(e).__name__, code=STREAM_ERROR_CODE)
            collected.add(error)
            await self._dispatch(error)
            yield error
        await self._emit("done", self._result(include_usage))

    @staticmethod
    async def _text_chunks(events: AsyncIterator[StreamEvent]) -> AsyncIterator[str]:
        async for event in events:
            if isinstance(event, MessageDelta) and event.content:
                yield event.content

    def _result(self, include_usage: bool) -> CollectedResult:
        return self._collected if include_usage else self._collected.without_usage()

    async def _dispatch(self, event: StreamEvent) -> None:
        match event:
            case MessageDelta(content=content):
                await self._emit("text", content)
            case ToolCallsEvent(tool_calls=tool_calls):
                for call in tool_calls:
                    await self._emit("tool_call", call)
            case ErrorEvent(message=message):
                await self._emit("error", message)

    async def _emit(self, name: str, payload: Any) -> None:
        for handler in self._handlers.get(name, ()):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning("stream_handler_failed", handler=name, error=str(e), exc_info=True)
