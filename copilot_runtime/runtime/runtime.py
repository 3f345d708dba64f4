"""Runtime facade: tool registry, loop policy and transports around AgentLoop."""

import inspect
from collections.abc import AsyncGenerator, Awaitable, Callable, Iterable, Mapping, Sequence
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, TypeAlias

import structlog
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from copilot_runtime.core.events import DoneEvent, ErrorEvent, StreamEvent, is_terminal
from copilot_runtime.core.exceptions import InvalidRequestError, ToolRegistrationError
from copilot_runtime.core.messages import Message, TokenUsage
from copilot_runtime.core.tools import ToolDefinition, ToolLocation, ToolRegistry
from copilot_runtime.providers.base import ModelOptions
from copilot_runtime.providers.model import ModelHandle
from copilot_runtime.runtime.config import RuntimeConfig
from copilot_runtime.runtime.generate_result import GenerateResult
from copilot_runtime.runtime.loop import AgentLoop
from copilot_runtime.runtime.request import ChatRequestBody
from copilot_runtime.runtime.stream_result import StreamResult

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class FinishContext:
    """Passed to ``on_finish`` once an invocation reached its terminal event.

    Attributes:
        messages: Messages created by the invocation
        thread_id: Conversation thread supplied by the caller
        usage: Token usage summed across model turns
        requires_action: True when the caller must run client tools
        error: Message of the terminal error, if the invocation failed
    """

    messages: tuple[Message, ...]
    thread_id: str | None = None
    usage: TokenUsage | None = None
    requires_action: bool = False
    error: str | None = None


FinishHook: TypeAlias = Callable[[FinishContext], Awaitable[None] | None]


class Runtime:
    """Entry point for chat invocations against one model.

    Example:
        runtime = Runtime(create_openai(api_key=key)("gpt-4o"), tools=[weather])
        result = await runtime.generate({"messages": [{"role": "user", "content": "hi"}]})
    """

    def __init__(
        self,
        model: ModelHandle,
        tools: Iterable[ToolDefinition] = (),
        config: RuntimeConfig | None = None,
        on_finish: FinishHook | None = None,
    ):
        self._model = model
        self._config = config or RuntimeConfig()
        self._on_finish = on_finish
        self._tools = ToolRegistry()
        for tool in tools:
            self.register_tool(tool)

    @property
    def model(self) -> ModelHandle:
        return self._model

    @property
    def config(self) -> RuntimeConfig:
        return self._config

    @property
    def tools(self) -> list[ToolDefinition]:
        return list(self._tools)

    def register_tool(self, tool: ToolDefinition) -> None:
        """Register a server tool.

        Raises:
            ToolRegistrationError: If the tool is client-located or the name is taken
        """
        if tool.location != ToolLocation.SERVER:
            raise ToolRegistrationError(
                "only server tools can be registered on the runtime", tool.name
            )
        self._tools.register(tool)

    def unregister_tool(self, name: str) -> None:
        self._tools.unregister(name)

    def stream(self, body: Any, headers: Mapping[str, str] | None = None) -> StreamResult:
        """Start a streaming invocation.

        Raises:
            InvalidRequestError: If the body is malformed; raised before any model call
        """
        request = ChatRequestBody.parse(body)
        events = self._invoke(request, headers)
        return StreamResult(events, include_usage=self._config.include_usage)

    async def generate(
        self, body: Any, headers: Mapping[str, str] | None = None
    ) -> GenerateResult:
        """Run an invocation to completion and buffer its outcome.

        Raises:
            InvalidRequestError: If the body is malformed
        """
        request = ChatRequestBody.parse(body)
        async with aclosing(self._invoke(request, headers)) as events:
            return await GenerateResult.from_events(events)

    async def handle_request(self, request: Request) -> Response:
        """Serve one HTTP chat request: SSE, or JSON when ``streaming`` is false."""
        try:
            data = await request.json()
        except ValueError:
            return JSONResponse({"error": "Request body must be valid JSON"}, status_code=400)

        headers = dict(request.headers)
        try:
            body = ChatRequestBody.parse(data)
            if body.streaming:
                return self.stream(body, headers=headers).to_response()
            result = await self.generate(body, headers=headers)
        except InvalidRequestError as e:
            logger.info("chat_request_rejected", error=str(e))
            return JSONResponse({"error": str(e)}, status_code=400)
        except Exception as e:
            logger.exception("chat_request_failed", error=str(e))
            return JSONResponse({"error": str(e) or "Internal server error"}, status_code=500)
        return result.to_response(include_usage=self._config.include_usage)

    async def aclose(self) -> None:
        await self._model.aclose()

    def _invoke(
        self, request: ChatRequestBody, headers: Mapping[str, str] | None
    ) -> AsyncGenerator[StreamEvent]:
        # validated eagerly so malformed bodies fail before the stream starts
        history = request.to_messages()
        loop = AgentLoop(
            model=self._model,
            tools=self._tools,
            config=self._config,
            client_tools=request.client_tools(),
            system_prompt=request.system_prompt,
            options=ModelOptions().merged(request.config),
            thread_id=request.thread_id,
            headers=headers,
        )
        return self._run(loop, history, request.thread_id)

    async def _run(
        self, loop: AgentLoop, history: Sequence[Message], thread_id: str | None
    ) -> AsyncGenerator[StreamEvent]:
        logger.debug(
            "invocation_started",
            provider=self._model.provider,
            model=self._model.model_id,
            messages=len(history),
            thread_id=thread_id,
        )
        async with aclosing(loop.run(history)) as events:
            async for event in events:
                if is_terminal(event):
                    await self._finish(loop, thread_id, event)
                yield event

    async def _finish(
        self, loop: AgentLoop, thread_id: str | None, terminal: DoneEvent | ErrorEvent
    ) -> None:
        if self._on_finish is None:
            return
        context = FinishContext(
            messages=tuple(loop.state.new_messages),
            thread_id=thread_id,
            usage=loop.state.usage,
            requires_action=isinstance(terminal, DoneEvent) and terminal.requires_action,
            error=terminal.message if isinstance(terminal, ErrorEvent) else None,
        )
        try:
            result = self._on_finish(context)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning("on_finish_failed", error=str(e), exc_info=True)
