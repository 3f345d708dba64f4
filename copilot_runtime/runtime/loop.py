"""Bounded multi-turn tool-calling loop.

One ``AgentLoop`` drives one invocation: it streams a model turn, forwards
its events, executes the server tools the model asked for, appends their
results and calls the model again, until the model answers without tools,
client tools have to be handed back to the caller, the iteration ceiling is
reached or the model call fails.
"""

import asyncio
from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import aclosing
from dataclasses import dataclass, field, replace
from time import monotonic
from typing import Any

import structlog

from copilot_runtime.client.reducer import (
    create_stream_state,
    has_content,
    process_stream_chunk,
    state_to_message,
)
from copilot_runtime.core.events import (
    ActionEnd,
    ActionStart,
    DoneEvent,
    ErrorEvent,
    LoopComplete,
    LoopIteration,
    MessageDelta,
    MessageEnd,
    MessageStart,
    StreamEvent,
    ThinkingDelta,
    ToolCallsEvent,
    UnknownEvent,
)
from copilot_runtime.core.messages import (
    Message,
    Role,
    TokenUsage,
    ToolCall,
    unanswered_tool_calls,
)
from copilot_runtime.core.tools import (
    ToolContext,
    ToolDefinition,
    ToolExecutionStatus,
    ToolRegistry,
    ToolResponse,
    build_tool_result_for_ai,
    dump_result,
    failure_result,
    rejection_result,
    run_tool_handler,
)
from copilot_runtime.providers.base import ChatRequest, ModelOptions
from copilot_runtime.providers.model import ModelHandle
from copilot_runtime.runtime.config import MixedBatchPolicy, RuntimeConfig
from copilot_runtime.runtime.metrics import (
    ProviderMetricsLabels,
    ToolMetricsLabels,
    collect_provider_metrics,
    record_iteration_limit,
    record_tokens,
    record_tool_call,
)

logger = structlog.get_logger(__name__)


@dataclass
class ServerToolExecution:
    """One server tool call run by the loop."""

    id: str
    name: str
    args: dict[str, Any]
    status: ToolExecutionStatus = ToolExecutionStatus.PENDING
    result: Any = None
    error: str | None = None
    content: str = ""


@dataclass
class AgentLoopState:
    """Bookkeeping of one loop invocation.

    Attributes:
        max_iterations: Ceiling on model turns that may request tools
        iteration: Number of model turns that requested tools so far
        pending_approvals: Always 0 on the server; kept for parity with the client state
        tool_executions: Server executions in the order they were started
        max_iterations_reached: True once the ceiling refused a batch
        messages: Full history, including the messages created by this invocation
        new_messages: Messages created by this invocation
        usage: Token usage summed across model turns
        error: Message of the terminal error, if the invocation failed
    """

    max_iterations: int
    iteration: int = 0
    pending_approvals: int = 0
    tool_executions: list[ServerToolExecution] = field(default_factory=list)
    max_iterations_reached: bool = False
    messages: list[Message] = field(default_factory=list)
    new_messages: list[Message] = field(default_factory=list)
    usage: TokenUsage | None = None
    error: str | None = None

    def append(self, message: Message) -> None:
        self.messages.append(message)
        self.new_messages.append(message)

    def add_usage(self, usage: TokenUsage | None) -> None:
        if usage is not None:
            self.usage = usage if self.usage is None else self.usage + usage


@dataclass
class _Batch:
    server: list[ToolCall] = field(default_factory=list)
    client: list[ToolCall] = field(default_factory=list)
    refused: list[tuple[ToolCall, str]] = field(default_factory=list)


class AgentLoop:
    """Runs one invocation of the agent loop. Not reusable."""

    def __init__(
        self,
        model: ModelHandle,
        tools: ToolRegistry,
        config: RuntimeConfig,
        client_tools: Sequence[ToolDefinition] = (),
        system_prompt: str | None = None,
        options: ModelOptions | None = None,
        thread_id: str | None = None,
        headers: Mapping[str, str] | None = None,
    ):
        self._model = model
        self._server_tools = tools
        self._client_tools = {tool.name: tool for tool in client_tools}
        self._config = config
        self._system_prompt = system_prompt or config.system_prompt
        self._options = options or ModelOptions()
        self._thread_id = thread_id
        self._headers = dict(headers or {})
        self._collisions = {name for name in self._client_tools if name in self._server_tools}
        self._log = logger.info if config.debug else logger.debug
        self.state = AgentLoopState(max_iterations=config.max_iterations)
        self._turn = create_stream_state()

        if self._collisions:
            logger.warning("tool_name_collision", tools=sorted(self._collisions))

    @property
    def _labels(self) -> ProviderMetricsLabels:
        return ProviderMetricsLabels(self._model.provider, self._model.model_id)

    def _declared_tools(self) -> list[ToolDefinition]:
        tools = list(self._server_tools)
        tools.extend(
            tool for name, tool in self._client_tools.items() if name not in self._collisions
        )
        return tools

    async def run(self, history: Sequence[Message]) -> AsyncIterator[StreamEvent]:
        """Yield the events of the whole invocation, ending with one terminal event."""
        self.state.messages = list(history)
        try:
            async for event in self._answer_resubmitted_calls():
                yield event

            while True:
                self._turn = create_stream_state()
                async for event in self._model_turn():
                    yield event
                if self.state.error is not None:
                    return

                assistant = state_to_message(self._turn)
                self.state.append(assistant)
                if not assistant.tool_calls:
                    yield MessageEnd()
                    yield self._complete()
                    yield self._done(requires_action=False)
                    return

                self.state.iteration += 1
                self._log(
                    "loop_tool_calls",
                    iteration=self.state.iteration,
                    max_iterations=self.state.max_iterations,
                    tools=[call.name for call in assistant.tool_calls],
                )
                if self.state.iteration >= self.state.max_iterations:
                    async for event in self._refuse_for_ceiling(assistant):
                        yield event
                    return

                batch = self._classify(assistant.tool_calls)
                hold_server = bool(
                    batch.client and self._config.batch_policy == MixedBatchPolicy.WAIT_FOR_CLIENT
                )
                if batch.client:
                    yield ToolCallsEvent(tool_calls=tuple(batch.client), assistant_message=assistant)
                yield MessageEnd()
                yield LoopIteration(
                    iteration=self.state.iteration, max_iterations=self.state.max_iterations
                )

                results = self._refusals(batch.refused)
                if batch.server and not hold_server:
                    async for event in self._execute_server_calls(batch.server, results):
                        yield event
                self._append_results(assistant.tool_calls, results)

                if batch.client:
                    yield self._complete()
                    yield self._done(requires_action=True)
                    return
        except (asyncio.CancelledError, GeneratorExit):
            self._abort_executions("Invocation cancelled")
            raise

    async def _model_turn(self) -> AsyncIterator[StreamEvent]:
        """Stream one model call into ``self._turn``, yielding the events to forward.

        ``tool_calls``, ``message:end`` and ``done`` of the model turn are held
        back: the loop decides what the caller sees once the turn is over.
        """
        request = ChatRequest(
            messages=tuple(self.state.messages),
            system_prompt=self._system_prompt,
            tools=tuple(self._declared_tools()),
            options=self._options,
        )
        async with collect_provider_metrics(self._labels) as metrics:
            async with aclosing(self._model.stream(request)) as events:
                async for event in events:
                    self._turn = process_stream_chunk(event, self._turn)
                    match event:
                        case MessageStart() | MessageDelta() | ThinkingDelta() | UnknownEvent():
                            yield event
                        case DoneEvent(usage=usage):
                            self._record_usage(usage)
                        case ErrorEvent(message=message):
                            metrics.mark_error()
                            self.state.error = message
                            # streamed text cannot be taken back; keep it in the history
                            if has_content(self._turn):
                                self.state.append(
                                    state_to_message(replace(self._turn, tool_calls=()))
                                )
                            logger.warning("model_turn_failed", error=message)
                            yield self._complete(aborted=True)
                            yield event
                            return

    def _record_usage(self, usage: TokenUsage | None) -> None:
        self.state.add_usage(usage)
        if usage is not None:
            record_tokens(
                self._model.provider,
                self._model.model_id,
                usage.prompt_tokens,
                usage.completion_tokens,
            )

    def _classify(self, calls: Sequence[ToolCall]) -> _Batch:
        batch = _Batch()
        for call in calls:
            if call.name in self._collisions:
                batch.refused.append(
                    (call, f"Tool '{call.name}' is registered on both server and client")
                )
            elif call.name in self._server_tools:
                batch.server.append(call)
            elif call.name in self._client_tools:
                batch.client.append(call)
            else:
                batch.refused.append((call, f"Tool '{call.name}' not found"))
        return batch

    @staticmethod
    def _refusals(refused: Sequence[tuple[ToolCall, str]]) -> dict[str, Message]:
        return {
            call.id: Message.tool(call.id, dump_result(failure_result(reason)), name=call.name)
            for call, reason in refused
        }

    def _append_results(self, calls: Sequence[ToolCall], results: Mapping[str, Message]) -> None:
        """Append tool messages in the order the model issued the calls."""
        for call in calls:
            if call.id in results:
                self.state.append(results[call.id])

    async def _answer_resubmitted_calls(self) -> AsyncIterator[StreamEvent]:
        """Run server calls left unanswered at the tail of a resubmitted history.

        This happens under WAIT_FOR_CLIENT: the client answered its own calls
        and the server calls of the same batch are still pending. Calls nobody
        answered get a failure result so the vendor accepts the history.
        """
        for message in reversed(self.state.messages):
            if message.role == Role.ASSISTANT:
                break
            if message.role != Role.TOOL:
                return
        else:
            return

        pending = unanswered_tool_calls(self.state.messages)
        if not pending:
            return
        batch = self._classify(pending)
        batch.refused.extend(
            (call, f"No result was provided for tool '{call.name}'") for call in batch.client
        )
        results = self._refusals(batch.refused)
        if batch.server:
            async for event in self._execute_server_calls(batch.server, results):
                yield event
        self._append_results(pending, results)

    async def _execute_server_calls(
        self, calls: Sequence[ToolCall], results: dict[str, Message]
    ) -> AsyncIterator[StreamEvent]:
        """Announce, run and report a batch of server calls.

        ``action:start`` events are emitted up front, handlers run concurrently
        when allowed, and ``action:end`` events follow in call order.
        """
        executions = [
            ServerToolExecution(id=call.id, name=call.name, args=call.args) for call in calls
        ]
        self.state.tool_executions.extend(executions)
        for execution in executions:
            yield ActionStart(id=execution.id, name=execution.name, args=execution.args)

        if self._config.parallel_tool_calls and len(executions) > 1:
            async with asyncio.TaskGroup() as group:
                for execution in executions:
                    group.create_task(self._run_execution(execution))
        else:
            for execution in executions:
                await self._run_execution(execution)

        for execution in executions:
            result = execution.result
            if isinstance(result, ToolResponse):
                result = result.to_dict()
            yield ActionEnd(
                id=execution.id, name=execution.name, result=result, error=execution.error
            )
            results[execution.id] = Message.tool(
                execution.id, execution.content, name=execution.name
            )

    async def _run_execution(self, execution: ServerToolExecution) -> None:
        """Run one handler; failures become a failure result, never an exception."""
        tool = self._server_tools.require(execution.name)
        context = ToolContext(
            tool_call_id=execution.id,
            thread_id=self._thread_id,
            headers=self._headers,
            data=self._config.tool_context,
        )
        execution.status = ToolExecutionStatus.EXECUTING
        started = monotonic()
        try:
            result = await run_tool_handler(tool, execution.args, context)
            # ai_context callables and result encoding fail like the handler itself
            execution.content = build_tool_result_for_ai(tool, result, execution.args)
        except Exception as e:
            logger.warning("tool_handler_failed", tool=execution.name, error=str(e), exc_info=True)
            execution.status = ToolExecutionStatus.ERROR
            execution.error = str(e) or type(e).__name__
            execution.content = dump_result(failure_result(execution.error))
        else:
            execution.status = ToolExecutionStatus.COMPLETED
            execution.result = result
        record_tool_call(
            ToolMetricsLabels(tool_name=execution.name, location="server"),
            duration=monotonic() - started,
            error=execution.status == ToolExecutionStatus.ERROR,
        )

    async def _refuse_for_ceiling(self, assistant: Message) -> AsyncIterator[StreamEvent]:
        """Answer every call of the batch with a refusal and close the invocation."""
        notice = self._config.max_iterations_message
        self.state.max_iterations_reached = True
        record_iteration_limit(self._labels)
        logger.warning(
            "max_iterations_reached",
            max_iterations=self.state.max_iterations,
            tools=[call.name for call in assistant.tool_calls],
        )
        yield MessageEnd()
        for call in assistant.tool_calls:
            self.state.append(
                Message.tool(call.id, dump_result(rejection_result(notice)), name=call.name)
            )

        closing = Message.assistant(content=notice)
        self.state.append(closing)
        yield MessageStart(id=closing.id)
        yield MessageDelta(content=notice)
        yield MessageEnd()
        yield self._complete()
        yield self._done(requires_action=False)

    def _complete(self, aborted: bool = False) -> LoopComplete:
        return LoopComplete(
            iterations=self.state.iteration,
            max_iterations_reached=self.state.max_iterations_reached,
            aborted=aborted,
        )

    def _done(self, requires_action: bool) -> DoneEvent:
        self._log(
            "loop_done",
            iterations=self.state.iteration,
            requires_action=requires_action,
            new_messages=len(self.state.new_messages),
        )
        return DoneEvent(
            requires_action=requires_action,
            messages=tuple(self.state.new_messages),
            usage=self.state.usage,
        )

    def _abort_executions(self, reason: str) -> None:
        for execution in self.state.tool_executions:
            if not execution.status.is_terminal:
                execution.status = ToolExecutionStatus.ERROR
                execution.error = reason
