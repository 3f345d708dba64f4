"""Client-side conversation driver.

A ChatSession owns the history on the client: it sends it through a
transport, folds the events of every assistant message, appends the messages
the runtime created, runs the client tools the runtime handed back and
resubmits until the runtime no longer requires action.
"""

from collections.abc import AsyncIterator, Iterable, Sequence
from dataclasses import replace
from typing import Any

import structlog

from copilot_runtime.client.controller import ToolExecutionController
from copilot_runtime.client.reducer import (
    StreamingMessageState,
    create_stream_state,
    has_content,
    process_stream_chunk,
    state_to_message,
)
from copilot_runtime.client.transport import Transport
from copilot_runtime.core.events import (
    DoneEvent,
    ErrorEvent,
    MessageStart,
    StreamEvent,
    ToolCallsEvent,
)
from copilot_runtime.core.messages import Attachment, Message, Role, ToolCall
from copilot_runtime.core.tools import dump_result, rejection_result
from copilot_runtime.runtime.config import DEFAULT_MAX_ITERATIONS, DEFAULT_MAX_ITERATIONS_MESSAGE

logger = structlog.get_logger(__name__)


class ChatSession:
    """One conversation against a runtime.

    Example:
        session = ChatSession(HttpTransport("http://localhost:8000/api/chat"), controller)
        reply = await session.send_message("What's the weather in Paris?")
    """

    def __init__(
        self,
        transport: Transport,
        controller: ToolExecutionController | None = None,
        messages: Iterable[Message] = (),
        thread_id: str | None = None,
        system_prompt: str | None = None,
        config: dict[str, Any] | None = None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        max_iterations_message: str = DEFAULT_MAX_ITERATIONS_MESSAGE,
    ):
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self._transport = transport
        self._controller = controller or ToolExecutionController()
        self._messages: list[Message] = list(messages)
        self._thread_id = thread_id
        self._system_prompt = system_prompt
        self._config = dict(config or {})
        self._max_iterations = max_iterations
        self._max_iterations_message = max_iterations_message
        self._state = create_stream_state()
        self.iteration = 0
        self.max_iterations_reached = False
        self.error: str | None = None

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    @property
    def state(self) -> StreamingMessageState:
        """State of the assistant message currently (or last) streamed."""
        return self._state

    @property
    def controller(self) -> ToolExecutionController:
        return self._controller

    async def send_message(
        self, content: str, attachments: Sequence[Attachment] = ()
    ) -> Message | None:
        """Send a user message and drive the exchange to its end.

        Returns:
            The last assistant message, or None if nothing was answered
        """
        async for _ in self.stream_message(content, attachments):
            pass
        return next(
            (message for message in reversed(self._messages) if message.role == Role.ASSISTANT),
            None,
        )

    async def stream_message(
        self, content: str, attachments: Sequence[Attachment] = ()
    ) -> AsyncIterator[StreamEvent]:
        """Like ``send_message`` but yields every event as it arrives."""
        self._messages.append(Message.user(content, attachments))
        self.iteration = 0
        self.max_iterations_reached = False
        self.error = None

        while True:
            done: DoneEvent | None = None
            client_calls: list[ToolCall] = []
            async for event in self._transport.stream(self._body()):
                match event:
                    case MessageStart():
                        self._state = create_stream_state()
                    case ToolCallsEvent(tool_calls=tool_calls):
                        client_calls.extend(tool_calls)
                    case DoneEvent():
                        done = event
                    case ErrorEvent(message=message):
                        self.error = message
                self._state = process_stream_chunk(event, self._state)
                yield event

            if self.error is not None or done is None:
                self._keep_partial_reply()
                return
            self._messages.extend(done.messages or ())
            if not done.requires_action or not client_calls:
                return

            self.iteration += 1
            if self.iteration >= self._max_iterations:
                self._refuse(client_calls)
                return
            results = await self._controller.execute_tool_calls(
                client_calls, thread_id=self._thread_id
            )
            self._messages.extend(results)

    def reset(self) -> None:
        self._messages.clear()
        self._state = create_stream_state()
        self._controller.reset()
        self.iteration = 0
        self.max_iterations_reached = False
        self.error = None

    def _body(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "messages": [message.to_dict() for message in self._messages],
            "tools": [tool.to_schema() for tool in self._controller.tools],
        }
        if self._thread_id is not None:
            body["threadId"] = self._thread_id
        if self._system_prompt is not None:
            body["systemPrompt"] = self._system_prompt
        if self._config:
            body["config"] = self._config
        return body

    def _keep_partial_reply(self) -> None:
        # a failed invocation sends no messages; keep what was already shown
        if has_content(self._state):
            partial = state_to_message(replace(self._state, tool_calls=()))
            if partial.id not in {message.id for message in self._messages}:
                self._messages.append(partial)

    def _refuse(self, calls: Sequence[ToolCall]) -> None:
        self.max_iterations_reached = True
        logger.warning(
            "client_max_iterations_reached",
            max_iterations=self._max_iterations,
            tools=[call.name for call in calls],
        )
        for call in calls:
            self._messages.append(
                Message.tool(
                    call.id,
                    dump_result(rejection_result(self._max_iterations_message)),
                    name=call.name,
                )
            )
