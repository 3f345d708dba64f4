"""Client side of the protocol: stream reduction, tool execution and consent."""

from copilot_runtime.client.chat import ChatSession
from copilot_runtime.client.consent import (
    ConsentLevel,
    ConsentStore,
    InMemoryConsentStore,
    JsonFileConsentStore,
    ToolPermission,
)
from copilot_runtime.client.controller import ToolExecution, ToolExecutionController
from copilot_runtime.client.reducer import (
    StreamingMessageState,
    create_stream_state,
    has_content,
    is_stream_complete,
    process_stream_chunk,
    reduce_events,
    state_to_message,
)
from copilot_runtime.client.transport import HttpTransport, RuntimeTransport, Transport

__all__ = [
    "ChatSession",
    "ConsentLevel",
    "ConsentStore",
    "HttpTransport",
    "InMemoryConsentStore",
    "JsonFileConsentStore",
    "RuntimeTransport",
    "StreamingMessageState",
    "ToolExecution",
    "ToolExecutionController",
    "ToolPermission",
    "Transport",
    "create_stream_state",
    "has_content",
    "is_stream_complete",
    "process_stream_chunk",
    "reduce_events",
    "state_to_message",
]
