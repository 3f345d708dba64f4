"""Core vocabulary: messages, unified events, tools and errors."""

from copilot_runtime.core.events import (
    ActionEnd,
    ActionStart,
    DoneEvent,
    ErrorEvent,
    EventType,
    LoopComplete,
    LoopIteration,
    MessageDelta,
    MessageEnd,
    MessageStart,
    StreamEvent,
    ThinkingDelta,
    ToolCallsEvent,
    UnknownEvent,
    is_terminal,
    parse_event,
)
from copilot_runtime.core.exceptions import (
    CopilotRuntimeError,
    InvalidRequestError,
    ProviderError,
    ToolRegistrationError,
)
from copilot_runtime.core.messages import (
    Attachment,
    Message,
    Role,
    TokenUsage,
    ToolCall,
    generate_message_id,
    generate_tool_call_id,
)
from copilot_runtime.core.tools import (
    AIResponseMode,
    ApprovalStatus,
    ToolContext,
    ToolDefinition,
    ToolExecutionStatus,
    ToolLocation,
    ToolRegistry,
    ToolResponse,
    build_tool_result_for_ai,
)

__all__ = [
    "AIResponseMode",
    "ActionEnd",
    "ActionStart",
    "ApprovalStatus",
    "Attachment",
    "CopilotRuntimeError",
    "DoneEvent",
    "ErrorEvent",
    "EventType",
    "InvalidRequestError",
    "LoopComplete",
    "LoopIteration",
    "Message",
    "MessageDelta",
    "MessageEnd",
    "MessageStart",
    "ProviderError",
    "Role",
    "StreamEvent",
    "ThinkingDelta",
    "TokenUsage",
    "ToolCall",
    "ToolCallsEvent",
    "ToolContext",
    "ToolDefinition",
    "ToolExecutionStatus",
    "ToolLocation",
    "ToolRegistrationError",
    "ToolRegistry",
    "ToolResponse",
    "UnknownEvent",
    "build_tool_result_for_ai",
    "generate_message_id",
    "generate_tool_call_id",
    "is_terminal",
    "parse_event",
]
