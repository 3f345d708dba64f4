"""Agent loop, runtime facade and transport results."""

from copilot_runtime.runtime.config import (
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_MAX_ITERATIONS_MESSAGE,
    MixedBatchPolicy,
    RuntimeConfig,
)
from copilot_runtime.runtime.generate_result import GenerateResult, ToolResultRecord
from copilot_runtime.runtime.loop import AgentLoop, AgentLoopState, ServerToolExecution
from copilot_runtime.runtime.request import ChatRequestBody
from copilot_runtime.runtime.runtime import FinishContext, Runtime
from copilot_runtime.runtime.sse import SSE_DONE, SSE_HEADERS, format_sse, sse_frames
from copilot_runtime.runtime.stream_result import (
    AsgiResponseWriter,
    CollectedResult,
    ResponseWriter,
    StreamResult,
)

__all__ = [
    "DEFAULT_MAX_ITERATIONS",
    "DEFAULT_MAX_ITERATIONS_MESSAGE",
    "SSE_DONE",
    "SSE_HEADERS",
    "AgentLoop",
    "AgentLoopState",
    "AsgiResponseWriter",
    "ChatRequestBody",
    "CollectedResult",
    "FinishContext",
    "GenerateResult",
    "MixedBatchPolicy",
    "ResponseWriter",
    "Runtime",
    "RuntimeConfig",
    "ServerToolExecution",
    "StreamResult",
    "ToolResultRecord",
    "format_sse",
    "sse_frames",
]
