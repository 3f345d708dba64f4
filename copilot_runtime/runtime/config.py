"""Agent loop policy."""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

DEFAULT_MAX_ITERATIONS = 20
DEFAULT_MAX_ITERATIONS_MESSAGE = (
    "Tool execution paused: iteration limit reached. User can say 'continue' to resume."
)


class MixedBatchPolicy(StrEnum):
    """What to do when one model turn requests both server and client tools.

    SERVER_FIRST runs the server tools immediately and hands the client tools
    to the caller. WAIT_FOR_CLIENT runs nothing until the caller resubmits the
    client results; the server tools then run before the next model call.
    """

    SERVER_FIRST = "server_first"
    WAIT_FOR_CLIENT = "wait_for_client"


@dataclass(frozen=True)
class RuntimeConfig:
    """Loop policy of a Runtime.

    Attributes:
        max_iterations: Maximum number of model turns that may request tools
        system_prompt: Default system prompt, overridden per request
        batch_policy: Handling of mixed server/client tool batches
        parallel_tool_calls: Run the server calls of one batch concurrently
        max_iterations_message: Text of the refusal sent once the ceiling is hit
        tool_context: Application data handed to every server tool handler
        include_usage: Keep token usage in events sent to clients
        debug: Log every loop step
    """

    max_iterations: int = DEFAULT_MAX_ITERATIONS
    system_prompt: str | None = None
    batch_policy: MixedBatchPolicy = MixedBatchPolicy.SERVER_FIRST
    parallel_tool_calls: bool = True
    max_iterations_message: str = DEFAULT_MAX_ITERATIONS_MESSAGE
    tool_context: dict[str, Any] = field(default_factory=dict)
    include_usage: bool = False
    debug: bool = False

    def __post_init__(self):
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
