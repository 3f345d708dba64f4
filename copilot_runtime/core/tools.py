"""Tool definitions, registration and result shaping.

A tool is a named, JSON-Schema described callable. Server tools are executed
by the runtime loop; client tools are forwarded to the caller, which executes
them (optionally after human approval) and resubmits the results.
"""

import inspect
import json
import re
from collections.abc import Awaitable, Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, TypeAlias

from copilot_runtime.core.exceptions import ToolNotFoundError, ToolRegistrationError

TOOL_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{1,64}$")

ToolArgs: TypeAlias = dict[str, Any]
ToolHandler: TypeAlias = Callable[[ToolArgs, "ToolContext"], Any | Awaitable[Any]]


class ToolLocation(StrEnum):
    """Where a tool is executed."""

    SERVER = "server"
    CLIENT = "client"


class ToolExecutionStatus(StrEnum):
    """Lifecycle of one tool invocation."""

    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    ERROR = "error"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ToolExecutionStatus.COMPLETED,
            ToolExecutionStatus.ERROR,
            ToolExecutionStatus.REJECTED,
        )


class ApprovalStatus(StrEnum):
    NOT_REQUIRED = "not_required"
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


class AIResponseMode(StrEnum):
    """How much of a tool result is shown to the model."""

    NONE = "none"
    BRIEF = "brief"
    FULL = "full"


@dataclass
class ToolContext:
    """Context handed to a tool handler alongside its arguments.

    Attributes:
        tool_call_id: Id of the call being answered
        thread_id: Conversation thread, when the caller supplied one
        headers: Headers of the HTTP request that started the invocation
        data: Application data configured on the runtime
        approval_data: Extra data attached by the human who approved the call
    """

    tool_call_id: str
    thread_id: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    data: dict[str, Any] = field(default_factory=dict)
    approval_data: dict[str, Any] | None = None


@dataclass(frozen=True)
class ToolResponse:
    """Structured handler result that can override how the model sees it.

    Attributes:
        success: Whether the tool achieved its goal
        data: Result payload
        error: Error description when success is False
        ai_response_mode: Per-result override of the tool's response mode
        ai_context: Per-result summary shown to the model
    """

    success: bool = True
    data: Any = None
    error: str | None = None
    ai_response_mode: AIResponseMode | None = None
    ai_context: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success}
        if self.data is not None:
            payload["data"] = self.data
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass(frozen=True)
class ToolDefinition:
    """Declaration of a callable capability exposed to the model.

    Attributes:
        name: Unique tool name within a registration scope
        description: Description shown to the model
        location: Whether the runtime or the client executes the tool
        input_schema: JSON Schema (type "object") of the arguments
        handler: Callable receiving (args, context); may be sync or async
        needs_approval: Whether a human must approve each call, or a predicate on args
        approval_message: Prompt shown to the human, or a factory taking args
        ai_response_mode: How much of the result the model sees
        ai_context: Summary shown to the model, or a factory taking (result, args)
    """

    name: str
    description: str
    location: ToolLocation = ToolLocation.SERVER
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )
    handler: ToolHandler | None = field(default=None, compare=False)
    needs_approval: bool | Callable[[ToolArgs], bool] = field(default=False, compare=False)
    approval_message: str | Callable[[ToolArgs], str] | None = field(default=None, compare=False)
    ai_response_mode: AIResponseMode = AIResponseMode.FULL
    ai_context: str | Callable[[Any, ToolArgs], str] | None = field(default=None, compare=False)

    def __post_init__(self):
        if not TOOL_NAME_PATTERN.match(self.name):
            raise ToolRegistrationError(
                "name must be 1-64 characters of letters, digits, '_' or '-'", tool_name=self.name
            )
        validate_input_schema(self.input_schema, tool_name=self.name)
        if self.location == ToolLocation.SERVER and self.handler is None:
            raise ToolRegistrationError("server tools require a handler", tool_name=self.name)

    def to_schema(self) -> dict[str, Any]:
        """Serializable declaration with the handler stripped."""
        return {
            "name": self.name,
            "description": self.description,
            "location": self.location.value,
            "inputSchema": self.input_schema,
        }

    def requires_approval(self, args: ToolArgs) -> bool:
        if callable(self.needs_approval):
            return bool(self.needs_approval(args))
        return self.needs_approval

    def get_approval_message(self, args: ToolArgs) -> str | None:
        if callable(self.approval_message):
            return self.approval_message(args)
        return self.approval_message

    @classmethod
    def from_schema(cls, data: Mapping[str, Any]) -> "ToolDefinition":
        """Build a client tool declaration from its serialized schema."""
        return cls(
            name=str(data.get("name", "")),
            description=str(data.get("description", "")),
            location=ToolLocation.CLIENT,
            input_schema=dict(
                data.get("inputSchema")
                or data.get("input_schema")
                or data.get("parameters")
                or {"type": "object", "properties": {}}
            ),
        )


def validate_input_schema(schema: Any, tool_name: str | None = None) -> None:
    """Reject schemas the vendors' function-calling APIs cannot accept.

    Raises:
        ToolRegistrationError: If the schema is not an object schema with
            well-formed ``properties`` and ``required`` entries
    """
    if not isinstance(schema, Mapping):
        raise ToolRegistrationError("input_schema must be a mapping", tool_name=tool_name)
    if schema.get("type", "object") != "object":
        raise ToolRegistrationError("input_schema must have type 'object'", tool_name=tool_name)
    properties = schema.get("properties", {})
    if not isinstance(properties, Mapping):
        raise ToolRegistrationError("input_schema.properties must be a mapping", tool_name=tool_name)
    for prop_name, prop_schema in properties.items():
        if not isinstance(prop_schema, Mapping):
            raise ToolRegistrationError(
                f"schema of property '{prop_name}' must be a mapping", tool_name=tool_name
            )
    required = schema.get("required", [])
    if not isinstance(required, list) or not all(isinstance(item, str) for item in required):
        raise ToolRegistrationError(
            "input_schema.required must be a list of strings", tool_name=tool_name
        )
    undeclared = [item for item in required if item not in properties]
    if undeclared:
        raise ToolRegistrationError(
            f"required properties not declared: {', '.join(undeclared)}", tool_name=tool_name
        )


class ToolRegistry:
    """Name-keyed set of tools that refuses duplicates."""

    def __init__(self, tools: Iterable[ToolDefinition] = ()):
        self._tools: dict[str, ToolDefinition] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: ToolDefinition) -> None:
        """Register a tool.

        Raises:
            ToolRegistrationError: If a tool with the same name is already registered
        """
        if tool.name in self._tools:
            raise ToolRegistrationError("a tool with this name is already registered", tool.name)
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def get(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def require(self, name: str) -> ToolDefinition:
        try:
            return self._tools[name]
        except KeyError:
            raise ToolNotFoundError(name) from None

    def schemas(self) -> list[dict[str, Any]]:
        return [tool.to_schema() for tool in self._tools.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[ToolDefinition]:
        return iter(list(self._tools.values()))

    def __len__(self) -> int:
        return len(self._tools)


async def run_tool_handler(tool: ToolDefinition, args: ToolArgs, context: ToolContext) -> Any:
    """Invoke a tool handler, awaiting it when it is a coroutine function."""
    if tool.handler is None:
        raise ToolNotFoundError(f"{tool.name} (no handler)")
    result = tool.handler(args, context)
    if inspect.isawaitable(result):
        result = await result
    return result


def failure_result(error: str) -> dict[str, Any]:
    return {"success": False, "error": error}


def rejection_result(reason: str | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {"success": False, "reason": "rejected"}
    if reason:
        payload["message"] = reason
    return payload


def dump_result(result: Any) -> str:
    """Serialize a tool result for a tool message."""
    if isinstance(result, ToolResponse):
        result = result.to_dict()
    return json.dumps(result, default=str)


def build_tool_result_for_ai(tool: ToolDefinition | None, result: Any, args: ToolArgs) -> str:
    """Render a tool result as the content of the tool message sent to the model.

    The response mode is taken from the result (when it is a ToolResponse),
    then from the tool, defaulting to full.

    Args:
        tool: Tool that produced the result, if known
        result: Raw handler result
        args: Arguments the tool was called with

    Returns:
        Text content for the tool message
    """
    override = result if isinstance(result, ToolResponse) else None
    mode = (override and override.ai_response_mode) or (tool and tool.ai_response_mode)
    mode = mode or AIResponseMode.FULL

    ai_context: str | None = None
    if override and override.ai_context:
        ai_context = override.ai_context
    elif tool is not None and tool.ai_context is not None:
        ai_context = tool.ai_context(result, args) if callable(tool.ai_context) else tool.ai_context

    match mode:
        case AIResponseMode.NONE:
            return ai_context or "[Result displayed to user]"
        case AIResponseMode.BRIEF:
            name = tool.name if tool is not None else "unknown"
            return ai_context or f"[Tool {name} executed successfully]"
        case _:
            full_data = dump_result(result)
            return f"{ai_context}\n\nFull data: {full_data}" if ai_context else full_data
