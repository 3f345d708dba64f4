"""Validation of the JSON body accepted by the runtime transports."""

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from copilot_runtime.core.exceptions import InvalidRequestError, ToolRegistrationError
from copilot_runtime.core.messages import Message, validate_history
from copilot_runtime.core.tools import ToolDefinition


class ChatRequestBody(BaseModel):
    """Body of a chat invocation.

    Attributes:
        messages: Conversation history in wire form
        thread_id: Conversation thread id, forwarded to tools and on_finish
        system_prompt: Overrides the runtime's system prompt
        tools: Schemas of the tools the client executes itself
        config: Model option overrides (model, temperature, maxTokens, thinking)
        streaming: SSE when True, a JSON result otherwise
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    messages: list[dict[str, Any]] = Field(min_length=1)
    thread_id: str | None = None
    system_prompt: str | None = None
    tools: list[dict[str, Any]] = Field(default_factory=list)
    config: dict[str, Any] = Field(default_factory=dict)
    streaming: bool = True

    @classmethod
    def parse(cls, data: Any) -> "ChatRequestBody":
        """Validate a decoded body.

        Raises:
            InvalidRequestError: If the body does not match the schema
        """
        if isinstance(data, cls):
            return data
        if not isinstance(data, Mapping):
            raise InvalidRequestError("Request body must be a JSON object")
        try:
            return cls.model_validate(dict(data))
        except ValidationError as e:
            details = "; ".join(
                f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
                for error in e.errors()
            )
            raise InvalidRequestError(f"Invalid request body: {details}") from e

    def to_messages(self) -> list[Message]:
        """Convert and validate the history.

        Raises:
            InvalidRequestError: On unknown roles, duplicate ids or dangling tool results
        """
        try:
            messages = [Message.from_dict(raw) for raw in self.messages]
        except (TypeError, ValueError) as e:
            raise InvalidRequestError(f"Invalid message: {e}") from e
        validate_history(messages)
        return messages

    def client_tools(self) -> list[ToolDefinition]:
        """Declarations of the client-executed tools.

        Raises:
            InvalidRequestError: If a declaration is malformed
        """
        try:
            return [ToolDefinition.from_schema(schema) for schema in self.tools]
        except ToolRegistrationError as e:
            raise InvalidRequestError(str(e)) from e
