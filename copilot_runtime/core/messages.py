"""Provider-agnostic conversation types.

These types are the common vocabulary shared by adapters, the runtime loop and
client-side consumers. The wire form (``to_dict``/``from_dict``) follows the
OpenAI chat shape so that histories round-trip through any transport.
"""

import json
import uuid
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Self

from copilot_runtime.core.exceptions import InvalidRequestError


def generate_message_id() -> str:
    return f"msg_{uuid.uuid4().hex[:24]}"


def generate_tool_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:24]}"


class Role(StrEnum):
    """Conversation role of a message."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True)
class Attachment:
    """Binary or media reference attached to a message.

    Attributes:
        type: Attachment kind ("image", "file", "audio", "video")
        data: Base64 payload, optionally as a ``data:`` URL
        url: Remote location when the payload is not inlined
        mime_type: Media type, e.g. "image/png"
        filename: Original file name, if known
    """

    type: str
    data: str | None = None
    url: str | None = None
    mime_type: str | None = None
    filename: str | None = None

    def base64_data(self) -> str | None:
        """Return the payload without any ``data:<mime>;base64,`` prefix."""
        if self.data is None:
            return None
        if self.data.startswith("data:"):
            _, _, payload = self.data.partition(",")
            return payload
        return self.data

    def data_url(self) -> str | None:
        """Return the payload as a ``data:`` URL, or the remote url."""
        if self.data is None:
            return self.url
        if self.data.startswith("data:"):
            return self.data
        return f"data:{self.mime_type or 'application/octet-stream'};base64,{self.data}"

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type}
        if self.data is not None:
            payload["data"] = self.data
        if self.url is not None:
            payload["url"] = self.url
        if self.mime_type is not None:
            payload["mimeType"] = self.mime_type
        if self.filename is not None:
            payload["filename"] = self.filename
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        return cls(
            type=str(data.get("type", "file")),
            data=data.get("data"),
            url=data.get("url"),
            mime_type=data.get("mimeType") or data.get("mime_type"),
            filename=data.get("filename"),
        )


@dataclass(frozen=True)
class ToolCall:
    """A single function call requested by the model.

    Attributes:
        id: Vendor or generated call id, referenced by the tool result message
        name: Name of the requested tool
        args: Parsed JSON arguments
    """

    id: str
    name: str
    args: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "args": self.args}

    def to_openai(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": json.dumps(self.args)},
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        """Build a ToolCall from either the OpenAI or the simplified shape.

        Unparseable argument strings yield empty args rather than an error.
        """
        function = data.get("function")
        if isinstance(function, Mapping):
            name = str(function.get("name") or "")
            args = _parse_arguments(function.get("arguments"))
        else:
            name = str(data.get("name") or "")
            args = _parse_arguments(data.get("args", data.get("arguments")))
        return cls(id=str(data.get("id") or generate_tool_call_id()), name=name, args=args)


def _parse_arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, Mapping):
        return dict(raw)
    if isinstance(raw, str) and raw.strip():
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


@dataclass(frozen=True)
class TokenUsage:
    """Token accounting reported by a vendor, summed across loop iterations."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )

    @classmethod
    def of(cls, prompt_tokens: int | None, completion_tokens: int | None) -> Self:
        prompt = prompt_tokens or 0
        completion = completion_tokens or 0
        return cls(prompt_tokens=prompt, completion_tokens=completion, total_tokens=prompt + completion)

    def to_dict(self) -> dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        prompt = int(data.get("prompt_tokens", data.get("promptTokens", 0)) or 0)
        completion = int(data.get("completion_tokens", data.get("completionTokens", 0)) or 0)
        total = data.get("total_tokens", data.get("totalTokens"))
        return cls(prompt, completion, int(total) if total is not None else prompt + completion)


@dataclass(frozen=True)
class Message:
    """One turn of conversation.

    Attributes:
        role: Message role
        content: Message text (possibly empty while streaming or for tool-only turns)
        id: Stable message identifier
        thinking: Model reasoning trace, if the vendor exposed one
        tool_calls: Ordered tool calls requested by an assistant message
        tool_call_id: For tool messages, the call this result answers
        name: For tool messages, the name of the tool that produced the result
        attachments: Media attached to the message
        created_at: Creation timestamp
        metadata: Free-form metadata carried along with the message
    """

    role: Role
    content: str = ""
    id: str = field(default_factory=generate_message_id)
    thinking: str | None = None
    tool_calls: tuple[ToolCall, ...] = ()
    tool_call_id: str | None = None
    name: str | None = None
    attachments: tuple[Attachment, ...] = ()
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def system(cls, content: str) -> Self:
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str, attachments: Iterable[Attachment] = ()) -> Self:
        return cls(role=Role.USER, content=content, attachments=tuple(attachments))

    @classmethod
    def assistant(
        cls,
        content: str = "",
        tool_calls: Iterable[ToolCall] = (),
        thinking: str | None = None,
        id: str | None = None,
    ) -> Self:
        return cls(
            role=Role.ASSISTANT,
            content=content,
            tool_calls=tuple(tool_calls),
            thinking=thinking or None,
            id=id or generate_message_id(),
        )

    @classmethod
    def tool(cls, tool_call_id: str, content: str, name: str | None = None) -> Self:
        return cls(role=Role.TOOL, content=content, tool_call_id=tool_call_id, name=name)

    @property
    def has_pending_action(self) -> bool:
        return self.role == Role.ASSISTANT and bool(self.tool_calls)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "role": self.role.value,
            "content": self.content if self.content or not self.tool_calls else None,
            "created_at": self.created_at.isoformat(),
        }
        if self.thinking:
            payload["thinking"] = self.thinking
        if self.tool_calls:
            payload["tool_calls"] = [call.to_openai() for call in self.tool_calls]
        if self.tool_call_id is not None:
            payload["tool_call_id"] = self.tool_call_id
        if self.name is not None:
            payload["name"] = self.name
        if self.attachments:
            payload["attachments"] = [attachment.to_dict() for attachment in self.attachments]
        if self.metadata:
            payload["metadata"] = self.metadata
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        """Parse a wire message, accepting snake_case and camelCase keys.

        Raises:
            InvalidRequestError: If the role is missing or unknown
        """
        try:
            role = Role(data["role"])
        except (KeyError, ValueError) as e:
            raise InvalidRequestError(f"Invalid message role: {data.get('role')!r}") from e

        raw_calls = data.get("tool_calls") or data.get("toolCalls") or []
        created_at = data.get("created_at") or data.get("createdAt")
        content = data.get("content")
        if isinstance(content, list):
            content = "".join(
                part.get("text", "") for part in content if isinstance(part, Mapping)
            )
        metadata = data.get("metadata") or {}
        raw_attachments = data.get("attachments") or metadata.get("attachments") or []

        kwargs: dict[str, Any] = {}
        if data.get("id"):
            kwargs["id"] = str(data["id"])
        if created_at:
            kwargs["created_at"] = (
                created_at
                if isinstance(created_at, datetime)
                else datetime.fromisoformat(str(created_at).replace("Z", "+00:00"))
            )
        return cls(
            role=role,
            content=content or "",
            thinking=data.get("thinking") or None,
            tool_calls=tuple(ToolCall.from_dict(call) for call in raw_calls),
            tool_call_id=data.get("tool_call_id") or data.get("toolCallId"),
            name=data.get("name") or metadata.get("toolName"),
            attachments=tuple(Attachment.from_dict(item) for item in raw_attachments),
            metadata={key: value for key, value in metadata.items() if key != "attachments"},
            **kwargs,
        )


def validate_history(messages: Sequence[Message]) -> None:
    """Check structural invariants of a conversation history.

    Raises:
        InvalidRequestError: On duplicate message ids, or a tool result that
            does not reference an earlier tool call
    """
    seen_ids: set[str] = set()
    call_ids: set[str] = set()
    for message in messages:
        if message.id in seen_ids:
            raise InvalidRequestError(f"Duplicate message id: {message.id}")
        seen_ids.add(message.id)
        call_ids.update(call.id for call in message.tool_calls)
        if message.role == Role.TOOL:
            if not message.tool_call_id:
                raise InvalidRequestError(f"Tool message {message.id} has no tool_call_id")
            if message.tool_call_id not in call_ids:
                raise InvalidRequestError(
                    f"Tool message {message.id} references unknown tool call "
                    f"{message.tool_call_id}"
                )


def unanswered_tool_calls(messages: Sequence[Message]) -> list[ToolCall]:
    """Return the tool calls of the last assistant message that have no result yet."""
    answered = {message.tool_call_id for message in messages if message.role == Role.TOOL}
    for message in reversed(messages):
        if message.role == Role.ASSISTANT:
            return [call for call in message.tool_calls if call.id not in answered]
    return []
