"""Request serialization shared by the OpenAI-compatible adapters."""

from collections.abc import Sequence
from typing import Any

from copilot_runtime.core.messages import Attachment, Message, Role
from copilot_runtime.core.tools import ToolDefinition


def image_attachments(message: Message) -> list[Attachment]:
    return [attachment for attachment in message.attachments if attachment.type == "image"]


def format_openai_content(message: Message) -> str | list[dict[str, Any]]:
    """Plain text, or content parts when the message carries images."""
    images = image_attachments(message)
    if not images:
        return message.content
    parts: list[dict[str, Any]] = []
    if message.content:
        parts.append({"type": "text", "text": message.content})
    for image in images:
        url = image.data_url()
        if url:
            parts.append({"type": "image_url", "image_url": {"url": url}})
    return parts


def format_openai_message(message: Message) -> dict[str, Any]:
    match message.role:
        case Role.ASSISTANT:
            payload: dict[str, Any] = {"role": "assistant", "content": message.content or None}
            if message.tool_calls:
                payload["tool_calls"] = [call.to_openai() for call in message.tool_calls]
            elif payload["content"] is None:
                payload["content"] = ""
            return payload
        case Role.TOOL:
            return {
                "role": "tool",
                "tool_call_id": message.tool_call_id,
                "content": message.content,
            }
        case Role.USER:
            return {"role": "user", "content": format_openai_content(message)}
        case _:
            return {"role": "system", "content": message.content}


def format_openai_messages(
    messages: Sequence[Message], system_prompt: str | None = None
) -> list[dict[str, Any]]:
    """Serialize a history in the chat-completions shape.

    Thinking traces are not sent back: the chat-completions API has no input
    field for them.
    """
    formatted: list[dict[str, Any]] = []
    if system_prompt:
        formatted.append({"role": "system", "content": system_prompt})
    formatted.extend(format_openai_message(message) for message in messages)
    return formatted


def format_openai_tools(tools: Sequence[ToolDefinition]) -> list[dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.input_schema,
            },
        }
        for tool in tools
    ]
