"""Anthropic Messages API adapter."""

from collections.abc import AsyncIterator, Sequence
from typing import Any, ClassVar

import httpx

from copilot_runtime.core.events import MessageDelta, StreamEvent, ThinkingDelta
from copilot_runtime.core.exceptions import ProviderError
from copilot_runtime.core.messages import Message, Role, TokenUsage, ToolCall
from copilot_runtime.core.tools import ToolDefinition
from copilot_runtime.providers.base import BaseAdapter, ChatRequest, CompletionResult, TurnState
from copilot_runtime.providers.framing import iter_sse_json

ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 4096
DEFAULT_THINKING_BUDGET = 10000


def _attachment_block(attachment) -> dict[str, Any] | None:
    if attachment.type == "image":
        if attachment.url and not attachment.data:
            return {"type": "image", "source": {"type": "url", "url": attachment.url}}
        return {
            "type": "image",
            "source": {
                "type": "base64",
                "media_type": attachment.mime_type or "image/png",
                "data": attachment.base64_data(),
            },
        }
    if attachment.mime_type == "application/pdf":
        if attachment.url and not attachment.data:
            return {"type": "document", "source": {"type": "url", "url": attachment.url}}
        return {
            "type": "document",
            "source": {
                "type": "base64",
                "media_type": "application/pdf",
                "data": attachment.base64_data(),
            },
        }
    return None


def _user_content(message: Message) -> str | list[dict[str, Any]]:
    if not message.attachments:
        return message.content
    blocks: list[dict[str, Any]] = []
    if message.content:
        blocks.append({"type": "text", "text": message.content})
    for attachment in message.attachments:
        block = _attachment_block(attachment)
        if block is not None:
            blocks.append(block)
    return blocks


def format_anthropic_messages(messages: Sequence[Message]) -> list[dict[str, Any]]:
    """Serialize a history as Anthropic turns.

    Consecutive tool results are grouped into a single user turn of
    ``tool_result`` blocks. System messages are sent separately (see
    ``system_text``). Thinking traces are dropped since the API only accepts
    them back with their signature.
    """
    formatted: list[dict[str, Any]] = []
    pending_results: list[dict[str, Any]] = []

    def flush_results():
        if pending_results:
            formatted.append({"role": "user", "content": list(pending_results)})
            pending_results.clear()

    for message in messages:
        match message.role:
            case Role.SYSTEM:
                continue
            case Role.TOOL:
                pending_results.append(
                    {
                        "type": "tool_result",
                        "tool_use_id": message.tool_call_id,
                        "content": message.content,
                    }
                )
            case Role.ASSISTANT:
                flush_results()
                blocks: list[dict[str, Any]] = []
                if message.content.strip():
                    blocks.append({"type": "text", "text": message.content})
                blocks.extend(
                    {"type": "tool_use", "id": call.id, "name": call.name, "input": call.args}
                    for call in message.tool_calls
                )
                if blocks:
                    formatted.append({"role": "assistant", "content": blocks})
            case Role.USER:
                flush_results()
                formatted.append({"role": "user", "content": _user_content(message)})
    flush_results()
    return formatted


def system_text(request: ChatRequest) -> str | None:
    parts = [request.system_prompt] if request.system_prompt else []
    parts.extend(m.content for m in request.messages if m.role == Role.SYSTEM and m.content)
    return "\n\n".join(parts) or None


def format_anthropic_tools(tools: Sequence[ToolDefinition]) -> list[dict[str, Any]]:
    return [
        {"name": tool.name, "description": tool.description, "input_schema": tool.input_schema}
        for tool in tools
    ]


class AnthropicAdapter(BaseAdapter):
    provider: ClassVar[str] = "anthropic"
    default_base_url: ClassVar[str] = "https://api.anthropic.com"
    default_model: ClassVar[str] = "claude-3-5-sonnet-latest"
    supports_non_streaming: ClassVar[bool] = True

    def _endpoint(self, request: ChatRequest, stream: bool) -> str:
        return f"{self._base_url}/v1/messages"

    def _headers(self) -> dict[str, str]:
        headers = {"anthropic-version": ANTHROPIC_VERSION}
        if self._api_key:
            headers["x-api-key"] = self._api_key
        return headers

    def _build_body(self, request: ChatRequest, stream: bool) -> dict[str, Any]:
        options = request.options
        body: dict[str, Any] = {
            "model": options.model or self.default_model,
            "messages": format_anthropic_messages(request.messages),
            "max_tokens": options.max_tokens or DEFAULT_MAX_TOKENS,
        }
        if system := system_text(request):
            body["system"] = system
        if request.tools:
            body["tools"] = format_anthropic_tools(request.tools)
        if options.thinking:
            budget = (
                options.thinking
                if isinstance(options.thinking, int) and not isinstance(options.thinking, bool)
                else DEFAULT_THINKING_BUDGET
            )
            body["thinking"] = {"type": "enabled", "budget_tokens": budget}
            # max_tokens includes the thinking budget
            if body["max_tokens"] <= budget:
                body["max_tokens"] = budget + DEFAULT_MAX_TOKENS
        elif options.temperature is not None:
            body["temperature"] = options.temperature
        if stream:
            body["stream"] = True
        body.update(options.extra)
        return body

    async def _read_stream(
        self, response: httpx.Response, turn: TurnState
    ) -> AsyncIterator[StreamEvent]:
        input_tokens = 0
        async for event_name, data in iter_sse_json(response, self.provider):
            if not isinstance(data, dict):
                continue
            match data.get("type") or event_name:
                case "message_start":
                    usage = (data.get("message") or {}).get("usage") or {}
                    input_tokens = usage.get("input_tokens") or 0
                    turn.usage = TokenUsage.of(input_tokens, usage.get("output_tokens"))
                case "content_block_start":
                    block = data.get("content_block") or {}
                    match block.get("type"):
                        case "tool_use":
                            turn.accumulator.append(
                                data.get("index"), call_id=block.get("id"), name=block.get("name")
                            )
                        case "thinking" if block.get("thinking"):
                            yield ThinkingDelta(content=block["thinking"])
                        case "text" if block.get("text"):
                            yield MessageDelta(content=block["text"])
                case "content_block_delta":
                    delta = data.get("delta") or {}
                    match delta.get("type"):
                        case "text_delta" if delta.get("text"):
                            yield MessageDelta(content=delta["text"])
                        case "thinking_delta" if delta.get("thinking"):
                            yield ThinkingDelta(content=delta["thinking"])
                        case "input_json_delta":
                            turn.accumulator.append(data.get("index"), delta.get("partial_json"))
                case "content_block_stop":
                    turn.complete_call(data.get("index"))
                case "message_delta":
                    turn.finish_reason = (data.get("delta") or {}).get("stop_reason")
                    usage = data.get("usage") or {}
                    turn.usage = TokenUsage.of(
                        usage.get("input_tokens") or input_tokens, usage.get("output_tokens")
                    )
                case "error":
                    error = data.get("error") or {}
                    raise ProviderError(
                        error.get("message") or "Stream error",
                        provider=self.provider,
                        code=error.get("type"),
                    )

    def _parse_completion(self, payload: dict[str, Any]) -> CompletionResult:
        if payload.get("type") == "error":
            error = payload.get("error") or {}
            raise ProviderError(error.get("message") or "API error", provider=self.provider)
        text: list[str] = []
        thinking: list[str] = []
        tool_calls: list[ToolCall] = []
        for block in payload.get("content") or []:
            match block.get("type"):
                case "text":
                    text.append(block.get("text") or "")
                case "thinking":
                    thinking.append(block.get("thinking") or "")
                case "tool_use":
                    tool_calls.append(
                        ToolCall(id=block["id"], name=block["name"], args=block.get("input") or {})
                    )
        usage = payload.get("usage") or {}
        return CompletionResult(
            content="".join(text),
            thinking="".join(thinking),
            tool_calls=tuple(tool_calls),
            usage=TokenUsage.of(usage.get("input_tokens"), usage.get("output_tokens")),
            finish_reason=payload.get("stop_reason"),
            raw=payload,
        )
