"""Ollama local model server adapter (``/api/chat`` NDJSON stream)."""

from collections.abc import AsyncIterator, Sequence
from typing import Any, ClassVar

import httpx

from copilot_runtime.core.events import MessageDelta, StreamEvent, ThinkingDelta
from copilot_runtime.core.exceptions import ProviderError
from copilot_runtime.core.messages import Message, Role, TokenUsage, ToolCall, generate_tool_call_id
from copilot_runtime.providers.base import BaseAdapter, ChatRequest, CompletionResult, TurnState
from copilot_runtime.providers.formatting import format_openai_tools, image_attachments
from copilot_runtime.providers.framing import iter_ndjson


def format_ollama_messages(
    messages: Sequence[Message], system_prompt: str | None = None
) -> list[dict[str, Any]]:
    formatted: list[dict[str, Any]] = []
    if system_prompt:
        formatted.append({"role": "system", "content": system_prompt})
    for message in messages:
        payload: dict[str, Any] = {"role": message.role.value, "content": message.content}
        if images := [img.base64_data() for img in image_attachments(message) if img.data]:
            payload["images"] = images
        if message.tool_calls:
            payload["tool_calls"] = [
                {"function": {"name": call.name, "arguments": call.args}}
                for call in message.tool_calls
            ]
        if message.role == Role.TOOL and message.name:
            payload["tool_name"] = message.name
        formatted.append(payload)
    return formatted


def _tool_calls(message: dict[str, Any]) -> list[ToolCall]:
    calls = []
    for raw in message.get("tool_calls") or []:
        function = raw.get("function") or {}
        arguments = function.get("arguments")
        calls.append(
            ToolCall(
                id=raw.get("id") or generate_tool_call_id(),
                name=function.get("name", ""),
                args=arguments if isinstance(arguments, dict) else {},
            )
        )
    return calls


class OllamaAdapter(BaseAdapter):
    provider: ClassVar[str] = "ollama"
    default_base_url: ClassVar[str] = "http://localhost:11434"
    default_model: ClassVar[str] = "llama3"
    supports_non_streaming: ClassVar[bool] = True

    def _endpoint(self, request: ChatRequest, stream: bool) -> str:
        return f"{self._base_url}/api/chat"

    def _headers(self) -> dict[str, str]:
        return {"authorization": f"Bearer {self._api_key}"} if self._api_key else {}

    def _build_body(self, request: ChatRequest, stream: bool) -> dict[str, Any]:
        options = request.options
        body: dict[str, Any] = {
            "model": options.model or self.default_model,
            "messages": format_ollama_messages(request.messages, request.system_prompt),
            "stream": stream,
        }
        if request.tools:
            body["tools"] = format_openai_tools(request.tools)
        model_options: dict[str, Any] = {}
        if options.temperature is not None:
            model_options["temperature"] = options.temperature
        if options.max_tokens is not None:
            model_options["num_predict"] = options.max_tokens
        if model_options:
            body["options"] = model_options
        if options.thinking:
            body["think"] = True
        body.update(options.extra)
        return body

    def _check_chunk(self, chunk: dict[str, Any]) -> None:
        if error := chunk.get("error"):
            raise ProviderError(str(error), provider=self.provider)

    async def _read_stream(
        self, response: httpx.Response, turn: TurnState
    ) -> AsyncIterator[StreamEvent]:
        async for chunk in iter_ndjson(response, self.provider):
            if not isinstance(chunk, dict):
                continue
            self._check_chunk(chunk)
            message = chunk.get("message") or {}
            if thinking := message.get("thinking"):
                yield ThinkingDelta(content=thinking)
            if content := message.get("content"):
                yield MessageDelta(content=content)
            turn.tool_calls.extend(_tool_calls(message))
            if chunk.get("done"):
                turn.finish_reason = chunk.get("done_reason") or "stop"
                turn.usage = TokenUsage.of(chunk.get("prompt_eval_count"), chunk.get("eval_count"))
                break

    def _parse_completion(self, payload: dict[str, Any]) -> CompletionResult:
        self._check_chunk(payload)
        message = payload.get("message") or {}
        return CompletionResult(
            content=message.get("content") or "",
            thinking=message.get("thinking") or "",
            tool_calls=tuple(_tool_calls(message)),
            usage=TokenUsage.of(payload.get("prompt_eval_count"), payload.get("eval_count")),
            finish_reason=payload.get("done_reason"),
            raw=payload,
        )
