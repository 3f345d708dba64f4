"""OpenAI chat-completions adapter.

Also the base of every vendor that speaks the same wire format (Azure,
OpenRouter, xAI and self-hosted OpenAI-compatible servers).
"""

from collections.abc import AsyncIterator, Mapping
from typing import Any, ClassVar

import httpx

from copilot_runtime.core.events import MessageDelta, StreamEvent, ThinkingDelta
from copilot_runtime.core.exceptions import ProviderError
from copilot_runtime.core.messages import TokenUsage, ToolCall
from copilot_runtime.providers.base import (
    DEFAULT_TIMEOUT_SECONDS,
    BaseAdapter,
    ChatRequest,
    CompletionResult,
    TurnState,
)
from copilot_runtime.providers.formatting import format_openai_messages, format_openai_tools
from copilot_runtime.providers.framing import iter_sse_json


class OpenAIAdapter(BaseAdapter):
    provider: ClassVar[str] = "openai"
    default_base_url: ClassVar[str] = "https://api.openai.com/v1"
    default_model: ClassVar[str] = "gpt-4o"
    supports_non_streaming: ClassVar[bool] = True

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        organization: str | None = None,
        headers: Mapping[str, str] | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        super().__init__(
            api_key=api_key,
            base_url=base_url,
            headers=headers,
            http_client=http_client,
            timeout=timeout,
        )
        self._organization = organization

    def _endpoint(self, request: ChatRequest, stream: bool) -> str:
        return f"{self._base_url}/chat/completions"

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self._api_key:
            headers["authorization"] = f"Bearer {self._api_key}"
        if self._organization:
            headers["openai-organization"] = self._organization
        return headers

    def _model(self, request: ChatRequest) -> str:
        return request.options.model or self.default_model

    def _build_body(self, request: ChatRequest, stream: bool) -> dict[str, Any]:
        options = request.options
        body: dict[str, Any] = {
            "model": self._model(request),
            "messages": format_openai_messages(request.messages, request.system_prompt),
        }
        if request.tools:
            body["tools"] = format_openai_tools(request.tools)
        if options.temperature is not None:
            body["temperature"] = options.temperature
        if options.max_tokens is not None:
            body["max_tokens"] = options.max_tokens
        if stream:
            body["stream"] = True
            body["stream_options"] = {"include_usage": True}
        body.update(options.extra)
        return body

    async def _read_stream(
        self, response: httpx.Response, turn: TurnState
    ) -> AsyncIterator[StreamEvent]:
        async for _, chunk in iter_sse_json(response, self.provider):
            if not isinstance(chunk, dict):
                continue
            self._raise_in_band_error(chunk)
            if usage := chunk.get("usage"):
                turn.usage = TokenUsage.from_dict(usage)

            for choice in chunk.get("choices") or []:
                delta = choice.get("delta") or {}
                reasoning = delta.get("reasoning_content") or delta.get("reasoning")
                if isinstance(reasoning, str) and reasoning:
                    yield ThinkingDelta(content=reasoning)
                if content := delta.get("content"):
                    yield MessageDelta(content=content)
                for fragment in delta.get("tool_calls") or []:
                    function = fragment.get("function") or {}
                    turn.accumulator.append(
                        fragment.get("index", 0),
                        function.get("arguments"),
                        call_id=fragment.get("id"),
                        name=function.get("name"),
                    )
                if finish_reason := choice.get("finish_reason"):
                    turn.finish_reason = finish_reason
                    turn.finish()

    def _raise_in_band_error(self, chunk: dict[str, Any]) -> None:
        error = chunk.get("error")
        if not error:
            return
        message = error.get("message") if isinstance(error, dict) else str(error)
        code = error.get("code") if isinstance(error, dict) else None
        raise ProviderError(
            message or "Stream error",
            provider=self.provider,
            status_code=code if isinstance(code, int) else None,
        )

    def _parse_completion(self, payload: dict[str, Any]) -> CompletionResult:
        self._raise_in_band_error(payload)
        choice = (payload.get("choices") or [{}])[0]
        message = choice.get("message") or {}
        reasoning = message.get("reasoning_content") or message.get("reasoning")
        usage = payload.get("usage")
        return CompletionResult(
            content=message.get("content") or "",
            thinking=reasoning if isinstance(reasoning, str) else "",
            tool_calls=tuple(ToolCall.from_dict(call) for call in message.get("tool_calls") or []),
            usage=TokenUsage.from_dict(usage) if usage else None,
            finish_reason=choice.get("finish_reason"),
            raw=payload,
        )
