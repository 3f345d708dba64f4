"""Google Gemini (Generative Language REST API) adapter."""

import json
from collections.abc import AsyncIterator, Sequence
from typing import Any, ClassVar

import httpx

from copilot_runtime.core.events import MessageDelta, StreamEvent, ThinkingDelta
from copilot_runtime.core.exceptions import ProviderError
from copilot_runtime.core.messages import (
    Attachment,
    Message,
    Role,
    TokenUsage,
    ToolCall,
    generate_tool_call_id,
)
from copilot_runtime.core.tools import ToolDefinition
from copilot_runtime.providers.base import BaseAdapter, ChatRequest, CompletionResult, TurnState
from copilot_runtime.providers.framing import iter_sse_json

# JSON Schema keywords rejected by functionDeclarations
UNSUPPORTED_SCHEMA_KEYS = frozenset({"$schema", "$id", "additionalProperties"})


def clean_schema(schema: Any) -> Any:
    if isinstance(schema, dict):
        return {
            key: clean_schema(value)
            for key, value in schema.items()
            if key not in UNSUPPORTED_SCHEMA_KEYS
        }
    if isinstance(schema, list):
        return [clean_schema(item) for item in schema]
    return schema


def _attachment_part(attachment: Attachment) -> dict[str, Any] | None:
    mime_type = attachment.mime_type or ("image/png" if attachment.type == "image" else None)
    if attachment.data:
        return {
            "inlineData": {
                "mimeType": mime_type or "application/octet-stream",
                "data": attachment.base64_data(),
            }
        }
    if attachment.url:
        part: dict[str, Any] = {"fileData": {"fileUri": attachment.url}}
        if mime_type:
            part["fileData"]["mimeType"] = mime_type
        return part
    return None


def _function_response(content: str) -> dict[str, Any]:
    try:
        parsed = json.loads(content) if content else {}
    except json.JSONDecodeError:
        return {"result": content}
    return parsed if isinstance(parsed, dict) else {"result": parsed}


def format_gemini_contents(messages: Sequence[Message]) -> list[dict[str, Any]]:
    """Serialize a history as Gemini contents.

    Gemini requires alternating roles starting with ``user``: consecutive
    contents of the same role are merged and an empty user turn is
    prepended when needed.
    """
    call_names: dict[str, str] = {}
    contents: list[dict[str, Any]] = []
    for message in messages:
        parts: list[dict[str, Any]] = []
        match message.role:
            case Role.SYSTEM:
                continue
            case Role.TOOL:
                name = call_names.get(message.tool_call_id or "") or message.name or "tool"
                parts.append(
                    {"functionResponse": {"name": name, "response": _function_response(message.content)}}
                )
                role = "user"
            case _:
                if message.content:
                    parts.append({"text": message.content})
                for attachment in message.attachments:
                    if (part := _attachment_part(attachment)) is not None:
                        parts.append(part)
                for call in message.tool_calls:
                    call_names[call.id] = call.name
                    parts.append({"functionCall": {"name": call.name, "args": call.args}})
                role = "model" if message.role == Role.ASSISTANT else "user"
        if parts:
            contents.append({"role": role, "parts": parts})

    if not contents or contents[0]["role"] != "user":
        contents.insert(0, {"role": "user", "parts": [{"text": ""}]})

    merged: list[dict[str, Any]] = []
    for content in contents:
        if merged and merged[-1]["role"] == content["role"]:
            merged[-1]["parts"].extend(content["parts"])
        else:
            merged.append({"role": content["role"], "parts": list(content["parts"])})
    return merged


def format_gemini_tools(tools: Sequence[ToolDefinition]) -> list[dict[str, Any]]:
    return [
        {
            "functionDeclarations": [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": clean_schema(tool.input_schema),
                }
                for tool in tools
            ]
        }
    ]


class GoogleAdapter(BaseAdapter):
    provider: ClassVar[str] = "google"
    default_base_url: ClassVar[str] = "https://generativelanguage.googleapis.com/v1beta"
    default_model: ClassVar[str] = "gemini-2.0-flash"
    supports_non_streaming: ClassVar[bool] = True

    def _endpoint(self, request: ChatRequest, stream: bool) -> str:
        model = request.options.model or self.default_model
        if stream:
            return f"{self._base_url}/models/{model}:streamGenerateContent?alt=sse"
        return f"{self._base_url}/models/{model}:generateContent"

    def _headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self._api_key} if self._api_key else {}

    def _build_body(self, request: ChatRequest, stream: bool) -> dict[str, Any]:
        options = request.options
        body: dict[str, Any] = {"contents": format_gemini_contents(request.messages)}
        system_parts = [request.system_prompt] if request.system_prompt else []
        system_parts.extend(
            m.content for m in request.messages if m.role == Role.SYSTEM and m.content
        )
        if system_parts:
            body["systemInstruction"] = {"parts": [{"text": "\n\n".join(system_parts)}]}
        if request.tools:
            body["tools"] = format_gemini_tools(request.tools)

        generation_config: dict[str, Any] = {}
        if options.temperature is not None:
            generation_config["temperature"] = options.temperature
        if options.max_tokens is not None:
            generation_config["maxOutputTokens"] = options.max_tokens
        if options.thinking:
            thinking_config: dict[str, Any] = {"includeThoughts": True}
            if isinstance(options.thinking, int) and not isinstance(options.thinking, bool):
                thinking_config["thinkingBudget"] = options.thinking
            generation_config["thinkingConfig"] = thinking_config
        if generation_config:
            body["generationConfig"] = generation_config
        body.update(options.extra)
        return body

    def _check_response(self, payload: dict[str, Any]) -> None:
        if error := payload.get("error"):
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ProviderError(message or "API error", provider=self.provider)
        block_reason = (payload.get("promptFeedback") or {}).get("blockReason")
        if block_reason and not payload.get("candidates"):
            raise ProviderError(f"Prompt blocked: {block_reason}", provider=self.provider)

    @staticmethod
    def _usage(payload: dict[str, Any]) -> TokenUsage | None:
        metadata = payload.get("usageMetadata")
        if not metadata:
            return None
        prompt = metadata.get("promptTokenCount") or 0
        completion = (metadata.get("candidatesTokenCount") or 0) + (
            metadata.get("thoughtsTokenCount") or 0
        )
        total = metadata.get("totalTokenCount") or prompt + completion
        return TokenUsage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)

    async def _read_stream(
        self, response: httpx.Response, turn: TurnState
    ) -> AsyncIterator[StreamEvent]:
        async for _, payload in iter_sse_json(response, self.provider):
            if not isinstance(payload, dict):
                continue
            self._check_response(payload)
            if usage := self._usage(payload):
                turn.usage = usage
            for candidate in payload.get("candidates") or []:
                for part in (candidate.get("content") or {}).get("parts") or []:
                    if function_call := part.get("functionCall"):
                        # Gemini delivers complete calls without ids
                        turn.tool_calls.append(
                            ToolCall(
                                id=generate_tool_call_id(),
                                name=function_call.get("name", ""),
                                args=function_call.get("args") or {},
                            )
                        )
                    elif text := part.get("text"):
                        if part.get("thought"):
                            yield ThinkingDelta(content=text)
                        else:
                            yield MessageDelta(content=text)
                if finish_reason := candidate.get("finishReason"):
                    turn.finish_reason = finish_reason

    def _parse_completion(self, payload: dict[str, Any]) -> CompletionResult:
        self._check_response(payload)
        text: list[str] = []
        thinking: list[str] = []
        tool_calls: list[ToolCall] = []
        candidate = (payload.get("candidates") or [{}])[0]
        for part in (candidate.get("content") or {}).get("parts") or []:
            if function_call := part.get("functionCall"):
                tool_calls.append(
                    ToolCall(
                        id=generate_tool_call_id(),
                        name=function_call.get("name", ""),
                        args=function_call.get("args") or {},
                    )
                )
            elif part.get("thought"):
                thinking.append(part.get("text") or "")
            else:
                text.append(part.get("text") or "")
        return CompletionResult(
            content="".join(text),
            thinking="".join(thinking),
            tool_calls=tuple(tool_calls),
            usage=self._usage(payload),
            finish_reason=candidate.get("finishReason"),
            raw=payload,
        )
