"""Tests for the Gemini adapter."""

import json

import httpx
import pytest
import respx

from copilot_runtime.core.events import ErrorEvent, MessageDelta, ThinkingDelta, ToolCallsEvent
from copilot_runtime.core.messages import Message, TokenUsage, ToolCall
from copilot_runtime.core.tools import ToolDefinition
from copilot_runtime.providers.base import ChatRequest, ModelOptions
from copilot_runtime.providers.google import GoogleAdapter, clean_schema, format_gemini_contents

BASE = "https://generativelanguage.googleapis.com/v1beta"
STREAM_URL = f"{BASE}/models/gemini-2.0-flash:streamGenerateContent?alt=sse"


def candidate(*parts: dict, finish_reason: str | None = None) -> dict:
    payload: dict = {"content": {"role": "model", "parts": list(parts)}}
    if finish_reason:
        payload["finishReason"] = finish_reason
    return {"candidates": [payload]}


@pytest.fixture
def adapter() -> GoogleAdapter:
    return GoogleAdapter(api_key="g-key")


class TestGoogleStreaming:
    """Tests for normalizing streamGenerateContent."""

    @respx.mock
    async def test_text_thoughts_and_usage(
        self, adapter, chat_request, sse_response, collect_events
    ):
        """Thought parts become thinking; usage counts thoughts as output."""
        route = respx.post(STREAM_URL).mock(
            return_value=sse_response(
                candidate({"text": "Pondering", "thought": True}),
                candidate({"text": "Bonjour"}, finish_reason="STOP")
                | {
                    "usageMetadata": {
                        "promptTokenCount": 3,
                        "candidatesTokenCount": 2,
                        "thoughtsTokenCount": 1,
                        "totalTokenCount": 6,
                    }
                },
            )
        )

        events = await collect_events(adapter, chat_request)

        assert route.calls.last.request.url.params["alt"] == "sse"
        assert route.calls.last.request.headers["x-goog-api-key"] == "g-key"
        assert ThinkingDelta(content="Pondering") in events
        assert MessageDelta(content="Bonjour") in events
        assert events[-1].usage == TokenUsage(3, 3, 6)

    @respx.mock
    async def test_function_calls_get_ids(
        self, adapter, chat_request, sse_response, collect_events
    ):
        """Gemini function calls are complete and receive generated ids."""
        respx.post(STREAM_URL).mock(
            return_value=sse_response(
                candidate({"functionCall": {"name": "get_weather", "args": {"city": "Paris"}}})
            )
        )

        events = await collect_events(adapter, chat_request)

        [tool_calls] = [e for e in events if isinstance(e, ToolCallsEvent)]
        [call] = tool_calls.tool_calls
        assert call.name == "get_weather"
        assert call.args == {"city": "Paris"}
        assert call.id.startswith("call_")
        assert events[-1].requires_action is True

    @respx.mock
    async def test_blocked_prompt(self, adapter, chat_request, sse_response, collect_events):
        """A blocked prompt without candidates is an error."""
        respx.post(STREAM_URL).mock(
            return_value=sse_response({"promptFeedback": {"blockReason": "SAFETY"}})
        )

        events = await collect_events(adapter, chat_request)

        assert events[-1] == ErrorEvent(
            message="google API error: Prompt blocked: SAFETY", code="GOOGLE_ERROR"
        )

    @respx.mock
    async def test_wrong_shape_part(self, adapter, chat_request, sse_response, collect_events):
        """A part that is not an object becomes an error event."""
        respx.post(STREAM_URL).mock(
            return_value=sse_response(
                candidate({"text": "Hi"}), {"candidates": [{"content": {"parts": ["oops"]}}]}
            )
        )

        events = await collect_events(adapter, chat_request)

        assert events[1] == MessageDelta(content="Hi")
        assert isinstance(events[-1], ErrorEvent)
        assert events[-1].code == "GOOGLE_ERROR"
        assert "Unexpected response shape" in events[-1].message


class TestGoogleRequest:
    """Tests for the request sent to the vendor."""

    @respx.mock
    async def test_body(self, adapter, sse_response, collect_events):
        """System instruction, tools and generation config are serialized."""
        route = respx.post(f"{BASE}/models/gemini-2.5-pro:streamGenerateContent?alt=sse").mock(
            return_value=sse_response(candidate({"text": "ok"}))
        )
        tool = ToolDefinition(
            name="f",
            description="d",
            input_schema={"type": "object", "properties": {}, "additionalProperties": False},
            handler=lambda args, context: None,
        )
        request = ChatRequest(
            messages=(Message.user("Hi"),),
            system_prompt="Be brief",
            tools=(tool,),
            options=ModelOptions(model="gemini-2.5-pro", max_tokens=10, thinking=True),
        )

        await collect_events(adapter, request)

        body = json.loads(route.calls.last.request.content)
        assert body["systemInstruction"] == {"parts": [{"text": "Be brief"}]}
        assert body["contents"] == [{"role": "user", "parts": [{"text": "Hi"}]}]
        declaration = body["tools"][0]["functionDeclarations"][0]
        assert "additionalProperties" not in declaration["parameters"]
        assert body["generationConfig"] == {
            "maxOutputTokens": 10,
            "thinkingConfig": {"includeThoughts": True},
        }

    def test_contents_alternate_roles(self):
        """Tool results answer by name and the history starts with a user turn."""
        history = [
            Message.assistant(content="Hi", tool_calls=(ToolCall(id="c1", name="lookup"),)),
            Message.tool("c1", '{"found": true}'),
            Message.user("Thanks"),
        ]

        contents = format_gemini_contents(history)

        assert contents[0] == {"role": "user", "parts": [{"text": ""}]}
        assert contents[1]["role"] == "model"
        assert contents[2] == {
            "role": "user",
            "parts": [
                {"functionResponse": {"name": "lookup", "response": {"found": True}}},
                {"text": "Thanks"},
            ],
        }

    def test_clean_schema_is_recursive(self):
        """Unsupported keywords are removed at every depth."""
        schema = {
            "$schema": "x",
            "type": "object",
            "properties": {"a": {"type": "object", "additionalProperties": True}},
        }

        assert clean_schema(schema) == {
            "type": "object",
            "properties": {"a": {"type": "object"}},
        }


class TestGoogleComplete:
    """Tests for non-streaming calls."""

    @respx.mock
    async def test_complete_uses_generate_content(self, adapter, chat_request):
        """Non-streaming calls hit generateContent."""
        respx.post(f"{BASE}/models/gemini-2.0-flash:generateContent").mock(
            return_value=httpx.Response(
                200,
                json=candidate({"text": "Hi there"}, finish_reason="STOP")
                | {"usageMetadata": {"promptTokenCount": 1, "candidatesTokenCount": 2}},
            )
        )

        result = await adapter.complete(chat_request)

        assert result.content == "Hi there"
        assert result.finish_reason == "STOP"
        assert result.usage == TokenUsage(1, 2, 3)
