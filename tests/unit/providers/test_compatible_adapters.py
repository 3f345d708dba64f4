"""Tests for Azure and the other OpenAI-compatible adapters."""

import json

import httpx
import pytest
import respx

from copilot_runtime.core.events import ErrorEvent
from copilot_runtime.providers.azure import DEFAULT_API_VERSION, AzureAdapter
from copilot_runtime.providers.base import ChatRequest, ModelOptions
from copilot_runtime.providers.compatible import CustomAdapter, OpenRouterAdapter, XAIAdapter

FINISH = {"choices": [{"delta": {}, "finish_reason": "stop"}]}


class TestAzureAdapter:
    """Tests for AzureAdapter."""

    @respx.mock
    async def test_deployment_url_and_api_key_header(
        self, chat_request, sse_response, collect_events
    ):
        """The deployment is addressed in the URL and the model field is dropped."""
        url = (
            "https://acme.openai.azure.com/openai/deployments/gpt4o-prod/chat/completions"
            f"?api-version={DEFAULT_API_VERSION}"
        )
        route = respx.post(url).mock(return_value=sse_response(FINISH, done=True))
        adapter = AzureAdapter(api_key="az-key", resource_name="acme", deployment="gpt4o-prod")

        await collect_events(adapter, chat_request)

        sent = route.calls.last.request
        assert sent.headers["api-key"] == "az-key"
        assert "authorization" not in sent.headers
        assert "model" not in json.loads(sent.content)

    @respx.mock
    async def test_explicit_model_is_sent(self, chat_request, sse_response, collect_events):
        """An explicit model option is kept in the body."""
        route = respx.post(
            "https://proxy.test/openai/deployments/dep/chat/completions?api-version=2024-10-21"
        ).mock(return_value=sse_response(FINISH, done=True))
        adapter = AzureAdapter(
            base_url="https://proxy.test", deployment="dep", api_version="2024-10-21"
        )
        request = ChatRequest(messages=chat_request.messages, options=ModelOptions(model="gpt-4o"))

        await collect_events(adapter, request)

        assert json.loads(route.calls.last.request.content)["model"] == "gpt-4o"

    def test_deployment_is_required(self):
        """Azure cannot be addressed without a deployment."""
        with pytest.raises(ValueError, match="deployment"):
            AzureAdapter(api_key="k", resource_name="acme")

    def test_resource_or_base_url_is_required(self):
        """Azure needs a resource name or a base URL."""
        with pytest.raises(ValueError, match="resource_name"):
            AzureAdapter(api_key="k", deployment="d")


class TestOpenRouterAdapter:
    """Tests for OpenRouterAdapter."""

    @respx.mock
    async def test_attribution_headers(self, chat_request, sse_response, collect_events):
        """Site URL and app name are sent as attribution headers."""
        route = respx.post("https://openrouter.ai/api/v1/chat/completions").mock(
            return_value=sse_response(FINISH, done=True)
        )
        adapter = OpenRouterAdapter(api_key="or-key", site_url="https://app.test", app_name="Demo")

        await collect_events(adapter, chat_request)

        sent = route.calls.last.request
        assert sent.headers["authorization"] == "Bearer or-key"
        assert sent.headers["http-referer"] == "https://app.test"
        assert sent.headers["x-title"] == "Demo"
        assert json.loads(sent.content)["model"] == "openai/gpt-4o"


class TestXAIAdapter:
    """Tests for XAIAdapter."""

    @respx.mock
    async def test_errors_are_tagged_with_provider(self, chat_request, collect_events):
        """Error codes name the xAI provider."""
        respx.post("https://api.x.ai/v1/chat/completions").mock(
            return_value=httpx.Response(400, json={"error": "bad model"})
        )

        events = await collect_events(XAIAdapter(api_key="x"), chat_request)

        assert events[-1] == ErrorEvent(
            message="xai API error (status: 400): bad model", code="XAI_ERROR"
        )


class TestCustomAdapter:
    """Tests for CustomAdapter."""

    def test_base_url_is_required(self):
        """A custom provider cannot guess where the server is."""
        with pytest.raises(ValueError, match="base_url"):
            CustomAdapter(base_url="")

    @respx.mock
    async def test_name_and_default_model(self, chat_request, sse_response, collect_events):
        """The chosen name tags errors and the default model fills the body."""
        route = respx.post("http://vllm.local:8000/v1/chat/completions").mock(
            return_value=sse_response(FINISH, done=True)
        )
        adapter = CustomAdapter(
            base_url="http://vllm.local:8000/v1/", name="vllm", default_model="qwen2.5"
        )

        await collect_events(adapter, chat_request)

        sent = route.calls.last.request
        assert adapter.provider == "vllm"
        assert json.loads(sent.content)["model"] == "qwen2.5"
        assert "authorization" not in sent.headers
