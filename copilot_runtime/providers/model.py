"""Model handles and provider factories.

A ``Provider`` wraps one configured adapter (credentials, base URL, HTTP
client); calling it with a model id returns a ``ModelHandle`` bound to that
model. Factories only take explicit options and never read the environment.

    openai = create_openai(api_key="sk-...")
    model = openai("gpt-4o", temperature=0.2)
    async for event in model.stream(ChatRequest(messages=[Message.user("hi")])):
        ...
"""

from collections.abc import AsyncIterator, Mapping
from dataclasses import fields, replace
from typing import Any

import httpx

from copilot_runtime.core.events import StreamEvent
from copilot_runtime.providers.anthropic import AnthropicAdapter
from copilot_runtime.providers.azure import AzureAdapter
from copilot_runtime.providers.base import (
    ChatRequest,
    CompletionResult,
    ModelOptions,
    ProviderAdapter,
)
from copilot_runtime.providers.capabilities import ModelCapabilities, get_capabilities
from copilot_runtime.providers.compatible import CustomAdapter, OpenRouterAdapter, XAIAdapter
from copilot_runtime.providers.google import GoogleAdapter
from copilot_runtime.providers.ollama import OllamaAdapter
from copilot_runtime.providers.openai import OpenAIAdapter


def _apply_defaults(defaults: ModelOptions, options: ModelOptions) -> ModelOptions:
    """Request options win over handle defaults, field by field."""
    updates: dict[str, Any] = {
        f.name: getattr(options, f.name)
        for f in fields(ModelOptions)
        if f.name != "extra" and getattr(options, f.name) is not None
    }
    return replace(defaults, extra={**defaults.extra, **options.extra}, **updates)


class ModelHandle:
    """Per-model facade over an adapter."""

    def __init__(self, adapter: ProviderAdapter, model_id: str, options: ModelOptions | None = None):
        self._adapter = adapter
        self._model_id = model_id
        self._defaults = replace(options or ModelOptions(), model=model_id)

    def __repr__(self) -> str:
        return f"ModelHandle(provider={self.provider!r}, model_id={self._model_id!r})"

    @property
    def provider(self) -> str:
        return self._adapter.provider

    @property
    def model_id(self) -> str:
        return self._model_id

    @property
    def adapter(self) -> ProviderAdapter:
        return self._adapter

    @property
    def capabilities(self) -> ModelCapabilities:
        return get_capabilities(self.provider, self._model_id)

    def get_capabilities(self, model_id: str | None = None) -> ModelCapabilities:
        return get_capabilities(self.provider, model_id or self._model_id)

    def prepare(self, request: ChatRequest) -> ChatRequest:
        return replace(request, options=_apply_defaults(self._defaults, request.options))

    def stream(self, request: ChatRequest) -> AsyncIterator[StreamEvent]:
        return self._adapter.stream(self.prepare(request))

    async def complete(self, request: ChatRequest) -> CompletionResult:
        return await self._adapter.complete(self.prepare(request))

    async def aclose(self) -> None:
        await self._adapter.aclose()


class Provider:
    """A configured vendor; call it with a model id to get a ModelHandle."""

    def __init__(self, adapter: ProviderAdapter, default_model: str | None = None):
        self._adapter = adapter
        self._default_model = default_model

    @property
    def name(self) -> str:
        return self._adapter.provider

    @property
    def adapter(self) -> ProviderAdapter:
        return self._adapter

    def __call__(self, model_id: str | None = None, **options: Any) -> ModelHandle:
        model_id = model_id or self._default_model or getattr(self._adapter, "default_model", "")
        extra = options.pop("extra", {})
        return ModelHandle(self._adapter, model_id, ModelOptions(extra=dict(extra), **options))

    def get_capabilities(self, model_id: str) -> ModelCapabilities:
        return get_capabilities(self.name, model_id)

    async def aclose(self) -> None:
        await self._adapter.aclose()


def create_openai(
    api_key: str | None = None,
    base_url: str | None = None,
    organization: str | None = None,
    headers: Mapping[str, str] | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> Provider:
    return Provider(
        OpenAIAdapter(
            api_key=api_key,
            base_url=base_url,
            organization=organization,
            headers=headers,
            http_client=http_client,
        )
    )


def create_anthropic(
    api_key: str | None = None,
    base_url: str | None = None,
    headers: Mapping[str, str] | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> Provider:
    return Provider(
        AnthropicAdapter(api_key=api_key, base_url=base_url, headers=headers, http_client=http_client)
    )


def create_google(
    api_key: str | None = None,
    base_url: str | None = None,
    headers: Mapping[str, str] | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> Provider:
    return Provider(
        GoogleAdapter(api_key=api_key, base_url=base_url, headers=headers, http_client=http_client)
    )


def create_ollama(
    base_url: str | None = None,
    api_key: str | None = None,
    headers: Mapping[str, str] | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> Provider:
    return Provider(
        OllamaAdapter(api_key=api_key, base_url=base_url, headers=headers, http_client=http_client)
    )


def create_openrouter(
    api_key: str | None = None,
    base_url: str | None = None,
    site_url: str | None = None,
    app_name: str | None = None,
    headers: Mapping[str, str] | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> Provider:
    return Provider(
        OpenRouterAdapter(
            api_key=api_key,
            base_url=base_url,
            site_url=site_url,
            app_name=app_name,
            headers=headers,
            http_client=http_client,
        )
    )


def create_xai(
    api_key: str | None = None,
    base_url: str | None = None,
    headers: Mapping[str, str] | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> Provider:
    return Provider(
        XAIAdapter(api_key=api_key, base_url=base_url, headers=headers, http_client=http_client)
    )


def create_azure(
    api_key: str | None = None,
    resource_name: str | None = None,
    deployment: str | None = None,
    api_version: str | None = None,
    base_url: str | None = None,
    headers: Mapping[str, str] | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> Provider:
    adapter = AzureAdapter(
        api_key=api_key,
        resource_name=resource_name,
        deployment=deployment,
        api_version=api_version,
        base_url=base_url,
        headers=headers,
        http_client=http_client,
    )
    return Provider(adapter, default_model=deployment)


def create_custom(
    base_url: str,
    api_key: str | None = None,
    name: str | None = None,
    default_model: str | None = None,
    headers: Mapping[str, str] | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> Provider:
    adapter = CustomAdapter(
        base_url=base_url,
        api_key=api_key,
        name=name,
        default_model=default_model,
        headers=headers,
        http_client=http_client,
    )
    return Provider(adapter, default_model=default_model)
