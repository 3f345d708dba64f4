"""Vendors that expose the OpenAI chat-completions wire format."""

from collections.abc import Mapping
from typing import ClassVar

import httpx

from copilot_runtime.providers.base import DEFAULT_TIMEOUT_SECONDS, ChatRequest
from copilot_runtime.providers.openai import OpenAIAdapter


class OpenRouterAdapter(OpenAIAdapter):
    """OpenRouter, with its optional app attribution headers."""

    provider: ClassVar[str] = "openrouter"
    default_base_url: ClassVar[str] = "https://openrouter.ai/api/v1"
    default_model: ClassVar[str] = "openai/gpt-4o"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        site_url: str | None = None,
        app_name: str | None = None,
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
        self._site_url = site_url
        self._app_name = app_name

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        if self._site_url:
            headers["http-referer"] = self._site_url
        if self._app_name:
            headers["x-title"] = self._app_name
        return headers


class XAIAdapter(OpenAIAdapter):
    provider: ClassVar[str] = "xai"
    default_base_url: ClassVar[str] = "https://api.x.ai/v1"
    default_model: ClassVar[str] = "grok-2"


class CustomAdapter(OpenAIAdapter):
    """Any OpenAI-compatible server (vLLM, LM Studio, LiteLLM proxies...).

    The API key is optional and the provider name can be chosen so that
    error codes and metrics identify the server.
    """

    provider: ClassVar[str] = "custom"

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        name: str | None = None,
        default_model: str | None = None,
        headers: Mapping[str, str] | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        if not base_url:
            raise ValueError("base_url is required for a custom provider")
        super().__init__(
            api_key=api_key,
            base_url=base_url,
            headers=headers,
            http_client=http_client,
            timeout=timeout,
        )
        if name:
            self.provider = name
        self._default_model = default_model

    def _model(self, request: ChatRequest) -> str:
        return request.options.model or self._default_model or self.default_model
