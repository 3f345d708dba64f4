"""Azure OpenAI adapter: chat completions addressed by deployment."""

from collections.abc import Mapping
from typing import Any, ClassVar

import httpx

from copilot_runtime.providers.base import DEFAULT_TIMEOUT_SECONDS, ChatRequest
from copilot_runtime.providers.openai import OpenAIAdapter

DEFAULT_API_VERSION = "2024-08-01-preview"


class AzureAdapter(OpenAIAdapter):
    """Azure OpenAI.

    The deployment selects the model, so ``options.model`` only overrides the
    ``model`` field of the body, never the URL.
    """

    provider: ClassVar[str] = "azure"

    def __init__(
        self,
        api_key: str | None = None,
        resource_name: str | None = None,
        deployment: str | None = None,
        api_version: str | None = None,
        base_url: str | None = None,
        headers: Mapping[str, str] | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        if not deployment:
            raise ValueError("deployment is required for Azure OpenAI")
        if not base_url and not resource_name:
            raise ValueError("either resource_name or base_url is required for Azure OpenAI")
        super().__init__(
            api_key=api_key,
            base_url=base_url or f"https://{resource_name}.openai.azure.com",
            headers=headers,
            http_client=http_client,
            timeout=timeout,
        )
        self._deployment = deployment
        self._api_version = api_version or DEFAULT_API_VERSION

    @property
    def deployment(self) -> str:
        return self._deployment

    def _endpoint(self, request: ChatRequest, stream: bool) -> str:
        return (
            f"{self._base_url}/openai/deployments/{self._deployment}/chat/completions"
            f"?api-version={self._api_version}"
        )

    def _headers(self) -> dict[str, str]:
        return {"api-key": self._api_key} if self._api_key else {}

    def _model(self, request: ChatRequest) -> str:
        return request.options.model or self._deployment

    def _build_body(self, request: ChatRequest, stream: bool) -> dict[str, Any]:
        body = super()._build_body(request, stream)
        if not request.options.model:
            body.pop("model", None)
        return body
