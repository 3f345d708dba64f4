"""Builds the provider, model handle and runtime described by the settings."""

import httpx

from copilot_runtime.platform.settings import LLMSettings, ProviderName, RuntimeSettings, Settings
from copilot_runtime.providers.model import (
    ModelHandle,
    Provider,
    create_anthropic,
    create_azure,
    create_custom,
    create_google,
    create_ollama,
    create_openai,
    create_openrouter,
    create_xai,
)
from copilot_runtime.runtime.config import RuntimeConfig
from copilot_runtime.runtime.runtime import FinishHook, Runtime


def build_provider(llm: LLMSettings, http_client: httpx.AsyncClient | None = None) -> Provider:
    """Create the configured vendor provider.

    Raises:
        ValueError: If the settings miss a field the vendor needs
    """
    headers = llm.headers or None
    match llm.provider:
        case ProviderName.OPENAI:
            return create_openai(
                api_key=llm.api_key, base_url=llm.base_url, headers=headers, http_client=http_client
            )
        case ProviderName.ANTHROPIC:
            return create_anthropic(
                api_key=llm.api_key, base_url=llm.base_url, headers=headers, http_client=http_client
            )
        case ProviderName.GOOGLE:
            return create_google(
                api_key=llm.api_key, base_url=llm.base_url, headers=headers, http_client=http_client
            )
        case ProviderName.OLLAMA:
            return create_ollama(
                base_url=llm.base_url, api_key=llm.api_key, headers=headers, http_client=http_client
            )
        case ProviderName.OPENROUTER:
            return create_openrouter(
                api_key=llm.api_key, base_url=llm.base_url, headers=headers, http_client=http_client
            )
        case ProviderName.XAI:
            return create_xai(
                api_key=llm.api_key, base_url=llm.base_url, headers=headers, http_client=http_client
            )
        case ProviderName.AZURE:
            return create_azure(
                api_key=llm.api_key,
                resource_name=llm.azure_resource_name,
                deployment=llm.azure_deployment,
                api_version=llm.azure_api_version,
                base_url=llm.base_url,
                headers=headers,
                http_client=http_client,
            )
        case ProviderName.CUSTOM:
            if not llm.base_url:
                raise ValueError("LLM__BASE_URL is required for the custom provider")
            return create_custom(
                base_url=llm.base_url,
                api_key=llm.api_key,
                default_model=llm.model,
                headers=headers,
                http_client=http_client,
            )
    raise ValueError(f"Unsupported provider: {llm.provider}")


def build_model(llm: LLMSettings, http_client: httpx.AsyncClient | None = None) -> ModelHandle:
    provider = build_provider(llm, http_client)
    options = {}
    if llm.temperature is not None:
        options["temperature"] = llm.temperature
    if llm.max_tokens is not None:
        options["max_tokens"] = llm.max_tokens
    return provider(llm.model, **options)


def build_runtime_config(runtime: RuntimeSettings) -> RuntimeConfig:
    return RuntimeConfig(
        max_iterations=runtime.max_iterations,
        system_prompt=runtime.system_prompt,
        batch_policy=runtime.batch_policy,
        parallel_tool_calls=runtime.parallel_tool_calls,
        include_usage=runtime.include_usage,
        debug=runtime.debug,
    )


def build_runtime(
    settings: Settings,
    http_client: httpx.AsyncClient | None = None,
    on_finish: FinishHook | None = None,
) -> Runtime:
    return Runtime(
        build_model(settings.llm, http_client),
        config=build_runtime_config(settings.runtime),
        on_finish=on_finish,
    )
