"""Unit tests for building providers and runtimes from settings."""

import pytest

from copilot_runtime.platform.factory import (
    build_model,
    build_provider,
    build_runtime,
    build_runtime_config,
)
from copilot_runtime.platform.settings import (
    LLMSettings,
    ProviderName,
    RuntimeSettings,
    Settings,
)
from copilot_runtime.providers.base import ChatRequest
from copilot_runtime.runtime.config import MixedBatchPolicy


class TestBuildProvider:
    """Tests for build_provider."""

    @pytest.mark.parametrize(
        "provider",
        [
            ProviderName.OPENAI,
            ProviderName.ANTHROPIC,
            ProviderName.GOOGLE,
            ProviderName.OLLAMA,
            ProviderName.OPENROUTER,
            ProviderName.XAI,
        ],
    )
    def test_builds_configured_vendor(self, provider: ProviderName):
        built = build_provider(LLMSettings(provider=provider, api_key="k"))

        assert built.name == provider.value

    def test_base_url_override(self):
        llm = LLMSettings(api_key="k", base_url="http://proxy.local/v1/")

        assert build_provider(llm).adapter.base_url == "http://proxy.local/v1"

    def test_azure(self):
        llm = LLMSettings(
            provider=ProviderName.AZURE,
            api_key="k",
            azure_resource_name="acme",
            azure_deployment="prod-4o",
        )

        provider = build_provider(llm)

        assert provider.name == "azure"
        assert provider.adapter.base_url == "https://acme.openai.azure.com"

    def test_custom_requires_base_url(self):
        """A custom vendor cannot be built without its endpoint."""
        with pytest.raises(ValueError, match="LLM__BASE_URL"):
            build_provider(LLMSettings(provider=ProviderName.CUSTOM))

    def test_custom(self):
        llm = LLMSettings(
            provider=ProviderName.CUSTOM, base_url="http://localhost:8001/v1", model="qwen2.5"
        )

        assert build_provider(llm)().model_id == "qwen2.5"


class TestBuildModel:
    """Tests for build_model."""

    def test_sampling_defaults(self):
        """Configured temperature and max tokens become handle defaults."""
        model = build_model(LLMSettings(api_key="k", temperature=0.1, max_tokens=256))

        options = model.prepare(ChatRequest(messages=())).options

        assert model.model_id == "gpt-4o"
        assert options.temperature == 0.1
        assert options.max_tokens == 256

    def test_unset_options_stay_unset(self):
        options = build_model(LLMSettings(api_key="k")).prepare(ChatRequest(messages=())).options

        assert options.temperature is None
        assert options.max_tokens is None


class TestBuildRuntime:
    """Tests for build_runtime_config and build_runtime."""

    def test_runtime_config(self):
        config = build_runtime_config(
            RuntimeSettings(
                max_iterations=3,
                system_prompt="Be brief",
                batch_policy=MixedBatchPolicy.WAIT_FOR_CLIENT,
                parallel_tool_calls=False,
            )
        )

        assert config.max_iterations == 3
        assert config.system_prompt == "Be brief"
        assert config.batch_policy == MixedBatchPolicy.WAIT_FOR_CLIENT
        assert config.parallel_tool_calls is False

    def test_runtime(self):
        settings = Settings(
            llm=LLMSettings(
                provider=ProviderName.ANTHROPIC, api_key="k", model="claude-3-5-haiku-latest"
            ),
            runtime=RuntimeSettings(max_iterations=4),
        )

        runtime = build_runtime(settings)

        assert runtime.model.provider == "anthropic"
        assert runtime.model.model_id == "claude-3-5-haiku-latest"
        assert runtime.config.max_iterations == 4
        assert runtime.tools == []
