"""Application settings and configuration.

Pydantic settings loaded from environment variables with nested sections,
e.g. ``LLM__PROVIDER=anthropic`` or ``RUNTIME__MAX_ITERATIONS=5``. Only the
server and CLI read settings; the runtime core takes explicit options.
"""

import logging
from enum import StrEnum

import pydantic_settings
from pydantic import BaseModel, Field, field_validator

from copilot_runtime.runtime.config import DEFAULT_MAX_ITERATIONS, MixedBatchPolicy


class ProviderName(StrEnum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    OLLAMA = "ollama"
    OPENROUTER = "openrouter"
    XAI = "xai"
    AZURE = "azure"
    CUSTOM = "custom"


class AppHTTPSettings(BaseModel):
    url: str = Field("")
    host: str = Field("0.0.0.0")
    port: int = Field(8000)
    log_level: str = Field("INFO")
    log_json: bool | None = Field(
        None, description="Override log format: True=JSON, False=console, None=auto"
    )

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, v):
        v_upper = v.upper()
        if v_upper not in logging._nameToLevel:
            raise ValueError(f'invalid value "{v}"')
        return v_upper


class BugsnagSettings(BaseModel):
    api_key: str = Field("")
    release_stage: str = Field("local")

    @field_validator("release_stage")
    @classmethod
    def _validate_bugsnag_release_stage(cls, v):
        if v not in ["development", "production", "local"]:
            raise ValueError(f'invalid bugsnag release stage "{v}"')
        return v


class LLMSettings(BaseModel):
    """Model vendor configuration.

    Attributes:
        provider: Vendor adapter to use
        model: Default model id
        api_key: Vendor API key
        base_url: Override of the vendor base URL (required for custom)
        temperature: Default sampling temperature
        max_tokens: Default maximum output tokens
        azure_resource_name: Azure OpenAI resource, used when base_url is empty
        azure_deployment: Azure OpenAI deployment name
        azure_api_version: Azure OpenAI API version
        headers: Extra headers sent with every vendor request
    """

    provider: ProviderName = ProviderName.OPENAI
    model: str = Field("gpt-4o")
    api_key: str | None = None
    base_url: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    azure_resource_name: str | None = None
    azure_deployment: str | None = None
    azure_api_version: str | None = None
    headers: dict[str, str] = {}


class RuntimeSettings(BaseModel):
    max_iterations: int = Field(DEFAULT_MAX_ITERATIONS, ge=1)
    system_prompt: str | None = None
    batch_policy: MixedBatchPolicy = MixedBatchPolicy.SERVER_FIRST
    parallel_tool_calls: bool = True
    include_usage: bool = False
    debug: bool = False


class Settings(pydantic_settings.BaseSettings):
    model_config = pydantic_settings.SettingsConfigDict(env_nested_delimiter="__")

    app_http: AppHTTPSettings = AppHTTPSettings()
    bugsnag: BugsnagSettings = BugsnagSettings()

    # Model vendor
    llm: LLMSettings = LLMSettings()

    # Agent loop policy
    runtime: RuntimeSettings = RuntimeSettings()
