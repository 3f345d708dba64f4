"""Vendor adapters normalizing model streams into unified events."""

from copilot_runtime.providers.anthropic import AnthropicAdapter
from copilot_runtime.providers.azure import AzureAdapter
from copilot_runtime.providers.base import (
    BaseAdapter,
    ChatRequest,
    CompletionResult,
    ModelOptions,
    ProviderAdapter,
    ToolCallAccumulator,
)
from copilot_runtime.providers.capabilities import ModelCapabilities, get_capabilities
from copilot_runtime.providers.compatible import CustomAdapter, OpenRouterAdapter, XAIAdapter
from copilot_runtime.providers.google import GoogleAdapter
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
from copilot_runtime.providers.ollama import OllamaAdapter
from copilot_runtime.providers.openai import OpenAIAdapter

__all__ = [
    "AnthropicAdapter",
    "AzureAdapter",
    "BaseAdapter",
    "ChatRequest",
    "CompletionResult",
    "CustomAdapter",
    "GoogleAdapter",
    "ModelCapabilities",
    "ModelHandle",
    "ModelOptions",
    "OllamaAdapter",
    "OpenAIAdapter",
    "OpenRouterAdapter",
    "Provider",
    "ProviderAdapter",
    "ToolCallAccumulator",
    "XAIAdapter",
    "create_anthropic",
    "create_azure",
    "create_custom",
    "create_google",
    "create_ollama",
    "create_openai",
    "create_openrouter",
    "create_xai",
    "get_capabilities",
]
