"""Static model capability tables.

Lookups are pure: no I/O, and unknown models resolve to the provider's
default entry (or a conservative global default) instead of failing.
"""

from dataclasses import dataclass, field, replace

COMMON_IMAGE_TYPES = ("image/png", "image/jpeg", "image/gif", "image/webp")


@dataclass(frozen=True)
class ModelCapabilities:
    supports_vision: bool = False
    supports_tools: bool = True
    supports_thinking: bool = False
    supports_streaming: bool = True
    supports_json_mode: bool = False
    supports_pdf: bool = False
    supports_audio: bool = False
    max_tokens: int = 8192
    supported_image_types: tuple[str, ...] = field(default=())

    def to_dict(self) -> dict:
        return {
            "supportsVision": self.supports_vision,
            "supportsTools": self.supports_tools,
            "supportsThinking": self.supports_thinking,
            "supportsStreaming": self.supports_streaming,
            "supportsJsonMode": self.supports_json_mode,
            "supportsPDF": self.supports_pdf,
            "supportsAudio": self.supports_audio,
            "maxTokens": self.max_tokens,
            "supportedImageTypes": list(self.supported_image_types),
        }


DEFAULT_CAPABILITIES = ModelCapabilities()

_VISION = ModelCapabilities(
    supports_vision=True,
    supports_json_mode=True,
    max_tokens=128000,
    supported_image_types=COMMON_IMAGE_TYPES,
)
_OPENAI_REASONING = replace(_VISION, supports_tools=False, supports_json_mode=False)
_CLAUDE = ModelCapabilities(
    supports_vision=True,
    supports_thinking=True,
    supports_pdf=True,
    max_tokens=200000,
    supported_image_types=COMMON_IMAGE_TYPES,
)
_GEMINI = ModelCapabilities(
    supports_vision=True,
    supports_thinking=False,
    supports_json_mode=True,
    supports_pdf=True,
    supports_audio=True,
    max_tokens=1000000,
    supported_image_types=COMMON_IMAGE_TYPES,
)
_GROK = replace(_VISION, supports_json_mode=False, max_tokens=131072)

OPENAI_MODELS: dict[str, ModelCapabilities] = {
    "gpt-4o": replace(_VISION, supports_audio=True),
    "gpt-4o-mini": _VISION,
    "gpt-4-turbo": _VISION,
    "gpt-4": ModelCapabilities(max_tokens=8192),
    "gpt-4-32k": ModelCapabilities(max_tokens=32768),
    "gpt-3.5-turbo": ModelCapabilities(supports_json_mode=True, max_tokens=16385),
    "o1": _OPENAI_REASONING,
    "o1-mini": _OPENAI_REASONING,
    "o3-mini": _OPENAI_REASONING,
}

ANTHROPIC_MODELS: dict[str, ModelCapabilities] = {
    "claude-sonnet-4-20250514": replace(_CLAUDE, max_tokens=64000),
    "claude-opus-4-20250514": replace(_CLAUDE, max_tokens=32000),
    "claude-3-5-sonnet-latest": _CLAUDE,
    "claude-3-5-haiku-latest": replace(_CLAUDE, supports_thinking=False),
    "claude-3-opus-latest": _CLAUDE,
    "claude-3-haiku-20240307": replace(_CLAUDE, supports_thinking=False, supports_pdf=False),
}

GOOGLE_MODELS: dict[str, ModelCapabilities] = {
    "gemini-2.5-pro": replace(_GEMINI, supports_thinking=True),
    "gemini-2.5-flash": replace(_GEMINI, supports_thinking=True),
    "gemini-2.0-flash": _GEMINI,
    "gemini-2.0-flash-lite": _GEMINI,
    "gemini-1.5-pro": replace(_GEMINI, max_tokens=2000000),
    "gemini-1.5-flash": _GEMINI,
    "gemini-1.0-pro": ModelCapabilities(max_tokens=30720),
}

XAI_MODELS: dict[str, ModelCapabilities] = {
    "grok-2": _GROK,
    "grok-2-vision": _GROK,
    "grok-beta": replace(_GROK, supports_vision=False, supported_image_types=()),
}

OLLAMA_MODELS: dict[str, ModelCapabilities] = {
    "llama3": ModelCapabilities(max_tokens=8192),
    "llama3.2-vision": ModelCapabilities(
        supports_vision=True, max_tokens=128000, supported_image_types=COMMON_IMAGE_TYPES
    ),
    "llava": ModelCapabilities(
        supports_vision=True, supports_tools=False, max_tokens=4096,
        supported_image_types=COMMON_IMAGE_TYPES,
    ),
    "qwen3": ModelCapabilities(supports_thinking=True, max_tokens=40960),
}

_TABLES: dict[str, tuple[dict[str, ModelCapabilities], ModelCapabilities]] = {
    "openai": (OPENAI_MODELS, _VISION),
    "azure": (OPENAI_MODELS, _VISION),
    "anthropic": (ANTHROPIC_MODELS, _CLAUDE),
    "google": (GOOGLE_MODELS, _GEMINI),
    "xai": (XAI_MODELS, _GROK),
    "ollama": (OLLAMA_MODELS, DEFAULT_CAPABILITIES),
    "openrouter": ({}, _VISION),
}


def get_capabilities(provider: str, model_id: str) -> ModelCapabilities:
    """Look up a model's capabilities.

    Exact ids win, then the longest known prefix (dated snapshots such as
    ``gpt-4o-2024-08-06``), then the provider default. OpenRouter ids carry
    the upstream vendor (``anthropic/claude-3-5-sonnet-latest``) and are
    resolved against that vendor's table.
    """
    if provider == "openrouter" and "/" in model_id:
        vendor, _, upstream = model_id.partition("/")
        if vendor in _TABLES and vendor != "openrouter":
            return get_capabilities(vendor, upstream)

    table, default = _TABLES.get(provider, ({}, DEFAULT_CAPABILITIES))
    if model_id in table:
        return table[model_id]
    prefixes = sorted((known for known in table if model_id.startswith(known)), key=len)
    if prefixes:
        return table[prefixes[-1]]
    return default
