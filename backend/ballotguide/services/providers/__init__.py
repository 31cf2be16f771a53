from ballotguide.services.providers.anthropic import AnthropicAdapter
from ballotguide.services.providers.base import (
    ProviderAdapter,
    RawProviderOutput,
    StopReason,
    TokenUsage,
)
from ballotguide.services.providers.gemini import GeminiAdapter
from ballotguide.services.providers.openai_compat import OpenAICompatibleAdapter
from ballotguide.services.providers.registry import VALID_PROVIDERS, build_fallback_list

__all__ = [
    "AnthropicAdapter",
    "GeminiAdapter",
    "OpenAICompatibleAdapter",
    "ProviderAdapter",
    "RawProviderOutput",
    "StopReason",
    "TokenUsage",
    "VALID_PROVIDERS",
    "build_fallback_list",
]
