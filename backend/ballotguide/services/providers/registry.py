"""
Provider name -> ordered fallback list of adapters.
"""

from __future__ import annotations

from typing import Callable, Optional

import httpx

from ballotguide.config import settings
from ballotguide.services.exceptions import ProviderConfigError
from ballotguide.services.providers.anthropic import AnthropicAdapter
from ballotguide.services.providers.base import ProviderAdapter
from ballotguide.services.providers.gemini import GeminiAdapter
from ballotguide.services.providers.openai_compat import OpenAICompatibleAdapter

DEFAULT_PROVIDER = "claude"

Transport = Optional[httpx.AsyncBaseTransport]


def _require(key: str, vendor: str, provider: str) -> str:
    if not key:
        raise ProviderConfigError(f"{vendor} API key not configured", provider=provider)
    return key


def _claude(models: list[str], provider: str) -> Callable[[Transport], list[ProviderAdapter]]:
    def build(transport: Transport) -> list[ProviderAdapter]:
        key = _require(settings.ANTHROPIC_API_KEY, "Anthropic", provider)
        return [
            AnthropicAdapter(model, key, settings.ANTHROPIC_BASE_URL, transport=transport)
            for model in models
        ]

    return build


def _openai(model: str, provider: str) -> Callable[[Transport], list[ProviderAdapter]]:
    def build(transport: Transport) -> list[ProviderAdapter]:
        if provider == "grok":
            key = _require(settings.GROK_API_KEY, "Grok", provider)
            base_url = settings.GROK_BASE_URL
        else:
            key = _require(settings.OPENAI_API_KEY, "OpenAI", provider)
            base_url = settings.OPENAI_BASE_URL
        return [
            OpenAICompatibleAdapter(
                model, key, base_url, provider=provider, transport=transport
            )
        ]

    return build


def _gemini(model: str) -> Callable[[Transport], list[ProviderAdapter]]:
    def build(transport: Transport) -> list[ProviderAdapter]:
        key = _require(settings.GEMINI_API_KEY, "Gemini", "gemini")
        return [GeminiAdapter(model, key, settings.GEMINI_BASE_URL, transport=transport)]

    return build


def _registry() -> dict[str, Callable[[Transport], list[ProviderAdapter]]]:
    return {
        "claude": _claude(settings.claude_models_list, "claude"),
        "claude-haiku": _claude([settings.CLAUDE_HAIKU_MODEL], "claude-haiku"),
        "claude-opus": _claude([settings.CLAUDE_OPUS_MODEL], "claude-opus"),
        "chatgpt": _openai(settings.CHATGPT_MODEL, "chatgpt"),
        "gpt-4o-mini": _openai(settings.CHATGPT_MINI_MODEL, "gpt-4o-mini"),
        "grok": _openai(settings.GROK_MODEL, "grok"),
        "gemini": _gemini(settings.GEMINI_MODEL),
        "gemini-pro": _gemini(settings.GEMINI_PRO_MODEL),
    }


VALID_PROVIDERS = tuple(_registry())


def build_fallback_list(llm: Optional[str] = None, transport: Transport = None) -> list[ProviderAdapter]:
    """Adapters to try, in order, for the provider named ``llm``.

    Raises:
        ProviderConfigError: for an unknown name or a missing API key.
    """
    name = llm or DEFAULT_PROVIDER
    builder = _registry().get(name)
    if builder is None:
        raise ProviderConfigError(
            f"Unknown LLM: {name}. Valid options: {', '.join(VALID_PROVIDERS)}",
            provider=name,
        )
    return builder(transport)
