from __future__ import annotations

from typing import Optional

import httpx

from ballotguide.services.exceptions import ProviderResponseError
from ballotguide.services.providers.base import (
    ProviderAdapter,
    RawProviderOutput,
    StopReason,
    StreamState,
    TokenUsage,
)

_FINISH_REASONS = {
    "stop": StopReason.COMPLETE,
    "length": StopReason.LENGTH,
}


def _usage(data: dict) -> Optional[TokenUsage]:
    usage = data.get("usage")
    if not usage:
        return None
    return TokenUsage(
        input_tokens=usage.get("prompt_tokens", 0),
        output_tokens=usage.get("completion_tokens", 0),
    )


class OpenAICompatibleAdapter(ProviderAdapter):
    """Chat Completions API, shared by OpenAI and xAI Grok."""

    def __init__(
        self,
        model: str,
        api_key: str,
        base_url: str,
        *,
        provider: str = "chatgpt",
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(model, api_key, base_url, timeout=timeout, transport=transport)
        self.provider = provider

    def build_request(
        self, system_prompt: str, user_prompt: str, max_tokens: int, stream: bool
    ) -> tuple[str, dict, dict]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self.model,
            "max_tokens": max_tokens,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }
        if stream:
            payload["stream"] = True
            payload["stream_options"] = {"include_usage": True}
        return f"{self.base_url}/chat/completions", headers, payload

    def parse_response(self, data: dict) -> RawProviderOutput:
        choices = data.get("choices") or []
        choice = choices[0] if choices else {}
        text = (choice.get("message") or {}).get("content")
        if not text:
            raise ProviderResponseError(
                f"No text in {self.provider} API response",
                provider=self.provider,
                model=self.model,
            )
        return RawProviderOutput(
            text=text,
            stop_reason=_FINISH_REASONS.get(choice.get("finish_reason"), StopReason.OTHER),
            usage=_usage(data) or TokenUsage(),
            model=data.get("model") or self.model,
        )

    def parse_stream_event(self, event: str, data: dict, state: StreamState) -> Optional[str]:
        usage = _usage(data)
        if usage is not None:
            state.usage = usage
        choices = data.get("choices") or []
        if not choices:
            return None
        choice = choices[0]
        if choice.get("finish_reason"):
            state.stop_reason = _FINISH_REASONS.get(choice["finish_reason"], StopReason.OTHER)
        return (choice.get("delta") or {}).get("content")
