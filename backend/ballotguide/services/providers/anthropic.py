from __future__ import annotations

from typing import Optional

from ballotguide.config import settings
from ballotguide.services.exceptions import ProviderResponseError
from ballotguide.services.providers.base import (
    ProviderAdapter,
    RawProviderOutput,
    StopReason,
    StreamState,
    TokenUsage,
)

_STOP_REASONS = {
    "end_turn": StopReason.COMPLETE,
    "stop_sequence": StopReason.COMPLETE,
    "max_tokens": StopReason.LENGTH,
}

# Mid-stream error events carry no HTTP status; map them onto the one the
# API would have returned up front.
_ERROR_STATUS = {
    "rate_limit_error": 429,
    "overloaded_error": 529,
    "api_error": 500,
}


class AnthropicAdapter(ProviderAdapter):
    """Anthropic Messages API."""

    provider = "claude"

    def build_request(
        self, system_prompt: str, user_prompt: str, max_tokens: int, stream: bool
    ) -> tuple[str, dict, dict]:
        headers = {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": settings.ANTHROPIC_VERSION,
        }
        payload = {
            "model": self.model,
            "max_tokens": max_tokens,
            # The system prompt is identical across requests; let the API cache it.
            "system": [
                {"type": "text", "text": system_prompt, "cache_control": {"type": "ephemeral"}}
            ],
            "messages": [{"role": "user", "content": user_prompt}],
        }
        if stream:
            payload["stream"] = True
        return f"{self.base_url}/messages", headers, payload

    def parse_response(self, data: dict) -> RawProviderOutput:
        text = "".join(
            block.get("text", "")
            for block in data.get("content") or []
            if block.get("type") == "text"
        )
        if not text:
            raise ProviderResponseError(
                "No text in API response", provider=self.provider, model=self.model
            )
        usage = data.get("usage") or {}
        return RawProviderOutput(
            text=text,
            stop_reason=_STOP_REASONS.get(data.get("stop_reason"), StopReason.OTHER),
            usage=TokenUsage(
                input_tokens=usage.get("input_tokens", 0),
                output_tokens=usage.get("output_tokens", 0),
            ),
            model=data.get("model") or self.model,
        )

    def parse_stream_event(self, event: str, data: dict, state: StreamState) -> Optional[str]:
        kind = data.get("type", event)
        if kind == "content_block_delta":
            delta = data.get("delta") or {}
            if delta.get("type") == "text_delta":
                return delta.get("text", "")
        elif kind == "message_start":
            usage = (data.get("message") or {}).get("usage") or {}
            state.usage.input_tokens = usage.get("input_tokens", 0)
        elif kind == "message_delta":
            delta = data.get("delta") or {}
            if delta.get("stop_reason"):
                state.stop_reason = _STOP_REASONS.get(delta["stop_reason"], StopReason.OTHER)
            usage = data.get("usage") or {}
            if "output_tokens" in usage:
                state.usage.output_tokens = usage["output_tokens"]
        elif kind == "error":
            error = data.get("error") or {}
            raise self._http_error(
                _ERROR_STATUS.get(error.get("type"), 500), error.get("message", "")
            )
        return None
