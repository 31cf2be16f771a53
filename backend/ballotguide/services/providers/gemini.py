from __future__ import annotations

from typing import Optional

from ballotguide.services.exceptions import ProviderResponseError
from ballotguide.services.providers.base import (
    ProviderAdapter,
    RawProviderOutput,
    StopReason,
    StreamState,
    TokenUsage,
)

_FINISH_REASONS = {
    "STOP": StopReason.COMPLETE,
    "MAX_TOKENS": StopReason.LENGTH,
}


def _candidate_text(data: dict) -> tuple[str, Optional[str]]:
    candidates = data.get("candidates") or []
    if not candidates:
        return "", None
    candidate = candidates[0]
    parts = (candidate.get("content") or {}).get("parts") or []
    # Thinking models interleave "thought" parts that are not part of the answer.
    text = "".join(p.get("text", "") for p in parts if not p.get("thought"))
    return text, candidate.get("finishReason")


def _usage(data: dict) -> Optional[TokenUsage]:
    meta = data.get("usageMetadata")
    if not meta:
        return None
    return TokenUsage(
        input_tokens=meta.get("promptTokenCount", 0),
        output_tokens=meta.get("candidatesTokenCount", 0),
    )


class GeminiAdapter(ProviderAdapter):
    """Google Gemini generateContent API."""

    provider = "gemini"
    min_budget = 4096

    def build_request(
        self, system_prompt: str, user_prompt: str, max_tokens: int, stream: bool
    ) -> tuple[str, dict, dict]:
        method = "streamGenerateContent?alt=sse" if stream else "generateContent"
        headers = {
            "Content-Type": "application/json",
            "x-goog-api-key": self.api_key,
        }
        payload = {
            "systemInstruction": {"parts": [{"text": system_prompt}]},
            "contents": [{"role": "user", "parts": [{"text": user_prompt}]}],
            "generationConfig": {"maxOutputTokens": max_tokens},
        }
        return f"{self.base_url}/models/{self.model}:{method}", headers, payload

    def parse_response(self, data: dict) -> RawProviderOutput:
        text, finish_reason = _candidate_text(data)
        if not text:
            raise ProviderResponseError(
                "No text in Gemini API response", provider=self.provider, model=self.model
            )
        return RawProviderOutput(
            text=text,
            stop_reason=_FINISH_REASONS.get(finish_reason, StopReason.OTHER),
            usage=_usage(data) or TokenUsage(),
            model=data.get("modelVersion") or self.model,
        )

    def parse_stream_event(self, event: str, data: dict, state: StreamState) -> Optional[str]:
        usage = _usage(data)
        if usage is not None:
            state.usage = usage
        text, finish_reason = _candidate_text(data)
        if finish_reason:
            state.stop_reason = _FINISH_REASONS.get(finish_reason, StopReason.OTHER)
        return text or None
