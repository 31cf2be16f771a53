"""
Common shape for hosted text-completion providers.

Adapters only translate between the vendor wire format and
``RawProviderOutput``. Any non-200 response is raised as
``ProviderHTTPError`` with its status code; the invoker decides what to
retry.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Callable, Optional

import httpx

from ballotguide.config import settings
from ballotguide.services.exceptions import ProviderHTTPError, ProviderResponseError
from ballotguide.utils.logger import get_logger

logger = get_logger(__name__)

ChunkSink = Callable[[str], None]


class StopReason(str, Enum):
    COMPLETE = "complete"
    LENGTH = "length"
    OTHER = "other"


@dataclass
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class RawProviderOutput:
    text: str
    stop_reason: StopReason
    usage: TokenUsage
    model: str


@dataclass
class StreamState:
    """Stop reason and usage collected while reading a stream."""

    stop_reason: StopReason = StopReason.OTHER
    usage: TokenUsage = field(default_factory=TokenUsage)


def _retry_after(response: httpx.Response) -> float:
    try:
        return float(response.headers.get("retry-after") or 0)
    except ValueError:
        return 0.0


class ProviderAdapter(ABC):
    """One model at one vendor."""

    provider: str = ""
    # Smallest output budget the vendor produces usable guides with.
    min_budget: int = 0

    def __init__(
        self,
        model: str,
        api_key: str,
        base_url: str,
        *,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.model = model
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout if timeout is not None else settings.PROVIDER_TIMEOUT
        self._transport = transport

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.provider}/{self.model}>"

    # ------------------------------------------------------------------
    # Vendor hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def build_request(
        self, system_prompt: str, user_prompt: str, max_tokens: int, stream: bool
    ) -> tuple[str, dict, dict]:
        """Return ``(url, headers, payload)`` for one call."""

    @abstractmethod
    def parse_response(self, data: dict) -> RawProviderOutput:
        """Convert a complete JSON response body."""

    @abstractmethod
    def parse_stream_event(self, event: str, data: dict, state: StreamState) -> Optional[str]:
        """Consume one server-sent event, returning its text delta if any."""

    # ------------------------------------------------------------------
    # Invocation
    # ------------------------------------------------------------------

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _http_error(self, status_code: Optional[int], body: str = "", retry_after: float = 0.0):
        return ProviderHTTPError(
            status_code,
            provider=self.provider,
            model=self.model,
            body=body,
            retry_after=retry_after,
        )

    async def invoke(self, system_prompt: str, user_prompt: str, max_tokens: int) -> RawProviderOutput:
        url, headers, payload = self.build_request(system_prompt, user_prompt, max_tokens, False)
        try:
            async with self._client() as client:
                response = await client.post(url, headers=headers, json=payload)
        except httpx.TransportError as exc:
            raise self._http_error(None, str(exc)) from exc

        if response.status_code != 200:
            raise self._http_error(response.status_code, response.text, _retry_after(response))
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderResponseError(
                f"Invalid JSON in {self.provider} API response", provider=self.provider, model=self.model
            ) from exc
        if not isinstance(data, dict):
            raise ProviderResponseError(
                f"Unexpected {self.provider} API response", provider=self.provider, model=self.model
            )
        try:
            return self.parse_response(data)
        except (AttributeError, TypeError, KeyError, IndexError) as exc:
            raise ProviderResponseError(
                f"Malformed {self.provider} API response: {exc}",
                provider=self.provider,
                model=self.model,
            ) from exc

    async def invoke_streaming(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        on_chunk: ChunkSink,
    ) -> RawProviderOutput:
        """Stream a completion, forwarding every text delta to ``on_chunk``."""
        url, headers, payload = self.build_request(system_prompt, user_prompt, max_tokens, True)
        state = StreamState()
        parts: list[str] = []
        async with aclosing(self._stream_events(url, headers, payload)) as events:
            async for event, data in events:
                try:
                    delta = self.parse_stream_event(event, data, state)
                except (AttributeError, TypeError, KeyError, IndexError) as exc:
                    raise ProviderResponseError(
                        f"Malformed {self.provider} stream event: {exc}",
                        provider=self.provider,
                        model=self.model,
                    ) from exc
                if delta:
                    parts.append(delta)
                    on_chunk(delta)
        return RawProviderOutput(
            text="".join(parts),
            stop_reason=state.stop_reason,
            usage=state.usage,
            model=self.model,
        )

    async def _stream_events(
        self, url: str, headers: dict, payload: dict
    ) -> AsyncIterator[tuple[str, dict]]:
        """Yield ``(event_name, data)`` pairs from a line-framed SSE body."""
        try:
            async with self._client() as client:
                async with client.stream("POST", url, headers=headers, json=payload) as response:
                    if response.status_code != 200:
                        body = (await response.aread()).decode("utf-8", errors="replace")
                        raise self._http_error(response.status_code, body, _retry_after(response))

                    event_name = "message"
                    async for raw_line in response.aiter_lines():
                        line = raw_line.strip()
                        if not line:
                            event_name = "message"
                            continue
                        if line.startswith(":"):
                            continue
                        if line.startswith("event:"):
                            event_name = line[6:].strip() or "message"
                            continue
                        if not line.startswith("data:"):
                            continue
                        data_text = line[5:].strip()
                        if data_text == "[DONE]":
                            continue
                        try:
                            data = json.loads(data_text)
                        except json.JSONDecodeError:
                            logger.debug("Skipping malformed %s stream event", self.provider)
                            continue
                        if isinstance(data, dict):
                            yield event_name, data
        except httpx.TransportError as exc:
            raise self._http_error(None, str(exc)) from exc
