"""
Resilient invocation over an ordered fallback list of provider adapters.

Per model: a rate limit (429) waits ``max(retry-after, schedule[0])`` and
retries once; a second one waits ``schedule[1]`` and falls through to the
next model. Overload (5xx, 529, transport failure) waits the overload
backoff and retries once. Any other status falls through immediately. A
length-limited success doubles the token budget once, outside the retry
count. The last model's failure is terminal.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from ballotguide.config import settings
from ballotguide.services.exceptions import (
    FailureKind,
    ProviderConfigError,
    ProviderError,
    ProviderExhaustedError,
    ProviderHTTPError,
    ProviderResponseError,
)
from ballotguide.services.providers.base import (
    ChunkSink,
    ProviderAdapter,
    RawProviderOutput,
    StopReason,
    TokenUsage,
)
from ballotguide.utils.logger import get_logger

logger = get_logger(__name__)

SleepFn = Callable[[float], Awaitable[None]]
UsageRecorder = Callable[[str, TokenUsage, str], Awaitable[None]]

CACHED_SUFFIX = "_cached"
TOKEN_WARNING_PCT = 75

_EXHAUSTED_MESSAGES = {
    FailureKind.RATE_LIMITED: "Rate limited, please try again in a minute",
    FailureKind.OVERLOADED: "All models overloaded",
}


@dataclass
class RetryPolicy:
    attempts_per_model: int = 2
    rate_limit_backoff: tuple[float, ...] = (5.0, 15.0)
    overload_backoff: float = 2.0
    token_ceiling: int = 8192

    @classmethod
    def from_settings(cls) -> RetryPolicy:
        return cls(
            rate_limit_backoff=tuple(settings.rate_limit_backoff_list) or (5.0, 15.0),
            overload_backoff=settings.OVERLOAD_BACKOFF,
            token_ceiling=settings.TOKEN_BUDGET_CEILING,
        )

    def wait_for(self, error: BaseException, failures: int) -> float:
        """Seconds to wait after the ``failures``-th failed attempt on one model."""
        if isinstance(error, ProviderHTTPError) and error.kind is FailureKind.RATE_LIMITED:
            step = min(failures, len(self.rate_limit_backoff)) - 1
            return max(error.retry_after, self.rate_limit_backoff[max(step, 0)])
        return self.overload_backoff

    def expand(self, budget: int) -> int:
        return min(budget * 2, self.token_ceiling)


@dataclass
class InvocationResult:
    text: str
    stop_reason: StopReason
    usage: TokenUsage
    model: str
    provider: str
    max_tokens: int


@dataclass
class _ForwardingSink:
    on_chunk: ChunkSink
    forwarded: int = field(default=0)

    def __call__(self, chunk: str) -> None:
        self.forwarded += 1
        self.on_chunk(chunk)


def initial_token_budget(locale: Optional[str]) -> int:
    """Output budget for a locale; ``es_cached`` means translations are already cached."""
    locale = locale or "en"
    base = locale[: -len(CACHED_SUFFIX)] if locale.endswith(CACHED_SUFFIX) else locale
    if base not in settings.translated_locales_list:
        return settings.TOKEN_BUDGET_DEFAULT
    if locale.endswith(CACHED_SUFFIX):
        return settings.TOKEN_BUDGET_TRANSLATED_CACHED
    return settings.TOKEN_BUDGET_TRANSLATED


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, ProviderHTTPError) and exc.is_transient


class ProviderInvoker:
    def __init__(
        self,
        adapters: list[ProviderAdapter],
        policy: Optional[RetryPolicy] = None,
        *,
        sleep: SleepFn = asyncio.sleep,
        usage_recorder: Optional[UsageRecorder] = None,
        component: str = "guide",
    ):
        if not adapters:
            raise ProviderConfigError("No provider adapters configured")
        self.adapters = adapters
        self.policy = policy or RetryPolicy.from_settings()
        self._sleep = sleep
        self._usage_recorder = usage_recorder
        self._component = component
        self._pending: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def invoke(
        self,
        system_prompt: str,
        user_prompt: str,
        locale: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ) -> InvocationResult:
        """Run a complete (non-streaming) call through the fallback list.

        An explicit ``max_tokens`` is used as-is and never expanded.
        """

        async def call(adapter: ProviderAdapter, budget: int) -> RawProviderOutput:
            return await adapter.invoke(system_prompt, user_prompt, budget)

        return await self._run(call, locale, max_tokens, expand=max_tokens is None)

    async def invoke_streaming(
        self,
        system_prompt: str,
        user_prompt: str,
        locale: Optional[str],
        on_chunk: ChunkSink,
        max_tokens: Optional[int] = None,
    ) -> InvocationResult:
        """Stream a call, forwarding text deltas to ``on_chunk``.

        Chunks already forwarded cannot be taken back, so the budget is never
        expanded here and any failure after the first chunk is terminal.
        """
        sink = _ForwardingSink(on_chunk)

        async def call(adapter: ProviderAdapter, budget: int) -> RawProviderOutput:
            try:
                return await adapter.invoke_streaming(system_prompt, user_prompt, budget, sink)
            except (ProviderHTTPError, ProviderResponseError) as exc:
                if not sink.forwarded:
                    raise
                kind = exc.kind if isinstance(exc, ProviderHTTPError) else FailureKind.OTHER
                raise ProviderExhaustedError(
                    f"{adapter.provider}: stream failed after partial output: {exc}",
                    kind,
                    provider=adapter.provider,
                    model=adapter.model,
                ) from exc

        return await self._run(call, locale, max_tokens, expand=False)

    async def drain(self) -> None:
        """Wait for outstanding usage records."""
        if self._pending:
            await asyncio.gather(*list(self._pending))

    # ------------------------------------------------------------------
    # Retry state machine
    # ------------------------------------------------------------------

    async def _run(
        self,
        call: Callable[[ProviderAdapter, int], Awaitable[RawProviderOutput]],
        locale: Optional[str],
        max_tokens: Optional[int],
        expand: bool,
    ) -> InvocationResult:
        last_error: Optional[ProviderError] = None
        last = len(self.adapters) - 1

        for index, adapter in enumerate(self.adapters):
            if index:
                logger.warning(
                    "Falling back from %s to %s", self.adapters[index - 1].model, adapter.model
                )
            budget = max_tokens or max(initial_token_budget(locale), adapter.min_budget)
            can_expand = expand

            while True:
                try:
                    output = await self._attempt(call, adapter, budget)
                except ProviderHTTPError as exc:
                    last_error = exc
                    if exc.kind is FailureKind.RATE_LIMITED and index < last:
                        await self._sleep(self.policy.wait_for(exc, self.policy.attempts_per_model))
                    break
                except ProviderResponseError as exc:
                    last_error = exc
                    break

                self._record_usage(output)
                self._check_utilization(output, budget)

                if (
                    can_expand
                    and output.stop_reason is StopReason.LENGTH
                    and budget < self.policy.token_ceiling
                ):
                    new_budget = self.policy.expand(budget)
                    logger.warning(
                        "Token retry on %s: %d -> %d max_tokens", adapter.model, budget, new_budget
                    )
                    budget = new_budget
                    can_expand = False
                    continue

                return InvocationResult(
                    text=output.text,
                    stop_reason=output.stop_reason,
                    usage=output.usage,
                    model=output.model,
                    provider=adapter.provider,
                    max_tokens=budget,
                )

        raise self._exhausted(last_error)

    async def _attempt(
        self,
        call: Callable[[ProviderAdapter, int], Awaitable[RawProviderOutput]],
        adapter: ProviderAdapter,
        budget: int,
    ) -> RawProviderOutput:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.policy.attempts_per_model),
            wait=self._wait,
            retry=retry_if_exception(_is_transient),
            sleep=self._sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                output = await call(adapter, budget)
        return output

    def _wait(self, retry_state: RetryCallState) -> float:
        return self.policy.wait_for(retry_state.outcome.exception(), retry_state.attempt_number)

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception()
        logger.warning(
            "Retrying %s/%s in %.1fs after %s",
            getattr(exc, "provider", "?"),
            getattr(exc, "model", "?"),
            retry_state.next_action.sleep if retry_state.next_action else 0.0,
            exc,
        )

    def _exhausted(self, error: Optional[ProviderError]) -> ProviderExhaustedError:
        provider = self.adapters[-1].provider
        model = self.adapters[-1].model
        kind = error.kind if isinstance(error, ProviderHTTPError) else FailureKind.OTHER
        detail = _EXHAUSTED_MESSAGES.get(kind) or str(error or "All models failed")
        logger.error("%s: all %d model(s) failed (%s)", provider, len(self.adapters), error)
        return ProviderExhaustedError(f"{provider}: {detail}", kind, provider=provider, model=model)

    # ------------------------------------------------------------------
    # Usage
    # ------------------------------------------------------------------

    def _check_utilization(self, output: RawProviderOutput, budget: int) -> None:
        used = output.usage.output_tokens
        if not used or not budget:
            return
        pct = int(round(used / budget * 100))
        if pct >= TOKEN_WARNING_PCT:
            logger.warning(
                "Output used %d%% of max_tokens (%d/%d) on %s", pct, used, budget, output.model
            )

    def _record_usage(self, output: RawProviderOutput) -> None:
        logger.info(
            "Token usage [%s] model=%s input=%d output=%d",
            self._component,
            output.model,
            output.usage.input_tokens,
            output.usage.output_tokens,
        )
        if self._usage_recorder is None:
            return
        task = asyncio.create_task(self._safe_record(output))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _safe_record(self, output: RawProviderOutput) -> None:
        try:
            await self._usage_recorder(self._component, output.usage, output.model)
        except Exception:
            logger.exception("Usage logging failed for %s", output.model)
