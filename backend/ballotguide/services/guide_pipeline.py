"""
Guide generation: ballot lookup, cache, provider call, parse, merge, score.

``generate`` returns one ``GuideResult``; ``stream`` yields ``GuideEvent``s as
race and proposition recommendations arrive from the provider.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Optional

from pydantic import ValidationError

from ballotguide.config import settings
from ballotguide.schemas.ballot import Ballot, CandidateTranslation
from ballotguide.schemas.guide import (
    GuideEvent,
    GuideParams,
    GuideRequest,
    GuideResult,
    ParsedGuide,
    PropositionRecommendation,
    RaceRecommendation,
)
from ballotguide.services.balance_scorer import score_partisan_balance
from ballotguide.services.ballot_repository import BallotRepository, LoadedBallot
from ballotguide.services.cache_key import GUIDE_CACHE_PREFIX, derive_guide_key
from ballotguide.services.cache_store import CacheStore
from ballotguide.services.exceptions import CacheKeyError, GuideError
from ballotguide.services.invoker import CACHED_SUFFIX, InvocationResult, ProviderInvoker
from ballotguide.services.merger import (
    DEFAULT_PROPOSITION_RECOMMENDATION,
    apply_translations,
    merge_race,
    merge_recommendations,
    needs_translation,
)
from ballotguide.services.prompts import (
    SYSTEM_PROMPT,
    ballot_description_key,
    build_ballot_description,
    build_user_prompt,
)
from ballotguide.services.providers.base import StopReason
from ballotguide.services.providers.registry import build_fallback_list
from ballotguide.services.streaming_extractor import StreamingExtractor
from ballotguide.services.truncation_repair import parse_guide_response, repair_truncated_guide
from ballotguide.services.usage_logger import UsageLogger
from ballotguide.utils.logger import get_logger

logger = get_logger(__name__)

InvokerFactory = Callable[[Optional[str]], ProviderInvoker]

_DONE = object()


@dataclass
class GuideContext:
    """Everything resolved for one request before the provider is called."""

    params: GuideParams
    loaded: LoadedBallot
    cache_key: Optional[str]
    translated: bool
    translations: Optional[list[CandidateTranslation]]
    user_prompt: str

    @property
    def ballot(self) -> Ballot:
        return self.loaded.ballot

    @property
    def effective_locale(self) -> str:
        if self.translated and self.translations:
            return self.params.locale + CACHED_SUFFIX
        return self.params.locale

    @property
    def translations_cached(self) -> Optional[bool]:
        return bool(self.translations) if self.translated else None


def _dump(model) -> dict:
    return model.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Streaming event emission
# ---------------------------------------------------------------------------


class EventEmitter:
    """Turns parsed recommendations into events, at most once per race and proposition."""

    def __init__(self, ballot: Ballot, send: Callable[[GuideEvent], None]):
        self._ballot = ballot
        self._send = send
        self.race_keys: set[str] = set()
        self.proposition_numbers: set[int] = set()
        self.profile_sent = False

    # Extractor callbacks receive raw dicts.

    def on_profile_summary(self, summary: str) -> None:
        self.profile(summary)

    def on_race(self, obj: dict) -> None:
        try:
            rec = RaceRecommendation.model_validate(obj)
        except ValidationError:
            logger.warning("Skipping malformed streamed race: %s", str(obj)[:200])
            return
        self.race(rec)

    def on_proposition(self, obj: dict) -> None:
        try:
            rec = PropositionRecommendation.model_validate(obj)
        except ValidationError:
            logger.warning("Skipping malformed streamed proposition: %s", str(obj)[:200])
            return
        self.proposition(rec)

    def profile(self, summary: Optional[str]) -> None:
        if self.profile_sent or not summary:
            return
        self.profile_sent = True
        self._send(GuideEvent(event="profile", data={"profileSummary": summary}))

    def race(self, rec: RaceRecommendation, truncated: bool = False) -> None:
        if rec.race_key in self.race_keys:
            return
        self.race_keys.add(rec.race_key)
        for race in self._ballot.races:
            if race.race_key == rec.race_key:
                merged = merge_race(rec, race, truncated=truncated)
                data = {
                    "office": merged.office,
                    "district": merged.district,
                    "recommendation": _dump(merged.recommendation) if merged.recommendation else None,
                    "candidates": [_dump(c) for c in merged.candidates],
                }
                if truncated:
                    data["truncated"] = True
                self._send(GuideEvent(event="race", data=data))
                return

    def proposition(self, rec: PropositionRecommendation) -> None:
        if rec.number in self.proposition_numbers:
            return
        self.proposition_numbers.add(rec.number)
        title = next((p.title for p in self._ballot.propositions if p.number == rec.number), None)
        self._send(
            GuideEvent(
                event="proposition",
                data={
                    "number": rec.number,
                    "title": title,
                    "recommendation": rec.recommendation or DEFAULT_PROPOSITION_RECOMMENDATION,
                    "reasoning": rec.reasoning,
                    "caveats": rec.caveats or None,
                    "confidence": rec.confidence or None,
                },
            )
        )

    def guide(self, guide: ParsedGuide) -> None:
        """Emit whatever ``guide`` holds that has not been sent yet."""
        self.profile(guide.profile_summary)
        for rec in guide.races:
            self.race(rec, truncated=guide.truncated)
        for rec in guide.propositions:
            self.proposition(rec)


def replay_events(result: GuideResult) -> list[GuideEvent]:
    """Events equivalent to streaming ``result`` again, for cache hits."""
    events = []
    if result.profile_summary:
        events.append(GuideEvent(event="profile", data={"profileSummary": result.profile_summary}))
    for race in result.ballot.races:
        if race.recommendation:
            events.append(
                GuideEvent(
                    event="race",
                    data={
                        "office": race.office,
                        "district": race.district,
                        "recommendation": _dump(race.recommendation),
                        "candidates": [_dump(c) for c in race.candidates],
                    },
                )
            )
    for prop in result.ballot.propositions:
        if prop.recommendation:
            events.append(
                GuideEvent(
                    event="proposition",
                    data={
                        "number": prop.number,
                        "title": prop.title,
                        "recommendation": prop.recommendation,
                        "reasoning": prop.reasoning,
                        "caveats": prop.caveats,
                        "confidence": prop.confidence,
                    },
                )
            )
    events.append(
        GuideEvent(
            event="complete",
            data={
                "balanceScore": _dump(result.balance_score),
                "dataUpdatedAt": result.data_updated_at,
                "llm": result.llm,
                "cached": True,
                "truncated": result.truncated,
            },
        )
    )
    return events


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class GuidePipeline:
    def __init__(self, store: CacheStore, invoker_factory: Optional[InvokerFactory] = None):
        self.store = store
        self.ballots = BallotRepository(store)
        self.usage = UsageLogger(store)
        self._invoker_factory = invoker_factory or self._default_invoker
        self._background: set[asyncio.Task] = set()

    def _default_invoker(self, llm: Optional[str]) -> ProviderInvoker:
        return ProviderInvoker(build_fallback_list(llm), usage_recorder=self.usage.record)

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    async def generate(self, request: GuideRequest) -> GuideResult:
        """Generate (or fetch from cache) a complete guide.

        Raises:
            BallotNotFoundError: no ballot for the requested party.
            ProviderError: every provider model failed.
            GuideParseError: the response was neither valid nor repairable.
        """
        ctx = await self.prepare(request)
        cached = await self.lookup(ctx)
        if cached is not None:
            return cached

        invoker = self._invoker_factory(ctx.params.llm)
        invocation = await invoker.invoke(SYSTEM_PROMPT, ctx.user_prompt, ctx.effective_locale)
        guide = parse_guide_response(invocation.text)
        result = self.finish(ctx, guide)
        self.store_result(ctx, result)
        return result

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def stream(self, request: GuideRequest) -> AsyncIterator[GuideEvent]:
        """Yield ``meta``, then ``profile``/``race``/``proposition`` events, then
        ``complete`` or ``error``. Closing the iterator cancels the provider call.
        """
        try:
            ctx = await self.prepare(request)
        except GuideError as exc:
            yield GuideEvent(event="error", data={"error": str(exc)})
            return

        yield GuideEvent(
            event="meta",
            data={
                "party": ctx.params.party,
                "ballot": _dump(ctx.ballot),
                "cached": False,
                "countyBallotAvailable": ctx.loaded.county_ballot_available,
            },
        )

        cached = await self.lookup(ctx)
        if cached is not None:
            for event in replay_events(cached):
                yield event
            return

        queue: asyncio.Queue = asyncio.Queue()
        task = asyncio.create_task(self._produce(ctx, queue.put_nowait))
        try:
            while True:
                item = await queue.get()
                if item is _DONE:
                    break
                yield item
        finally:
            if not task.done():
                logger.info("Guide stream closed early; cancelling provider call")
                task.cancel()

    async def _produce(self, ctx: GuideContext, send: Callable) -> None:
        try:
            display = ctx.ballot
            if ctx.translated and ctx.translations:
                display = ctx.ballot.model_copy(deep=True)
                apply_translations(display, ctx.translations)
            emitter = EventEmitter(display, send)
            extractor = StreamingExtractor(
                on_race=emitter.on_race,
                on_proposition=emitter.on_proposition,
                on_profile_summary=emitter.on_profile_summary,
            )

            invoker = self._invoker_factory(ctx.params.llm)
            invocation = await invoker.invoke_streaming(
                SYSTEM_PROMPT, ctx.user_prompt, ctx.effective_locale, extractor.feed
            )
            flushed = extractor.flush()
            logger.info(
                "Stream finished: %d races, %d propositions, stop=%s",
                flushed.races_emitted,
                flushed.propositions_emitted,
                invocation.stop_reason.value,
            )

            guide = await self._complete_stream(ctx, invoker, invocation)
            emitter.guide(guide)

            result = self.finish(ctx, guide)
            self.store_result(ctx, result)
            send(
                GuideEvent(
                    event="complete",
                    data={
                        "balanceScore": _dump(result.balance_score),
                        "dataUpdatedAt": result.data_updated_at,
                        "llm": result.llm,
                        "cached": False,
                        "truncated": result.truncated,
                    },
                )
            )
        except GuideError as exc:
            logger.error("Guide stream failed: %s", exc)
            send(GuideEvent(event="error", data={"error": str(exc)}))
        except Exception:
            logger.exception("Guide stream failed")
            send(GuideEvent(event="error", data={"error": "Guide generation failed"}))
        finally:
            send(_DONE)

    async def _complete_stream(
        self, ctx: GuideContext, invoker: ProviderInvoker, invocation: InvocationResult
    ) -> ParsedGuide:
        if invocation.stop_reason is not StopReason.LENGTH:
            return parse_guide_response(invocation.text, context="stream")

        repaired = repair_truncated_guide(invocation.text)
        if repaired is not None:
            logger.warning("Stream hit max_tokens; recovered %d races", len(repaired.races))
            return repaired

        ceiling = invoker.policy.token_ceiling
        if invocation.max_tokens >= ceiling:
            return parse_guide_response(invocation.text, context="stream")

        budget = invoker.policy.expand(invocation.max_tokens)
        logger.warning("Stream truncated with nothing recoverable; retrying with %d max_tokens", budget)
        retry = await invoker.invoke(
            SYSTEM_PROMPT, ctx.user_prompt, ctx.effective_locale, max_tokens=budget
        )
        return parse_guide_response(retry.text, context="stream retry")

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    async def prepare(self, request: GuideRequest) -> GuideContext:
        params = request.params()
        loaded = await self.ballots.load(params.party, params.county_fips, request.districts)
        ballot = loaded.ballot

        cache_key = None
        if not request.nocache:
            try:
                cache_key = derive_guide_key(request.profile, ballot, params)
            except CacheKeyError as exc:
                logger.warning("Guide cache disabled for this request: %s", exc)

        translated = needs_translation(params.locale)
        translations = None
        if translated:
            translations = await self.ballots.load_translations(
                params.locale, params.party, params.county_fips
            )

        user_prompt = build_user_prompt(
            request.profile,
            await self._ballot_description(ballot),
            ballot,
            params.party,
            reading_level=params.reading_level or 3,
            translations_cached=bool(translations),
            translated=translated,
        )
        return GuideContext(
            params=params,
            loaded=loaded,
            cache_key=cache_key,
            translated=translated,
            translations=translations,
            user_prompt=user_prompt,
        )

    async def _ballot_description(self, ballot: Ballot) -> str:
        key = ballot_description_key(ballot)
        description = await self.store.safe_get(key)
        if description:
            return description
        description = build_ballot_description(ballot)
        self._spawn(self.store.safe_put(key, description, ttl=settings.BALLOT_DESC_CACHE_TTL))
        return description

    async def lookup(self, ctx: GuideContext) -> Optional[GuideResult]:
        if ctx.cache_key is None:
            return None
        raw = await self.store.safe_get(GUIDE_CACHE_PREFIX + ctx.cache_key)
        if not raw:
            return None
        try:
            result = GuideResult.model_validate_json(raw)
        except ValidationError:
            logger.warning("Ignoring unreadable cached guide %s", ctx.cache_key[:12])
            return None
        logger.info("Guide cache hit for %s (%s)", ctx.params.party, ctx.cache_key[:12])
        result.cached = True
        return result

    def finish(self, ctx: GuideContext, guide: ParsedGuide) -> GuideResult:
        merged = merge_recommendations(guide, ctx.ballot, ctx.params.locale, ctx.translations)
        report = score_partisan_balance(guide, ctx.ballot)
        if report.flags:
            logger.warning(
                "Partisan balance flags for %s guide: %s", ctx.params.party, "; ".join(report.flags)
            )
        return GuideResult(
            ballot=merged,
            profile_summary=guide.profile_summary,
            llm=ctx.params.provider,
            county_ballot_available=ctx.loaded.county_ballot_available,
            data_updated_at=ctx.loaded.data_updated_at,
            balance_score=report,
            skew_note=report.skew_note,
            translations_cached=ctx.translations_cached,
            cached=False,
            truncated=guide.truncated,
        )

    def store_result(self, ctx: GuideContext, result: GuideResult) -> None:
        """Fire-and-forget cache write. Truncated guides are not cached."""
        if ctx.cache_key is None or result.truncated:
            return
        self._spawn(
            self.store.safe_put(
                GUIDE_CACHE_PREFIX + ctx.cache_key,
                result.model_dump_json(by_alias=True),
                ttl=settings.GUIDE_CACHE_TTL,
            )
        )

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def drain(self) -> None:
        """Wait for pending background cache writes."""
        if self._background:
            await asyncio.gather(*list(self._background))
