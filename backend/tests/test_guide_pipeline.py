"""
End-to-end tests for guide generation with scripted provider adapters.
"""

from __future__ import annotations

import asyncio
import json

import pytest
import pytest_asyncio

from ballotguide.schemas.guide import GuideRequest
from ballotguide.services.ballot_repository import statewide_key, translations_key
from ballotguide.services.cache_key import GUIDE_CACHE_PREFIX
from ballotguide.services.exceptions import BallotNotFoundError
from ballotguide.services.guide_pipeline import GuidePipeline
from ballotguide.services.invoker import ProviderInvoker, RetryPolicy
from ballotguide.services.prompts import ballot_description_key
from ballotguide.services.providers.base import RawProviderOutput, StopReason, TokenUsage
from conftest import FakeAdapter, http_error

TRUNCATED = (
    '{"profileSummary":"Short.","races":[{"office":"Governor","recommendedCandidate":"Jones",'
    '"reasoning":"Roads.","confidence":"Good Match"},{"office":"Attorney General","recommen'
)


def _length(text: str) -> RawProviderOutput:
    return RawProviderOutput(
        text=text,
        stop_reason=StopReason.LENGTH,
        usage=TokenUsage(input_tokens=10, output_tokens=2048),
        model="m1",
    )


@pytest_asyncio.fixture
async def seeded_store(store, ballot_data):
    await store.put(statewide_key("republican"), json.dumps(ballot_data))
    return store


def make_pipeline(store, adapter, clock) -> GuidePipeline:
    def factory(llm):
        return ProviderInvoker([adapter], RetryPolicy(), sleep=clock.sleep)

    return GuidePipeline(store, invoker_factory=factory)


def _request(profile, **kwargs) -> GuideRequest:
    return GuideRequest(party=kwargs.pop("party", "republican"), profile=profile, **kwargs)


async def _collect(pipeline, request) -> list:
    return [event async for event in pipeline.stream(request)]


# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_generate_merges_and_scores(seeded_store, profile, guide_text, clock):
    adapter = FakeAdapter("m1", [guide_text])
    pipeline = make_pipeline(seeded_store, adapter, clock)

    result = await pipeline.generate(_request(profile))

    governor = result.ballot.races[0]
    assert governor.recommendation.candidate_name == "Smith"
    assert [c.name for c in governor.candidates if c.is_recommended] == ["Smith"]
    assert result.ballot.propositions[0].recommendation == "Lean Yes"
    assert result.ballot.propositions[1].recommendation is None
    assert result.profile_summary == "I care about taxes and roads."
    assert result.balance_score.total_races == 2
    assert result.llm == "claude"
    assert result.cached is False
    assert result.truncated is False
    assert adapter.calls == [2048]


@pytest.mark.asyncio
async def test_second_generate_is_served_from_cache(seeded_store, profile, guide_text, clock):
    adapter = FakeAdapter("m1", [guide_text])
    pipeline = make_pipeline(seeded_store, adapter, clock)

    first = await pipeline.generate(_request(profile))
    await pipeline.drain()
    second = await pipeline.generate(_request(profile))

    assert second.cached is True
    assert len(adapter.calls) == 1
    assert second.ballot.races[0].recommendation == first.ballot.races[0].recommendation
    assert await seeded_store.get(ballot_description_key(first.ballot)) is not None


@pytest.mark.asyncio
async def test_nocache_bypasses_cache(seeded_store, profile, guide_text, clock):
    adapter = FakeAdapter("m1", [guide_text, guide_text])
    pipeline = make_pipeline(seeded_store, adapter, clock)

    await pipeline.generate(_request(profile, nocache=True))
    await pipeline.drain()
    result = await pipeline.generate(_request(profile, nocache=True))

    assert result.cached is False
    assert len(adapter.calls) == 2


@pytest.mark.asyncio
async def test_generate_missing_ballot(store, profile, clock):
    pipeline = make_pipeline(store, FakeAdapter("m1", []), clock)
    with pytest.raises(BallotNotFoundError):
        await pipeline.generate(_request(profile, party="democrat"))


@pytest.mark.asyncio
async def test_spanish_guide_uses_cached_translations(seeded_store, profile, guide_text, clock):
    await seeded_store.put(
        translations_key("es", "republican"),
        json.dumps([{"name": "Smith", "summary": "Gobernador actual."}]),
    )
    adapter = FakeAdapter("m1", [guide_text])
    pipeline = make_pipeline(seeded_store, adapter, clock)

    result = await pipeline.generate(_request(profile, lang="es"))

    assert result.translations_cached is True
    assert result.ballot.races[0].candidates[0].summary == "Gobernador actual."
    assert adapter.calls == [4096]


@pytest.mark.asyncio
async def test_truncated_guide_is_returned_but_not_cached(seeded_store, profile, clock):
    # The same budget cut twice: once at 2048, once after expansion.
    adapter = FakeAdapter("m1", [_length(TRUNCATED), _length(TRUNCATED)])
    pipeline = make_pipeline(seeded_store, adapter, clock)

    result = await pipeline.generate(_request(profile))
    await pipeline.drain()

    assert result.truncated is True
    assert result.ballot.races[0].recommendation.candidate_name == "Jones"
    assert result.ballot.races[1].recommendation is None
    assert adapter.calls == [2048, 4096]
    assert not [k for k in seeded_store._data if k.startswith(GUIDE_CACHE_PREFIX)]


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_stream_event_order(seeded_store, profile, guide_text, clock):
    pipeline = make_pipeline(seeded_store, FakeAdapter("m1", [guide_text], chunk_size=5), clock)

    events = await _collect(pipeline, _request(profile))

    assert [e.event for e in events] == ["meta", "profile", "race", "race", "proposition", "complete"]
    meta = events[0].data
    assert meta["party"] == "republican"
    assert meta["cached"] is False
    assert meta["ballot"]["races"][0]["office"] == "Governor"
    assert events[1].data == {"profileSummary": "I care about taxes and roads."}

    governor = events[2].data
    assert governor["office"] == "Governor"
    assert governor["recommendation"]["candidateName"] == "Smith"
    assert [c["name"] for c in governor["candidates"] if c["isRecommended"]] == ["Smith"]
    assert "truncated" not in governor

    proposition = events[4].data
    assert proposition["number"] == 1
    assert proposition["title"] == "Property Tax Cap"
    assert proposition["recommendation"] == "Lean Yes"

    complete = events[-1].data
    assert complete["cached"] is False
    assert complete["truncated"] is False
    assert complete["llm"] == "claude"
    assert complete["balanceScore"]["totalRaces"] == 2


@pytest.mark.asyncio
async def test_stream_replays_cached_guide(seeded_store, profile, guide_text, clock):
    adapter = FakeAdapter("m1", [guide_text])
    pipeline = make_pipeline(seeded_store, adapter, clock)
    await pipeline.generate(_request(profile))
    await pipeline.drain()

    events = await _collect(pipeline, _request(profile))

    assert [e.event for e in events] == ["meta", "profile", "race", "race", "proposition", "complete"]
    assert events[-1].data["cached"] is True
    assert len(adapter.calls) == 1


@pytest.mark.asyncio
async def test_stream_truncation_is_repaired(seeded_store, profile, clock):
    adapter = FakeAdapter("m1", [_length(TRUNCATED)], chunk_size=9)
    pipeline = make_pipeline(seeded_store, adapter, clock)

    events = await _collect(pipeline, _request(profile))
    await pipeline.drain()

    assert [e.event for e in events] == ["meta", "profile", "race", "complete"]
    assert events[2].data["office"] == "Governor"
    assert events[-1].data["truncated"] is True
    assert adapter.calls == [2048]
    assert not [k for k in seeded_store._data if k.startswith(GUIDE_CACHE_PREFIX)]


@pytest.mark.asyncio
async def test_unrecoverable_stream_retries_with_larger_budget(seeded_store, profile, guide_text, clock):
    adapter = FakeAdapter("m1", [_length('{"profileSummary":"I care'), guide_text])
    pipeline = make_pipeline(seeded_store, adapter, clock)

    events = await _collect(pipeline, _request(profile))

    assert adapter.calls == [2048, 4096]
    assert [e.event for e in events] == ["meta", "profile", "race", "race", "proposition", "complete"]
    assert events[-1].data["truncated"] is False


@pytest.mark.asyncio
async def test_stream_missing_ballot_is_single_error(store, profile, clock):
    pipeline = make_pipeline(store, FakeAdapter("m1", []), clock)

    events = await _collect(pipeline, _request(profile, party="democrat"))

    assert [e.event for e in events] == ["error"]
    assert "democrat" in events[0].data["error"]


@pytest.mark.asyncio
async def test_stream_provider_failure_ends_with_error(seeded_store, profile, clock):
    pipeline = make_pipeline(seeded_store, FakeAdapter("m1", [http_error(401, "m1")]), clock)

    events = await _collect(pipeline, _request(profile))

    assert [e.event for e in events] == ["meta", "error"]
    assert events[-1].data["error"].startswith("fake:")


@pytest.mark.asyncio
async def test_stream_unparseable_output_ends_with_error(seeded_store, profile, clock):
    pipeline = make_pipeline(seeded_store, FakeAdapter("m1", ["No JSON here."]), clock)

    events = await _collect(pipeline, _request(profile))

    assert [e.event for e in events] == ["meta", "error"]


class HangingAdapter(FakeAdapter):
    """Streams a prefix and then waits until cancelled."""

    def __init__(self, prefix: str):
        super().__init__("m1", [])
        self.prefix = prefix
        self.cancelled = False

    async def invoke_streaming(self, system_prompt, user_prompt, max_tokens, on_chunk):
        on_chunk(self.prefix)
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise


@pytest.mark.asyncio
async def test_closing_stream_cancels_provider_call(seeded_store, profile, clock):
    adapter = HangingAdapter('{"races":[{"office":"Governor","recommendedCandidate":"Smith"},')
    pipeline = make_pipeline(seeded_store, adapter, clock)

    stream = pipeline.stream(_request(profile))
    seen = []
    async for event in stream:
        seen.append(event.event)
        if event.event == "race":
            break
    await stream.aclose()
    for _ in range(3):
        await asyncio.sleep(0)

    assert seen == ["meta", "race"]
    assert adapter.cancelled is True
