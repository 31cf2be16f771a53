"""
PyTest configuration and shared fixtures.
"""

from __future__ import annotations

import json
from typing import Callable, Optional

import pytest

from ballotguide.schemas.ballot import Ballot
from ballotguide.schemas.profile import VoterProfile
from ballotguide.services.cache_store import MemoryCacheStore
from ballotguide.services.exceptions import ProviderHTTPError
from ballotguide.services.providers.base import (
    ProviderAdapter,
    RawProviderOutput,
    StopReason,
    StreamState,
    TokenUsage,
)

BALLOT_DATA = {
    "id": "test_republican",
    "party": "republican",
    "electionDate": "2026-03-03",
    "electionName": "2026 Republican Primary",
    "races": [
        {
            "id": "gov",
            "office": "Governor",
            "district": None,
            "candidates": [
                {
                    "id": "g1",
                    "name": "Smith",
                    "isIncumbent": True,
                    "summary": "Incumbent governor.",
                    "keyPositions": ["Tax relief"],
                    "pros": ["Experienced"],
                    "cons": ["Slow on the grid"],
                },
                {
                    "id": "g2",
                    "name": "Jones",
                    "summary": "County judge.",
                    "keyPositions": ["Infrastructure"],
                    "pros": ["Local focus"],
                    "cons": ["Unknown statewide"],
                },
                {"id": "g3", "name": "Gone", "withdrawn": True},
            ],
        },
        {
            "id": "ag",
            "office": "Attorney General",
            "district": None,
            "candidates": [
                {"id": "a1", "name": "Lee", "summary": "Appellate lawyer."},
                {"id": "a2", "name": "Park", "summary": "Former solicitor."},
            ],
        },
        {
            "id": "cd21",
            "office": "U.S. Representative",
            "district": "District 21",
            "candidates": [
                {"id": "r1", "name": "Brooks", "isIncumbent": True},
                {"id": "r2", "name": "Santos"},
            ],
        },
    ],
    "propositions": [
        {"number": 1, "title": "Property Tax Cap", "description": "Cap appraisals."},
        {"number": 2, "title": "Water Fund", "description": "Fund water projects."},
    ],
}

GUIDE_DATA = {
    "profileSummary": "I care about taxes and roads.",
    "races": [
        {
            "office": "Governor",
            "district": None,
            "recommendedCandidate": "Smith",
            "reasoning": "Matches your tax priorities.",
            "matchFactors": ["Tax relief"],
            "strategicNotes": None,
            "caveats": None,
            "confidence": "Strong Match",
        },
        {
            "office": "Attorney General",
            "district": None,
            "recommendedCandidate": "Lee",
            "reasoning": "Appellate experience.",
            "matchFactors": [],
            "confidence": "Good Match",
        },
    ],
    "propositions": [
        {
            "number": 1,
            "recommendation": "Lean Yes",
            "reasoning": "Limits tax growth.",
            "caveats": None,
            "confidence": "Lean",
        }
    ],
}


@pytest.fixture
def ballot_data() -> dict:
    return json.loads(json.dumps(BALLOT_DATA))


@pytest.fixture
def ballot(ballot_data) -> Ballot:
    return Ballot.model_validate(ballot_data)


@pytest.fixture
def guide_text() -> str:
    return json.dumps(GUIDE_DATA)


@pytest.fixture
def profile() -> VoterProfile:
    return VoterProfile(
        top_issues=["Taxes", "Roads", "Schools"],
        political_spectrum="Conservative",
        candidate_qualities=["Experience", "Integrity"],
        policy_views={"taxes": "lower", "grid": "invest"},
        freeform="Rural county.",
    )


@pytest.fixture
def store() -> MemoryCacheStore:
    return MemoryCacheStore()


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeClock:
    """Records sleeps instead of waiting."""

    def __init__(self):
        self.elapsed = 0.0
        self.sleeps: list[float] = []

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.elapsed += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def http_error(status: int, model: str = "m", retry_after: float = 0.0) -> ProviderHTTPError:
    return ProviderHTTPError(status, provider="fake", model=model, retry_after=retry_after)


class FakeAdapter(ProviderAdapter):
    """Adapter that replays a script of outputs and exceptions.

    Each script entry is a ``RawProviderOutput``, a text string (complete
    output), or an exception to raise. Streaming calls split text into
    ``chunk_size`` pieces.
    """

    provider = "fake"

    def __init__(self, model: str, script: list, chunk_size: int = 7, min_budget: int = 0):
        super().__init__(model, "key", "http://fake")
        self.script = list(script)
        self.calls: list[int] = []
        self.chunk_size = chunk_size
        self.min_budget = min_budget
        self.fail_after_chunks: Optional[Exception] = None

    def _next(self, max_tokens: int) -> RawProviderOutput:
        self.calls.append(max_tokens)
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, str):
            return RawProviderOutput(
                text=item,
                stop_reason=StopReason.COMPLETE,
                usage=TokenUsage(input_tokens=10, output_tokens=20),
                model=self.model,
            )
        return item

    async def invoke(self, system_prompt, user_prompt, max_tokens):
        return self._next(max_tokens)

    async def invoke_streaming(self, system_prompt, user_prompt, max_tokens, on_chunk):
        output = self._next(max_tokens)
        text = output.text
        for i in range(0, len(text), self.chunk_size):
            on_chunk(text[i : i + self.chunk_size])
            if self.fail_after_chunks is not None:
                raise self.fail_after_chunks
        return output

    def build_request(self, system_prompt, user_prompt, max_tokens, stream):
        raise NotImplementedError

    def parse_response(self, data):
        raise NotImplementedError

    def parse_stream_event(self, event, data, state: StreamState):
        raise NotImplementedError


@pytest.fixture
def make_adapter() -> Callable[..., FakeAdapter]:
    return FakeAdapter
