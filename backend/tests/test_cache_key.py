"""
Tests for guide cache key derivation.
"""

from __future__ import annotations

import pytest

from ballotguide.schemas.ballot import Candidate
from ballotguide.schemas.guide import GuideParams
from ballotguide.schemas.profile import VoterProfile
from ballotguide.services.cache_key import derive_guide_key
from ballotguide.services.exceptions import CacheKeyError


@pytest.fixture
def params() -> GuideParams:
    return GuideParams(party="republican")


def test_key_is_sha256_hex(profile, ballot, params):
    key = derive_guide_key(profile, ballot, params)
    assert len(key) == 64
    int(key, 16)


def test_key_is_deterministic(profile, ballot, params):
    assert derive_guide_key(profile, ballot, params) == derive_guide_key(profile, ballot, params)


def test_unordered_profile_fields_do_not_change_key(profile, ballot, params):
    shuffled = VoterProfile(
        top_issues=list(reversed(profile.top_issues)),
        political_spectrum=profile.political_spectrum,
        candidate_qualities=list(reversed(profile.candidate_qualities)),
        policy_views=dict(reversed(list(profile.policy_views.items()))),
        freeform=profile.freeform,
    )
    assert derive_guide_key(profile, ballot, params) == derive_guide_key(shuffled, ballot, params)


def test_race_order_does_not_change_key(profile, ballot, params):
    reordered = ballot.model_copy(deep=True)
    reordered.races.reverse()
    assert derive_guide_key(profile, ballot, params) == derive_guide_key(profile, reordered, params)


def test_withdrawn_candidates_do_not_change_key(profile, ballot, params):
    before = derive_guide_key(profile, ballot, params)

    added = ballot.model_copy(deep=True)
    added.races[1].candidates.append(Candidate(name="Dropped Out", withdrawn=True))
    removed = ballot.model_copy(deep=True)
    removed.races[0].candidates = [c for c in removed.races[0].candidates if not c.withdrawn]

    assert derive_guide_key(profile, added, params) == before
    assert derive_guide_key(profile, removed, params) == before


def test_active_roster_change_changes_key(profile, ballot, params):
    changed = ballot.model_copy(deep=True)
    changed.races[1].candidates.append(Candidate(name="Newcomer"))
    assert derive_guide_key(profile, ballot, params) != derive_guide_key(profile, changed, params)


def test_proposition_change_changes_key(profile, ballot, params):
    changed = ballot.model_copy(deep=True)
    changed.propositions[0].title = "Different Title"
    assert derive_guide_key(profile, ballot, params) != derive_guide_key(profile, changed, params)


@pytest.mark.parametrize(
    "override",
    [
        {"party": "democrat"},
        {"lang": "es"},
        {"reading_level": 5},
        {"llm": "gemini"},
        {"county_fips": "48453"},
    ],
)
def test_each_param_is_a_key_dimension(profile, ballot, params, override):
    other = params.model_copy(update=override)
    assert derive_guide_key(profile, ballot, params) != derive_guide_key(profile, ballot, other)


def test_defaults_match_explicit_values(profile, ballot, params):
    explicit = GuideParams(party="republican", lang="en", reading_level=3, llm="claude")
    assert derive_guide_key(profile, ballot, params) == derive_guide_key(profile, ballot, explicit)


def test_unserializable_input_raises(ballot, params):
    profile = VoterProfile.model_construct(
        top_issues=[],
        political_spectrum=None,
        candidate_qualities=[],
        policy_views={},
        freeform=object(),
    )
    with pytest.raises(CacheKeyError):
        derive_guide_key(profile, ballot, params)
