from __future__ import annotations

import hashlib
import json

from ballotguide.schemas.ballot import Ballot
from ballotguide.schemas.guide import GuideParams
from ballotguide.schemas.profile import VoterProfile
from ballotguide.services.exceptions import CacheKeyError

GUIDE_CACHE_PREFIX = "guide_cache:"


def _race_fingerprint(race) -> str:
    names = ",".join(c.name for c in race.candidates if not c.withdrawn)
    return f"{race.office}|{race.district or ''}|{names}"


def derive_guide_key(profile: VoterProfile, ballot: Ballot, params: GuideParams) -> str:
    """SHA-256 fingerprint of everything that changes the generated guide.

    Unordered profile fields and the race list are sorted; withdrawn
    candidates are left out of the race fingerprints.

    Raises:
        CacheKeyError: if the key material cannot be serialized.
    """
    key_obj = {
        "party": params.party,
        "lang": params.lang or "en",
        "readingLevel": params.reading_level or 3,
        "llm": params.llm or "claude",
        "county": params.county_fips or "",
        "issues": sorted(profile.top_issues),
        "spectrum": profile.political_spectrum or "Moderate",
        "qualities": sorted(profile.candidate_qualities),
        "stances": [f"{k}:{profile.policy_views[k]}" for k in sorted(profile.policy_views)],
        "freeform": profile.freeform or "",
        "ballotRaces": sorted(_race_fingerprint(r) for r in ballot.races),
        "ballotProps": [f"{p.number}:{p.title}" for p in ballot.propositions],
    }
    try:
        data = json.dumps(key_obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError) as exc:
        raise CacheKeyError(f"Could not serialize guide cache key: {exc}") from exc
    return hashlib.sha256(data.encode("utf-8")).hexdigest()
