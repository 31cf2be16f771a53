"""
Ballot lookup in the guide store.

Keys (``{election}`` is ``settings.ELECTION_ID``):

    ballot:statewide:{party}_{election}
    ballot:{party}_{election}                      legacy statewide key
    ballot:county:{fips}:{party}_{election}
    translations:{locale}:{party}_{election}
    translations:{locale}:county:{fips}:{party}_{election}
    manifest                                       {party: {updatedAt: ...}}
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Optional

from pydantic import ValidationError

from ballotguide.config import settings
from ballotguide.schemas.ballot import Ballot, CandidateTranslation, Districts
from ballotguide.services.cache_store import CacheStore
from ballotguide.services.exceptions import BallotNotFoundError
from ballotguide.utils.logger import get_logger

logger = get_logger(__name__)

MANIFEST_KEY = "manifest"


def statewide_key(party: str) -> str:
    return f"ballot:statewide:{party}_{settings.ELECTION_ID}"


def legacy_key(party: str) -> str:
    return f"ballot:{party}_{settings.ELECTION_ID}"


def county_key(fips: str, party: str) -> str:
    return f"ballot:county:{fips}:{party}_{settings.ELECTION_ID}"


def translations_key(locale: str, party: str, fips: Optional[str] = None) -> str:
    if fips:
        return f"translations:{locale}:county:{fips}:{party}_{settings.ELECTION_ID}"
    return f"translations:{locale}:{party}_{settings.ELECTION_ID}"


@dataclass
class LoadedBallot:
    ballot: Ballot
    county_ballot_available: Optional[bool] = None
    data_updated_at: Optional[str] = None


# ---------------------------------------------------------------------------
# Pure transformations
# ---------------------------------------------------------------------------


def merge_county_ballot(ballot: Ballot, county: Ballot) -> Ballot:
    """Append county races and propositions not already on the statewide ballot."""
    seen_races = {r.race_key for r in ballot.races}
    seen_props = {p.number for p in ballot.propositions}
    merged = ballot.model_copy(deep=True)
    merged.races.extend(
        r.model_copy(deep=True) for r in county.races if r.race_key not in seen_races
    )
    merged.propositions.extend(
        p.model_copy(deep=True) for p in county.propositions if p.number not in seen_props
    )
    return merged


def filter_to_districts(ballot: Ballot, districts: Districts) -> Ballot:
    """Keep at-large races plus races whose district the voter lives in."""
    wanted = districts.as_set()
    return Ballot(
        id=ballot.id,
        party=ballot.party,
        election_date=ballot.election_date,
        election_name=ballot.election_name,
        districts=districts,
        races=[
            r.model_copy(deep=True)
            for r in ballot.races
            if not r.district or r.district in wanted
        ],
        propositions=[p.model_copy(deep=True) for p in ballot.propositions],
    )


def _updated_at(manifest_raw: Optional[str], party: str) -> Optional[str]:
    if not manifest_raw:
        return None
    try:
        manifest = json.loads(manifest_raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring malformed ballot manifest")
        return None
    entry = manifest.get(party) if isinstance(manifest, dict) else None
    return entry.get("updatedAt") if isinstance(entry, dict) else None


def _translation_list(raw: Optional[str], key: str) -> list[CandidateTranslation]:
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Skipping malformed translations at %s", key)
        return []
    if not isinstance(data, list):
        return []
    translations = []
    for item in data:
        try:
            translations.append(CandidateTranslation.model_validate(item))
        except ValidationError:
            continue
    return translations


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class BallotRepository:
    def __init__(self, store: CacheStore):
        self.store = store

    async def load(
        self,
        party: str,
        county_fips: Optional[str] = None,
        districts: Optional[Districts] = None,
    ) -> LoadedBallot:
        """Statewide ballot with county races merged in and filtered to ``districts``.

        Raises:
            BallotNotFoundError: if no statewide ballot exists for ``party``.
        """
        statewide_raw, legacy_raw, county_raw, manifest_raw = await asyncio.gather(
            self.store.safe_get(statewide_key(party)),
            self.store.safe_get(legacy_key(party)),
            self.store.safe_get(county_key(county_fips, party)) if county_fips else _none(),
            self.store.safe_get(MANIFEST_KEY),
        )

        raw = statewide_raw or legacy_raw
        if not raw:
            raise BallotNotFoundError(f"No ballot data available for {party}")
        try:
            ballot = Ballot.model_validate_json(raw)
        except ValidationError as exc:
            raise BallotNotFoundError(f"Ballot data for {party} is unreadable: {exc}") from exc

        county_available = None
        if county_fips:
            county_available = False
            if county_raw:
                try:
                    ballot = merge_county_ballot(ballot, Ballot.model_validate_json(county_raw))
                    county_available = True
                except ValidationError:
                    logger.warning("County ballot %s for %s is unreadable", county_fips, party)

        if districts is not None:
            ballot = filter_to_districts(ballot, districts)

        return LoadedBallot(
            ballot=ballot,
            county_ballot_available=county_available,
            data_updated_at=_updated_at(manifest_raw, party),
        )

    async def load_translations(
        self, locale: str, party: str, county_fips: Optional[str] = None
    ) -> Optional[list[CandidateTranslation]]:
        """Pre-generated candidate translations; county entries override statewide ones."""
        key = translations_key(locale, party)
        translations = _translation_list(await self.store.safe_get(key), key)
        if county_fips:
            key = translations_key(locale, party, county_fips)
            county = _translation_list(await self.store.safe_get(key), key)
            if county:
                names = {t.name for t in county}
                translations = [t for t in translations if t.name not in names] + county
        return translations or None


async def _none() -> None:
    return None
