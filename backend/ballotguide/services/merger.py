"""
Overlay parsed recommendations onto a ballot.

The input ballot is never touched: every function here works on a deep
copy and returns it.
"""

from __future__ import annotations

from typing import Optional

from ballotguide.config import settings
from ballotguide.schemas.ballot import (
    Ballot,
    CandidateTranslation,
    MergedBallot,
    Proposition,
    Race,
    Recommendation,
)
from ballotguide.schemas.guide import ParsedGuide, PropositionRecommendation, RaceRecommendation

DEFAULT_RACE_CONFIDENCE = "Good Match"
DEFAULT_PROPOSITION_RECOMMENDATION = "Your Call"


def needs_translation(locale: Optional[str]) -> bool:
    return bool(locale) and locale in settings.translated_locales_list


def find_race_recommendation(
    race: Race, recommendations: list[RaceRecommendation]
) -> Optional[RaceRecommendation]:
    for rec in recommendations:
        if rec.office == race.office and (rec.district or None) == (race.district or None):
            return rec
    return None


def apply_race_recommendation(
    race: Race, rec: Optional[RaceRecommendation], truncated: bool = False
) -> None:
    """Flag the recommended candidate on ``race`` in place, clearing any stale pick."""
    for candidate in race.candidates:
        candidate.is_recommended = False
    race.recommendation = None
    if rec is None or not rec.recommended_candidate:
        return

    for candidate in race.candidates:
        if candidate.name == rec.recommended_candidate and not candidate.withdrawn:
            candidate.is_recommended = True
            race.recommendation = Recommendation(
                candidate_id=candidate.id,
                candidate_name=rec.recommended_candidate,
                reasoning=rec.reasoning,
                match_factors=list(rec.match_factors or []),
                strategic_notes=rec.strategic_notes or None,
                caveats=rec.caveats or None,
                confidence=rec.confidence or DEFAULT_RACE_CONFIDENCE,
                truncated=True if truncated else None,
            )
            return


def merge_race(rec: RaceRecommendation, race: Race, truncated: bool = False) -> Race:
    """Return a copy of ``race`` with ``rec`` applied."""
    merged = race.model_copy(deep=True)
    apply_race_recommendation(merged, rec, truncated=truncated)
    return merged


def apply_proposition_recommendation(prop: Proposition, rec: PropositionRecommendation) -> None:
    prop.recommendation = rec.recommendation or DEFAULT_PROPOSITION_RECOMMENDATION
    prop.reasoning = rec.reasoning
    prop.caveats = rec.caveats or None
    if rec.confidence:
        prop.confidence = rec.confidence


def apply_translations(ballot: Ballot, translations: list[CandidateTranslation]) -> None:
    by_name = {t.name: t for t in translations}
    for race in ballot.races:
        for candidate in race.candidates:
            tr = by_name.get(candidate.name)
            if tr is None:
                continue
            if tr.summary:
                candidate.summary = tr.summary
            if tr.key_positions:
                candidate.key_positions = list(tr.key_positions)
            if tr.pros:
                candidate.pros = list(tr.pros)
            if tr.cons:
                candidate.cons = list(tr.cons)


def merge_recommendations(
    guide: ParsedGuide,
    ballot: Ballot,
    locale: Optional[str] = None,
    translations: Optional[list[CandidateTranslation]] = None,
) -> MergedBallot:
    merged = ballot.model_copy(deep=True)

    if needs_translation(locale):
        overlay = translations or guide.candidate_translations
        if overlay:
            apply_translations(merged, overlay)

    for race in merged.races:
        apply_race_recommendation(race, find_race_recommendation(race, guide.races))

    by_number = {}
    for rec in guide.propositions:
        by_number.setdefault(rec.number, rec)
    for prop in merged.propositions:
        rec = by_number.get(prop.number)
        if rec is not None:
            apply_proposition_recommendation(prop, rec)

    return merged
