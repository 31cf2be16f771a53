"""
Post-generation partisan balance scoring.

Descriptive statistics only: compares confidence labels, reasoning length and
pro/con text between recommended and non-recommended candidates, and raises
heuristic skew flags. It never changes the guide.
"""

from __future__ import annotations

import math
from typing import Optional

from ballotguide.schemas.ballot import Ballot, Race
from ballotguide.schemas.guide import BalanceReport, ParsedGuide, RaceRecommendation

CONFIDENCE_SCORES = {
    "Strong Match": 4,
    "Good Match": 3,
    "Best Available": 2,
    "Symbolic Race": 1,
}
DEFAULT_CONFIDENCE = "Good Match"
UNKNOWN_CONFIDENCE_SCORE = 2
HIGH_CONFIDENCE = ("Strong Match", "Good Match")

INCUMBENT_BIAS_PCT = 80
CHALLENGER_BIAS_PCT = 20
MIN_CONTESTED_FOR_FLAG = 3
MIN_RACES_FOR_ENTHUSIASM_FLAG = 3
PROS_RATIO_THRESHOLD = 1.5


def round_half_up(value: float, digits: int = 0) -> float:
    """Round with .5 going up, so 80.5 becomes 81 and 2.5 becomes 3."""
    scale = 10 ** digits
    rounded = math.floor(value * scale + 0.5) / scale
    return rounded if digits else int(rounded)


def _avg(total: float, count: int, digits: Optional[int] = None) -> float:
    if count <= 0:
        return 0
    return round_half_up(total / count, digits or 0)


def _contested_race(ballot: Ballot, rec: RaceRecommendation) -> Optional[Race]:
    for race in ballot.races:
        if race.office == rec.office and (race.district or None) == (rec.district or None):
            return race if race.is_contested else None
    return None


def score_partisan_balance(guide: ParsedGuide, ballot: Ballot) -> BalanceReport:
    races = guide.races
    race_count = len(races)

    distribution = {label: 0 for label in CONFIDENCE_SCORES}
    total_confidence = 0
    for rec in races:
        label = rec.confidence or DEFAULT_CONFIDENCE
        distribution[label] = distribution.get(label, 0) + 1
        total_confidence += CONFIDENCE_SCORES.get(label, UNKNOWN_CONFIDENCE_SCORE)

    total_reasoning = sum(len(rec.reasoning or "") for rec in races)
    total_factors = sum(len(rec.match_factors or []) for rec in races)

    incumbent_recs = 0
    challenger_recs = 0
    rec_pros = rec_cons = non_rec_pros = non_rec_cons = 0
    rec_count = non_rec_count = 0

    for rec in races:
        race = _contested_race(ballot, rec)
        if race is None:
            continue
        for candidate in race.active_candidates:
            if candidate.name == rec.recommended_candidate:
                if candidate.is_incumbent:
                    incumbent_recs += 1
                else:
                    challenger_recs += 1
                break
        for candidate in race.active_candidates:
            pros_len = len(" ".join(candidate.pros or []))
            cons_len = len(" ".join(candidate.cons or []))
            if candidate.name == rec.recommended_candidate:
                rec_pros += pros_len
                rec_cons += cons_len
                rec_count += 1
            else:
                non_rec_pros += pros_len
                non_rec_cons += cons_len
                non_rec_count += 1

    high_confidence = sum(distribution[label] for label in HIGH_CONFIDENCE)
    enthusiasm_pct = int(_avg(high_confidence * 100, race_count))

    rec_avg_pros = int(_avg(rec_pros, rec_count))
    non_rec_avg_pros = int(_avg(non_rec_pros, non_rec_count))

    flags: list[str] = []

    contested = incumbent_recs + challenger_recs
    if contested >= MIN_CONTESTED_FOR_FLAG:
        incumbent_pct = round_half_up(incumbent_recs / contested * 100)
        if incumbent_pct > INCUMBENT_BIAS_PCT:
            flags.append(
                f"Strong incumbent bias: {incumbent_pct}% of contested "
                "recommendations favor incumbents"
            )
        elif incumbent_pct < CHALLENGER_BIAS_PCT:
            flags.append(
                f"Strong challenger bias: {100 - incumbent_pct}% of contested "
                "recommendations favor challengers"
            )

    if race_count >= MIN_RACES_FOR_ENTHUSIASM_FLAG and enthusiasm_pct == 100:
        flags.append(
            "All recommendations rated Strong Match or Good Match; may indicate "
            "insufficient critical analysis"
        )

    if rec_count and non_rec_count and rec_avg_pros > 0 and non_rec_avg_pros > 0:
        ratio = rec_avg_pros / non_rec_avg_pros
        if ratio > PROS_RATIO_THRESHOLD:
            flags.append(
                f"Recommended candidates have {round_half_up(ratio * 100 - 100)}% more pro "
                "text than non-recommended; ballot data may favor certain candidates"
            )

    skew_note = None
    if flags:
        skew_note = (
            "Note: This guide's recommendations show some patterns worth noting: "
            + ". ".join(flags)
            + "."
        )

    return BalanceReport(
        party=ballot.party or "unknown",
        total_races=race_count,
        confidence_distribution=distribution,
        avg_confidence=_avg(total_confidence, race_count, digits=2),
        avg_reasoning_length=int(_avg(total_reasoning, race_count)),
        avg_match_factors=_avg(total_factors, race_count, digits=2),
        incumbent_recs=incumbent_recs,
        challenger_recs=challenger_recs,
        enthusiasm_pct=enthusiasm_pct,
        recommended_candidate_avg_pros=rec_avg_pros,
        recommended_candidate_avg_cons=int(_avg(rec_cons, rec_count)),
        non_recommended_candidate_avg_pros=non_rec_avg_pros,
        non_recommended_candidate_avg_cons=int(_avg(non_rec_cons, non_rec_count)),
        flags=flags,
        skew_note=skew_note,
    )
