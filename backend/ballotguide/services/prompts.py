"""
Prompt templates for guide generation.

The condensed ballot description is the bulk of the prompt; it is cached
separately by the pipeline under a hash of the ballot content.
"""

from __future__ import annotations

import hashlib
import json

from ballotguide.schemas.ballot import Ballot, Race
from ballotguide.schemas.profile import VoterProfile

SYSTEM_PROMPT = (
    "You are a non-partisan voting guide assistant for primary elections. "
    "Your job is to make personalized recommendations based ONLY on the voter's stated "
    "values and the candidate data provided. "
    "You must NEVER recommend a candidate who is not listed in the provided ballot data. "
    "You must NEVER invent or hallucinate candidate information. "
    'VOICE: Always address the voter as "you" (second person). Never say "the voter" or '
    "use third person. "
    "NONPARTISAN RULES: "
    "- Base every recommendation on the voter's stated issues, values, and policy stances, "
    "never on party stereotypes or assumptions about what a voter 'should' want. "
    "- Use neutral, factual language in all reasoning. Avoid loaded terms, partisan framing, "
    "or editorial commentary. "
    "- Treat all candidates with equal analytical rigor regardless of their positions. "
    "- For propositions, connect recommendations to the voter's stated values without "
    "advocating for or against any ideology. "
    "SPANISH DIALECT: When generating Spanish content, use neutral Latin American Spanish "
    '(español neutro). Use "usted" forms where appropriate. '
    "Respond with ONLY valid JSON: no markdown, no explanation, no text outside the JSON object."
)

BALLOT_DESC_PREFIX = "ballot_desc:"
MAX_DETAIL_ITEMS = 5
MAX_RANKED_ISSUES = 7
MAX_RANKED_QUALITIES = 5

READING_LEVEL_INSTRUCTIONS = {
    1: "TONE: Write at a high school reading level. Use simple, everyday language. "
    "Avoid jargon and political terminology.\n\n",
    2: "TONE: Write casually, like explaining politics to a friend. Minimize jargon.\n\n",
    3: "",
    4: "TONE: Write with more depth and nuance. Use precise political terminology where "
    "helpful.\n\n",
    5: "TONE: Write at an expert level. Use precise terminology and reference policy "
    "frameworks and precedents.\n\n",
}

SPANISH_INSTRUCTION = (
    " Write ALL text fields in Spanish (profileSummary, reasoning, strategicNotes, caveats)."
    " Use neutral Latin American Spanish. Keep office names, candidate names, district names,"
    " and confidence levels in English."
)

GUIDE_SCHEMA = """{{
  "profileSummary": "2 sentences, first person, conversational",
  "races": [
    {{
      "office": "exact office name",
      "district": "district or null",
      "recommendedCandidate": "exact name from list",
      "reasoning": "1 sentence why this candidate fits the voter",
      "matchFactors": ["2-3 short phrases citing specific voter priorities"],
      "strategicNotes": null,
      "caveats": null,
      "confidence": "Strong Match|Good Match|Best Available|Symbolic Race"
    }}
  ],
  "propositions": [
    {{
      "number": 1,
      "recommendation": "Lean Yes|Lean No|Your Call",
      "reasoning": "1 sentence connecting to voter",
      "caveats": null,
      "confidence": "Clear Call|Lean|Genuinely Contested"
    }}
  ]{translations}
}}"""

TRANSLATIONS_SCHEMA = """,
  "candidateTranslations": [
    {
      "name": "exact candidate name (do not translate)",
      "summary": "Spanish translation of candidate summary",
      "keyPositions": ["Spanish translation of each position"],
      "pros": ["Spanish translation of each pro"],
      "cons": ["Spanish translation of each con"]
    }
  ]"""

USER_PROMPT = """Recommend ONE candidate per race and a stance on each proposition. Be concise.

{tone}NONPARTISAN: All reasoning must be factual and issue-based. Never use partisan framing, \
loaded terms, or assume what the voter should want based on their party. Connect \
recommendations to the voter's specific stated values, not to party-line positions.

IMPORTANT: For profileSummary, write 2 sentences in first person, conversational and specific. \
NEVER say "I'm a Democrat/Republican"; focus on values and priorities.{spanish}

VOTER: {party} primary | Spectrum: {spectrum}
Issues: {issues}
Values: {qualities}
Stances: {stances}
{freeform}
BALLOT:
{ballot_description}

VALID CANDIDATES (MUST only use these names):
{valid_candidates}

Return ONLY this JSON:
{schema}"""


# ---------------------------------------------------------------------------
# Ballot description
# ---------------------------------------------------------------------------

_OFFICE_ORDER = [
    ("U.S. Senator", 0),
    ("U.S. Rep", 1),
    ("Lt. Governor", 11),
    ("Lieutenant", 11),
    ("Governor", 10),
    ("Attorney General", 12),
    ("Comptroller", 13),
    ("Agriculture", 14),
    ("Land", 15),
    ("Railroad", 16),
    ("State Rep", 20),
    ("Supreme Court", 30),
    ("Criminal Appeals", 31),
    ("Court of Appeals", 32),
    ("Board of Education", 40),
]


def race_sort_order(race: Race) -> int:
    for fragment, order in _OFFICE_ORDER:
        if fragment in race.office:
            return order
    return 50


def _endorsement_label(endorsement) -> str:
    if isinstance(endorsement, dict):
        name = endorsement.get("name", "")
        return f"{name} ({endorsement['type']})" if endorsement.get("type") else name
    return str(endorsement)


def build_ballot_description(ballot: Ballot) -> str:
    """Condensed, token-lean text rendering of ``ballot``.

    Races are ordered federal, statewide, legislative, judicial, then local.
    Uncontested races list only the candidate name.
    """
    lines = [f"ELECTION: {ballot.election_name}", ""]

    for race in sorted(ballot.races, key=race_sort_order):
        label = f"{race.office} - {race.district}" if race.district else race.office
        active = race.active_candidates
        contested = len(active) > 1
        lines.append(f"RACE: {label}" + ("" if contested else " [UNCONTESTED]"))
        for c in active:
            lines.append(f"  - {c.name}" + (" (incumbent)" if c.is_incumbent else ""))
            if not contested:
                continue
            if c.key_positions:
                lines.append("    Positions: " + "; ".join(c.key_positions[:MAX_DETAIL_ITEMS]))
            if c.endorsements:
                lines.append(
                    "    Endorsements: "
                    + "; ".join(_endorsement_label(e) for e in c.endorsements[:MAX_DETAIL_ITEMS])
                )
            if c.pros:
                lines.append("    Pros: " + "; ".join(c.pros[:MAX_DETAIL_ITEMS]))
            if c.cons:
                lines.append("    Cons: " + "; ".join(c.cons[:MAX_DETAIL_ITEMS]))
        lines.append("")

    for prop in ballot.propositions:
        lines.append(f"PROPOSITION {prop.number}: {prop.title}")
        lines.append(f"  {prop.description}")
        if prop.background:
            lines.append(f"  Background: {prop.background}")
        if prop.fiscal_impact:
            lines.append(f"  Fiscal impact: {prop.fiscal_impact}")
        if prop.supporters:
            lines.append("  Supporters: " + "; ".join(prop.supporters))
        if prop.opponents:
            lines.append("  Opponents: " + "; ".join(prop.opponents))
        lines.append("")

    return "\n".join(lines)


def ballot_description_key(ballot: Ballot) -> str:
    """Cache key for the description; withdrawal and incumbency change it."""
    races = sorted(
        f"{r.office}|{r.district or ''}|"
        + ",".join(
            c.name + ("W" if c.withdrawn else "") + ("I" if c.is_incumbent else "")
            for c in r.candidates
        )
        for r in ballot.races
    )
    data = json.dumps(
        {
            "races": races,
            "props": [f"{p.number}:{p.title}" for p in ballot.propositions],
            "electionName": ballot.election_name,
        },
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return BALLOT_DESC_PREFIX + hashlib.sha256(data.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# User prompt
# ---------------------------------------------------------------------------


def _ranked(items: list[str], limit: int) -> str:
    text = ", ".join(f"{i}. {item}" for i, item in enumerate(items[:limit], start=1))
    if len(items) > limit:
        text += " (also: " + ", ".join(items[limit:]) + ")"
    return text


def build_user_prompt(
    profile: VoterProfile,
    ballot_description: str,
    ballot: Ballot,
    party: str,
    reading_level: int = 3,
    translations_cached: bool = False,
    translated: bool = False,
) -> str:
    """Assemble the per-request prompt.

    ``translated`` asks for Spanish output; the translation schema is only
    requested when no cached translations exist.
    """
    valid_candidates = "\n".join(
        f"{r.office}: " + ", ".join(c.name for c in r.active_candidates) for r in ballot.races
    )
    stances = "; ".join(f"{k}: {v}" for k, v in profile.policy_views.items())
    needs_live_translations = translated and not translations_cached
    schema = GUIDE_SCHEMA.format(
        translations=TRANSLATIONS_SCHEMA if needs_live_translations else ""
    )

    return USER_PROMPT.format(
        tone=READING_LEVEL_INSTRUCTIONS.get(reading_level, ""),
        spanish=SPANISH_INSTRUCTION if translated else "",
        party=party.capitalize(),
        spectrum=profile.political_spectrum or "Moderate",
        issues=_ranked(profile.top_issues, MAX_RANKED_ISSUES),
        qualities=", ".join(
            f"{i}. {q}"
            for i, q in enumerate(profile.candidate_qualities[:MAX_RANKED_QUALITIES], start=1)
        ),
        stances=stances,
        freeform=f"Additional context: {profile.freeform}\n" if profile.freeform else "",
        ballot_description=ballot_description,
        valid_candidates=valid_candidates,
        schema=schema,
    )
