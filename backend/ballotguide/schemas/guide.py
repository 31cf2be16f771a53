from __future__ import annotations

import json
from typing import Any, Literal, Optional

from pydantic import BaseModel, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from ballotguide.schemas.ballot import Ballot, CandidateTranslation, Districts
from ballotguide.schemas.profile import VoterProfile

_CAMEL = {
    "alias_generator": to_camel,
    "populate_by_name": True,
}


class GuideParams(BaseModel):
    party: Literal["republican", "democrat"]
    lang: Optional[str] = None
    reading_level: Optional[int] = None
    llm: Optional[str] = None
    county_fips: Optional[str] = None

    model_config = _CAMEL

    @property
    def locale(self) -> str:
        return self.lang or "en"

    @property
    def provider(self) -> str:
        return self.llm or "claude"


class GuideRequest(GuideParams):
    profile: VoterProfile
    districts: Optional[Districts] = None
    nocache: bool = False

    def params(self) -> GuideParams:
        return GuideParams(
            party=self.party,
            lang=self.lang,
            reading_level=self.reading_level,
            llm=self.llm,
            county_fips=self.county_fips,
        )


def _none_to_list(value: Any) -> Any:
    return [] if value is None else value


class RaceRecommendation(BaseModel):
    office: str
    district: Optional[str] = None
    recommended_candidate: Optional[str] = None
    reasoning: Optional[str] = None
    match_factors: list[str] = []
    strategic_notes: Optional[str] = None
    caveats: Optional[str] = None
    confidence: Optional[str] = None

    model_config = {**_CAMEL, "extra": "allow"}

    @field_validator("match_factors", mode="before")
    @classmethod
    def none_as_empty_list(cls, value: Any) -> Any:
        return _none_to_list(value)

    @property
    def race_key(self) -> str:
        return f"{self.office}|{self.district or ''}"


class PropositionRecommendation(BaseModel):
    number: int
    recommendation: Optional[str] = None
    reasoning: Optional[str] = None
    caveats: Optional[str] = None
    confidence: Optional[str] = None

    model_config = {**_CAMEL, "extra": "allow"}


class ParsedGuide(BaseModel):
    profile_summary: Optional[str] = None
    races: list[RaceRecommendation] = []
    propositions: list[PropositionRecommendation] = []
    candidate_translations: Optional[list[CandidateTranslation]] = None
    truncated: bool = False

    model_config = _CAMEL

    @field_validator("races", "propositions", mode="before")
    @classmethod
    def none_as_empty_list(cls, value: Any) -> Any:
        return _none_to_list(value)

    @classmethod
    def from_payload(cls, payload: dict, truncated: bool = False) -> "ParsedGuide":
        """Build a guide from raw model output, dropping entries that fail validation."""
        races = []
        for item in payload.get("races") or []:
            try:
                races.append(RaceRecommendation.model_validate(item))
            except ValidationError:
                continue
        propositions = []
        for item in payload.get("propositions") or []:
            try:
                propositions.append(PropositionRecommendation.model_validate(item))
            except ValidationError:
                continue
        translations = None
        if payload.get("candidateTranslations"):
            translations = []
            for item in payload["candidateTranslations"]:
                try:
                    translations.append(CandidateTranslation.model_validate(item))
                except ValidationError:
                    continue
        summary = payload.get("profileSummary")
        return cls(
            profile_summary=summary if isinstance(summary, str) else None,
            races=races,
            propositions=propositions,
            candidate_translations=translations,
            truncated=truncated or bool(payload.get("_truncated")),
        )


class BalanceReport(BaseModel):
    party: str = "unknown"
    total_races: int = 0
    confidence_distribution: dict[str, int] = {}
    avg_confidence: float = 0
    avg_reasoning_length: int = 0
    avg_match_factors: float = 0
    incumbent_recs: int = 0
    challenger_recs: int = 0
    enthusiasm_pct: int = 0
    recommended_candidate_avg_pros: int = 0
    recommended_candidate_avg_cons: int = 0
    non_recommended_candidate_avg_pros: int = 0
    non_recommended_candidate_avg_cons: int = 0
    flags: list[str] = []
    skew_note: Optional[str] = None

    model_config = _CAMEL


class GuideResult(BaseModel):
    ballot: Ballot
    profile_summary: Optional[str] = None
    llm: str = "claude"
    county_ballot_available: Optional[bool] = None
    data_updated_at: Optional[str] = None
    balance_score: BalanceReport
    skew_note: Optional[str] = None
    translations_cached: Optional[bool] = None
    cached: bool = False
    truncated: bool = False

    model_config = _CAMEL


class GuideEvent(BaseModel):
    """One named server-sent event of a streaming guide response."""

    event: Literal["meta", "profile", "race", "proposition", "complete", "error"]
    data: dict[str, Any]

    def to_sse(self) -> str:
        return f"event: {self.event}\ndata: {json.dumps(self.data, ensure_ascii=False)}\n\n"
