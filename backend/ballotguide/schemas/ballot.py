from __future__ import annotations

from typing import Any, Optional, Union

from pydantic import BaseModel
from pydantic.alias_generators import to_camel

_CAMEL = {
    "alias_generator": to_camel,
    "populate_by_name": True,
    "extra": "allow",
}


class Recommendation(BaseModel):
    candidate_id: Optional[Union[str, int]] = None
    candidate_name: str
    reasoning: Optional[str] = None
    match_factors: list[str] = []
    strategic_notes: Optional[str] = None
    caveats: Optional[str] = None
    confidence: str = "Good Match"
    truncated: Optional[bool] = None

    model_config = _CAMEL


class Candidate(BaseModel):
    id: Optional[Union[str, int]] = None
    name: str
    party: Optional[str] = None
    is_incumbent: bool = False
    withdrawn: bool = False
    summary: Optional[str] = None
    key_positions: list[str] = []
    endorsements: list[Any] = []
    pros: list[str] = []
    cons: list[str] = []
    is_recommended: bool = False

    model_config = _CAMEL


class Race(BaseModel):
    id: Optional[Union[str, int]] = None
    office: str
    district: Optional[str] = None
    candidates: list[Candidate] = []
    recommendation: Optional[Recommendation] = None

    model_config = _CAMEL

    @property
    def active_candidates(self) -> list[Candidate]:
        return [c for c in self.candidates if not c.withdrawn]

    @property
    def is_contested(self) -> bool:
        return len(self.active_candidates) > 1

    @property
    def race_key(self) -> str:
        return f"{self.office}|{self.district or ''}"


class Proposition(BaseModel):
    number: int
    title: str = ""
    description: str = ""
    background: Optional[str] = None
    fiscal_impact: Optional[str] = None
    supporters: list[str] = []
    opponents: list[str] = []
    recommendation: Optional[str] = None
    reasoning: Optional[str] = None
    caveats: Optional[str] = None
    confidence: Optional[str] = None

    model_config = _CAMEL


class Districts(BaseModel):
    congressional: Optional[str] = None
    state_senate: Optional[str] = None
    state_house: Optional[str] = None
    county_commissioner: Optional[str] = None
    school_board: Optional[str] = None

    model_config = _CAMEL

    def as_set(self) -> set[str]:
        return {
            v
            for v in (
                self.congressional,
                self.state_senate,
                self.state_house,
                self.county_commissioner,
                self.school_board,
            )
            if v
        }


class Ballot(BaseModel):
    id: Optional[str] = None
    party: Optional[str] = None
    election_date: Optional[str] = None
    election_name: Optional[str] = None
    districts: Optional[Districts] = None
    races: list[Race] = []
    propositions: list[Proposition] = []

    model_config = _CAMEL


# A merged ballot is a deep clone of the input ballot with recommendations overlaid.
MergedBallot = Ballot


class CandidateTranslation(BaseModel):
    name: str
    summary: Optional[str] = None
    key_positions: list[str] = []
    pros: list[str] = []
    cons: list[str] = []

    model_config = _CAMEL
