from __future__ import annotations

from typing import Optional

from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class VoterProfile(BaseModel):
    top_issues: list[str] = []
    political_spectrum: Optional[str] = None
    candidate_qualities: list[str] = []
    policy_views: dict[str, str] = {}
    freeform: Optional[str] = None

    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "frozen": True,
    }
