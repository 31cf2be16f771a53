"""
Salvage a usable guide from a response that is not valid JSON.

Uses the same balanced-object scanner as the streaming extractor, run once
over the whole text.
"""

from __future__ import annotations

import json
from typing import Optional

from ballotguide.schemas.guide import ParsedGuide
from ballotguide.services.exceptions import GuideParseError
from ballotguide.utils.json_parser import load_json_object, strip_markdown_json
from ballotguide.utils.json_scanner import (
    ArrayExtractor,
    ArraySeeker,
    StringFieldScanner,
    is_proposition,
    is_race,
)
from ballotguide.utils.logger import get_logger

logger = get_logger(__name__)


def repair_truncated_guide(text: str) -> Optional[ParsedGuide]:
    """Rebuild a guide from complete race/proposition objects in ``text``.

    A document that parses as-is is returned unmarked. Otherwise every
    complete race object up to the first break is kept, followed by any
    complete propositions after them, and the result is marked truncated.

    Returns:
        The repaired guide, or None when not a single race is recoverable.
    """
    cleaned = strip_markdown_json(text)
    try:
        return ParsedGuide.from_payload(json.loads(cleaned))
    except (ValueError, AttributeError):
        pass

    json_start = cleaned.find("{")
    if json_start == -1:
        return None
    fragment = cleaned[json_start:]

    races_start = ArraySeeker("races").find(fragment)
    if races_start is None:
        return None
    races_array = ArrayExtractor(races_start, is_race)
    races = races_array.advance(fragment)
    if not races:
        return None

    propositions: list[dict] = []
    props_start = ArraySeeker("propositions", races_array.cursor).find(fragment)
    if props_start is not None:
        propositions = ArrayExtractor(props_start, is_proposition).advance(fragment)

    payload: dict = {"races": races, "propositions": propositions}
    summary = StringFieldScanner("profileSummary").advance(fragment)
    if summary is not None:
        payload["profileSummary"] = summary
    guide = ParsedGuide.from_payload(payload, truncated=True)
    if not guide.races:
        return None
    return guide


def parse_guide_response(text: str, context: str = "guide") -> ParsedGuide:
    """Parse a complete model response, falling back to truncation repair.

    Raises:
        GuideParseError: if the response is neither valid nor repairable.
    """
    cleaned = strip_markdown_json(text)
    try:
        return ParsedGuide.from_payload(load_json_object(cleaned, context))
    except ValueError as exc:
        error = exc

    repaired = repair_truncated_guide(cleaned)
    if repaired is None:
        logger.error("Could not parse %s response: %s", context, error)
        raise GuideParseError(f"Could not parse {context} response: {error}") from error

    logger.warning(
        "Recovered truncated %s response with %d races", context, len(repaired.races)
    )
    return repaired
