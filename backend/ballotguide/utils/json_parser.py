from __future__ import annotations

import json
import re

from ballotguide.utils.logger import get_logger

logger = get_logger(__name__)

_TRAILING_COMMA = re.compile(r",\s*([}\]])")


def strip_markdown_json(text: str) -> str:
    """Strip markdown code fences (```json ... ```) from AI responses.

    An opening fence without its closing fence (a cut-off response) is
    stripped as well.
    """
    pattern = r"```(?:json)?\s*\n?(.*?)```"
    m = re.search(pattern, text, re.DOTALL)
    if m:
        return m.group(1).strip()
    stripped = text.strip()
    if stripped.startswith("```"):
        lines = stripped.split("\n")
        if lines[-1].strip() == "```":
            lines = lines[1:-1]
        else:
            lines = lines[1:]
        return "\n".join(lines).strip()
    return stripped.rstrip("`").strip()


def load_json_object(text: str, context: str = "") -> dict:
    """Parse a JSON object, retrying once with trailing commas removed.

    Raises:
        ValueError: if neither attempt yields a JSON object.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        sanitized = _TRAILING_COMMA.sub(r"\1", text)
        data = json.loads(sanitized)
        logger.info("Parsed %s response after trailing-comma cleanup", context or "AI")
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data
