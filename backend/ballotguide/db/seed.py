from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Optional

from ballotguide.config import settings
from ballotguide.services.ballot_repository import (
    MANIFEST_KEY,
    county_key,
    statewide_key,
    translations_key,
)
from ballotguide.services.cache_store import CacheStore
from ballotguide.utils.logger import get_logger

logger = get_logger(__name__)

DATA_DIR = Path(__file__).parent.parent / "data" / "ballots"

# File name (without .json) -> store key
_PATTERNS = [
    (re.compile(r"^manifest$"), lambda m: MANIFEST_KEY),
    (re.compile(r"^(republican|democrat)$"), lambda m: statewide_key(m.group(1))),
    (
        re.compile(r"^county_(\d+)_(republican|democrat)$"),
        lambda m: county_key(m.group(1), m.group(2)),
    ),
    (
        re.compile(r"^translations_([a-z]{2})_county_(\d+)_(republican|democrat)$"),
        lambda m: translations_key(m.group(1), m.group(3), m.group(2)),
    ),
    (
        re.compile(r"^translations_([a-z]{2})_(republican|democrat)$"),
        lambda m: translations_key(m.group(1), m.group(2)),
    ),
]


def key_for_file(path: Path) -> Optional[str]:
    for pattern, build in _PATTERNS:
        m = pattern.match(path.stem)
        if m:
            return build(m)
    return None


def data_dir() -> Path:
    return Path(settings.BALLOT_DATA_DIR) if settings.BALLOT_DATA_DIR else DATA_DIR


async def seed_all(store: CacheStore, directory: Optional[Path] = None) -> int:
    """Load ballot JSON files into ``store``; keys that already exist are left alone."""
    directory = directory or data_dir()
    if not directory.is_dir():
        logger.warning("Ballot data directory %s not found; nothing seeded", directory)
        return 0

    seeded = 0
    for path in sorted(directory.glob("*.json")):
        key = key_for_file(path)
        if key is None:
            logger.warning("Skipping unrecognized ballot data file %s", path.name)
            continue
        if await store.get(key) is not None:
            continue

        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        await store.put(key, json.dumps(data, ensure_ascii=False))
        seeded += 1

    if seeded:
        logger.info("Seeded %d ballot entries from %s", seeded, directory)
    return seeded
