"""
Daily token usage log.

Key ``usage_log:{YYYY-MM-DD}`` holds per-component totals with a per-model
breakdown:

    {"guide": {"input": N, "output": N, "calls": N, "lastCall": "...",
               "models": {"claude-sonnet-4-6": {"input": N, "output": N, "calls": N}}}}
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Callable, Optional

from ballotguide.config import settings
from ballotguide.services.cache_store import CacheStore
from ballotguide.services.providers.base import TokenUsage

USAGE_LOG_PREFIX = "usage_log:"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _bump(bucket: dict, usage: TokenUsage) -> None:
    bucket["input"] = bucket.get("input", 0) + usage.input_tokens
    bucket["output"] = bucket.get("output", 0) + usage.output_tokens
    bucket["calls"] = bucket.get("calls", 0) + 1


class UsageLogger:
    def __init__(self, store: CacheStore, clock: Callable[[], datetime] = _utcnow):
        self.store = store
        self._clock = clock

    def key_for(self, day: Optional[str] = None) -> str:
        return USAGE_LOG_PREFIX + (day or self._clock().date().isoformat())

    async def record(self, component: str, usage: TokenUsage, model: str) -> None:
        """Add one call to today's log. Read-modify-write; concurrent calls may lose an update."""
        now = self._clock()
        key = self.key_for(now.date().isoformat())
        raw = await self.store.get(key)
        log = json.loads(raw) if raw else {}

        entry = log.setdefault(component, {"input": 0, "output": 0, "calls": 0, "models": {}})
        _bump(entry, usage)
        if model:
            _bump(entry.setdefault("models", {}).setdefault(model, {}), usage)
        entry["lastCall"] = now.isoformat()

        await self.store.put(key, json.dumps(log), ttl=settings.USAGE_LOG_TTL)

    async def get(self, day: Optional[str] = None) -> dict:
        raw = await self.store.get(self.key_for(day))
        return json.loads(raw) if raw else {}
