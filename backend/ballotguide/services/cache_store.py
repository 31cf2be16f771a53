"""
Key/value store with per-entry TTL.

Backs ballots, translations, generated guides and usage logs. Callers treat
I/O failures as a miss; see ``safe_get`` / ``safe_put``.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ballotguide.models import CacheEntry
from ballotguide.utils.logger import get_logger

logger = get_logger(__name__)


class CacheStore(ABC):
    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def put(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        ...

    async def safe_get(self, key: str) -> Optional[str]:
        """``get`` that reports failures as a miss."""
        try:
            return await self.get(key)
        except Exception:
            logger.exception("Cache read failed for %s", key)
            return None

    async def safe_put(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        try:
            await self.put(key, value, ttl)
        except Exception:
            logger.exception("Cache write failed for %s", key)
            return False
        return True


class MemoryCacheStore(CacheStore):
    """Process-local store; expiry is checked lazily on read."""

    def __init__(self, clock=time.monotonic):
        self._data: dict[str, tuple[str, Optional[float]]] = {}
        self._clock = clock

    async def get(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    async def put(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl if ttl else None
        self._data[key] = (value, expires_at)


class SqlCacheStore(CacheStore):
    """Store rows in the ``cache_entries`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, key: str) -> Optional[str]:
        async with self._session_factory() as session:
            entry = await session.get(CacheEntry, key)
            if entry is None:
                return None
            if entry.expires_at is not None and entry.expires_at <= datetime.utcnow():
                await session.delete(entry)
                await session.commit()
                return None
            return entry.value

    async def put(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        now = datetime.utcnow()
        expires_at = now + timedelta(seconds=ttl) if ttl else None
        async with self._session_factory() as session:
            entry = await session.get(CacheEntry, key)
            if entry is None:
                session.add(
                    CacheEntry(key=key, value=value, expires_at=expires_at, updated_at=now)
                )
            else:
                entry.value = value
                entry.expires_at = expires_at
                entry.updated_at = now
            await session.commit()

    async def purge_expired(self) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(CacheEntry).where(CacheEntry.expires_at <= datetime.utcnow())
            )
            await session.commit()
            return result.rowcount or 0
