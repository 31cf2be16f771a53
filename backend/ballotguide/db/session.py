from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from ballotguide.config import settings
from ballotguide.models import Base
from ballotguide.services.cache_store import SqlCacheStore
from ballotguide.utils.logger import get_logger

logger = get_logger(__name__)

engine = create_async_engine(settings.DATABASE_URL, echo=False)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

store = SqlCacheStore(async_session)


async def init_db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    purged = await store.purge_expired()
    if purged:
        logger.info("Purged %d expired cache entries", purged)
    from ballotguide.db.seed import seed_all
    await seed_all(store)


def get_store() -> SqlCacheStore:
    return store
