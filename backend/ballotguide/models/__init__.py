from ballotguide.models.base import Base
from ballotguide.models.cache_entry import CacheEntry

__all__ = [
    "Base",
    "CacheEntry",
]
