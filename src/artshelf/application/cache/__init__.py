"""Application-level caches."""

from artshelf.application.cache.entity_cache import (
    CachedArtist,
    EntityCache,
    EntityCacheSnapshot,
)

__all__ = [
    "CachedArtist",
    "EntityCache",
    "EntityCacheSnapshot",
]
