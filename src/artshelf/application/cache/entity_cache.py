"""Per-scan cache of artist and tag ids."""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from artshelf.domain.exceptions import EntityResolutionError
from artshelf.infrastructure.persistence.repositories import ScanRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CachedArtist:
    """The bits of an artist row the scanner needs after resolution."""

    id: int
    user_id: str
    name: str


@dataclass(frozen=True)
class EntityCacheSnapshot:
    """Point-in-time copy of the cache maps (see EntityCache.snapshot)."""

    artists_by_user_id: dict[str, CachedArtist]
    tag_ids_by_name: dict[str, int]


# Hey future me, this cache exists so a 100k-artwork library doesn't do 100k artist lookups. Most
# artists and tags repeat across batches, so after the first few batches nearly every lookup is a
# dict hit.
#
# RULES (break them and you get FK violations or ghost ids):
#   1. One cache per scan run. clear() at the start of every scan - ids from a previous run may
#      point at rows that a force rescan has since truncated.
#   2. resolve_* runs INSIDE the batch transaction. If that transaction rolls back, the ids we just
#      cached for newly inserted rows no longer exist! So the scanner takes snapshot() before the
#      batch and restore()s it on failure.
#   3. Only ids read back from the DB go into the cache, never "we think we inserted it".
class EntityCache:
    """Maps external artist user ids and tag names to database ids."""

    ARTIST_BIO_TEMPLATE = "Artist from external source (ID: {user_id})"

    def __init__(self) -> None:
        self.artists_by_user_id: dict[str, CachedArtist] = {}
        self.tag_ids_by_name: dict[str, int] = {}

    def clear(self) -> None:
        """Drop everything (start of a scan)."""
        self.artists_by_user_id.clear()
        self.tag_ids_by_name.clear()

    def snapshot(self) -> EntityCacheSnapshot:
        """Copy the current maps so a failed batch can be undone."""
        return EntityCacheSnapshot(
            artists_by_user_id=dict(self.artists_by_user_id),
            tag_ids_by_name=dict(self.tag_ids_by_name),
        )

    def restore(self, snapshot: EntityCacheSnapshot) -> None:
        """Roll the maps back to ``snapshot``."""
        self.artists_by_user_id = dict(snapshot.artists_by_user_id)
        self.tag_ids_by_name = dict(snapshot.tag_ids_by_name)

    def artist_id(self, user_id: str) -> int | None:
        """Cached artist id for an external user id."""
        artist = self.artists_by_user_id.get(user_id)
        return artist.id if artist else None

    def tag_id(self, name: str) -> int | None:
        """Cached tag id for a tag name."""
        return self.tag_ids_by_name.get(name)

    async def resolve_tags(self, session: AsyncSession, names: Iterable[str]) -> int:
        """Make sure every tag in ``names`` has a cached id.

        Args:
            session: Session of the current batch transaction
            names: Tag names of the batch (duplicates and empties allowed)

        Returns:
            Number of tags this call tried to create

        Raises:
            EntityResolutionError: If some names still have no row after the insert
        """
        uncached = [
            name
            for name in dict.fromkeys(names)
            if name and name not in self.tag_ids_by_name
        ]
        if not uncached:
            return 0

        repo = ScanRepository(session)
        self.tag_ids_by_name.update(await repo.find_tag_ids_by_names(uncached))

        to_create = [name for name in uncached if name not in self.tag_ids_by_name]
        if not to_create:
            return 0

        logger.debug("Creating %d new tags", len(to_create))
        await repo.insert_tags_ignore(to_create)
        self.tag_ids_by_name.update(await repo.find_tag_ids_by_names(to_create))

        missing = [name for name in to_create if name not in self.tag_ids_by_name]
        if missing:
            raise EntityResolutionError("tag", missing)
        return len(to_create)

    async def resolve_artists(
        self, session: AsyncSession, candidates: Mapping[str, str]
    ) -> int:
        """Make sure every artist in ``candidates`` has a cached id.

        Args:
            session: Session of the current batch transaction
            candidates: external user id -> display name (first seen in the batch)

        Returns:
            Number of artists this call tried to create

        Raises:
            EntityResolutionError: If some user ids still have no row after the insert
        """
        uncached = [uid for uid in candidates if uid and uid not in self.artists_by_user_id]
        if not uncached:
            return 0

        repo = ScanRepository(session)
        for artist in await repo.find_artists_by_user_ids(uncached):
            self._cache_artist(artist.id, artist.user_id, artist.name)

        to_create = [uid for uid in uncached if uid not in self.artists_by_user_id]
        if not to_create:
            return 0

        logger.debug("Creating %d new artists", len(to_create))
        await repo.insert_artists_ignore(
            [
                {
                    "name": candidates[uid],
                    "username": candidates[uid],
                    "user_id": uid,
                    "bio": self.ARTIST_BIO_TEMPLATE.format(user_id=uid),
                }
                for uid in to_create
            ]
        )
        for artist in await repo.find_artists_by_user_ids(to_create):
            self._cache_artist(artist.id, artist.user_id, artist.name)

        missing = [uid for uid in to_create if uid not in self.artists_by_user_id]
        if missing:
            raise EntityResolutionError("artist", missing)
        return len(to_create)

    def _cache_artist(self, artist_id: int, user_id: str, name: str) -> None:
        self.artists_by_user_id[user_id] = CachedArtist(id=artist_id, user_id=user_id, name=name)
