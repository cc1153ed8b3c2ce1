"""Bulk repository used by the artwork scanner."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from sqlalchemy import delete, func, select, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from .batch_utils import SQL_IN_CHUNK_SIZE, chunked, rows_per_statement
from .models import (
    ARTWORK_DOMAIN_TABLES,
    ArtistModel,
    ArtworkModel,
    ArtworkTagModel,
    Base,
    ImageModel,
    TagModel,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrphanCleanup:
    """Rows removed by ScanRepository.remove_orphans()."""

    artworks: int = 0
    artists: int = 0
    tags: int = 0

    @property
    def total(self) -> int:
        return self.artworks + self.artists + self.tags


# Hey future me, this repository is SET-based on purpose - every method takes a collection and
# issues one (chunked) statement. The scanner never asks "does artwork X exist?" in a loop; it
# asks "which of these 100 exist?" once. All inserts are duplicate-tolerant (ON CONFLICT DO
# NOTHING) because another scan or an external writer may race us on the unique keys. That means
# "rows inserted" can be lower than "rows attempted" - callers must not assume otherwise.
class ScanRepository:
    """Set-based reads and duplicate-tolerant bulk inserts for the scan pipeline."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository.

        Args:
            session: Database session (transaction is owned by the caller)
        """
        self.session = session

    # =========================================================================
    # READS
    # =========================================================================

    async def find_existing_external_ids(self, external_ids: Iterable[str]) -> set[str]:
        """Return the subset of external ids that already have an artwork row."""
        existing: set[str] = set()
        for chunk in chunked(dict.fromkeys(external_ids), SQL_IN_CHUNK_SIZE):
            stmt = select(ArtworkModel.external_id).where(
                ArtworkModel.external_id.in_(chunk)
            )
            result = await self.session.execute(stmt)
            existing.update(result.scalars().all())
        return existing

    async def find_artists_by_user_ids(self, user_ids: Iterable[str]) -> list[ArtistModel]:
        """Load artist rows for the given external user ids."""
        artists: list[ArtistModel] = []
        for chunk in chunked(dict.fromkeys(user_ids), SQL_IN_CHUNK_SIZE):
            stmt = select(ArtistModel).where(ArtistModel.user_id.in_(chunk))
            result = await self.session.execute(stmt)
            artists.extend(result.scalars().all())
        return artists

    async def find_tag_ids_by_names(self, names: Iterable[str]) -> dict[str, int]:
        """Map tag name -> id for the names that exist."""
        found: dict[str, int] = {}
        for chunk in chunked(dict.fromkeys(names), SQL_IN_CHUNK_SIZE):
            stmt = select(TagModel.name, TagModel.id).where(TagModel.name.in_(chunk))
            result = await self.session.execute(stmt)
            for name, tag_id in result.all():
                found[name] = tag_id
        return found

    async def find_artwork_ids_by_external_ids(
        self, external_ids: Iterable[str]
    ) -> dict[str, int]:
        """Map external id -> artwork id for the ids that exist."""
        found: dict[str, int] = {}
        for chunk in chunked(dict.fromkeys(external_ids), SQL_IN_CHUNK_SIZE):
            stmt = (
                select(ArtworkModel.external_id, ArtworkModel.id)
                .where(ArtworkModel.external_id.in_(chunk))
                .order_by(ArtworkModel.id)
            )
            result = await self.session.execute(stmt)
            for external_id, artwork_id in result.all():
                found[external_id] = artwork_id
        return found

    async def count_artworks(self) -> int:
        """Total number of artwork rows."""
        result = await self.session.execute(select(func.count()).select_from(ArtworkModel))
        return int(result.scalar_one())

    # =========================================================================
    # DUPLICATE-TOLERANT INSERTS
    # =========================================================================

    async def insert_artists_ignore(self, rows: Sequence[dict[str, Any]]) -> int:
        """Insert artist rows, skipping user ids that already exist."""
        return await self._insert_ignore(ArtistModel, rows)

    async def insert_tags_ignore(self, names: Sequence[str]) -> int:
        """Insert tags by name, skipping names that already exist."""
        return await self._insert_ignore(TagModel, [{"name": name} for name in names])

    async def insert_artworks_ignore(self, rows: Sequence[dict[str, Any]]) -> int:
        """Insert artwork rows, skipping external ids that already exist."""
        return await self._insert_ignore(ArtworkModel, rows)

    async def insert_images_ignore(self, rows: Sequence[dict[str, Any]]) -> int:
        """Insert image rows, skipping (artwork_id, path) pairs that already exist."""
        return await self._insert_ignore(ImageModel, rows)

    async def insert_artwork_tags_ignore(self, rows: Sequence[dict[str, Any]]) -> int:
        """Insert artwork-tag links, skipping existing pairs."""
        return await self._insert_ignore(ArtworkTagModel, rows)

    # Listen up, ON CONFLICT DO NOTHING is dialect-specific in SQLAlchemy, so we pick the insert()
    # construct from the bound dialect. Both PostgreSQL and SQLite (3.24+) support it without a
    # conflict target, which means ANY unique violation on the row is ignored.
    async def _insert_ignore(
        self, model: type[Base], rows: Sequence[dict[str, Any]]
    ) -> int:
        if not rows:
            return 0

        dialect = self.session.bind.dialect.name
        if dialect == "postgresql":
            insert_fn: Any = pg_insert
        elif dialect == "sqlite":
            insert_fn = sqlite_insert
        else:
            raise NotImplementedError(
                f"Duplicate-tolerant insert not supported for dialect '{dialect}'"
            )

        inserted = 0
        for chunk in chunked(rows, rows_per_statement(rows)):
            stmt = insert_fn(model).values(chunk).on_conflict_do_nothing()
            result = await self.session.execute(stmt)
            if result.rowcount and result.rowcount > 0:
                inserted += result.rowcount

        logger.debug(
            "Inserted %d/%d rows into %s (duplicates ignored)",
            inserted,
            len(rows),
            model.__tablename__,
        )
        return inserted

    # =========================================================================
    # DESTRUCTIVE
    # =========================================================================

    # Hey future me - this WIPES the whole artwork library (artists, tags, artworks, images and the
    # join table) and resets the id sequences. There is NO undo. Only the full forced rescan calls
    # it, and only before any other write of that scan. PostgreSQL gets one TRUNCATE statement;
    # SQLite has no TRUNCATE, so we DELETE children-first and reset sqlite_sequence in the same
    # transaction (the caller's session_scope).
    async def truncate_artwork_tables(self) -> None:
        """Irreversibly clear all artwork-domain tables and reset identities."""
        dialect = self.session.bind.dialect.name
        tables = ARTWORK_DOMAIN_TABLES

        if dialect == "postgresql":
            quoted = ", ".join(f'"{name}"' for name in tables)
            await self.session.execute(
                text(f"TRUNCATE TABLE {quoted} RESTART IDENTITY CASCADE")
            )
        else:
            for model in (ArtworkTagModel, ImageModel, ArtworkModel, TagModel, ArtistModel):
                await self.session.execute(delete(model))
            if dialect == "sqlite":
                placeholders = ", ".join(f"'{name}'" for name in tables)
                await self.session.execute(
                    text(f"DELETE FROM sqlite_sequence WHERE name IN ({placeholders})")
                )

        logger.info("Cleared artwork tables: %s", ", ".join(tables))

    # Yo, these are the leftovers of earlier runs and external edits: artworks whose images are all
    # gone, artists with no artwork left, tags nobody uses. Each step is ONE set-based DELETE (no id
    # lists in Python), run in order because removing artworks can orphan artists and tags. The
    # artist subquery filters NULLs - NOT IN against a NULL matches nothing.
    async def remove_orphans(self) -> OrphanCleanup:
        """Delete imageless artworks, then artists and tags nothing refers to."""
        artworks_with_images = select(ImageModel.artwork_id)
        await self.session.execute(
            delete(ArtworkTagModel)
            .where(ArtworkTagModel.artwork_id.not_in(artworks_with_images))
            .execution_options(synchronize_session=False)
        )
        artworks = await self.session.execute(
            delete(ArtworkModel)
            .where(ArtworkModel.id.not_in(artworks_with_images))
            .execution_options(synchronize_session=False)
        )

        referenced_artists = select(ArtworkModel.artist_id).where(
            ArtworkModel.artist_id.is_not(None)
        )
        artists = await self.session.execute(
            delete(ArtistModel)
            .where(ArtistModel.id.not_in(referenced_artists))
            .execution_options(synchronize_session=False)
        )

        tags = await self.session.execute(
            delete(TagModel)
            .where(TagModel.id.not_in(select(ArtworkTagModel.tag_id)))
            .execution_options(synchronize_session=False)
        )

        removed = OrphanCleanup(
            artworks=max(artworks.rowcount or 0, 0),
            artists=max(artists.rowcount or 0, 0),
            tags=max(tags.rowcount or 0, 0),
        )
        logger.info(
            "Removed orphans: %d artworks, %d artists, %d tags",
            removed.artworks,
            removed.artists,
            removed.tags,
        )
        return removed
