"""SQLAlchemy ORM models for artshelf."""

from datetime import UTC, datetime

import sqlalchemy as sa
from sqlalchemy import (
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# Hey future me, utc_now() ensures ALL timestamps are UTC! Never use datetime.now() without
# timezone - naive datetimes blow up the moment you compare them with aware ones.
def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models.

    All models inherit from this to use the same metadata registry.
    """

    pass


# Listen up, ids are plain autoincrement integers (SERIAL on PostgreSQL, AUTOINCREMENT on SQLite).
# The force rescan truncates these tables AND resets the sequences, so ids start at 1 again.
# sqlite_autoincrement=True is what makes SQLite keep a sqlite_sequence row we can reset -
# without it, SQLite may reuse ids and the reset step has nothing to reset.
class ArtistModel(Base):
    """Artist (one per external user id)."""

    __tablename__ = "artists"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # External user id from the metadata file - THE dedup key for artists
    user_id: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    artworks: Mapped[list["ArtworkModel"]] = relationship(
        "ArtworkModel", back_populates="artist"
    )

    __table_args__ = ({"sqlite_autoincrement": True},)


class TagModel(Base):
    """Tag, unique by exact name."""

    __tablename__ = "tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )

    __table_args__ = ({"sqlite_autoincrement": True},)


# Yo, ArtworkModel is the heart of the schema. external_id is the digit id from "<id>-meta.txt"
# and is UNIQUE - the scanner relies on that for its ON CONFLICT DO NOTHING inserts.
# image_count and description_length are denormalized so list views can sort without joins.
# directory_created_at is the default ordering key ("recently added").
class ArtworkModel(Base):
    """Artwork (one per metadata file)."""

    __tablename__ = "artworks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_id: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    artist_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("artists.id", ondelete="SET NULL"), nullable=True
    )
    image_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    description_length: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Metadata file path relative to the scan root (no leading slash)
    meta_source: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    original_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    thumbnail_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    x_restrict: Mapped[str | None] = mapped_column(String(32), nullable=True)
    is_ai_generated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    size: Mapped[str | None] = mapped_column(String(64), nullable=True)
    bookmark_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    source_date: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    directory_created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    artist: Mapped["ArtistModel | None"] = relationship(
        "ArtistModel", back_populates="artworks"
    )
    images: Mapped[list["ImageModel"]] = relationship(
        "ImageModel",
        back_populates="artwork",
        cascade="all, delete-orphan",
        order_by="ImageModel.sort_order",
    )

    __table_args__ = (
        Index("ix_artworks_artist_id", "artist_id"),
        Index("ix_artworks_directory_created_at", "directory_created_at"),
        {"sqlite_autoincrement": True},
    )


class ImageModel(Base):
    """One media file of an artwork."""

    __tablename__ = "images"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Path relative to the scan root, POSIX separators
    path: Mapped[str] = mapped_column(Text, nullable=False)
    size: Mapped[int | None] = mapped_column(sa.BigInteger, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    artwork_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("artworks.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )

    artwork: Mapped["ArtworkModel"] = relationship("ArtworkModel", back_populates="images")

    __table_args__ = (
        # Makes duplicate-tolerant image inserts meaningful (same file twice = one row)
        sa.UniqueConstraint("artwork_id", "path", name="uq_images_artwork_path"),
        Index("ix_images_artwork_sort", "artwork_id", "sort_order"),
        {"sqlite_autoincrement": True},
    )


class ArtworkTagModel(Base):
    """Association table for Artwork-Tag relationship."""

    __tablename__ = "artwork_tags"

    artwork_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("artworks.id", ondelete="CASCADE"), primary_key=True
    )
    tag_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True
    )

    __table_args__ = (Index("ix_artwork_tags_tag_id", "tag_id"),)


# Every table the force rescan wipes, children first (matters for the SQLite DELETE path).
ARTWORK_DOMAIN_TABLES: tuple[str, ...] = (
    ArtworkTagModel.__tablename__,
    ImageModel.__tablename__,
    ArtworkModel.__tablename__,
    TagModel.__tablename__,
    ArtistModel.__tablename__,
)
