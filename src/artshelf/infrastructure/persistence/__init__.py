"""Infrastructure persistence layer."""

from .batch_utils import SQL_IN_CHUNK_SIZE, chunked
from .database import Database
from .models import (
    ARTWORK_DOMAIN_TABLES,
    ArtistModel,
    ArtworkModel,
    ArtworkTagModel,
    Base,
    ImageModel,
    TagModel,
)
from .repositories import OrphanCleanup, ScanRepository

__all__ = [
    "ARTWORK_DOMAIN_TABLES",
    "ArtistModel",
    "ArtworkModel",
    "ArtworkTagModel",
    "Base",
    "Database",
    "ImageModel",
    "OrphanCleanup",
    "SQL_IN_CHUNK_SIZE",
    "ScanRepository",
    "TagModel",
    "chunked",
]
