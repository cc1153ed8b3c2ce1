"""Domain entities for the artwork ingestion pipeline."""

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any


# Hey future me, MetadataRecord is what ONE <id>-meta.txt file turns into. It's frozen on purpose:
# once parsed it flows through the batch untouched, so nothing downstream can "fix up" a field and
# make the DB row disagree with the file on disk. Field names are the Python spelling of the file's
# keys (UserID -> user_id, xRestrict -> x_restrict, AI -> is_ai_generated).
@dataclass(frozen=True)
class MetadataRecord:
    """Structured content of a single metadata file."""

    id: str
    user: str
    user_id: str
    title: str
    description: str | None = None
    tags: tuple[str, ...] = ()
    url: str | None = None
    original: str | None = None
    thumbnail: str | None = None
    x_restrict: str | None = None
    is_ai_generated: bool = False
    size: str | None = None
    bookmark_count: int | None = None
    source_date: datetime | None = None

    @property
    def description_length(self) -> int:
        """Length of the description (0 when absent)."""
        return len(self.description) if self.description else 0


@dataclass(frozen=True)
class MediaFileInfo:
    """One physical media file belonging to an artwork.

    sort_order is significant - it becomes Image.sort_order verbatim.
    """

    path: Path
    size: int
    sort_order: int


@dataclass(frozen=True)
class DiscoveredItem:
    """A candidate metadata file before parsing."""

    file_path: Path
    artwork_external_id: str
    discovered_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class ArtworkData:
    """A parsed item waiting in the current batch."""

    metadata: MetadataRecord
    media_files: list[MediaFileInfo]
    metadata_file_path: Path
    directory_created_at: datetime


# Yo, ScanResult is the ONE object the caller gets back - success, partial failure or fatal.
# Counters are "attempted from this run's perspective": duplicate-tolerant inserts may silently
# skip rows somebody else wrote in the meantime, so don't treat these as a post-hoc row diff.
# processing_time is milliseconds (matches what the progress UI expects).
# removed_* covers the force wipe (artworks only) plus the orphan cleanup at the end of a run.
@dataclass
class ScanResult:
    """Aggregate outcome of one scan run."""

    total_artworks: int = 0
    new_artists: int = 0
    new_artworks: int = 0
    new_images: int = 0
    new_tags: int = 0
    skipped_artworks: int = 0
    removed_artworks: int = 0
    removed_artists: int = 0
    removed_tags: int = 0
    errors: list[str] = field(default_factory=list)
    processing_time: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON responses and logs."""
        return asdict(self)


class ScanPhase(str, Enum):
    """Phase reported to progress listeners."""

    COUNTING = "counting"
    SCANNING = "scanning"
    COMPLETE = "complete"


class ScanState(str, Enum):
    """Internal lifecycle state of a scanner session."""

    IDLE = "idle"
    COUNTING = "counting"
    DISCOVERING = "discovering"
    BATCHING = "batching"
    FINALIZING = "finalizing"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass(frozen=True)
class ScanProgress:
    """Progress event delivered to the progress callback."""

    phase: ScanPhase
    message: str
    percentage: int
    current: int | None = None
    total: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the wire shape consumed by the SSE layer."""
        data: dict[str, Any] = {
            "phase": self.phase.value,
            "message": self.message,
            "percentage": self.percentage,
        }
        if self.current is not None:
            data["current"] = self.current
        if self.total is not None:
            data["total"] = self.total
        return data


__all__ = [
    "ArtworkData",
    "DiscoveredItem",
    "MediaFileInfo",
    "MetadataRecord",
    "ScanPhase",
    "ScanProgress",
    "ScanResult",
    "ScanState",
]
