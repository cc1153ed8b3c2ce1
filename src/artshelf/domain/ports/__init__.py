"""Domain ports (interfaces) for dependency inversion."""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from pathlib import Path

from artshelf.domain.entities import MediaFileInfo, ScanProgress

# Progress listeners may be plain functions or coroutines - the emitter handles both.
ProgressCallback = Callable[[ScanProgress], Awaitable[None] | None]


# Hey future me, IMediaCollector is a PORT! The scanner only relies on its OUTPUT contract:
# an ordered list of MediaFileInfo for one artwork id in one directory. Which extensions count,
# how pages are numbered, all of that lives in the adapter. An empty list means "no media" and
# the scanner skips the item; raising means "collector broke" and the item is skipped too.
class IMediaCollector(ABC):
    """Collects the media files that belong to one artwork."""

    @abstractmethod
    def collect(self, directory: Path, artwork_id: str) -> list[MediaFileInfo]:
        """Return the artwork's media files in display order.

        Args:
            directory: Directory that holds the metadata file
            artwork_id: External id of the artwork

        Returns:
            Media files sorted by sort_order (may be empty)
        """
        pass


class CancellationToken:
    """Cooperative cancellation flag checked by the scanner between batches."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        """True once cancel() was called."""
        return self._event.is_set()


__all__ = [
    "CancellationToken",
    "IMediaCollector",
    "ProgressCallback",
]
