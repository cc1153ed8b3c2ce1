"""Filesystem adapter that finds the media files of one artwork."""

import logging
import re
from pathlib import Path

from artshelf.domain.entities import MediaFileInfo
from artshelf.domain.ports import IMediaCollector

logger = logging.getLogger(__name__)

# Images first, then the video containers ugoira exports end up in
MEDIA_EXTENSIONS: frozenset[str] = frozenset(
    {
        ".jpg",
        ".jpeg",
        ".png",
        ".gif",
        ".webp",
        ".bmp",
        ".avif",
        ".mp4",
        ".webm",
        ".mov",
        ".mkv",
        ".avi",
        ".m4v",
    }
)

# Multi-page artworks: "<id>_p<page>.<ext>"
# Examples: "12345_p0.jpg", "12345_p12.png"
PAGE_FILENAME_PATTERN = re.compile(r"^(\d+)_p(\d+)\.", re.IGNORECASE)


# Hey future me, naming rules are the whole trick here:
#   "<id>.<ext>"          -> single-page artwork, page 0
#   "<id>_p<n>.<ext>"     -> page n of a multi-page artwork
# Everything else in the directory is ignored (thumbnails, the meta file itself, other artworks
# that share the folder). sort_order == page index, so "_p10" sorts after "_p9" (numeric, not
# lexical). A file we can't stat is skipped with a warning; a directory we can't LIST raises,
# and the scanner treats that as "skip this artwork".
class FilesystemMediaCollector(IMediaCollector):
    """Collects ``<id>.<ext>`` and ``<id>_p<n>.<ext>`` media files from a directory."""

    def __init__(self, extensions: frozenset[str] | None = None) -> None:
        self.extensions = frozenset(e.lower() for e in (extensions or MEDIA_EXTENSIONS))

    def page_index(self, filename: str, artwork_id: str) -> int | None:
        """Page index encoded in ``filename`` for ``artwork_id``, or None if it isn't ours."""
        suffix = Path(filename).suffix
        if suffix.lower() not in self.extensions:
            return None

        if filename == f"{artwork_id}{suffix}":
            return 0

        match = PAGE_FILENAME_PATTERN.match(filename)
        if not match or match.group(1) != artwork_id:
            return None
        return int(match.group(2))

    def collect(self, directory: Path, artwork_id: str) -> list[MediaFileInfo]:
        """Return the artwork's media files ordered by page index.

        Raises:
            OSError: If the directory itself cannot be listed
        """
        found: list[MediaFileInfo] = []

        for entry in directory.iterdir():
            page = self.page_index(entry.name, artwork_id)
            if page is None:
                continue
            try:
                stat = entry.stat()
            except OSError as e:
                logger.warning("Failed to stat media file %s: %s", entry, e)
                continue
            if not entry.is_file():
                continue
            found.append(MediaFileInfo(path=entry, size=stat.st_size, sort_order=page))

        found.sort(key=lambda media: media.sort_order)
        return found
