"""Filesystem media adapters."""

from artshelf.infrastructure.media.media_collector import (
    MEDIA_EXTENSIONS,
    FilesystemMediaCollector,
)

__all__ = ["MEDIA_EXTENSIONS", "FilesystemMediaCollector"]
