"""Application services."""

from artshelf.application.services.artwork_scanner_service import (
    ArtworkScannerService,
    ScanOptions,
)
from artshelf.application.services.file_discovery import FileDiscoveryService
from artshelf.application.services.scan_progress import ProgressEmitter
from artshelf.application.services.scan_state import ScanStateMachine

__all__ = [
    "ArtworkScannerService",
    "FileDiscoveryService",
    "ProgressEmitter",
    "ScanOptions",
    "ScanStateMachine",
]
