"""Background workers."""

from artshelf.application.workers.artwork_scan_worker import ArtworkScanWorker

__all__ = ["ArtworkScanWorker"]
