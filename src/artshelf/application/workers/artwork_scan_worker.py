# Hey future me - this worker owns the "one background scan at a time" rule!
# It builds a FRESH ArtworkScannerService for every run (fresh entity cache, fresh state machine),
# runs it as an asyncio.Task, and hands a CancellationToken to the scan so cancel() stops it at
# the next batch boundary instead of killing it mid-transaction.
"""Artwork scan worker for background scanning."""

import asyncio
import logging
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from artshelf.config import Settings
from artshelf.domain.entities import ScanResult, ScanState
from artshelf.domain.exceptions import InvalidStateException
from artshelf.domain.ports import CancellationToken, IMediaCollector

if TYPE_CHECKING:
    from artshelf.application.services.artwork_scanner_service import (
        ArtworkScannerService,
        ScanOptions,
    )
    from artshelf.infrastructure.persistence.database import Database

logger = logging.getLogger(__name__)


class ArtworkScanWorker:
    """Runs artwork scans in the background, one at a time."""

    def __init__(
        self,
        db: "Database",
        settings: Settings,
        media_collector: IMediaCollector | None = None,
    ) -> None:
        """Initialize worker.

        Args:
            db: Database instance shared by all runs
            settings: Application settings
            media_collector: Optional media collector passed to every service
        """
        settings.validate_scanner()
        self.db = db
        self.settings = settings
        self.media_collector = media_collector
        self._task: asyncio.Task[ScanResult] | None = None
        self._service: ArtworkScannerService | None = None
        self._token: CancellationToken | None = None
        self._last_result: ScanResult | None = None

    @property
    def is_running(self) -> bool:
        """True while a scan task is active."""
        return self._task is not None and not self._task.done()

    def start(self, options: "ScanOptions") -> None:
        """Start a scan in the background.

        Args:
            options: Scan options (any cancellation token is replaced by the worker's)

        Raises:
            InvalidStateException: If a scan is already running
        """
        from artshelf.application.services.artwork_scanner_service import (
            ArtworkScannerService,
        )

        if self.is_running:
            raise InvalidStateException("An artwork scan is already running")

        self._token = CancellationToken()
        self._service = ArtworkScannerService(
            db=self.db,
            settings=self.settings,
            media_collector=self.media_collector,
        )
        run_options = replace(options, cancellation=self._token)

        logger.info(
            f"Starting background artwork scan at {options.root_path} "
            f"(force_update={options.force_update})"
        )
        self._task = asyncio.create_task(
            self._run(self._service, run_options), name="artwork-scan"
        )

    async def _run(
        self, service: "ArtworkScannerService", options: "ScanOptions"
    ) -> ScanResult:
        try:
            result = await service.scan(options)
        except Exception as e:
            logger.error(f"Background artwork scan crashed: {e}", exc_info=True)
            raise
        self._last_result = result
        logger.info(
            f"Background artwork scan finished: {result.new_artworks} new, "
            f"{len(result.errors)} errors"
        )
        return result

    def cancel(self) -> bool:
        """Ask the running scan to stop at the next batch boundary.

        Returns:
            True if a running scan was signalled
        """
        if not self.is_running or self._token is None:
            return False
        logger.info("Cancellation requested for running artwork scan")
        self._token.cancel()
        return True

    async def wait(self) -> ScanResult | None:
        """Wait for the current (or last) scan and return its result."""
        if self._task is None:
            return self._last_result
        return await self._task

    def status(self) -> dict[str, Any]:
        """Snapshot for status endpoints."""
        service = self._service
        progress = service.last_progress if service else None
        return {
            "running": self.is_running,
            "state": service.state.value if service else ScanState.IDLE.value,
            "progress": progress.to_dict() if progress else None,
            "result": self._last_result.to_dict() if self._last_result else None,
        }
