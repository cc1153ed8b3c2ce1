# Hey future me - this service ingests an artwork library (metadata files + media) into the DB!
# Key features:
# 1. INCREMENTAL by default - artworks whose external id is already in the DB are skipped
# 2. FORCE RESCAN - wipes artists/tags/artworks/images first (destructive, see _clear_library)
# 3. BOUNDED MEMORY - items are parsed one by one and written in batches of batch_size
# 4. PER-BATCH ATOMICITY - a failing batch rolls back alone, the run keeps going
# 5. ORPHAN CLEANUP - once batches are done, imageless artworks and unused artists/tags are deleted
# The goal: point it at a 100k-artwork folder, get a consistent DB, and never lose a whole night's
# run because item 73k had a broken metadata file.
"""Artwork scanner service for importing a metadata-file library into the database."""

import asyncio
import logging
import os
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from artshelf.application.cache.entity_cache import EntityCache
from artshelf.application.services.file_discovery import FileDiscoveryService
from artshelf.application.services.scan_progress import ProgressEmitter
from artshelf.application.services.scan_state import ScanStateMachine
from artshelf.config import Settings
from artshelf.domain.entities import (
    ArtworkData,
    DiscoveredItem,
    ScanPhase,
    ScanProgress,
    ScanResult,
    ScanState,
)
from artshelf.domain.exceptions import (
    ArtworkIdMismatchError,
    BatchTransactionError,
    ConfigurationError,
    DomainException,
    DuplicateArtworkInBatchError,
    FatalScanError,
    MetadataFileNotFoundError,
    MetadataParseError,
    ScanCancelledError,
)
from artshelf.domain.ports import CancellationToken, IMediaCollector, ProgressCallback
from artshelf.domain.value_objects import parse_metadata_file
from artshelf.infrastructure.media.media_collector import FilesystemMediaCollector
from artshelf.infrastructure.observability.logging import scan_context
from artshelf.infrastructure.persistence.database import Database
from artshelf.infrastructure.persistence.repositories import ScanRepository

logger = logging.getLogger(__name__)

# Progress weights (percent): optional clear step, discovery, then the item stream
CLEAR_WEIGHT = 10
DISCOVERY_WEIGHT = 10
ITEMS_WEIGHT = 70
CLEANUP_PERCENTAGE = 95


def relative_media_path(path: Path, root_path: Path) -> str:
    """Path relative to the root with POSIX separators and a leading "/".

    The leading slash is the historic stored format of image paths, readers
    depend on it.

    Example:
        relative_media_path(Path("/lib/12/12_p0.jpg"), Path("/lib"))  # "/12/12_p0.jpg"
    """
    full = path.as_posix().replace("\\", "/")
    base = root_path.as_posix().replace("\\", "/").rstrip("/")
    if base and full.startswith(base + "/"):
        return full[len(base) :]
    return full


def meta_source(path: Path, root_path: Path) -> str:
    """Metadata file path relative to the root, without the leading "/"."""
    return relative_media_path(path, root_path).lstrip("/")


@dataclass
class ScanOptions:
    """What to scan and how.

    Attributes:
        root_path: Library root
        force_update: Wipe the library and re-import everything
        explicit_paths: Root-relative metadata paths to import instead of discovering
        on_progress: Sync or async progress listener
        cancellation: Token checked before every batch write
    """

    root_path: Path
    force_update: bool = False
    explicit_paths: Sequence[str] | None = None
    on_progress: ProgressCallback | None = None
    cancellation: CancellationToken | None = None


@dataclass
class BatchCounts:
    """Counters of one committed batch (applied to ScanResult only after commit)."""

    artists: int = 0
    tags: int = 0
    artworks: int = 0
    images: int = 0
    errors: list[str] = field(default_factory=list)


class ArtworkScannerService:
    """Scans an artwork library and imports it batch by batch.

    Hey future me - build ONE instance per scan session (the worker does this). The entity cache
    and state machine live on the instance, so two instances can scan concurrently without
    stepping on each other, while a second scan() on the SAME instance is refused.
    """

    def __init__(
        self,
        db: Database,
        settings: Settings,
        media_collector: IMediaCollector | None = None,
        discovery: FileDiscoveryService | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize scanner service.

        Args:
            db: Database (each batch gets its own session transaction)
            settings: Application settings
            media_collector: Media collector adapter (filesystem by default)
            discovery: Discovery service (built from settings by default)
            clock: Monotonic clock for timing and progress throttling

        Raises:
            ConfigurationError: If scanner settings are inconsistent
        """
        settings.validate_scanner()
        self.db = db
        self.settings = settings
        self.media_collector = media_collector or FilesystemMediaCollector()
        # Only a discovery service we built ourselves gets closed after a scan
        self._owns_discovery = discovery is None
        self.discovery = discovery or FileDiscoveryService(db, settings.scanner)
        self.cache = EntityCache()
        self._machine = ScanStateMachine()
        self._clock = clock
        self._progress: ProgressEmitter | None = None

    @property
    def state(self) -> ScanState:
        """Current lifecycle state."""
        return self._machine.state

    @property
    def last_progress(self) -> ScanProgress | None:
        """Most recent progress event of the current or last run."""
        return self._progress.latest if self._progress else None

    async def scan(self, options: ScanOptions) -> ScanResult:
        """Run one scan.

        Never raises for scan failures - fatal problems end the run early and
        are reported in ``ScanResult.errors``.

        Args:
            options: Scan options

        Returns:
            Aggregate result (possibly partial)

        Raises:
            InvalidStateException: If this instance is already scanning
        """
        # Synchronous up to the first transition, so a concurrent call sees a running state
        self._machine.begin()
        self._machine.transition(
            ScanState.COUNTING if options.force_update else ScanState.DISCOVERING
        )

        self.cache.clear()
        result = ScanResult()
        started = self._clock()
        emitter = ProgressEmitter(
            options.on_progress,
            min_interval_seconds=self.settings.scanner.progress_min_interval,
            clock=self._clock,
        )
        self._progress = emitter

        with scan_context() as scan_id:
            logger.info(
                f"Starting artwork scan {scan_id} at {options.root_path} "
                f"(force_update={options.force_update}, "
                f"explicit_paths={len(options.explicit_paths or [])})"
            )
            try:
                await self._run(options, result, emitter)
            except asyncio.CancelledError:
                # Task cancelled from outside (shutdown) - free the session for a new run
                self._machine.fail()
                raise
            except ScanCancelledError as e:
                self._machine.fail()
                result.errors.append(e.message)
                logger.warning("Artwork scan cancelled")
            except DomainException as e:
                self._machine.fail()
                result.errors.append(e.message)
                logger.error(f"Artwork scan failed: {e.message}")
            except Exception as e:
                self._machine.fail()
                fatal = FatalScanError(f"Scan failed: {e}")
                result.errors.append(fatal.message)
                logger.error(f"Artwork scan failed: {e}", exc_info=True)
            finally:
                result.processing_time = int((self._clock() - started) * 1000)
                if self._owns_discovery:
                    await self.discovery.close()

            logger.info(
                "Artwork scan %s finished in %dms: %d total, %d new artworks, %d new images, "
                "%d new artists, %d new tags, %d skipped, %d removed, %d errors",
                scan_id,
                result.processing_time,
                result.total_artworks,
                result.new_artworks,
                result.new_images,
                result.new_artists,
                result.new_tags,
                result.skipped_artworks,
                result.removed_artworks,
                len(result.errors),
            )

        return result

    async def _run(
        self, options: ScanOptions, result: ScanResult, emitter: ProgressEmitter
    ) -> None:
        base = 0

        if options.force_update:
            if options.explicit_paths:
                raise ConfigurationError(
                    "force_update cannot be combined with explicit_paths "
                    "(a scoped rescan must never wipe the library)"
                )
            await emitter.emit(ScanPhase.COUNTING, "Clearing existing library data...", 0)
            result.removed_artworks = await self._clear_library()
            base = CLEAR_WEIGHT
            await emitter.emit(ScanPhase.COUNTING, "Existing library data cleared", base)
            self._machine.transition(ScanState.DISCOVERING)

        await emitter.emit(ScanPhase.COUNTING, "Discovering metadata files...", base)
        candidates = await self.discovery.discover(
            options.root_path,
            options.force_update,
            result,
            explicit_paths=options.explicit_paths,
        )
        total = len(candidates)

        if total == 0:
            self._machine.transition(ScanState.FINALIZING)
            await self._cleanup_orphans(options, result, emitter, total)
            await emitter.emit(ScanPhase.COMPLETE, "No new artworks to import", 100)
            self._machine.transition(ScanState.COMPLETE)
            return

        stream_base = base + DISCOVERY_WEIGHT
        await emitter.emit(
            ScanPhase.SCANNING,
            f"Found {total} artworks, processing...",
            stream_base,
            current=0,
            total=total,
        )
        self._machine.transition(ScanState.BATCHING)

        batch_size = self.settings.scanner.batch_size
        batch: list[ArtworkData] = []
        batch_number = 0

        for index, candidate in enumerate(candidates):
            try:
                item = await asyncio.to_thread(self._prepare_item_sync, candidate)
            except ArtworkIdMismatchError as e:
                result.errors.append(e.message)
                logger.warning(f"Skipping artwork: {e.message}")
                item = None
            if item is not None:
                batch.append(item)

            is_last = index == total - 1
            if len(batch) >= batch_size or (is_last and batch):
                self._check_cancelled(options.cancellation)
                batch_number += 1
                await self._flush_batch(batch, batch_number, options.root_path, result)
                batch.clear()

                done = index + 1
                await emitter.emit(
                    ScanPhase.SCANNING,
                    f"Processed {done}/{total} artworks",
                    stream_base + done / total * ITEMS_WEIGHT,
                    current=done,
                    total=total,
                )
                await asyncio.sleep(0)

        self._machine.transition(ScanState.FINALIZING)
        await self._cleanup_orphans(options, result, emitter, total)
        await emitter.emit(
            ScanPhase.COMPLETE,
            f"Scan complete: {result.new_artworks} new artworks, {len(result.errors)} errors",
            100,
            current=total,
            total=total,
        )
        self._machine.transition(ScanState.COMPLETE)

    def _check_cancelled(self, token: CancellationToken | None) -> None:
        if token is not None and token.is_cancelled:
            raise ScanCancelledError()

    # Hey future me - this WIPES the library. It runs before ANY other write of the scan and in its
    # own transaction (never inside a batch). If it fails, the whole scan fails - importing on top
    # of a half-cleared library would be worse than doing nothing.
    async def _clear_library(self) -> int:
        async with self.db.session_scope() as session:
            repo = ScanRepository(session)
            removed = await repo.count_artworks()
            await repo.truncate_artwork_tables()
        logger.warning(f"Force rescan: cleared library ({removed} artworks removed)")
        return removed

    # Listen up - the cleanup is its own transaction AFTER every batch has committed, so a failure
    # here can't undo imported work. It's recorded as an error but the run still completes.
    async def _cleanup_orphans(
        self,
        options: ScanOptions,
        result: ScanResult,
        emitter: ProgressEmitter,
        total: int,
    ) -> None:
        if not self.settings.scanner.cleanup_orphans:
            return
        self._check_cancelled(options.cancellation)
        await emitter.emit(
            ScanPhase.SCANNING,
            "Cleaning up orphaned records...",
            CLEANUP_PERCENTAGE,
            current=total,
            total=total,
        )

        try:
            async with self.db.session_scope(
                statement_timeout=self.settings.database.batch_transaction_timeout
            ) as session:
                removed = await ScanRepository(session).remove_orphans()
        except Exception as e:
            result.errors.append(f"Cleanup failed: {e}")
            logger.error(f"Orphan cleanup failed: {e}", exc_info=True)
            return

        result.removed_artworks += removed.artworks
        result.removed_artists += removed.artists
        result.removed_tags += removed.tags

    # Yo, this runs in a worker THREAD (asyncio.to_thread) - file I/O only, no DB, no awaits.
    # Every per-item failure ends here as "skip this artwork" with a log line. MetadataFileNotFound
    # is INFO because files moving mid-scan is normal on a live library. The one exception is an ID
    # field that disagrees with the file name: that raises ArtworkIdMismatchError so _run records it.
    def _prepare_item_sync(self, candidate: DiscoveredItem) -> ArtworkData | None:
        path = candidate.file_path
        try:
            metadata = parse_metadata_file(path)
        except MetadataFileNotFoundError:
            logger.info(f"Skipping artwork, metadata file vanished: {path}")
            return None
        except MetadataParseError as e:
            logger.warning(f"Skipping artwork, invalid metadata in {path}: {e.message}")
            return None

        if metadata.id != candidate.artwork_external_id:
            raise ArtworkIdMismatchError(str(path), candidate.artwork_external_id, metadata.id)

        try:
            media_files = self.media_collector.collect(path.parent, candidate.artwork_external_id)
        except Exception as e:
            logger.warning(f"Skipping artwork, media collection failed for {path}: {e}")
            return None

        if not media_files:
            logger.warning(
                f"Skipping artwork, no media files for {candidate.artwork_external_id} in {path.parent}"
            )
            return None

        return ArtworkData(
            metadata=metadata,
            media_files=media_files,
            metadata_file_path=path,
            directory_created_at=self._file_created_at(path),
        )

    @staticmethod
    def _file_created_at(path: Path) -> datetime:
        try:
            stat = os.stat(path)
        except OSError:
            return datetime.now(UTC)
        timestamp = getattr(stat, "st_birthtime", None) or stat.st_mtime
        return datetime.fromtimestamp(timestamp, tz=UTC)

    async def _flush_batch(
        self,
        batch: list[ArtworkData],
        batch_number: int,
        root_path: Path,
        result: ScanResult,
    ) -> None:
        logger.info(f"Processing batch {batch_number} ({len(batch)} artworks)")
        snapshot = self.cache.snapshot()

        try:
            async with self.db.session_scope(
                statement_timeout=self.settings.database.batch_transaction_timeout
            ) as session:
                counts = await self._write_batch(session, batch, root_path)
        except Exception as e:
            # Rolled back - ids cached during this batch point at rows that no longer exist
            self.cache.restore(snapshot)
            error = BatchTransactionError(batch_number, e)
            result.errors.append(error.message)
            logger.error(error.message, exc_info=True)
            return

        result.new_artists += counts.artists
        result.new_tags += counts.tags
        result.new_artworks += counts.artworks
        result.new_images += counts.images
        result.errors.extend(counts.errors)
        logger.info(
            f"Committed batch {batch_number}: {counts.artworks} artworks, {counts.images} images"
        )

    async def _write_batch(
        self, session: AsyncSession, batch: list[ArtworkData], root_path: Path
    ) -> BatchCounts:
        repo = ScanRepository(session)
        counts = BatchCounts()

        counts.tags = await self.cache.resolve_tags(
            session, (tag for item in batch for tag in item.metadata.tags)
        )
        artist_names: dict[str, str] = {}
        for item in batch:
            artist_names.setdefault(item.metadata.user_id, item.metadata.user)
        counts.artists = await self.cache.resolve_artists(session, artist_names)

        artwork_rows: list[dict[str, Any]] = []
        items_by_external_id: dict[str, ArtworkData] = {}
        for item in batch:
            external_id = item.metadata.id
            if external_id in items_by_external_id:
                duplicate = DuplicateArtworkInBatchError(
                    external_id,
                    str(items_by_external_id[external_id].metadata_file_path),
                    str(item.metadata_file_path),
                )
                counts.errors.append(duplicate.message)
                logger.warning(duplicate.message)
                continue
            artist_id = self.cache.artist_id(item.metadata.user_id)
            items_by_external_id[external_id] = item
            artwork_rows.append(self._artwork_row(item, artist_id, root_path))

        if not artwork_rows:
            return counts

        await repo.insert_artworks_ignore(artwork_rows)
        counts.artworks = len(artwork_rows)

        artwork_ids = await repo.find_artwork_ids_by_external_ids(items_by_external_id)

        image_rows: list[dict[str, Any]] = []
        tag_rows: list[dict[str, Any]] = []
        for external_id, item in items_by_external_id.items():
            artwork_id = artwork_ids.get(external_id)
            if artwork_id is None:
                continue
            for media in item.media_files:
                image_rows.append(
                    {
                        "path": relative_media_path(media.path, root_path),
                        "size": media.size,
                        "sort_order": media.sort_order,
                        "artwork_id": artwork_id,
                    }
                )
            for tag_name in item.metadata.tags:
                tag_id = self.cache.tag_id(tag_name)
                if tag_id is not None:
                    tag_rows.append({"artwork_id": artwork_id, "tag_id": tag_id})

        await repo.insert_images_ignore(image_rows)
        counts.images = len(image_rows)
        await repo.insert_artwork_tags_ignore(tag_rows)
        return counts

    @staticmethod
    def _artwork_row(
        item: ArtworkData, artist_id: int | None, root_path: Path
    ) -> dict[str, Any]:
        metadata = item.metadata
        return {
            "external_id": metadata.id,
            "title": metadata.title,
            "description": metadata.description,
            "artist_id": artist_id,
            "image_count": len(item.media_files),
            "description_length": metadata.description_length,
            "meta_source": meta_source(item.metadata_file_path, root_path),
            "source_url": metadata.url,
            "original_url": metadata.original,
            "thumbnail_url": metadata.thumbnail,
            "x_restrict": metadata.x_restrict,
            "is_ai_generated": metadata.is_ai_generated,
            "size": metadata.size,
            "bookmark_count": metadata.bookmark_count,
            "source_date": metadata.source_date,
            "directory_created_at": item.directory_created_at,
        }
