"""File discovery - turns a library root into the list of artworks to ingest.

Three ways to get candidates, one post-processing pipeline:

    local     walk the root for *-meta.txt (depth-bounded, in a worker thread)
    remote    ask the remote scanner sidecar (HTTP, retried)
    explicit  caller already knows the relative paths (no walk, no HTTP)

Post-processing (same for all three):
    1. keep files whose name is "<digits>-meta.txt", count them as total
    2. unless force_update, drop ids that already exist in the DB (skipped)
    3. drop repeated ids, first occurrence wins, each repeat is an error entry
"""

import asyncio
import logging
import os
from collections.abc import Sequence
from pathlib import Path

from artshelf.config.settings import (
    DiscoverySource,
    RemoteFailurePolicy,
    ScannerSettings,
)
from artshelf.domain.entities import DiscoveredItem, ScanResult
from artshelf.domain.exceptions import DiscoveryError, DuplicateIdentifierError
from artshelf.domain.value_objects import extract_artwork_id
from artshelf.infrastructure.integrations.remote_discovery_client import (
    RemoteDiscoveryClient,
)
from artshelf.infrastructure.persistence.database import Database
from artshelf.infrastructure.persistence.repositories import ScanRepository

logger = logging.getLogger(__name__)

METADATA_SUFFIX = "-meta.txt"


def resolve_relative_path(root_path: Path, relative: str) -> Path:
    """Resolve a root-relative path (leading "/" optional) against the root."""
    return root_path / relative.lstrip("/\\")


# Hey future me - depth counts path components relative to the root, so
# root/a/b/c/123-meta.txt is depth 4 and root/a/b/c/d/123-meta.txt (depth 5) is NOT found with
# the default max_depth=4. We prune dirnames in place so os.walk never descends past the limit.
# Results are sorted so the same tree always yields the same order (dedup keeps FIRST occurrence,
# so order matters).
def walk_metadata_files(root_path: Path, max_depth: int) -> list[Path]:
    """Find ``*-meta.txt`` files under ``root_path`` up to ``max_depth`` levels deep."""
    found: list[Path] = []
    root = str(root_path)

    for dirpath, dirnames, filenames in os.walk(root):
        rel = os.path.relpath(dirpath, root)
        depth = 0 if rel == os.curdir else rel.count(os.sep) + 1

        # Files here sit at depth+1; subdirectories would put files at depth+2
        if depth + 1 >= max_depth:
            dirnames[:] = []
        else:
            dirnames.sort()

        for filename in sorted(filenames):
            if not filename.lower().endswith(METADATA_SUFFIX):
                continue
            full = Path(dirpath) / filename
            if full.is_file():
                found.append(full)

    return found


class FileDiscoveryService:
    """Produces the ordered, de-duplicated candidate list for one scan."""

    def __init__(
        self,
        db: Database,
        settings: ScannerSettings,
        remote_client: RemoteDiscoveryClient | None = None,
    ) -> None:
        """Initialize discovery.

        Args:
            db: Database used for the "already imported?" lookup
            settings: Scanner settings (source, depth, remote policy)
            remote_client: Pre-built remote client (created lazily from settings otherwise)
        """
        self.db = db
        self.settings = settings
        self._remote_client = remote_client

    async def discover(
        self,
        root_path: Path,
        force_update: bool,
        result: ScanResult,
        explicit_paths: Sequence[str] | None = None,
    ) -> list[DiscoveredItem]:
        """Collect the candidates to process and update ``result`` counters.

        Args:
            root_path: Library root
            force_update: Don't skip artworks that already exist
            result: Scan result receiving total/skipped counts and duplicate errors
            explicit_paths: Root-relative metadata paths; disables walk/HTTP when non-empty

        Returns:
            Candidates in discovery order, unique by external id

        Raises:
            DiscoveryError: Remote discovery failed and the policy is "fail"
        """
        if explicit_paths:
            logger.info(
                "Building candidates from %d explicit paths under %s",
                len(explicit_paths),
                root_path,
            )
            files = [resolve_relative_path(root_path, p) for p in explicit_paths]
        else:
            files = await self._find_files(root_path, result)

        # 1. Valid names only
        candidates: list[DiscoveredItem] = []
        for file_path in files:
            external_id = extract_artwork_id(file_path.name)
            if external_id is None:
                logger.debug("Ignoring non-metadata file name: %s", file_path)
                continue
            candidates.append(
                DiscoveredItem(file_path=file_path, artwork_external_id=external_id)
            )
        result.total_artworks = len(candidates)

        # 2. Skip already imported (incremental mode)
        if not force_update and candidates:
            existing = await self._existing_ids([c.artwork_external_id for c in candidates])
            if existing:
                before = len(candidates)
                candidates = [c for c in candidates if c.artwork_external_id not in existing]
                result.skipped_artworks += before - len(candidates)
                logger.info(
                    "Filtered existing artworks: %d total, %d existing, %d to process",
                    before,
                    before - len(candidates),
                    len(candidates),
                )

        # 3. Unique by external id, first wins
        first_seen: dict[str, DiscoveredItem] = {}
        unique: list[DiscoveredItem] = []
        for candidate in candidates:
            first = first_seen.get(candidate.artwork_external_id)
            if first is not None:
                error = DuplicateIdentifierError(
                    candidate.artwork_external_id,
                    str(first.file_path),
                    str(candidate.file_path),
                )
                result.errors.append(error.message)
                logger.warning("Duplicate artwork id found: %s", candidate.artwork_external_id)
                continue
            first_seen[candidate.artwork_external_id] = candidate
            unique.append(candidate)

        return unique

    async def _find_files(self, root_path: Path, result: ScanResult) -> list[Path]:
        if self.settings.discovery_source != DiscoverySource.REMOTE:
            return await self._find_local(root_path)

        try:
            relative_paths = await self._remote().list_metadata_files()
        except DiscoveryError as e:
            if self.settings.remote_failure_policy != RemoteFailurePolicy.FALLBACK_LOCAL:
                raise
            # Listen up - only reachable when fallback_local was chosen explicitly
            logger.warning("Remote discovery failed, falling back to local walk: %s", e.message)
            result.errors.append(
                f"Remote discovery failed, fell back to local scan: {e.message}"
            )
            return await self._find_local(root_path)

        return [resolve_relative_path(root_path, p) for p in relative_paths]

    async def _find_local(self, root_path: Path) -> list[Path]:
        logger.info("Walking %s for metadata files (max depth %d)", root_path, self.settings.max_depth)
        return await asyncio.to_thread(walk_metadata_files, root_path, self.settings.max_depth)

    def _remote(self) -> RemoteDiscoveryClient:
        if self._remote_client is None:
            self._remote_client = RemoteDiscoveryClient(self.settings)
        return self._remote_client

    async def _existing_ids(self, external_ids: list[str]) -> set[str]:
        async with self.db.session_scope() as session:
            return await ScanRepository(session).find_existing_external_ids(external_ids)

    async def close(self) -> None:
        """Release the remote HTTP client if one was created."""
        if self._remote_client is not None:
            await self._remote_client.close()
