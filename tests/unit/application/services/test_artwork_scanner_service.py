"""Tests for ArtworkScannerService against a real SQLite database."""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock

import httpx
import pytest
from sqlalchemy import delete, func, select

from artshelf.application.services.artwork_scanner_service import (
    ArtworkScannerService,
    ScanOptions,
    meta_source,
    relative_media_path,
)
from artshelf.application.services.file_discovery import FileDiscoveryService
from artshelf.config import DatabaseSettings, DiscoverySource, ScannerSettings, Settings
from artshelf.domain.entities import DiscoveredItem, ScanPhase, ScanProgress, ScanState
from artshelf.domain.exceptions import ConfigurationError, InvalidStateException
from artshelf.domain.ports import CancellationToken
from artshelf.infrastructure.integrations.remote_discovery_client import RemoteDiscoveryClient
from artshelf.infrastructure.persistence.database import Database
from artshelf.infrastructure.persistence.models import (
    ArtistModel,
    ArtworkModel,
    ArtworkTagModel,
    ImageModel,
    TagModel,
)
from artshelf.infrastructure.persistence.repositories import ScanRepository


async def count(db: Database, model) -> int:
    async with db.session_scope() as session:
        return int(await session.scalar(select(func.count()).select_from(model)))


def with_batch_size(settings: Settings, batch_size: int) -> Settings:
    return Settings(
        database=settings.database,
        scanner=ScannerSettings(batch_size=batch_size, progress_min_interval=0.0),
    )


class TestPathHelpers:
    """Tests for stored path formats."""

    def test_relative_media_path_keeps_leading_slash(self) -> None:
        assert relative_media_path(Path("/lib/12/12_p0.jpg"), Path("/lib")) == "/12/12_p0.jpg"
        assert relative_media_path(Path("/lib/12/12_p0.jpg"), Path("/lib/")) == "/12/12_p0.jpg"

    def test_meta_source_has_no_leading_slash(self) -> None:
        assert meta_source(Path("/lib/a/12-meta.txt"), Path("/lib")) == "a/12-meta.txt"

    def test_outside_root_is_left_alone(self) -> None:
        assert relative_media_path(Path("/other/1.jpg"), Path("/lib")) == "/other/1.jpg"


class TestIncrementalScan:
    """Tests for the default (non-destructive) scan."""

    async def test_imports_artworks_images_tags_artists(
        self, db: Database, settings: Settings, library: Path, make_artwork
    ) -> None:
        make_artwork(library / "a", "100", user_id="1", tags=("sky", "sea"), pages=3)
        make_artwork(library / "b", "200", user_id="1", tags=("sky",))
        make_artwork(library / "c", "300", user_id="2", user="artist two", tags=())

        service = ArtworkScannerService(db, settings)
        result = await service.scan(ScanOptions(root_path=library))

        assert result.errors == []
        assert result.total_artworks == 3
        assert result.new_artworks == 3
        assert result.new_images == 5
        assert result.new_artists == 2
        assert result.new_tags == 2
        assert result.processing_time >= 0
        assert service.state == ScanState.COMPLETE

        assert await count(db, ArtworkModel) == 3
        assert await count(db, ImageModel) == 5
        assert await count(db, ArtistModel) == 2
        assert await count(db, TagModel) == 2
        assert await count(db, ArtworkTagModel) == 3

        async with db.session_scope() as session:
            artwork = await session.scalar(
                select(ArtworkModel).where(ArtworkModel.external_id == "100")
            )
            images = (
                await session.scalars(
                    select(ImageModel)
                    .where(ImageModel.artwork_id == artwork.id)
                    .order_by(ImageModel.sort_order)
                )
            ).all()
        assert artwork.image_count == 3
        assert artwork.meta_source == "a/100-meta.txt"
        assert artwork.title == "Artwork 100"
        assert [i.path for i in images] == ["/a/100_p0.jpg", "/a/100_p1.jpg", "/a/100_p2.jpg"]
        assert [i.sort_order for i in images] == [0, 1, 2]

    async def test_second_run_skips_existing(
        self, db: Database, settings: Settings, library: Path, make_artwork
    ) -> None:
        make_artwork(library / "a", "1")
        make_artwork(library / "b", "2")
        await ArtworkScannerService(db, settings).scan(ScanOptions(root_path=library))

        make_artwork(library / "c", "3")
        result = await ArtworkScannerService(db, settings).scan(ScanOptions(root_path=library))

        assert result.total_artworks == 3
        assert result.skipped_artworks == 2
        assert result.new_artworks == 1
        assert result.new_artists == 0
        assert await count(db, ArtworkModel) == 3

    async def test_nothing_to_do_completes_at_100(
        self, db: Database, settings: Settings, library: Path
    ) -> None:
        events: list[ScanProgress] = []
        result = await ArtworkScannerService(db, settings).scan(
            ScanOptions(root_path=library, on_progress=events.append)
        )

        assert result.total_artworks == 0
        assert result.errors == []
        assert events[-1].phase == ScanPhase.COMPLETE
        assert events[-1].percentage == 100

    async def test_bad_items_are_skipped(
        self, db: Database, settings: Settings, library: Path, make_artwork
    ) -> None:
        """Invalid metadata and artworks without media never reach the DB."""
        make_artwork(library / "ok", "1")
        broken = library / "broken"
        broken.mkdir()
        (broken / "2-meta.txt").write_text("Title\nno ids here\n")
        (broken / "2.jpg").write_bytes(b"x")
        no_media = make_artwork(library / "nomedia", "3")
        (no_media.parent / "3.jpg").unlink()

        result = await ArtworkScannerService(db, settings).scan(ScanOptions(root_path=library))

        assert result.total_artworks == 3
        assert result.new_artworks == 1
        assert result.errors == []
        assert await count(db, ArtworkModel) == 1

    async def test_vanished_file_is_skipped(
        self, db: Database, settings: Settings, library: Path, make_artwork
    ) -> None:
        make_artwork(library / "a", "1")
        result = await ArtworkScannerService(db, settings).scan(
            ScanOptions(root_path=library, explicit_paths=["a/1-meta.txt", "gone/2-meta.txt"])
        )
        assert result.total_artworks == 2
        assert result.new_artworks == 1
        assert result.errors == []


class TestBatching:
    """Tests for batch boundaries, isolation and progress."""

    async def test_progress_is_monotonic_and_ends_at_100(
        self, db: Database, settings: Settings, library: Path, make_artwork
    ) -> None:
        for n in range(1, 8):
            make_artwork(library / str(n), str(n))
        events: list[ScanProgress] = []

        result = await ArtworkScannerService(db, with_batch_size(settings, 3)).scan(
            ScanOptions(root_path=library, on_progress=events.append)
        )

        assert result.new_artworks == 7
        percentages = [e.percentage for e in events]
        assert percentages == sorted(percentages)
        assert events[-1].phase == ScanPhase.COMPLETE
        assert events[-1].percentage == 100

        scanning = [e for e in events if e.phase == ScanPhase.SCANNING]
        # Start event + one per flushed batch (3, 3, 1) + the cleanup step
        assert [e.current for e in scanning] == [0, 3, 6, 7, 7]
        assert [e.percentage for e in scanning] == [10, 40, 70, 80, 95]

    async def test_failing_batch_is_isolated(
        self, db: Database, settings: Settings, library: Path, make_artwork, mocker
    ) -> None:
        """Batch 2 rolls back alone; batches 1 and 3 commit; the cache forgets batch 2."""
        for n in range(1, 7):
            make_artwork(library / str(n), str(n), user_id=str(500 + n), tags=(f"tag{n}",))

        original = ScanRepository.insert_artworks_ignore
        calls = 0

        async def flaky(self, rows):
            nonlocal calls
            calls += 1
            if calls == 2:
                raise RuntimeError("disk on fire")
            return await original(self, rows)

        mocker.patch.object(ScanRepository, "insert_artworks_ignore", flaky)

        service = ArtworkScannerService(db, with_batch_size(settings, 2))
        result = await service.scan(ScanOptions(root_path=library))

        assert result.errors == ["Failed to process batch 2: disk on fire"]
        assert result.new_artworks == 4
        assert result.new_images == 4
        assert result.new_artists == 4
        assert result.new_tags == 4
        assert service.state == ScanState.COMPLETE

        assert await count(db, ArtworkModel) == 4
        assert await count(db, ArtistModel) == 4
        assert await count(db, TagModel) == 4
        assert service.cache.tag_id("tag3") is None
        assert service.cache.artist_id("503") is None

    async def test_failed_batch_items_import_on_rerun(
        self, db: Database, settings: Settings, library: Path, make_artwork, mocker
    ) -> None:
        make_artwork(library / "1", "1")
        mocker.patch.object(
            ScanRepository, "insert_images_ignore", side_effect=RuntimeError("boom")
        )
        first = await ArtworkScannerService(db, settings).scan(ScanOptions(root_path=library))
        assert first.errors == ["Failed to process batch 1: boom"]
        assert await count(db, ArtworkModel) == 0

        mocker.stopall()
        second = await ArtworkScannerService(db, settings).scan(ScanOptions(root_path=library))
        assert second.new_artworks == 1
        assert await count(db, ImageModel) == 1


class TestForceUpdate:
    """Tests for the destructive full rescan."""

    async def test_force_wipes_and_reimports(
        self, db: Database, settings: Settings, library: Path, make_artwork
    ) -> None:
        make_artwork(library / "1", "1")
        make_artwork(library / "2", "2")
        await ArtworkScannerService(db, settings).scan(ScanOptions(root_path=library))
        (library / "2" / "2-meta.txt").unlink()

        events: list[ScanProgress] = []
        result = await ArtworkScannerService(db, settings).scan(
            ScanOptions(root_path=library, force_update=True, on_progress=events.append)
        )

        assert result.removed_artworks == 2
        assert result.total_artworks == 1
        assert result.new_artworks == 1
        assert result.skipped_artworks == 0
        assert await count(db, ArtworkModel) == 1

        counting = [e.percentage for e in events if e.phase == ScanPhase.COUNTING]
        assert counting[0] == 0
        assert 10 in counting
        scanning = [e for e in events if e.phase == ScanPhase.SCANNING]
        assert [e.percentage for e in scanning] == [20, 90, 95]

        async with db.session_scope() as session:
            ids = await ScanRepository(session).find_artwork_ids_by_external_ids(["1"])
        assert ids == {"1": 1}

    async def test_force_with_explicit_paths_is_refused(
        self, db: Database, settings: Settings, library: Path, make_artwork
    ) -> None:
        make_artwork(library / "1", "1")
        await ArtworkScannerService(db, settings).scan(ScanOptions(root_path=library))

        service = ArtworkScannerService(db, settings)
        result = await service.scan(
            ScanOptions(root_path=library, force_update=True, explicit_paths=["1/1-meta.txt"])
        )

        assert len(result.errors) == 1
        assert "force_update cannot be combined" in result.errors[0]
        assert service.state == ScanState.FAILED
        assert await count(db, ArtworkModel) == 1

    async def test_truncate_failure_is_fatal(
        self, db: Database, settings: Settings, library: Path, make_artwork, mocker
    ) -> None:
        make_artwork(library / "1", "1")
        mocker.patch.object(
            ScanRepository, "truncate_artwork_tables", side_effect=RuntimeError("locked")
        )
        service = ArtworkScannerService(db, settings)
        result = await service.scan(ScanOptions(root_path=library, force_update=True))

        assert result.errors == ["Scan failed: locked"]
        assert result.new_artworks == 0
        assert service.state == ScanState.FAILED


class TestSessionLifecycle:
    """Tests for cancellation, concurrency and cache isolation."""

    async def test_cancellation_stops_before_next_batch(
        self, db: Database, settings: Settings, library: Path, make_artwork
    ) -> None:
        for n in range(1, 6):
            make_artwork(library / str(n), str(n))
        token = CancellationToken()

        def on_progress(progress: ScanProgress) -> None:
            if progress.phase == ScanPhase.SCANNING and progress.current:
                token.cancel()

        service = ArtworkScannerService(db, with_batch_size(settings, 2))
        result = await service.scan(
            ScanOptions(root_path=library, on_progress=on_progress, cancellation=token)
        )

        assert result.errors == ["Scan cancelled"]
        assert result.new_artworks == 2
        assert await count(db, ArtworkModel) == 2
        assert service.state == ScanState.FAILED

    async def test_concurrent_scan_on_same_instance_is_rejected(
        self, db: Database, settings: Settings, library: Path, make_artwork
    ) -> None:
        make_artwork(library / "1", "1")
        service = ArtworkScannerService(db, settings)

        first = asyncio.create_task(service.scan(ScanOptions(root_path=library)))
        await asyncio.sleep(0)
        with pytest.raises(InvalidStateException):
            await service.scan(ScanOptions(root_path=library))

        result = await first
        assert result.new_artworks == 1

    async def test_same_instance_can_scan_again(
        self, db: Database, settings: Settings, library: Path, make_artwork
    ) -> None:
        make_artwork(library / "1", "1")
        service = ArtworkScannerService(db, settings)
        await service.scan(ScanOptions(root_path=library))

        second = await service.scan(ScanOptions(root_path=library, force_update=True))

        # Cache was cleared: the artist id from the first run no longer exists after the wipe
        assert second.new_artists == 1
        assert second.errors == []
        assert service.state == ScanState.COMPLETE

    async def test_remote_without_url_is_rejected_at_construction(
        self, db: Database, tmp_path: Path
    ) -> None:
        settings = Settings(
            database=DatabaseSettings(url=f"sqlite+aiosqlite:///{tmp_path / 'x.db'}"),
            scanner=ScannerSettings(discovery_source=DiscoverySource.REMOTE),
        )
        with pytest.raises(ConfigurationError):
            ArtworkScannerService(db, settings)


class TestIdentifierConsistency:
    """Items whose ids disagree never touch another artwork's rows."""

    async def test_metadata_id_must_match_file_name(
        self, db: Database, settings: Settings, library: Path, make_artwork
    ) -> None:
        """b/8-meta.txt claiming ID 7 must not add its image to the stored artwork 7."""
        make_artwork(library / "a", "7")
        await ArtworkScannerService(db, settings).scan(ScanOptions(root_path=library))

        copied = make_artwork(library / "b", "7")
        copied.rename(library / "b" / "8-meta.txt")
        (library / "b" / "7.jpg").rename(library / "b" / "8.jpg")

        result = await ArtworkScannerService(db, settings).scan(ScanOptions(root_path=library))

        assert result.total_artworks == 2
        assert result.skipped_artworks == 1
        assert result.new_artworks == 0
        assert result.new_images == 0
        assert result.errors == [
            f"Artwork id mismatch in {library / 'b' / '8-meta.txt'}: "
            "metadata ID 7 does not match file name id 8"
        ]

        async with db.session_scope() as session:
            paths = (await session.scalars(select(ImageModel.path))).all()
            artwork = await session.scalar(select(ArtworkModel))
        assert paths == ["/a/7.jpg"]
        assert artwork.image_count == 1

    async def test_repeated_id_in_one_batch_is_recorded(
        self, db: Database, settings: Settings, library: Path, make_artwork
    ) -> None:
        meta = make_artwork(library / "a", "5")
        discovery = AsyncMock(spec=FileDiscoveryService)
        discovery.discover.return_value = [DiscoveredItem(meta, "5"), DiscoveredItem(meta, "5")]

        result = await ArtworkScannerService(db, settings, discovery=discovery).scan(
            ScanOptions(root_path=library)
        )

        assert result.new_artworks == 1
        assert result.new_images == 1
        assert result.errors == [
            f"Artwork id 5 appears twice in one batch, kept {meta}, skipped {meta}"
        ]
        # Injected discovery belongs to the caller
        discovery.close.assert_not_awaited()


class TestRemoteDiscoveryLifecycle:
    """The HTTP client built for a scan is released with it."""

    async def test_remote_client_closed_after_scan(
        self, db: Database, settings: Settings, library: Path, make_artwork, mocker
    ) -> None:
        make_artwork(library / "1", "1")
        created: list[RemoteDiscoveryClient] = []

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=["/1/1-meta.txt"])

        def build_client(scanner_settings: ScannerSettings) -> RemoteDiscoveryClient:
            client = RemoteDiscoveryClient(
                scanner_settings, transport=httpx.MockTransport(handler)
            )
            created.append(client)
            return client

        mocker.patch(
            "artshelf.application.services.file_discovery.RemoteDiscoveryClient",
            side_effect=build_client,
        )
        remote_settings = Settings(
            database=settings.database,
            scanner=ScannerSettings(
                discovery_source=DiscoverySource.REMOTE,
                remote_discovery_url="http://scanner.local",
                progress_min_interval=0.0,
            ),
        )
        service = ArtworkScannerService(db, remote_settings)

        result = await service.scan(ScanOptions(root_path=library))

        assert result.new_artworks == 1
        assert len(created) == 1
        assert created[0]._client is None

        # A closed client reopens lazily for the next scan on the same service
        second = await service.scan(ScanOptions(root_path=library))
        assert second.skipped_artworks == 1
        assert created[0]._client is None

    async def test_remote_client_closed_after_failed_scan(
        self, db: Database, settings: Settings, library: Path, mocker
    ) -> None:
        created: list[RemoteDiscoveryClient] = []

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503)

        def build_client(scanner_settings: ScannerSettings) -> RemoteDiscoveryClient:
            client = RemoteDiscoveryClient(
                scanner_settings, transport=httpx.MockTransport(handler)
            )
            created.append(client)
            return client

        mocker.patch(
            "artshelf.application.services.file_discovery.RemoteDiscoveryClient",
            side_effect=build_client,
        )
        remote_settings = Settings(
            database=settings.database,
            scanner=ScannerSettings(
                discovery_source=DiscoverySource.REMOTE,
                remote_discovery_url="http://scanner.local",
                remote_max_attempts=1,
            ),
        )
        service = ArtworkScannerService(db, remote_settings)

        result = await service.scan(ScanOptions(root_path=library))

        assert len(result.errors) == 1
        assert service.state == ScanState.FAILED
        assert created[0]._client is None


class TestOrphanCleanup:
    """Leftover rows are removed once the batches are done."""

    async def test_cleanup_removes_orphans_and_reports_them(
        self, db: Database, settings: Settings, library: Path, make_artwork
    ) -> None:
        make_artwork(library / "1", "1", user_id="11", tags=("sky",))
        make_artwork(library / "2", "2", user_id="22", tags=("sea",))
        await ArtworkScannerService(db, settings).scan(ScanOptions(root_path=library))

        # Artwork 2 lost its images, plus an artist and a tag nobody uses
        async with db.session_scope() as session:
            repo = ScanRepository(session)
            ids = await repo.find_artwork_ids_by_external_ids(["2"])
            await session.execute(delete(ImageModel).where(ImageModel.artwork_id == ids["2"]))
            await repo.insert_tags_ignore(["unused"])
            await repo.insert_artists_ignore(
                [{"name": "ghost", "username": "ghost", "user_id": "99", "bio": None}]
            )

        events: list[ScanProgress] = []
        result = await ArtworkScannerService(db, settings).scan(
            ScanOptions(root_path=library, on_progress=events.append)
        )

        assert result.skipped_artworks == 2
        assert result.removed_artworks == 1
        assert result.removed_artists == 2
        assert result.removed_tags == 2
        assert result.errors == []
        assert [e.percentage for e in events if e.phase == ScanPhase.SCANNING] == [95]
        assert events[-1].percentage == 100

        async with db.session_scope() as session:
            assert (await session.scalars(select(ArtworkModel.external_id))).all() == ["1"]
            assert (await session.scalars(select(ArtistModel.user_id))).all() == ["11"]
            assert (await session.scalars(select(TagModel.name))).all() == ["sky"]

    async def test_cleanup_can_be_disabled(
        self, db: Database, settings: Settings, library: Path
    ) -> None:
        async with db.session_scope() as session:
            await ScanRepository(session).insert_tags_ignore(["unused"])
        no_cleanup = Settings(
            database=settings.database,
            scanner=ScannerSettings(cleanup_orphans=False, progress_min_interval=0.0),
        )

        result = await ArtworkScannerService(db, no_cleanup).scan(ScanOptions(root_path=library))

        assert result.removed_tags == 0
        assert await count(db, TagModel) == 1

    async def test_cleanup_failure_keeps_imported_work(
        self, db: Database, settings: Settings, library: Path, make_artwork, mocker
    ) -> None:
        make_artwork(library / "1", "1")
        mocker.patch.object(
            ScanRepository, "remove_orphans", side_effect=RuntimeError("locked")
        )
        service = ArtworkScannerService(db, settings)

        result = await service.scan(ScanOptions(root_path=library))

        assert result.errors == ["Cleanup failed: locked"]
        assert result.new_artworks == 1
        assert service.state == ScanState.COMPLETE
        assert await count(db, ArtworkModel) == 1


class TestForceRescanArtists:
    """A forced rescan rebuilds artists from the current corpus only."""

    async def test_force_leaves_exactly_the_current_artists(
        self, db: Database, settings: Settings, tmp_path: Path, make_artwork
    ) -> None:
        old_library = tmp_path / "old"
        for n, user_id in (("1", "101"), ("2", "102"), ("3", "103")):
            make_artwork(old_library / n, n, user_id=user_id)
        await ArtworkScannerService(db, settings).scan(ScanOptions(root_path=old_library))
        assert await count(db, ArtistModel) == 3

        new_library = tmp_path / "new"
        make_artwork(new_library / "4", "4", user_id="201")
        make_artwork(new_library / "5", "5", user_id="202")
        make_artwork(new_library / "6", "6", user_id="202")

        result = await ArtworkScannerService(db, settings).scan(
            ScanOptions(root_path=new_library, force_update=True)
        )

        assert result.removed_artworks == 3
        assert result.new_artists == 2
        async with db.session_scope() as session:
            artists = (
                await session.execute(select(ArtistModel.id, ArtistModel.user_id).order_by(ArtistModel.id))
            ).all()
        assert [tuple(row) for row in artists] == [(1, "201"), (2, "202")]
