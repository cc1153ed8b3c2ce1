"""Shared fixtures for artshelf tests."""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest

from artshelf.config import DatabaseSettings, ScannerSettings, Settings
from artshelf.infrastructure.persistence.database import Database


def write_metadata(
    directory: Path,
    artwork_id: str,
    *,
    user: str = "artist one",
    user_id: str = "9001",
    title: str | None = None,
    tags: tuple[str, ...] = ("landscape", "sky"),
    description: str | None = None,
    pages: int = 1,
    extra: str = "",
) -> Path:
    """Write a metadata file plus ``pages`` media files into ``directory``.

    Hey future me - this mimics what the downloader drops on disk: "<id>-meta.txt" next to
    "<id>.jpg" (single page) or "<id>_p0.jpg", "<id>_p1.jpg", ... (multi page).
    """
    directory.mkdir(parents=True, exist_ok=True)
    lines = [
        "ID",
        artwork_id,
        "",
        "User",
        user,
        "",
        "UserID",
        user_id,
        "",
        "Title",
        title or f"Artwork {artwork_id}",
        "",
    ]
    if description is not None:
        lines += ["Description", description, ""]
    if tags:
        lines += ["Tags", *[f"#{tag}" for tag in tags], ""]
    if extra:
        lines.append(extra)

    meta_path = directory / f"{artwork_id}-meta.txt"
    meta_path.write_text("\n".join(lines), encoding="utf-8")

    if pages == 1:
        (directory / f"{artwork_id}.jpg").write_bytes(b"\xff\xd8fake")
    else:
        for page in range(pages):
            (directory / f"{artwork_id}_p{page}.jpg").write_bytes(b"\xff\xd8fake" * (page + 1))
    return meta_path


@pytest.fixture
def make_artwork():
    """Factory fixture around write_metadata."""
    return write_metadata


@pytest.fixture
def library(tmp_path: Path) -> Path:
    """Empty library root."""
    root = tmp_path / "library"
    root.mkdir()
    return root


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing at a throwaway SQLite file."""
    # File-based on purpose: aiosqlite opens a new connection per checkout, and every
    # new connection to ":memory:" would see an empty database.
    return Settings(
        database=DatabaseSettings(url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"),
        scanner=ScannerSettings(batch_size=100, progress_min_interval=0.0),
    )


@pytest.fixture
async def db(settings: Settings) -> AsyncGenerator[Database, None]:
    """Database with all tables created."""
    database = Database(settings)
    await database.create_tables()
    yield database
    await database.close()
