# Hey future me - these helpers keep bulk statements BOUNDED!
#
# A full library can reference hundreds of thousands of ids. One giant IN (...) or one giant
# multi-row VALUES blows past SQLite's host-parameter limit and makes PostgreSQL plan slowly.
# So every bulk select/insert in the scanner goes through chunked().
#
# EXAMPLE:
#   for chunk in chunked(external_ids, SQL_IN_CHUNK_SIZE):
#       stmt = select(ArtworkModel.external_id).where(ArtworkModel.external_id.in_(chunk))
"""Batch helpers for bounded bulk SQL statements."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from typing import Any, TypeVar

T = TypeVar("T")

# Max ids per IN (...) clause
SQL_IN_CHUNK_SIZE = 500

# SQLite allows 32766 host parameters per statement (older builds: 999). Keep well below.
SQLITE_MAX_PARAMS = 30000


def chunked(items: Iterable[T], size: int) -> Iterator[list[T]]:
    """Yield consecutive chunks of at most ``size`` items.

    Args:
        items: Any iterable (consumed lazily)
        size: Chunk size, must be >= 1

    Example:
        list(chunked([1, 2, 3, 4, 5], 2))  # [[1, 2], [3, 4], [5]]
    """
    if size < 1:
        raise ValueError("chunk size must be >= 1")

    chunk: list[T] = []
    for item in items:
        chunk.append(item)
        if len(chunk) >= size:
            yield chunk
            chunk = []
    if chunk:
        yield chunk


def rows_per_statement(rows: Sequence[dict[str, Any]], max_params: int = SQLITE_MAX_PARAMS) -> int:
    """How many rows of this shape fit into one multi-row INSERT.

    Hey future me - every column of every row is one bound parameter, so a 17-column
    artwork row eats 17 params. Returns at least 1.
    """
    if not rows:
        return 1
    columns = max(len(row) for row in rows)
    return max(1, max_params // max(columns, 1))
