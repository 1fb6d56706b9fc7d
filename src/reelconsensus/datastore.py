"""Read access to the canonical film datastore.

The datastore itself lives outside this package. Engines only read
``EntitySummary`` projections through ``load_entity_summaries``; writing any
recommendation back is left to the caller.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

from pydantic import ValidationError

from reelconsensus.models import EntitySummary, ExternalIds

logger = logging.getLogger(__name__)

MOVIES_TABLE = "movies"

# Row columns mapped into EntitySummary.attributed_people
PEOPLE_COLUMNS = (
    "hero",
    "heroine",
    "director",
    "music_director",
    "producer",
    "cinematographer",
    "editor",
    "writer",
)

SUMMARY_COLUMNS = (
    "id",
    "title_en",
    "title_te",
    "release_year",
    "tmdb_id",
    "imdb_id",
    "slug",
    *PEOPLE_COLUMNS,
)


@runtime_checkable
class Datastore(Protocol):
    """Minimal async CRUD interface of the canonical datastore."""

    async def fetch_by_id(self, table: str, row_id: str) -> dict[str, Any] | None:
        """Fetch one row, or None if it does not exist."""
        ...

    async def fetch_by_filter(
        self,
        table: str,
        filters: Mapping[str, Any] | None = None,
        columns: tuple[str, ...] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Fetch rows whose columns equal the given filter values."""
        ...

    async def update_fields(self, table: str, row_id: str, fields: Mapping[str, Any]) -> None:
        """Update some columns of one row."""
        ...

    async def insert(self, table: str, row: Mapping[str, Any]) -> str:
        """Insert a row and return its id."""
        ...

    async def delete(self, table: str, row_id: str) -> None:
        """Delete one row."""
        ...


def _coerce_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def summary_from_row(row: Mapping[str, Any]) -> EntitySummary:
    """Project a datastore row onto an EntitySummary.

    Accepts both the ``title_en``/``release_year`` column names of the movies
    table and plain ``title``/``year``. Blank people columns are skipped.

    Raises:
        ValueError: If the row has no id or no title.
    """
    row_id = row.get("id")
    title = row.get("title_en") or row.get("title")
    if row_id is None or not title:
        raise ValueError(f"Row is missing id or title: {dict(row)!r}")

    people = {
        column: str(row[column]).strip()
        for column in PEOPLE_COLUMNS
        if isinstance(row.get(column), str) and row[column].strip()
    }
    imdb_id = row.get("imdb_id")

    return EntitySummary(
        id=str(row_id),
        title=str(title),
        alt_title=row.get("title_te") or row.get("alt_title") or None,
        year=_coerce_int(row.get("release_year", row.get("year"))),
        external_ids=ExternalIds(
            tmdb=_coerce_int(row.get("tmdb_id")),
            imdb=str(imdb_id) if imdb_id else None,
        ),
        slug=row.get("slug") or None,
        attributed_people=people,
    )


async def load_entity_summaries(
    store: Datastore,
    filters: Mapping[str, Any] | None = None,
    *,
    table: str = MOVIES_TABLE,
    limit: int | None = None,
) -> list[EntitySummary]:
    """Read matching rows and project them to summaries.

    Rows that cannot be projected are logged and skipped.

    Args:
        store: The datastore to read from.
        filters: Column equality filters passed to the store.
        table: Table to read.
        limit: Optional row cap.

    Returns:
        Summaries in the order the store returned the rows.
    """
    rows = await store.fetch_by_filter(table, filters, SUMMARY_COLUMNS, limit)
    summaries: list[EntitySummary] = []
    skipped = 0
    for row in rows:
        try:
            summaries.append(summary_from_row(row))
        except (ValueError, ValidationError) as e:
            skipped += 1
            logger.warning(f"Skipping unreadable {table} row: {e}")
    logger.info(f"Loaded {len(summaries)} entity summaries from {table} ({skipped} skipped)")
    return summaries


__all__ = [
    "Datastore",
    "MOVIES_TABLE",
    "PEOPLE_COLUMNS",
    "SUMMARY_COLUMNS",
    "load_entity_summaries",
    "summary_from_row",
]
