"""Shared pytest fixtures for reelconsensus tests."""

import asyncio
import json
import os
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from reelconsensus import config
from reelconsensus.cache import ResponseCache
from reelconsensus.config import Settings, reset_settings
from reelconsensus.models import (
    EntityQuery,
    EntitySummary,
    ExternalIds,
    FieldValue,
    SourceRecord,
)

FIXTURES_DIR = Path(__file__).parent / "fixtures"

FIXED_TIME = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


def load_fixture(name: str) -> dict:
    """Load a JSON fixture file."""
    with open(FIXTURES_DIR / name, encoding="utf-8") as f:
        return json.load(f)


def make_record(
    source_id: str,
    value: Any,
    weight: float,
    field_name: str = "director",
    fetched_at: datetime = FIXED_TIME,
) -> SourceRecord:
    """Build a SourceRecord with a fixed timestamp."""
    return SourceRecord(
        source_id=source_id,
        field_name=field_name,
        value=value,
        trust_weight=weight,
        fetched_at=fetched_at,
    )


def make_entity(
    entity_id: str,
    title: str,
    year: int | None = None,
    **kwargs: Any,
) -> EntitySummary:
    """Build an EntitySummary; ``tmdb``/``imdb`` kwargs become external ids."""
    ids = ExternalIds(tmdb=kwargs.pop("tmdb", None), imdb=kwargs.pop("imdb", None))
    return EntitySummary(id=entity_id, title=title, year=year, external_ids=ids, **kwargs)


class FakeAdapter:
    """Adapter returning canned values after an optional delay."""

    def __init__(
        self,
        source_id: str,
        values: Any = None,
        delay: float = 0.0,
        error: Exception | None = None,
    ) -> None:
        self._source_id = source_id
        self.values = values
        self.delay = delay
        self.error = error
        self.requested: list[list[str]] = []

    @property
    def source_id(self) -> str:
        return self._source_id

    async def fetch(
        self, query: EntityQuery, fields: Sequence[str]
    ) -> dict[str, FieldValue | None] | None:
        self.requested.append(list(fields))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.values


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """Keep tests away from the user's config file and environment."""
    monkeypatch.setattr(config, "CONFIG_FILE_PATH", tmp_path / "absent.toml")
    for name in list(os.environ):
        if name.startswith("REELCONSENSUS_"):
            monkeypatch.delenv(name)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def settings() -> Settings:
    """Settings with no batch delay and no .env file."""
    return Settings(_env_file=None, batch_delay_seconds=0.0)


@pytest.fixture
async def response_cache():
    """Provide a memory-only ResponseCache that is closed after tests."""
    cache = ResponseCache()
    yield cache
    await cache.close()
