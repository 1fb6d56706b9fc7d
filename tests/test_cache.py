"""Tests for the adapter response cache."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from reelconsensus.cache import (
    CachedResponse,
    ResponseCache,
    SQLiteResponseStore,
    cache_key,
)
from reelconsensus.config import Settings


class TestCacheKey:
    def test_format(self) -> None:
        """Keys are {source}:{kind}:{12-char hash}."""
        key = cache_key("tmdb", "movie", movie_id=40663)
        source, kind, digest = key.split(":")
        assert (source, kind) == ("tmdb", "movie")
        assert len(digest) == 12

    def test_param_order_irrelevant(self) -> None:
        """Keyword order does not change the key."""
        assert cache_key("tmdb", "search", query="Eega", year=2012) == cache_key(
            "tmdb", "search", year=2012, query="Eega"
        )

    def test_none_params_dropped(self) -> None:
        """A None param is the same as an absent one."""
        assert cache_key("tmdb", "search", query="Eega", year=None) == cache_key(
            "tmdb", "search", query="Eega"
        )

    def test_different_params_differ(self) -> None:
        """Different params produce different keys."""
        assert cache_key("tmdb", "movie", movie_id=1) != cache_key("tmdb", "movie", movie_id=2)


class TestCachedResponse:
    def test_expiry(self) -> None:
        """Entries expire after their TTL."""
        stored = datetime(2024, 1, 1, tzinfo=timezone.utc)
        entry = CachedResponse(key="k", payload={}, stored_at=stored, ttl_seconds=60, source="tmdb")
        assert entry.expires_at == stored + timedelta(seconds=60)
        assert not entry.is_expired(stored + timedelta(seconds=59))
        assert entry.is_expired(stored + timedelta(seconds=60))


class TestResponseCacheMemory:
    @pytest.mark.asyncio
    async def test_set_and_get(self, response_cache: ResponseCache) -> None:
        """Stored payloads are returned while fresh."""
        await response_cache.set("tmdb:movie:x", {"id": 1}, ttl_seconds=60, source="tmdb")

        assert await response_cache.get("tmdb:movie:x") == {"id": 1}
        assert response_cache.hits == 1

    @pytest.mark.asyncio
    async def test_miss(self, response_cache: ResponseCache) -> None:
        """Unknown keys miss."""
        assert await response_cache.get("tmdb:movie:none") is None
        assert response_cache.misses == 1

    @pytest.mark.asyncio
    async def test_expired_entry_is_not_served(self, response_cache: ResponseCache) -> None:
        """A zero TTL entry is never served."""
        await response_cache.set("k", {"id": 1}, ttl_seconds=0, source="tmdb")

        assert await response_cache.get("k") is None

    @pytest.mark.asyncio
    async def test_lru_eviction(self) -> None:
        """The least recently used entry is evicted past capacity."""
        cache = ResponseCache(max_entries=2)
        await cache.set("a", 1, ttl_seconds=60, source="tmdb")
        await cache.set("b", 2, ttl_seconds=60, source="tmdb")
        await cache.get("a")
        await cache.set("c", 3, ttl_seconds=60, source="tmdb")

        assert await cache.get("b") is None
        assert await cache.get("a") == 1
        assert await cache.get("c") == 3

    @pytest.mark.asyncio
    async def test_invalidate_source(self, response_cache: ResponseCache) -> None:
        """All entries of one source can be dropped."""
        await response_cache.set("tmdb:a", 1, ttl_seconds=60, source="tmdb")
        await response_cache.set("tmdb:b", 2, ttl_seconds=60, source="tmdb")
        await response_cache.set("omdb:a", 3, ttl_seconds=60, source="omdb")

        removed = await response_cache.invalidate_source("tmdb")

        assert removed == 2
        assert await response_cache.get("tmdb:a") is None
        assert await response_cache.get("omdb:a") == 3


class TestResponseCacheSQLite:
    @pytest.mark.asyncio
    async def test_persists_across_instances(self, tmp_path: Path) -> None:
        """The SQLite tier survives a new cache instance."""
        db_path = tmp_path / "cache.db"
        first = ResponseCache(store=SQLiteResponseStore(db_path))
        await first.set("tmdb:movie:x", {"title": "Eega"}, ttl_seconds=3600, source="tmdb")
        await first.close()

        second = ResponseCache(store=SQLiteResponseStore(db_path))
        try:
            assert await second.get("tmdb:movie:x") == {"title": "Eega"}
        finally:
            await second.close()

    @pytest.mark.asyncio
    async def test_invalidate_removes_from_store(self, tmp_path: Path) -> None:
        """Invalidated keys are gone from both tiers."""
        store = SQLiteResponseStore(tmp_path / "cache.db")
        cache = ResponseCache(store=store)
        try:
            await cache.set("k", [1, 2], ttl_seconds=3600, source="tmdb")
            await cache.invalidate("k")
            assert await store.load("k") is None
        finally:
            await cache.close()

    @pytest.mark.asyncio
    async def test_purge_source(self, tmp_path: Path) -> None:
        """purge_source removes only the named source's rows."""
        store = SQLiteResponseStore(tmp_path / "cache.db")
        try:
            await store.save(CachedResponse(key="a", payload=1, ttl_seconds=60, source="tmdb"))
            await store.save(CachedResponse(key="b", payload=2, ttl_seconds=60, source="omdb"))
            assert await store.purge_source("tmdb") == 1
            assert await store.load("a") is None
            loaded = await store.load("b")
            assert loaded is not None
            assert loaded.payload == 2
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_default_path_from_settings(self, tmp_path: Path) -> None:
        """Without a path, the store opens Settings.cache_path."""
        db_path = tmp_path / "nested" / "cache.db"
        store = SQLiteResponseStore(settings=Settings(_env_file=None, cache_path=db_path))
        try:
            await store.save(CachedResponse(key="a", payload=1, ttl_seconds=60, source="tmdb"))
        finally:
            await store.close()

        assert db_path.exists()
