"""Response cache for source adapters.

Adapters may cache raw upstream responses here to respect third-party
quotas. The consensus, duplicate, ghost and discovery engines never read or
write this cache: their results are always computed fresh.

Two tiers: a bounded in-memory LRU (L1) and an optional SQLite table (L2)
that survives restarts.
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import aiosqlite
from pydantic import BaseModel, ConfigDict, Field, field_serializer

from reelconsensus.config import Settings, get_settings

logger = logging.getLogger(__name__)


def cache_key(source: str, kind: str, **params: Any) -> str:
    """Deterministic cache key for one upstream request.

    Format: {source}:{kind}:{params_hash}, where the hash is the first 12
    hex chars of the SHA-256 of the params as sorted JSON.

    Args:
        source: Source id (e.g., "tmdb").
        kind: Request kind (e.g., "credits", "search").
        **params: Request parameters. None values are dropped.

    Returns:
        Cache key string.
    """
    present = {k: v for k, v in params.items() if v is not None}
    encoded = json.dumps(present, sort_keys=True, default=str).encode()
    return f"{source}:{kind}:{hashlib.sha256(encoded).hexdigest()[:12]}"


class CachedResponse(BaseModel):
    """A cached upstream payload with its expiry."""

    model_config = ConfigDict(frozen=True)

    key: str
    payload: Any
    stored_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    ttl_seconds: int = Field(ge=0)
    source: str

    @field_serializer("stored_at")
    def serialize_dt(self, dt: datetime) -> str:
        """Serialize datetime to ISO format."""
        return dt.isoformat()

    @property
    def expires_at(self) -> datetime:
        """When the entry stops being served."""
        return self.stored_at + timedelta(seconds=self.ttl_seconds)

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check if the entry has passed its TTL."""
        return (now or datetime.now(timezone.utc)) >= self.expires_at


class SQLiteResponseStore:
    """L2 persistent tier backed by aiosqlite in WAL mode."""

    def __init__(
        self, db_path: str | Path | None = None, settings: Settings | None = None
    ) -> None:
        """Initialize the store.

        Args:
            db_path: Database file. Defaults to ``Settings.cache_path``.
            settings: Optional Settings instance.
        """
        if db_path is None:
            db_path = (settings or get_settings()).cache_path
        self._db_path = Path(db_path).expanduser()
        self._conn: aiosqlite.Connection | None = None

    async def connect(self) -> aiosqlite.Connection:
        """Open the database on first use and create the table."""
        if self._conn is not None:
            return self._conn

        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(str(self._db_path), timeout=30.0)
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA synchronous=NORMAL")
        await self._conn.execute("""
            CREATE TABLE IF NOT EXISTS responses (
                key TEXT PRIMARY KEY,
                payload TEXT NOT NULL,
                stored_at TEXT NOT NULL,
                ttl_seconds INTEGER NOT NULL,
                source TEXT NOT NULL
            )
        """)
        await self._conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_responses_source ON responses (source)"
        )
        await self._conn.commit()
        logger.info(f"Response store opened at {self._db_path}")
        return self._conn

    async def close(self) -> None:
        """Close the connection if open."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def load(self, key: str) -> CachedResponse | None:
        """Read one entry, expired or not."""
        conn = await self.connect()
        cursor = await conn.execute(
            "SELECT key, payload, stored_at, ttl_seconds, source FROM responses WHERE key = ?",
            (key,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return CachedResponse(
            key=row[0],
            payload=json.loads(row[1]),
            stored_at=datetime.fromisoformat(row[2]),
            ttl_seconds=row[3],
            source=row[4],
        )

    async def save(self, entry: CachedResponse) -> None:
        """Insert or replace one entry."""
        conn = await self.connect()
        await conn.execute(
            """INSERT OR REPLACE INTO responses (key, payload, stored_at, ttl_seconds, source)
               VALUES (?, ?, ?, ?, ?)""",
            (
                entry.key,
                json.dumps(entry.payload),
                entry.stored_at.isoformat(),
                entry.ttl_seconds,
                entry.source,
            ),
        )
        await conn.commit()

    async def delete(self, key: str) -> None:
        """Remove one entry if present."""
        conn = await self.connect()
        await conn.execute("DELETE FROM responses WHERE key = ?", (key,))
        await conn.commit()

    async def purge_source(self, source: str) -> int:
        """Remove every entry of a source.

        Returns:
            Number of rows removed.
        """
        conn = await self.connect()
        cursor = await conn.execute("DELETE FROM responses WHERE source = ?", (source,))
        await conn.commit()
        return cursor.rowcount


class ResponseCache:
    """Two-tier TTL cache for adapter responses.

    Example:
        >>> cache = ResponseCache()
        >>> key = cache_key("tmdb", "movie", movie_id=1)
        >>> await cache.set(key, {"id": 1}, ttl_seconds=60, source="tmdb")
        >>> await cache.get(key)
        {'id': 1}
    """

    def __init__(self, store: SQLiteResponseStore | None = None, max_entries: int = 1024) -> None:
        """Initialize the cache.

        Args:
            store: Optional persistent tier. Without it the cache is memory only.
            max_entries: L1 capacity; least recently used entries are evicted.
        """
        self._memory: OrderedDict[str, CachedResponse] = OrderedDict()
        self._store = store
        self._max_entries = max_entries
        self.hits = 0
        self.misses = 0

    def _remember(self, entry: CachedResponse) -> None:
        self._memory[entry.key] = entry
        self._memory.move_to_end(entry.key)
        while len(self._memory) > self._max_entries:
            self._memory.popitem(last=False)

    async def get(self, key: str) -> Any | None:
        """Return a fresh cached payload, or None on miss or expiry."""
        entry = self._memory.get(key)
        if entry is None and self._store is not None:
            entry = await self._store.load(key)
            if entry is not None:
                logger.debug(f"L2 cache hit: {key}")

        if entry is None or entry.is_expired():
            if entry is not None:
                await self.invalidate(key)
            self.misses += 1
            logger.debug(f"Cache miss: {key}")
            return None

        self._remember(entry)
        self.hits += 1
        return entry.payload

    async def set(self, key: str, payload: Any, ttl_seconds: int, source: str) -> None:
        """Store a payload in both tiers."""
        entry = CachedResponse(key=key, payload=payload, ttl_seconds=ttl_seconds, source=source)
        self._remember(entry)
        if self._store is not None:
            await self._store.save(entry)

    async def invalidate(self, key: str) -> None:
        """Drop one key from both tiers."""
        self._memory.pop(key, None)
        if self._store is not None:
            await self._store.delete(key)

    async def invalidate_source(self, source: str) -> int:
        """Drop every entry of a source from both tiers.

        Returns:
            Number of entries removed, counting the persistent tier when present.
        """
        doomed = [k for k, v in self._memory.items() if v.source == source]
        for key in doomed:
            del self._memory[key]
        removed = len(doomed)
        if self._store is not None:
            removed = max(removed, await self._store.purge_source(source))
        logger.debug(f"Invalidated {removed} cached responses for {source}")
        return removed

    async def close(self) -> None:
        """Release the persistent tier."""
        if self._store is not None:
            await self._store.close()


__all__ = [
    "CachedResponse",
    "ResponseCache",
    "SQLiteResponseStore",
    "cache_key",
]
