"""TMDB adapter for film credits, filmographies and catalog lookups.

Uses The Movie Database v3 REST API. One adapter instance serves three
roles: a SourceAdapter for per-film credit fields, a FilmographySource for
missing-film discovery, and a MovieCatalog for id validation.
"""

import logging
from collections.abc import Sequence
from typing import Any

import httpx
from pydantic import ValidationError

from reelconsensus.adapters.base import (
    AdapterAuthError,
    AdapterError,
    AdapterParseError,
    AdapterTimeoutError,
    handle_http_status,
)
from reelconsensus.cache import ResponseCache, cache_key
from reelconsensus.config import Settings, get_settings
from reelconsensus.models import (
    CatalogMovie,
    CreditEntry,
    DiscoveredAppearance,
    EntityQuery,
    ExternalIds,
    FieldValue,
    MovieCredits,
)
from reelconsensus.similarity import compare_titles

logger = logging.getLogger(__name__)

# TMDB gender codes
GENDER_FEMALE = 1
GENDER_MALE = 2

# Crew jobs per field, most specific first
CREW_JOBS: dict[str, tuple[str, ...]] = {
    "director": ("Director",),
    "cinematographer": ("Director of Photography", "Cinematography"),
    "editor": ("Editor",),
    "writer": ("Screenplay", "Writer", "Story"),
    "music_director": ("Original Music Composer", "Music", "Music Director"),
    "producer": ("Producer",),
}

SUPPORTED_FIELDS = frozenset({"hero", "heroine", "cast", "year", *CREW_JOBS})

MAX_CAST_NAMES = 15


def _year_of(release_date: Any) -> int | None:
    if isinstance(release_date, str) and len(release_date) >= 4 and release_date[:4].isdigit():
        return int(release_date[:4])
    return None


class TMDBAdapter:
    """The Movie Database adapter.

    Requires an API key, taken from ``Settings.tmdb_api_key`` unless passed
    explicitly.

    Attributes:
        source_id: "tmdb"
    """

    BASE_URL = "https://api.themoviedb.org/3"
    DEFAULT_TIMEOUT = 10.0  # seconds

    def __init__(
        self,
        api_key: str | None = None,
        cache: ResponseCache | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the TMDB adapter.

        Args:
            api_key: TMDB v3 API key. Defaults to the configured key.
            cache: Optional response cache.
            settings: Optional Settings instance.
        """
        self._settings = settings or get_settings()
        if api_key is None and self._settings.tmdb_api_key is not None:
            api_key = self._settings.tmdb_api_key.get_secret_value()
        self._api_key = api_key
        self._cache = cache
        self._client: httpx.AsyncClient | None = None

    @property
    def source_id(self) -> str:
        """Registry id of this source."""
        return "tmdb"

    async def _get_client(self) -> httpx.AsyncClient:
        """Lazy initialization of HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.BASE_URL,
                timeout=httpx.Timeout(self.DEFAULT_TIMEOUT),
                headers={"User-Agent": "reelconsensus/0.1 (film metadata reconciliation)"},
            )
        return self._client

    async def _get_json(self, path: str, kind: str, **params: Any) -> dict[str, Any] | None:
        """GET an endpoint, through the cache when one is configured.

        Returns:
            Parsed JSON object, or None on 404.

        Raises:
            AdapterAuthError: If no API key is configured or TMDB rejects it.
            AdapterTimeoutError: On timeouts and connection failures.
            AdapterParseError: If the body is not a JSON object.
            AdapterError: On rate limiting and other HTTP errors.
        """
        if not self._api_key:
            raise AdapterAuthError(self.source_id, "TMDB API key not configured")

        key = cache_key(self.source_id, kind, path=path, **params)
        if self._cache is not None:
            cached = await self._cache.get(key)
            if cached is not None:
                logger.debug(f"Cache hit for {key}")
                return cached

        client = await self._get_client()
        query = {k: v for k, v in params.items() if v is not None}
        try:
            response = await client.get(path, params={**query, "api_key": self._api_key})
        except httpx.TimeoutException as e:
            logger.warning(f"TMDB timeout on {path}")
            raise AdapterTimeoutError(self.source_id, self.DEFAULT_TIMEOUT) from e
        except httpx.RequestError as e:
            # DNS, connection reset, etc. The message may embed the URL and key.
            logger.error(f"TMDB request error on {path}: {type(e).__name__}")
            raise AdapterTimeoutError(self.source_id, self.DEFAULT_TIMEOUT) from e

        status_type, exc = handle_http_status(self.source_id, response.status_code)
        if status_type == "no_data":
            return None
        if status_type == "rate_limited":
            logger.warning("TMDB rate limited")
            raise AdapterError(self.source_id, "Rate limited")
        if exc:
            logger.error(f"TMDB HTTP error on {path}: {response.status_code}")
            raise exc

        try:
            data = response.json()
        except ValueError as e:
            raise AdapterParseError(self.source_id, "Invalid JSON response") from e
        if not isinstance(data, dict):
            raise AdapterParseError(self.source_id, f"Expected an object from {path}")

        if self._cache is not None:
            await self._cache.set(
                key, data, ttl_seconds=self._settings.ttl_tmdb, source=self.source_id
            )
        return data

    @staticmethod
    def _parse_movie(raw: dict[str, Any]) -> CatalogMovie:
        return CatalogMovie(
            id=raw["id"],
            title=raw.get("title") or raw.get("original_title") or "",
            original_title=raw.get("original_title"),
            original_language=raw.get("original_language"),
            year=_year_of(raw.get("release_date")),
            imdb_id=raw.get("imdb_id") or None,
        )

    async def get_movie(self, movie_id: int) -> CatalogMovie | None:
        """Fetch a film by TMDB id; None if it does not exist."""
        data = await self._get_json(f"/movie/{movie_id}", "movie")
        if data is None:
            return None
        try:
            return self._parse_movie(data)
        except (KeyError, ValidationError) as e:
            raise AdapterParseError(self.source_id, f"Unexpected movie payload: {e}") from e

    async def get_credits(self, movie_id: int) -> MovieCredits | None:
        """Fetch cast and crew of a film; None if it does not exist."""
        data = await self._get_json(f"/movie/{movie_id}/credits", "credits")
        if data is None:
            return None
        try:
            return MovieCredits(
                cast=[
                    CreditEntry(
                        name=c["name"],
                        character=c.get("character") or None,
                        order=c.get("order"),
                        gender=c.get("gender"),
                    )
                    for c in data.get("cast", [])
                ],
                crew=[
                    CreditEntry(
                        name=c["name"],
                        job=c.get("job"),
                        department=c.get("department"),
                        gender=c.get("gender"),
                    )
                    for c in data.get("crew", [])
                ],
            )
        except (KeyError, TypeError, ValidationError) as e:
            raise AdapterParseError(self.source_id, f"Unexpected credits payload: {e}") from e

    async def search_movies(self, title: str, year: int | None = None) -> list[CatalogMovie]:
        """Search films by title, optionally narrowed by release year."""
        data = await self._get_json("/search/movie", "search_movie", query=title, year=year)
        movies: list[CatalogMovie] = []
        for raw in (data or {}).get("results", []):
            try:
                movies.append(self._parse_movie(raw))
            except (KeyError, ValidationError):
                logger.debug(f"Skipping malformed TMDB search result for {title!r}")
        return movies

    async def _resolve_movie_id(self, query: EntityQuery) -> int | None:
        """Known TMDB id, else the best same-language search hit."""
        if query.tmdb_id:
            return query.tmdb_id
        candidates = await self.search_movies(query.title, query.year)
        language = self._settings.discovery_language
        scored = [
            (compare_titles(query.title, m.title).similarity, m.original_language == language, m)
            for m in candidates
        ]
        scored = [s for s in scored if s[0] >= self._settings.discovery_similarity_threshold]
        if not scored:
            return None
        best = max(scored, key=lambda s: (s[1], s[0], -s[2].id))
        return best[2].id

    async def fetch(
        self, query: EntityQuery, fields: Sequence[str]
    ) -> dict[str, FieldValue | None] | None:
        """Fetch credit fields of one film.

        Hero and heroine are the top-billed male and female cast members.

        Returns:
            Requested fields TMDB can answer, or None if the film is unknown.
        """
        wanted = [f for f in fields if f in SUPPORTED_FIELDS]
        if not wanted:
            return None

        movie_id = await self._resolve_movie_id(query)
        if movie_id is None:
            logger.debug(f"No TMDB match for {query.title!r} ({query.year})")
            return None

        credits = await self.get_credits(movie_id)
        if credits is None:
            return None

        billed = sorted(
            enumerate(credits.cast),
            key=lambda item: (item[1].order if item[1].order is not None else item[0], item[0]),
        )
        values: dict[str, FieldValue | None] = {
            "hero": next((c.name for _, c in billed if c.gender == GENDER_MALE), None),
            "heroine": next((c.name for _, c in billed if c.gender == GENDER_FEMALE), None),
            "cast": [c.name for _, c in billed[:MAX_CAST_NAMES]] or None,
        }
        for field_name, jobs in CREW_JOBS.items():
            values[field_name] = next(
                (names[0] for job in jobs if (names := credits.crew_for(job))), None
            )
        if "year" in wanted:
            movie = await self.get_movie(movie_id)
            values["year"] = movie.year if movie else None

        return {f: values.get(f) for f in wanted}

    async def _search_person(self, person_name: str) -> int | None:
        data = await self._get_json("/search/person", "search_person", query=person_name)
        results = (data or {}).get("results", [])
        acting = [r for r in results if r.get("known_for_department") == "Acting"]
        best = (acting or results)[:1]
        return best[0].get("id") if best else None

    async def discover(self, person_name: str) -> list[DiscoveredAppearance] | None:
        """List a person's film appearances in the configured language.

        Returns:
            Appearances ordered newest first, or None if TMDB does not know
            the person.
        """
        person_id = await self._search_person(person_name)
        if person_id is None:
            return None

        data = await self._get_json(f"/person/{person_id}/movie_credits", "person_credits")
        if data is None:
            return None

        language = self._settings.discovery_language
        appearances: list[DiscoveredAppearance] = []
        for credit in data.get("cast", []):
            if credit.get("original_language") != language or not credit.get("title"):
                continue
            try:
                appearances.append(
                    DiscoveredAppearance(
                        title=credit["title"],
                        year=_year_of(credit.get("release_date")),
                        character=credit.get("character") or None,
                        cast_order=credit.get("order"),
                        sources=[self.source_id],
                        external_ids=ExternalIds(tmdb=credit.get("id")),
                    )
                )
            except ValidationError:
                logger.debug(f"Skipping malformed TMDB credit for {person_name}")

        appearances.sort(key=lambda a: (a.year is None, -(a.year or 0), a.title))
        logger.info(f"TMDB lists {len(appearances)} {language} films for {person_name}")
        return appearances

    async def health_check(self) -> bool:
        """Check if the TMDB API is reachable with the configured key."""
        try:
            return await self._get_json("/configuration", "configuration") is not None
        except AdapterError as e:
            logger.warning(f"TMDB health check failed: {e}")
            return False

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.debug("TMDB adapter client closed")


__all__ = [
    "CREW_JOBS",
    "SUPPORTED_FIELDS",
    "TMDBAdapter",
]
