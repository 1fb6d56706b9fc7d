"""Base protocols and error hierarchy for metadata source adapters.

This module defines the protocols adapters implement, along with a
standardized error hierarchy. Adapters may raise these errors inside their
own boundary; the orchestrator turns every failure into a non-response so a
broken source can never fail an evaluation.
"""

from collections.abc import Sequence
from typing import Literal, Protocol, runtime_checkable

from reelconsensus.models import (
    CatalogMovie,
    DiscoveredAppearance,
    EntityQuery,
    FieldValue,
    MovieCredits,
)

# Outcome of an HTTP status check, see handle_http_status
StatusType = Literal["ok", "rate_limited", "no_data", "error"]


@runtime_checkable
class SourceAdapter(Protocol):
    """Protocol for adapters answering field queries about one film.

    The @runtime_checkable decorator enables isinstance() checks without
    explicit inheritance.

    Error Handling Contract:
    - None or a missing field: the source has no data (expected)
    - AdapterTimeoutError: Network timeouts (unexpected)
    - AdapterParseError: Malformed responses (unexpected)
    - AdapterAuthError: Authentication failures (unexpected)
    """

    @property
    def source_id(self) -> str:
        """Registry id of this source (e.g., 'tmdb')."""
        ...

    async def fetch(
        self, query: EntityQuery, fields: Sequence[str]
    ) -> dict[str, FieldValue | None] | None:
        """Fetch the requested fields for one film.

        Args:
            query: Identifying data of the film.
            fields: Field names wanted by the caller.

        Returns:
            Mapping of field name to value for the fields the source knows,
            or None if the source does not know the film.

        Raises:
            AdapterError: On transport, parse or authentication failure.
        """
        ...


@runtime_checkable
class FilmographySource(Protocol):
    """Protocol for adapters that list a person's film appearances."""

    @property
    def source_id(self) -> str:
        """Registry id of this source."""
        ...

    async def discover(self, person_name: str) -> list[DiscoveredAppearance] | None:
        """List the films a person appeared in.

        Returns:
            Appearances as seen by this source, or None if the person is
            unknown to it.
        """
        ...


@runtime_checkable
class MovieCatalog(Protocol):
    """Protocol for catalogs whose ids are stored on entities (e.g. TMDB)."""

    async def get_movie(self, movie_id: int) -> CatalogMovie | None:
        """Fetch a film by catalog id; None if the id does not exist."""
        ...

    async def get_credits(self, movie_id: int) -> MovieCredits | None:
        """Fetch the cast and crew of a film; None if unavailable."""
        ...

    async def search_movies(self, title: str, year: int | None = None) -> list[CatalogMovie]:
        """Search the catalog by title, optionally narrowed by year."""
        ...


class AdapterError(Exception):
    """Base exception for all adapter errors.

    Attributes:
        source_id: The adapter that raised this error.
        message: Human-readable error description.
    """

    def __init__(self, source_id: str, message: str) -> None:
        self.source_id = source_id
        self.message = message
        super().__init__(f"[{source_id}] {message}")


class AdapterTimeoutError(AdapterError):
    """Raised when an adapter request times out or the host is unreachable."""

    def __init__(self, source_id: str, timeout_seconds: float | None = None) -> None:
        msg = "Request timed out"
        if timeout_seconds is not None:
            msg = f"Request timed out after {timeout_seconds}s"
        super().__init__(source_id, msg)
        self.timeout_seconds = timeout_seconds


class AdapterParseError(AdapterError):
    """Raised when a response cannot be parsed.

    This typically indicates an API schema change or corruption.
    """

    def __init__(self, source_id: str, details: str | None = None) -> None:
        msg = "Failed to parse API response"
        if details:
            msg = f"Failed to parse API response: {details}"
        super().__init__(source_id, msg)
        self.details = details


class AdapterAuthError(AdapterError):
    """Raised when authentication fails.

    Callers should NOT retry without fixing credentials.
    """

    def __init__(self, source_id: str, details: str | None = None) -> None:
        msg = "Authentication failed"
        if details:
            msg = f"Authentication failed: {details}"
        super().__init__(source_id, msg)
        self.details = details


def handle_http_status(
    source_id: str, status_code: int
) -> tuple[StatusType, AdapterError | None]:
    """Classify an HTTP status code for an adapter.

    Args:
        source_id: Adapter raising the error, for attribution.
        status_code: HTTP status of the response.

    Returns:
        Tuple of (status type, exception to raise or None).
    """
    if 200 <= status_code < 300:
        return "ok", None
    if status_code == 429:
        return "rate_limited", None
    if status_code == 404:
        return "no_data", None
    if status_code in (401, 403):
        return "error", AdapterAuthError(source_id, f"HTTP {status_code}")
    return "error", AdapterError(source_id, f"HTTP {status_code}")


__all__ = [
    "AdapterAuthError",
    "AdapterError",
    "AdapterParseError",
    "AdapterTimeoutError",
    "FilmographySource",
    "MovieCatalog",
    "SourceAdapter",
    "StatusType",
    "handle_http_status",
]
