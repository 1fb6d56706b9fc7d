"""Film data source adapters."""

from reelconsensus.adapters.base import (
    AdapterAuthError,
    AdapterError,
    AdapterParseError,
    AdapterTimeoutError,
    FilmographySource,
    MovieCatalog,
    SourceAdapter,
    handle_http_status,
)
from reelconsensus.adapters.tmdb import TMDBAdapter

__all__ = [
    "SourceAdapter",
    "FilmographySource",
    "MovieCatalog",
    "AdapterError",
    "AdapterTimeoutError",
    "AdapterParseError",
    "AdapterAuthError",
    "TMDBAdapter",
    "handle_http_status",
]
