"""Discovery of films missing from the datastore.

Filmography sources each list a person's appearances. The lists are merged
into one record per (normalized title, year), classified by role, and
compared against the datastore to find appearances with no matching entity.

Merging is a join in a semilattice: sources are unioned, every other
attribute takes the minimum of the known values, and confidence is derived
from the final source count. Merging is therefore commutative, associative
and idempotent.
"""

import asyncio
import logging
from collections.abc import Iterable, Sequence

from pydantic import BaseModel, ConfigDict, Field

from reelconsensus.adapters.base import AdapterError, FilmographySource
from reelconsensus.aggregation.roles import LEAD_ROLES, classify_role
from reelconsensus.config import Settings, get_settings
from reelconsensus.confidence import AutomationDecision, AutomationKind, AutomationPolicy
from reelconsensus.models import DiscoveredAppearance, EntitySummary, ExternalIds
from reelconsensus.normalize import normalize
from reelconsensus.similarity import titles_match

logger = logging.getLogger(__name__)


def confidence_for_sources(source_count: int) -> float:
    """Confidence of an appearance seen by ``source_count`` distinct sources."""
    if source_count >= 3:
        return 0.95
    if source_count == 2:
        return 0.75
    return 0.50


def appearance_key(appearance: DiscoveredAppearance) -> tuple[str, int | None]:
    """Merge key: normalized title and release year."""
    return normalize(appearance.title), appearance.year


def _min_known(*values):
    known = [v for v in values if v is not None]
    return min(known) if known else None


def _role_rank(role: str | None) -> tuple[int, str]:
    """Lead-type roles sort first; unknown roles last."""
    if role is None:
        return (2, "")
    return (0 if normalize(role) in LEAD_ROLES else 1, role)


def _merge_pair(a: DiscoveredAppearance, b: DiscoveredAppearance) -> DiscoveredAppearance:
    sources = sorted(set(a.sources) | set(b.sources))
    roles = [r for r in (a.role, b.role) if r is not None]
    return DiscoveredAppearance(
        title=min(a.title, b.title),
        year=a.year,
        role=min(roles, key=_role_rank) if roles else None,
        character=_min_known(a.character, b.character),
        cast_order=_min_known(a.cast_order, b.cast_order),
        sources=sources,
        confidence=confidence_for_sources(len(sources)),
        external_ids=ExternalIds(
            tmdb=_min_known(a.external_ids.tmdb, b.external_ids.tmdb),
            imdb=_min_known(a.external_ids.imdb, b.external_ids.imdb),
        ),
    )


def merge_sources(
    *per_source_lists: Iterable[DiscoveredAppearance],
) -> list[DiscoveredAppearance]:
    """Merge appearance lists from several sources.

    Observations with the same normalized title and year become one record
    whose sources are the union of theirs. Confidence is recomputed from the
    final number of distinct sources (1: 0.50, 2: 0.75, 3+: 0.95), never
    added up. Role classifications are dropped and must be derived again
    from the merged record.

    Args:
        *per_source_lists: One list per source, or previously merged lists.

    Returns:
        Merged appearances sorted by year (undated last), then title.

    Examples:
        >>> a = DiscoveredAppearance(title="Magadheera", year=2009, sources=["tmdb"])
        >>> b = DiscoveredAppearance(title="magadheera", year=2009, sources=["wikipedia"])
        >>> merge_sources([a], [b])[0].confidence
        0.75
    """
    merged: dict[tuple[str, int | None], DiscoveredAppearance] = {}
    for observations in per_source_lists:
        for observation in observations:
            key = appearance_key(observation)
            if not key[0]:
                continue
            current = merged.get(key)
            merged[key] = _merge_pair(current, observation) if current else _merge_pair(
                observation, observation
            )

    return sorted(
        merged.values(),
        key=lambda a: (a.year is None, a.year or 0, normalize(a.title)),
    )


def find_missing(
    discovered: Iterable[DiscoveredAppearance],
    existing: Sequence[EntitySummary],
    *,
    threshold: float = 0.70,
    year_tolerance: int = 1,
) -> list[DiscoveredAppearance]:
    """Discovered appearances with no matching datastore entity.

    An appearance is present if any entity shares its TMDB or IMDb id, or if
    its title matches the entity's title or alt title within the year
    tolerance.

    Args:
        discovered: Merged appearances.
        existing: Datastore summaries of the person's films.
        threshold: Title similarity threshold.
        year_tolerance: Allowed release year difference.

    Returns:
        Missing appearances, in input order.
    """
    tmdb_ids = {e.external_ids.tmdb for e in existing if e.external_ids.tmdb}
    imdb_ids = {e.external_ids.imdb.lower() for e in existing if e.external_ids.imdb}

    def is_present(appearance: DiscoveredAppearance) -> bool:
        ids = appearance.external_ids
        if ids.tmdb and ids.tmdb in tmdb_ids:
            return True
        if ids.imdb and ids.imdb.lower() in imdb_ids:
            return True
        for entity in existing:
            for title in (entity.title, entity.alt_title):
                if title and titles_match(
                    appearance.title,
                    title,
                    threshold=threshold,
                    year_a=appearance.year,
                    year_b=entity.year,
                    year_tolerance=year_tolerance,
                ):
                    return True
        return False

    return [a for a in discovered if not is_present(a)]


class MissingRecordReport(BaseModel):
    """Result of a missing-film scan for one person."""

    model_config = ConfigDict(frozen=True)

    person_name: str
    discovered: list[DiscoveredAppearance] = Field(default_factory=list)
    missing: list[DiscoveredAppearance] = Field(default_factory=list)
    auto_add: list[DiscoveredAppearance] = Field(default_factory=list)
    review: list[DiscoveredAppearance] = Field(default_factory=list)
    manual: list[DiscoveredAppearance] = Field(default_factory=list)
    sources_queried: list[str] = Field(default_factory=list)
    sources_failed: list[str] = Field(default_factory=list)

    def to_dict(self) -> dict:
        """Serialize to a JSON-ready dictionary."""
        return self.model_dump(mode="json")


class MissingRecordDetector:
    """Find a person's films that the datastore does not have yet.

    Example:
        >>> detector = MissingRecordDetector([TMDBAdapter(api_key=key)])
        >>> report = await detector.detect("Ram Charan", existing, birth_year=1985)
        >>> [a.title for a in report.auto_add]
    """

    def __init__(
        self,
        sources: Iterable[FilmographySource],
        settings: Settings | None = None,
        policy: AutomationPolicy | None = None,
    ) -> None:
        self._sources = list(sources)
        self._settings = settings or get_settings()
        self._policy = policy or AutomationPolicy(self._settings.automation)

    async def _discover_one(
        self, source: FilmographySource, person_name: str
    ) -> tuple[str, list[DiscoveredAppearance] | None]:
        timeout = self._settings.source_timeout_seconds
        try:
            found = await asyncio.wait_for(source.discover(person_name), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Filmography source {source.source_id} timed out for {person_name}")
            return source.source_id, None
        except AdapterError as e:
            logger.warning(f"Filmography source {source.source_id} failed: {e}")
            return source.source_id, None
        except Exception as e:
            logger.error(f"Unexpected error from {source.source_id}: {e}")
            return source.source_id, None

        found = found or []
        # An adapter may forget to tag its own observations
        tagged = [
            a if a.sources else a.model_copy(update={"sources": [source.source_id]})
            for a in found
        ]
        logger.debug(f"{source.source_id} listed {len(tagged)} appearances for {person_name}")
        return source.source_id, tagged

    async def detect(
        self,
        person_name: str,
        existing: Sequence[EntitySummary],
        *,
        birth_year: int | None = None,
    ) -> MissingRecordReport:
        """Discover, merge, classify and diff one person's filmography.

        Args:
            person_name: Person to look up in every filmography source.
            existing: Datastore summaries already linked to the person.
            birth_year: Birth year, used to detect child roles.

        Returns:
            MissingRecordReport with missing appearances split into auto-add,
            review and manual buckets by the ``add_missing`` thresholds.
        """
        outcomes = await asyncio.gather(
            *(self._discover_one(source, person_name) for source in self._sources)
        )
        queried = sorted(source_id for source_id, found in outcomes if found is not None)
        failed = sorted(source_id for source_id, found in outcomes if found is None)

        merged = merge_sources(*(found for _, found in outcomes if found))
        classified = [
            a.model_copy(update={"classification": classify_role(a, birth_year)})
            for a in merged
        ]
        missing = find_missing(
            classified,
            existing,
            threshold=self._settings.discovery_similarity_threshold,
            year_tolerance=self._settings.discovery_year_tolerance,
        )

        buckets: dict[AutomationDecision, list[DiscoveredAppearance]] = {
            decision: [] for decision in AutomationDecision
        }
        for appearance in missing:
            decision = self._policy.decide(AutomationKind.ADD_MISSING, appearance.confidence)
            buckets[decision].append(appearance)

        logger.info(
            f"Discovery complete for {person_name}: {len(merged)} appearances, "
            f"{len(missing)} missing, {len(buckets[AutomationDecision.AUTO_FIX])} auto-add"
        )
        return MissingRecordReport(
            person_name=person_name,
            discovered=classified,
            missing=missing,
            auto_add=buckets[AutomationDecision.AUTO_FIX],
            review=buckets[AutomationDecision.FLAG_REVIEW],
            manual=buckets[AutomationDecision.MANUAL_REQUIRED],
            sources_queried=queried,
            sources_failed=failed,
        )


__all__ = [
    "MissingRecordDetector",
    "MissingRecordReport",
    "appearance_key",
    "confidence_for_sources",
    "find_missing",
    "merge_sources",
]
