"""Static registry of metadata sources.

The registry is built once and never mutated. Components receive it by
injection and may share it across concurrent evaluations without locking.
Overrides produce a new registry.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping, Sequence
from types import MappingProxyType

from pydantic import BaseModel, ConfigDict, Field

from reelconsensus.models import SourceRecord, SourceRole

logger = logging.getLogger(__name__)

# Field groups used to declare source capabilities
CREDIT_FIELDS = frozenset({"director", "hero", "heroine", "cast"})
TECH_FIELDS = frozenset(
    {"music_director", "cinematographer", "editor", "writer", "producer"}
)
RELEASE_FIELDS = frozenset({"title", "year", "release_date", "runtime", "genres"})
REVIEW_FIELDS = frozenset({"rating", "verdict"})
ALL_FIELDS = CREDIT_FIELDS | TECH_FIELDS | RELEASE_FIELDS | REVIEW_FIELDS


class SourceDescriptor(BaseModel):
    """Static description of one metadata source.

    Attributes:
        id: Stable source identifier, e.g. ``"tmdb"``.
        name: Human-readable name.
        role: How the source's output may be used.
        trust_weight: Reliability coefficient used in weighted voting.
        requires_license_validation: Output may not be stored until the
            source's license or attribution terms are checked.
        enabled: Disabled sources are never queried.
        capabilities: Field names the source can answer.
        family: Upstream shared with other sources. Sources of one family are
            not independent corroboration. Defaults to the source id.
        priority: Higher runs earlier when order matters for logging.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    role: SourceRole
    trust_weight: float = Field(ge=0.0, le=1.0)
    requires_license_validation: bool = False
    enabled: bool = True
    capabilities: frozenset[str] = ALL_FIELDS
    family: str | None = None
    priority: int = 0

    @property
    def independence_key(self) -> str:
        """Identifier of the source's upstream family."""
        return self.family or self.id

    @property
    def is_storable(self) -> bool:
        """Whether the source's values may reach storage-deciding code."""
        return (
            self.enabled
            and self.role != SourceRole.VALIDATE_ONLY
            and not self.requires_license_validation
        )

    def can_answer(self, fields: Iterable[str]) -> bool:
        """Check whether the source can provide any of the given fields."""
        return not self.capabilities.isdisjoint(fields)


class SourceRegistry(Mapping[str, SourceDescriptor]):
    """Immutable lookup of source descriptors by id.

    Example:
        >>> registry = default_registry()
        >>> registry["tmdb"].trust_weight
        0.95
        >>> registry.is_storable("imdb")
        False
    """

    def __init__(self, descriptors: Iterable[SourceDescriptor]) -> None:
        by_id: dict[str, SourceDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.id in by_id:
                raise ValueError(f"Duplicate source id: {descriptor.id}")
            by_id[descriptor.id] = descriptor
        self._by_id = MappingProxyType(by_id)

    def __getitem__(self, source_id: str) -> SourceDescriptor:
        return self._by_id[source_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._by_id)

    def __len__(self) -> int:
        return len(self._by_id)

    def __repr__(self) -> str:
        return f"SourceRegistry({len(self)} sources)"

    def enabled_for(self, fields: Sequence[str]) -> list[SourceDescriptor]:
        """Enabled sources able to answer at least one of the fields.

        Returns:
            Descriptors sorted by descending priority, then id.
        """
        candidates = [
            d for d in self._by_id.values() if d.enabled and d.can_answer(fields)
        ]
        return sorted(candidates, key=lambda d: (-d.priority, d.id))

    def is_storable(self, source_id: str) -> bool:
        """Whether a source's values may be stored. Unknown ids are not."""
        descriptor = self._by_id.get(source_id)
        return descriptor is not None and descriptor.is_storable

    def family_of(self, source_id: str) -> str:
        """Upstream family of a source; unknown ids form their own family."""
        descriptor = self._by_id.get(source_id)
        return descriptor.independence_key if descriptor else source_id

    def weight_of(self, source_id: str) -> float:
        """Trust weight of a source; unknown ids weigh nothing."""
        descriptor = self._by_id.get(source_id)
        return descriptor.trust_weight if descriptor else 0.0

    def ingest_candidates(self, records: Iterable[SourceRecord]) -> list[SourceRecord]:
        """Filter records down to those whose values may be stored.

        This is a lookup against the registry, not a flag on the record, so a
        record from a validate-only, license-gated, disabled or unregistered
        source can never pass.
        """
        kept: list[SourceRecord] = []
        dropped: set[str] = set()
        for record in records:
            if self.is_storable(record.source_id):
                kept.append(record)
            else:
                dropped.add(record.source_id)
        if dropped:
            logger.debug(f"Excluded non-storable sources from ingest: {sorted(dropped)}")
        return kept

    def with_overrides(
        self,
        *,
        weights: Mapping[str, float] | None = None,
        enabled: Mapping[str, bool] | None = None,
        extra: Iterable[SourceDescriptor] = (),
    ) -> SourceRegistry:
        """Return a new registry with adjusted weights, switches or sources.

        Args:
            weights: New trust weights by source id.
            enabled: New enabled flags by source id.
            extra: Additional descriptors. They may not reuse existing ids.

        Raises:
            KeyError: If an override names an unknown source.
        """
        weights = weights or {}
        enabled = enabled or {}
        unknown = (set(weights) | set(enabled)) - set(self._by_id)
        if unknown:
            raise KeyError(f"Unknown source ids: {sorted(unknown)}")

        updated = []
        for source_id, descriptor in self._by_id.items():
            changes: dict[str, object] = {}
            if source_id in weights:
                changes["trust_weight"] = weights[source_id]
            if source_id in enabled:
                changes["enabled"] = enabled[source_id]
            if changes:
                # model_copy skips validation
                descriptor = SourceDescriptor.model_validate(
                    {**descriptor.model_dump(), **changes}
                )
            updated.append(descriptor)
        return SourceRegistry([*updated, *extra])


_NEWS_PORTAL_FIELDS = CREDIT_FIELDS | TECH_FIELDS | REVIEW_FIELDS | {"year"}


def _portal(source_id: str, name: str, weight: float, priority: int) -> SourceDescriptor:
    return SourceDescriptor(
        id=source_id,
        name=name,
        role=SourceRole.ENRICH,
        trust_weight=weight,
        capabilities=_NEWS_PORTAL_FIELDS,
        priority=priority,
    )


def default_registry() -> SourceRegistry:
    """Build the registry of known sources with their default trust weights.

    TMDB is the baseline. IMDb, Letterboxd, Rotten Tomatoes and BookMyShow
    are queried for confirmation only. Letterboxd and OMDb mirror TMDB and
    IMDb respectively, and the two Wikimedia projects share editors, so each
    of those pairs counts as one independent voice. AI inference is accepted
    as a low-trust gap filler only.
    """
    return SourceRegistry(
        [
            SourceDescriptor(
                id="tmdb",
                name="The Movie Database",
                role=SourceRole.BASELINE,
                trust_weight=0.95,
                priority=21,
            ),
            SourceDescriptor(
                id="letterboxd",
                name="Letterboxd",
                role=SourceRole.VALIDATE_ONLY,
                trust_weight=0.92,
                requires_license_validation=True,
                capabilities=CREDIT_FIELDS | TECH_FIELDS | RELEASE_FIELDS,
                family="tmdb",
                priority=20,
            ),
            SourceDescriptor(
                id="rottentomatoes",
                name="Rotten Tomatoes",
                role=SourceRole.VALIDATE_ONLY,
                trust_weight=0.90,
                requires_license_validation=True,
                priority=19,
            ),
            SourceDescriptor(
                id="imdb",
                name="IMDb",
                role=SourceRole.VALIDATE_ONLY,
                trust_weight=0.90,
                requires_license_validation=True,
                priority=18,
            ),
            _portal("idlebrain", "IdleBrain", 0.88, 17),
            SourceDescriptor(
                id="bookmyshow",
                name="BookMyShow",
                role=SourceRole.VALIDATE_ONLY,
                trust_weight=0.88,
                requires_license_validation=True,
                capabilities=CREDIT_FIELDS | RELEASE_FIELDS,
                priority=16,
            ),
            _portal("eenadu", "Eenadu", 0.86, 15),
            _portal("sakshi", "Sakshi", 0.84, 14),
            _portal("tupaki", "Tupaki", 0.83, 13),
            _portal("gulte", "Gulte", 0.82, 12),
            _portal("123telugu", "123Telugu", 0.81, 11),
            _portal("telugu360", "Telugu360", 0.80, 10),
            _portal("telugucinema", "TeluguCinema", 0.79, 9),
            _portal("filmibeat", "Filmibeat", 0.77, 8),
            _portal("m9news", "M9 News", 0.75, 7),
            SourceDescriptor(
                id="wikipedia",
                name="Wikipedia",
                role=SourceRole.INGEST,
                trust_weight=0.85,
                family="wikimedia",
                priority=4,
            ),
            _portal("greatandhra", "GreatAndhra", 0.85, 3),
            _portal("cinejosh", "CineJosh", 0.82, 2),
            SourceDescriptor(
                id="wikidata",
                name="Wikidata",
                role=SourceRole.INGEST,
                trust_weight=0.80,
                family="wikimedia",
                priority=1,
            ),
            SourceDescriptor(
                id="omdb",
                name="OMDb",
                role=SourceRole.ENRICH,
                trust_weight=0.75,
                family="imdb",
                priority=0,
            ),
            SourceDescriptor(
                id="archive_org",
                name="Internet Archive",
                role=SourceRole.ENRICH,
                trust_weight=0.70,
                enabled=False,
                capabilities=frozenset({"poster"}),
                priority=-1,
            ),
            SourceDescriptor(
                id="ai_inference",
                name="AI metadata inference",
                role=SourceRole.ENRICH,
                trust_weight=0.35,
                capabilities=TECH_FIELDS | frozenset({"genres"}),
                family="ai",
                priority=-2,
            ),
        ]
    )


__all__ = [
    "ALL_FIELDS",
    "CREDIT_FIELDS",
    "RELEASE_FIELDS",
    "REVIEW_FIELDS",
    "TECH_FIELDS",
    "SourceDescriptor",
    "SourceRegistry",
    "default_registry",
]
