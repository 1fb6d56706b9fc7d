"""Pydantic models for multi-source film metadata reconciliation."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer, model_validator

# A field value as returned by a source adapter: a scalar or a list of names
FieldValue = Union[str, int, float, bool, list[str]]


class InvariantViolation(Exception):
    """Raised when a result would break a structural invariant.

    This is a programming error, never a data condition. It does
    not derive from ValueError so pydantic validators re-raise it unchanged.
    The batch runner treats it as a failure of the single item being
    evaluated, never of the whole batch.
    """


class SourceRole(str, Enum):
    """How a source's output may be used downstream."""

    BASELINE = "baseline"  # Queried first, authoritative by default
    VALIDATE_ONLY = "validate_only"  # Confirmation only, never stored
    INGEST = "ingest"  # May contribute storable values
    ENRICH = "enrich"  # May fill gaps with storable values


class ConsensusAction(str, Enum):
    """Recommended action for a resolved field."""

    AUTO_APPLY = "auto_apply"
    FLAG_CONFLICT = "flag_conflict"
    INSUFFICIENT_DATA = "insufficient_data"


class MatchType(str, Enum):
    """Why two entities were reported as duplicates."""

    SAME_TMDB_ID = "same_tmdb_id"
    SAME_IMDB_ID = "same_imdb_id"
    EXACT_SLUG = "exact_slug"
    EXACT_TITLE_YEAR = "exact_title_year"
    EXACT_ALT_TITLE_YEAR = "exact_alt_title_year"
    NORMALIZED_TITLE_YEAR = "normalized_title_year"
    PUNCTUATION_VARIANT = "punctuation_variant"
    SUBTITLE_VARIANT = "subtitle_variant"
    TRANSLITERATION_VARIANT = "transliteration_variant"
    FUZZY_TITLE = "fuzzy_title"

    @property
    def is_exact(self) -> bool:
        """True for natural-key matches."""
        return self in _EXACT_MATCH_TYPES


_EXACT_MATCH_TYPES = frozenset(
    {
        MatchType.SAME_TMDB_ID,
        MatchType.SAME_IMDB_ID,
        MatchType.EXACT_SLUG,
        MatchType.EXACT_TITLE_YEAR,
        MatchType.EXACT_ALT_TITLE_YEAR,
    }
)


class DuplicateAction(str, Enum):
    """Recommended handling of a duplicate pair."""

    MERGE_RECOMMENDED = "merge_recommended"
    MANUAL_REVIEW = "manual_review"


class RoleType(str, Enum):
    """Kind of appearance a person makes in a film."""

    LEAD = "lead"
    SUPPORTING = "supporting"
    CAMEO = "cameo"
    VOICE = "voice"
    CHILD_ACTOR = "child_actor"


class GhostVerdict(str, Enum):
    """Outcome of a ghost-entry analysis.

    There is intentionally no delete member: removing a credit is a human
    decision taken outside this package.
    """

    CONFIRMED = "confirmed"
    REATTRIBUTE = "reattribute"
    FLAG_FOR_REVIEW = "flag_for_review"


class EntityQuery(BaseModel):
    """What the orchestrator sends to every source adapter for one film."""

    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
    )

    key: str
    title: str
    year: int | None = None
    tmdb_id: int | None = None
    imdb_id: str | None = None
    hero: str | None = None
    director: str | None = None


class SourceRecord(BaseModel):
    """One field value reported by one source for one query."""

    model_config = ConfigDict(frozen=True)

    source_id: str
    field_name: str
    value: FieldValue | None
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    latency_ms: float = Field(default=0.0, ge=0.0)
    trust_weight: float = Field(ge=0.0, le=1.0)

    @field_serializer("fetched_at")
    def serialize_dt(self, dt: datetime) -> str:
        """Serialize datetime to ISO 8601 format with timezone."""
        return dt.isoformat()


class CompetingValue(BaseModel):
    """One side of a conflict: a value and who backs it."""

    model_config = ConfigDict(frozen=True)

    value: FieldValue
    weight: float
    sources: list[str]


class ConflictDetail(BaseModel):
    """Competing values retained for a human when sources disagree."""

    model_config = ConfigDict(frozen=True)

    values: list[CompetingValue]


class ConsensusResult(BaseModel):
    """Consensus decision for one field."""

    model_config = ConfigDict(frozen=True)

    field_name: str
    consensus_value: FieldValue | None = None
    confidence: float = Field(ge=0.0, le=1.0)
    agreeing_sources: list[str] = Field(default_factory=list)
    disagreeing_sources: list[str] = Field(default_factory=list)
    conflict: ConflictDetail | None = None
    action: ConsensusAction
    requires_audit: bool = False
    responding_sources: int = 0

    @model_validator(mode="after")
    def check_disjoint(self) -> "ConsensusResult":
        """A source cannot both agree and disagree."""
        overlap = set(self.agreeing_sources) & set(self.disagreeing_sources)
        if overlap:
            raise InvariantViolation(
                f"Sources both agree and disagree on {self.field_name}: {sorted(overlap)}"
            )
        return self

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-ready dictionary."""
        return self.model_dump(mode="json")


class ExternalIds(BaseModel):
    """Identifiers of an entity in third-party catalogs."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    tmdb: int | None = None
    imdb: str | None = None


class EntitySummary(BaseModel):
    """Minimal read-only projection of a datastore row."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: str
    title: str
    alt_title: str | None = None
    year: int | None = None
    external_ids: ExternalIds = Field(default_factory=ExternalIds)
    slug: str | None = None
    attributed_people: dict[str, str] = Field(default_factory=dict)

    def to_query(self) -> EntityQuery:
        """Build the source query for this entity."""
        return EntityQuery(
            key=self.id,
            title=self.title,
            year=self.year,
            tmdb_id=self.external_ids.tmdb,
            imdb_id=self.external_ids.imdb,
            hero=self.attributed_people.get("hero"),
            director=self.attributed_people.get("director"),
        )


class DuplicateMatch(BaseModel):
    """A pair of entity ids believed to describe the same film.

    The pair is unordered: ids are stored sorted so (a, b) and (b, a) compare
    equal.
    """

    model_config = ConfigDict(frozen=True)

    id_a: str
    id_b: str
    match_type: MatchType
    matched_on: str
    similarity: float = Field(ge=0.0, le=1.0)
    confidence: float = Field(ge=0.0, le=1.0)
    action: DuplicateAction

    @model_validator(mode="before")
    @classmethod
    def order_ids(cls, data: Any) -> Any:
        """Store the pair in sorted order and refuse self-matches."""
        if isinstance(data, dict) and "id_a" in data and "id_b" in data:
            id_a, id_b = str(data["id_a"]), str(data["id_b"])
            if id_a == id_b:
                raise InvariantViolation(f"Entity {id_a} cannot duplicate itself")
            if id_b < id_a:
                data = {**data, "id_a": id_b, "id_b": id_a}
        return data

    @property
    def pair(self) -> tuple[str, str]:
        """The sorted id pair."""
        return (self.id_a, self.id_b)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-ready dictionary."""
        return self.model_dump(mode="json")


class DuplicateReport(BaseModel):
    """Output of a full duplicate scan."""

    exact: list[DuplicateMatch] = Field(default_factory=list)
    fuzzy: list[DuplicateMatch] = Field(default_factory=list)
    total_checked: int = 0

    @property
    def pairs_found(self) -> int:
        """Number of distinct pairs across both passes."""
        return len(self.exact) + len(self.fuzzy)


class RoleClassification(BaseModel):
    """Derived role of a person in one appearance."""

    model_config = ConfigDict(frozen=True)

    type: RoleType
    confidence: float = Field(ge=0.0, le=1.0)
    is_primary: bool = False


class DiscoveredAppearance(BaseModel):
    """One (person, film) fact as seen by the union of discovery sources."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    title: str
    year: int | None = None
    role: str | None = None
    character: str | None = None
    cast_order: int | None = None
    sources: list[str] = Field(default_factory=list)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    external_ids: ExternalIds = Field(default_factory=ExternalIds)
    classification: RoleClassification | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-ready dictionary."""
        return self.model_dump(mode="json")


class GhostEvidence(BaseModel):
    """What one source says about a claimed credit."""

    model_config = ConfigDict(frozen=True)

    source_id: str
    supports: bool
    suggested_person: str | None = None


class GhostAnalysis(BaseModel):
    """Decision on whether a person is really credited on a film."""

    model_config = ConfigDict(frozen=True)

    entity_id: str
    claimed_person: str
    role: str
    verdict: GhostVerdict
    suggested_person: str | None = None
    confidence: float = Field(ge=0.0, le=1.0)
    evidence: list[GhostEvidence] = Field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-ready dictionary."""
        return self.model_dump(mode="json")


class CatalogMovie(BaseModel):
    """A film as listed by an external catalog such as TMDB."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: int
    title: str
    original_title: str | None = None
    original_language: str | None = None
    year: int | None = None
    imdb_id: str | None = None


class CreditEntry(BaseModel):
    """One cast or crew line of a catalog film."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    name: str
    character: str | None = None
    order: int | None = None
    job: str | None = None
    department: str | None = None
    gender: int | None = None


class MovieCredits(BaseModel):
    """Cast and crew of a catalog film."""

    model_config = ConfigDict(frozen=True)

    cast: list[CreditEntry] = Field(default_factory=list)
    crew: list[CreditEntry] = Field(default_factory=list)

    def crew_for(self, job: str) -> list[str]:
        """Names credited with the given job, in catalog order."""
        wanted = job.lower()
        return [c.name for c in self.crew if c.job and c.job.lower() == wanted]

    def cast_names(self) -> list[str]:
        """Cast names ordered by billing."""
        ordered = sorted(
            enumerate(self.cast),
            key=lambda item: (item[1].order if item[1].order is not None else item[0], item[0]),
        )
        return [entry.name for _, entry in ordered]


__all__ = [
    "CatalogMovie",
    "CompetingValue",
    "CreditEntry",
    "MovieCredits",
    "ConflictDetail",
    "ConsensusAction",
    "ConsensusResult",
    "DiscoveredAppearance",
    "DuplicateAction",
    "DuplicateMatch",
    "DuplicateReport",
    "EntityQuery",
    "EntitySummary",
    "ExternalIds",
    "FieldValue",
    "GhostAnalysis",
    "GhostEvidence",
    "GhostVerdict",
    "InvariantViolation",
    "MatchType",
    "RoleClassification",
    "RoleType",
    "SourceRecord",
    "SourceRole",
]
