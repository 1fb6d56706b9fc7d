"""Validation of stored external catalog ids (TMDB).

A stored id can point at the wrong film: a dubbed version in another
language, a same-named film from another decade, or a film the credited
hero never appeared in. The validator checks the id against the catalog and,
when something is off, searches for a better candidate. It only ever
recommends replacing or clearing the id field; the entity itself is never
touched.
"""

import logging
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from reelconsensus.adapters.base import MovieCatalog
from reelconsensus.config import Settings, get_settings
from reelconsensus.confidence import AutomationKind, AutomationPolicy
from reelconsensus.models import CatalogMovie, EntitySummary
from reelconsensus.similarity import compare_titles, names_match

logger = logging.getLogger(__name__)

TITLE_MATCH_THRESHOLD = 0.70
YEAR_TOLERANCE = 1
MAX_FALLBACK_CANDIDATES = 5

STRONG_MATCH_SCORE = 0.85
POSSIBLE_MATCH_SCORE = 0.70
REPLACE_CONFIDENCE_CAP = 0.95
CLEAR_CONFIDENCE = 0.70
MANUAL_CONFIDENCE = 0.50

# Candidate score = title * 0.5 + year * 0.3 + language * 0.2
_TITLE_WEIGHT = 0.5
_YEAR_WEIGHT = 0.3
_LANGUAGE_WEIGHT = 0.2
_ACTOR_FOUND_FACTOR = 1.2
_ACTOR_MISSING_FACTOR = 0.7


class IdIssue(str, Enum):
    """Problems found with a stored id."""

    NOT_FOUND = "not_found"
    WRONG_LANGUAGE = "wrong_language"
    WRONG_TITLE = "wrong_title"
    WRONG_YEAR = "wrong_year"
    ACTOR_NOT_IN_CAST = "actor_not_in_cast"


class IdAction(str, Enum):
    """Recommended handling of a stored id."""

    KEEP = "keep"
    REPLACE = "replace"
    CLEAR = "clear"  # Clear the id field only
    MANUAL_REVIEW = "manual_review"


class IdValidationResult(BaseModel):
    """Outcome of validating one entity's TMDB id."""

    model_config = ConfigDict(frozen=True)

    entity_id: str
    current_id: int
    is_valid: bool
    issues: list[IdIssue] = Field(default_factory=list)
    suggested_id: int | None = None
    confidence: float = Field(ge=0.0, le=1.0)
    action: IdAction
    reason: str

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-ready dictionary."""
        return self.model_dump(mode="json")


class ExternalIdValidator:
    """Check stored TMDB ids against the catalog.

    Example:
        >>> validator = ExternalIdValidator(TMDBAdapter(api_key=key))
        >>> result = await validator.validate(entity, hero="Mahesh Babu")
        >>> result.action
        <IdAction.KEEP: 'keep'>
    """

    def __init__(
        self,
        catalog: MovieCatalog,
        settings: Settings | None = None,
        policy: AutomationPolicy | None = None,
    ) -> None:
        self._catalog = catalog
        self._settings = settings or get_settings()
        self._policy = policy or AutomationPolicy(self._settings.automation)
        self._language = self._settings.discovery_language

    async def validate(
        self, entity: EntitySummary, hero: str | None = None
    ) -> IdValidationResult:
        """Validate an entity's stored TMDB id.

        Args:
            entity: Entity with a TMDB id.
            hero: Lead actor expected in the cast. Defaults to the entity's
                own hero credit.

        Returns:
            IdValidationResult with issues and a recommended action.

        Raises:
            ValueError: If the entity has no TMDB id.
            AdapterError: If the catalog cannot be reached.
        """
        current_id = entity.external_ids.tmdb
        if current_id is None:
            raise ValueError(f"Entity {entity.id} has no TMDB id")
        hero = hero or entity.attributed_people.get("hero")

        def result(**kwargs: Any) -> IdValidationResult:
            return IdValidationResult(entity_id=entity.id, current_id=current_id, **kwargs)

        movie = await self._catalog.get_movie(current_id)
        if movie is None:
            logger.warning(f"TMDB id {current_id} of {entity.id} does not exist")
            return result(
                is_valid=False,
                issues=[IdIssue.NOT_FOUND],
                confidence=CLEAR_CONFIDENCE,
                action=IdAction.CLEAR,
                reason="TMDB id not found; the id should be cleared",
            )

        issues = await self._check(entity, movie, hero)
        if not issues:
            return result(
                is_valid=True,
                confidence=1.0,
                action=IdAction.KEEP,
                reason="TMDB id is correct",
            )

        best_id, best_score = await self._best_candidate(entity, current_id, hero)
        labels = ", ".join(issue.value for issue in issues)
        logger.info(f"TMDB id {current_id} of {entity.id} has issues: {labels}")

        if best_id is not None and best_score >= STRONG_MATCH_SCORE:
            return result(
                is_valid=False,
                issues=issues,
                suggested_id=best_id,
                confidence=min(REPLACE_CONFIDENCE_CAP, best_score),
                action=IdAction.REPLACE,
                reason=f"Found better match (score {best_score:.2f})",
            )
        if best_id is not None and best_score >= POSSIBLE_MATCH_SCORE:
            return result(
                is_valid=False,
                issues=issues,
                suggested_id=best_id,
                confidence=best_score,
                action=IdAction.REPLACE,
                reason=f"Found possible match (score {best_score:.2f})",
            )
        if IdIssue.WRONG_LANGUAGE in issues:
            return result(
                is_valid=False,
                issues=issues,
                confidence=CLEAR_CONFIDENCE,
                action=IdAction.CLEAR,
                reason="Id points at a film in another language and no alternative was found",
            )
        return result(
            is_valid=False,
            issues=issues,
            confidence=MANUAL_CONFIDENCE,
            action=IdAction.MANUAL_REVIEW,
            reason=f"Issues detected but no clear alternative: {labels}",
        )

    def should_auto_fix(self, result: IdValidationResult) -> bool:
        """Whether a replace or clear recommendation may be applied unattended."""
        return result.action in (IdAction.REPLACE, IdAction.CLEAR) and self._policy.should_auto_fix(
            AutomationKind.FIX_TMDB_ID, result.confidence
        )

    async def _check(
        self, entity: EntitySummary, movie: CatalogMovie, hero: str | None
    ) -> list[IdIssue]:
        issues: list[IdIssue] = []
        if movie.original_language != self._language:
            issues.append(IdIssue.WRONG_LANGUAGE)
        if self._title_score(entity, movie) < TITLE_MATCH_THRESHOLD:
            issues.append(IdIssue.WRONG_TITLE)
        if (
            entity.year is not None
            and movie.year is not None
            and abs(entity.year - movie.year) > YEAR_TOLERANCE
        ):
            issues.append(IdIssue.WRONG_YEAR)
        if hero and await self._hero_in_cast(movie.id, hero) is False:
            issues.append(IdIssue.ACTOR_NOT_IN_CAST)
        return issues

    @staticmethod
    def _title_score(entity: EntitySummary, movie: CatalogMovie) -> float:
        titles = [t for t in (movie.title, movie.original_title) if t]
        return max((compare_titles(entity.title, t).similarity for t in titles), default=0.0)

    async def _hero_in_cast(self, movie_id: int, hero: str) -> bool | None:
        """True or False when credits are known; None when unavailable."""
        credits = await self._catalog.get_credits(movie_id)
        if credits is None:
            logger.debug(f"No credits for TMDB id {movie_id}; skipping cast check")
            return None
        threshold = self._settings.name_match_threshold
        return any(names_match(hero, name, threshold) for name in credits.cast_names())

    async def _best_candidate(
        self, entity: EntitySummary, current_id: int, hero: str | None
    ) -> tuple[int | None, float]:
        """Search the catalog and score every candidate but the current id."""
        results = await self._catalog.search_movies(entity.title, entity.year)
        in_language = [m for m in results if m.original_language == self._language]
        candidates = in_language or results[:MAX_FALLBACK_CANDIDATES]

        best_id: int | None = None
        best_score = 0.0
        for candidate in candidates:
            if candidate.id == current_id:
                continue
            year_ok = (
                entity.year is None
                or candidate.year is None
                or abs(entity.year - candidate.year) <= YEAR_TOLERANCE
            )
            score = (
                self._title_score(entity, candidate) * _TITLE_WEIGHT
                + (1.0 if year_ok else 0.5) * _YEAR_WEIGHT
                + (1.0 if candidate.original_language == self._language else 0.7)
                * _LANGUAGE_WEIGHT
            )
            if hero:
                in_cast = await self._hero_in_cast(candidate.id, hero)
                if in_cast is True:
                    score *= _ACTOR_FOUND_FACTOR
                elif in_cast is False:
                    score *= _ACTOR_MISSING_FACTOR
            score = min(1.0, score)
            if score > best_score:
                best_id, best_score = candidate.id, score

        if best_id is not None:
            logger.debug(f"Best TMDB candidate for {entity.id}: {best_id} ({best_score:.2f})")
        return best_id, best_score


__all__ = [
    "ExternalIdValidator",
    "IdAction",
    "IdIssue",
    "IdValidationResult",
]
