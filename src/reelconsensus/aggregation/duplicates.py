"""Exact and fuzzy duplicate detection over datastore rows.

The exact pass groups entities on natural keys (external ids, slug, title
and year). The fuzzy pass compares the remaining entities pairwise within
year buckets, splitting oversized buckets by first title token, and labels
each hit with the kind of title variant that produced it. Only pure
punctuation variants of the same year may be merged unattended.
"""

import logging
from collections import defaultdict
from collections.abc import Callable, Iterable, Iterator, Sequence
from itertools import combinations, product

from reelconsensus.config import Settings, get_settings
from reelconsensus.confidence import AutomationKind, AutomationPolicy
from reelconsensus.models import (
    DuplicateAction,
    DuplicateMatch,
    DuplicateReport,
    EntitySummary,
    MatchType,
)
from reelconsensus.normalize import normalize, tokens
from reelconsensus.similarity import TitleComparison, TitleVariant, compare_titles

logger = logging.getLogger(__name__)

_VARIANT_MATCH_TYPES: dict[TitleVariant, MatchType] = {
    TitleVariant.EXACT: MatchType.NORMALIZED_TITLE_YEAR,
    TitleVariant.PUNCTUATION_VARIANT: MatchType.PUNCTUATION_VARIANT,
    TitleVariant.SUBTITLE_VARIANT: MatchType.SUBTITLE_VARIANT,
    TitleVariant.TRANSLITERATION_VARIANT: MatchType.TRANSLITERATION_VARIANT,
    TitleVariant.FUZZY_VARIANT: MatchType.FUZZY_TITLE,
}

# How far a variant type can be trusted to mean "same film"
_VARIANT_CERTAINTY: dict[MatchType, float] = {
    MatchType.NORMALIZED_TITLE_YEAR: 0.90,
    MatchType.PUNCTUATION_VARIANT: 0.95,
    MatchType.SUBTITLE_VARIANT: 0.85,
    MatchType.TRANSLITERATION_VARIANT: 0.80,
    MatchType.FUZZY_TITLE: 0.75,
}

# Applied when the two years are not both known and equal
_YEAR_UNCERTAINTY_FACTOR = 0.9


def _tmdb_key(entity: EntitySummary) -> str | None:
    tmdb = entity.external_ids.tmdb
    return str(tmdb) if tmdb else None


def _imdb_key(entity: EntitySummary) -> str | None:
    imdb = entity.external_ids.imdb
    return imdb.strip().lower() if imdb else None


def _slug_key(entity: EntitySummary) -> str | None:
    return entity.slug.strip().lower() if entity.slug else None


def _title_year_key(entity: EntitySummary) -> str | None:
    title = normalize(entity.title)
    if not title or entity.year is None:
        return None
    return f"{title} ({entity.year})"


def _alt_title_year_key(entity: EntitySummary) -> str | None:
    alt = normalize(entity.alt_title)
    if not alt or entity.year is None:
        return None
    return f"{alt} ({entity.year})"


# Checked in order; a pair found by an earlier key is not reported again
EXACT_KEYS: tuple[tuple[MatchType, Callable[[EntitySummary], str | None]], ...] = (
    (MatchType.SAME_TMDB_ID, _tmdb_key),
    (MatchType.SAME_IMDB_ID, _imdb_key),
    (MatchType.EXACT_SLUG, _slug_key),
    (MatchType.EXACT_TITLE_YEAR, _title_year_key),
    (MatchType.EXACT_ALT_TITLE_YEAR, _alt_title_year_key),
)


class DuplicateDetector:
    """Find entities that describe the same film.

    Example:
        >>> detector = DuplicateDetector()
        >>> report = detector.detect_all(summaries)
        >>> [m.match_type for m in report.fuzzy]
        [<MatchType.SUBTITLE_VARIANT: 'subtitle_variant'>]
    """

    def __init__(
        self,
        settings: Settings | None = None,
        policy: AutomationPolicy | None = None,
    ) -> None:
        """Initialize the detector.

        Args:
            settings: Optional Settings instance for thresholds and tolerances.
            policy: Automation policy deciding auto-merges. Built from
                ``settings.automation`` if omitted.
        """
        self._settings = settings or get_settings()
        self._policy = policy or AutomationPolicy(self._settings.automation)

    def detect_all(self, entities: Iterable[EntitySummary]) -> DuplicateReport:
        """Run the exact pass, then the fuzzy pass over what is left.

        Args:
            entities: Datastore summaries. Repeated ids are treated as one entity.

        Returns:
            DuplicateReport with exact and fuzzy matches. Every pair appears
            at most once and never pairs an id with itself.
        """
        unique: dict[str, EntitySummary] = {}
        for entity in entities:
            unique.setdefault(entity.id, entity)
        ordered = [unique[entity_id] for entity_id in sorted(unique)]

        exact = self.detect_exact(ordered)
        matched_ids = {entity_id for match in exact for entity_id in match.pair}
        remaining = [e for e in ordered if e.id not in matched_ids]
        fuzzy = self.detect_fuzzy(remaining)

        logger.info(
            f"Duplicate scan complete: {len(ordered)} entities, "
            f"{len(exact)} exact pairs, {len(fuzzy)} fuzzy pairs"
        )
        return DuplicateReport(exact=exact, fuzzy=fuzzy, total_checked=len(ordered))

    def detect_exact(self, entities: Sequence[EntitySummary]) -> list[DuplicateMatch]:
        """Pairs sharing any natural key."""
        seen: set[tuple[str, str]] = set()
        matches: list[DuplicateMatch] = []

        for match_type, key_of in EXACT_KEYS:
            groups: dict[str, set[str]] = defaultdict(set)
            for entity in entities:
                key = key_of(entity)
                if key:
                    groups[key].add(entity.id)

            for key in sorted(groups):
                for id_a, id_b in combinations(sorted(groups[key]), 2):
                    if (id_a, id_b) in seen:
                        continue
                    seen.add((id_a, id_b))
                    matches.append(
                        DuplicateMatch(
                            id_a=id_a,
                            id_b=id_b,
                            match_type=match_type,
                            matched_on=key,
                            similarity=1.0,
                            confidence=1.0,
                            action=DuplicateAction.MERGE_RECOMMENDED,
                        )
                    )
        return matches

    def detect_fuzzy(self, entities: Sequence[EntitySummary]) -> list[DuplicateMatch]:
        """Pairs whose titles are near-identical within the year window."""
        threshold = self._settings.duplicate_similarity_threshold
        matches: list[DuplicateMatch] = []
        seen: set[tuple[str, str]] = set()
        compared = 0

        for a, b in self._candidate_pairs(entities):
            pair = (a.id, b.id) if a.id < b.id else (b.id, a.id)
            if a.id == b.id or pair in seen:
                continue
            seen.add(pair)
            compared += 1

            comparison = self._compare(a, b)
            if comparison.variant == TitleVariant.DISTINCT or comparison.similarity < threshold:
                continue
            matches.append(self._fuzzy_match(a, b, comparison))

        matches.sort(key=lambda m: m.pair)
        logger.debug(f"Fuzzy pass compared {compared} pairs, {len(matches)} above {threshold}")
        return matches

    def _compare(self, a: EntitySummary, b: EntitySummary) -> TitleComparison:
        """Best comparison over the main titles and, if both have one, alt titles."""
        best = compare_titles(a.title, b.title)
        if a.alt_title and b.alt_title:
            alt = compare_titles(a.alt_title, b.alt_title)
            if alt.similarity > best.similarity:
                best = alt
        return best

    def _fuzzy_match(
        self, a: EntitySummary, b: EntitySummary, comparison: TitleComparison
    ) -> DuplicateMatch:
        match_type = _VARIANT_MATCH_TYPES[comparison.variant]
        same_year = a.year is not None and a.year == b.year
        confidence = _VARIANT_CERTAINTY[match_type] * comparison.similarity
        if not same_year:
            confidence *= _YEAR_UNCERTAINTY_FACTOR

        action = DuplicateAction.MANUAL_REVIEW
        if (
            match_type == MatchType.PUNCTUATION_VARIANT
            and same_year
            and self._policy.should_auto_fix(AutomationKind.FIX_DUPLICATES, confidence)
        ):
            action = DuplicateAction.MERGE_RECOMMENDED
        else:
            logger.warning(
                f"Fuzzy duplicate for review: {a.title!r} ({a.year}) ~ "
                f"{b.title!r} ({b.year}) as {match_type.value}"
            )

        return DuplicateMatch(
            id_a=a.id,
            id_b=b.id,
            match_type=match_type,
            matched_on=f"{a.title} | {b.title}",
            similarity=comparison.similarity,
            confidence=round(confidence, 4),
            action=action,
        )

    def _candidate_pairs(
        self, entities: Sequence[EntitySummary]
    ) -> Iterator[tuple[EntitySummary, EntitySummary]]:
        """Pairs worth comparing: same year bucket or within the tolerance.

        Undated entities are compared with everything, since a missing year
        does not rule out a match.
        """
        tolerance = self._settings.duplicate_year_tolerance
        by_year: dict[int | None, list[EntitySummary]] = defaultdict(list)
        for entity in entities:
            by_year[entity.year].append(entity)

        undated = by_year.pop(None, [])
        years = sorted(by_year)
        for year in years:
            yield from self._pairs(by_year[year])
            for offset in range(1, tolerance + 1):
                if year + offset in by_year:
                    yield from self._pairs(by_year[year], by_year[year + offset])

        yield from self._pairs(undated)
        for year in years:
            yield from self._pairs(undated, by_year[year])

    def _pairs(
        self,
        left: list[EntitySummary],
        right: list[EntitySummary] | None = None,
    ) -> Iterator[tuple[EntitySummary, EntitySummary]]:
        """All pairs within ``left`` or across ``left`` x ``right``.

        Buckets larger than ``fuzzy_bucket_limit`` only pair entities whose
        titles start with the same normalized token.
        """
        limit = self._settings.fuzzy_bucket_limit
        size = len(left) + (len(right) if right is not None else 0)

        if size <= limit:
            if right is None:
                yield from combinations(left, 2)
            else:
                yield from product(left, right)
            return

        left_blocks = _by_first_token(left)
        if right is None:
            for block in left_blocks.values():
                yield from combinations(block, 2)
            return
        right_blocks = _by_first_token(right)
        for token in sorted(left_blocks.keys() & right_blocks.keys()):
            yield from product(left_blocks[token], right_blocks[token])


def _by_first_token(entities: list[EntitySummary]) -> dict[str, list[EntitySummary]]:
    blocks: dict[str, list[EntitySummary]] = defaultdict(list)
    for entity in entities:
        title_tokens = tokens(entity.title)
        blocks[title_tokens[0] if title_tokens else ""].append(entity)
    return blocks


__all__ = [
    "EXACT_KEYS",
    "DuplicateDetector",
]
