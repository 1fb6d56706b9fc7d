"""Title and name similarity scoring.

Combines normalized Levenshtein similarity with token overlap. Edit distance
alone under-scores reordered or re-spelled titles; token overlap alone
over-scores titles sharing only common words. The mix shifts toward token
overlap as titles get longer.
"""

import logging
import re
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from rapidfuzz.distance import Levenshtein

from reelconsensus.normalize import (
    aggressive_normalize,
    normalize,
    split_subtitle,
    tokens,
    transliteration_fold,
)

logger = logging.getLogger(__name__)

# (edit weight, token weight) by the longer title's token count
_SHORT_TITLE_WEIGHTS = (0.7, 0.3)
_LONG_TITLE_WEIGHTS = (0.4, 0.6)
_LONG_TITLE_TOKENS = 3

SUBTITLE_VARIANT_SCORE = 0.95
FUZZY_VARIANT_FLOOR = 0.70

# Trailing tokens that mark a sequel rather than a subtitle: "rrr 2", "kick ii"
_SEQUEL_TOKEN_RE = re.compile(r"^(?:\d+|[ivx]+|part|chapter)$")


class TitleVariant(str, Enum):
    """How two titles relate to each other."""

    EXACT = "exact"
    PUNCTUATION_VARIANT = "punctuation_variant"
    SUBTITLE_VARIANT = "subtitle_variant"
    TRANSLITERATION_VARIANT = "transliteration_variant"
    FUZZY_VARIANT = "fuzzy_variant"
    DISTINCT = "distinct"


class TitleComparison(BaseModel):
    """Similarity score and variant classification for a title pair."""

    model_config = ConfigDict(frozen=True)

    similarity: float = Field(ge=0.0, le=1.0)
    variant: TitleVariant


def edit_similarity(a: str, b: str) -> float:
    """Levenshtein similarity normalized by the longer string.

    Args:
        a: First string, compared after normalization.
        b: Second string, compared after normalization.

    Returns:
        ``1 - distance / max(len(a), len(b))``; 0.0 if either side is empty.
    """
    na, nb = normalize(a), normalize(b)
    if not na or not nb:
        return 0.0
    return Levenshtein.normalized_similarity(na, nb)


def token_overlap(a: str, b: str) -> float:
    """Share of distinct tokens the two strings have in common."""
    ta, tb = set(tokens(a)), set(tokens(b))
    if not ta or not tb:
        return 0.0
    return len(ta & tb) / max(len(ta), len(tb))


def similarity(a: str, b: str) -> float:
    """Weighted similarity between two titles or names.

    Args:
        a: First string.
        b: Second string.

    Returns:
        Score in [0.0, 1.0]. Single-token strings are scored by edit distance
        only, since a one-letter spelling change zeroes their token overlap.
    """
    edit = edit_similarity(a, b)
    if edit == 0.0 and not (normalize(a) and normalize(b)):
        return 0.0

    token_count = max(len(tokens(a)), len(tokens(b)))
    if token_count <= 1:
        return edit

    edit_weight, token_weight = (
        _LONG_TITLE_WEIGHTS if token_count >= _LONG_TITLE_TOKENS else _SHORT_TITLE_WEIGHTS
    )
    score = edit_weight * edit + token_weight * token_overlap(a, b)
    return max(0.0, min(1.0, score))


def _is_subtitle_variant(a: str, b: str) -> bool:
    """Check whether one title is the other plus a subtitle.

    Either an explicit separator splits off the same main title, or the
    shorter title's tokens are a prefix of the longer one's. Extra tokens that
    only number a sequel do not count.
    """
    main_a, sub_a = split_subtitle(a)
    main_b, sub_b = split_subtitle(b)
    if (sub_a or sub_b) and normalize(main_a) and normalize(main_a) == normalize(main_b):
        return True

    ta, tb = tokens(a), tokens(b)
    shorter, longer = (ta, tb) if len(ta) <= len(tb) else (tb, ta)
    if not shorter or len(shorter) == len(longer):
        return False
    if longer[: len(shorter)] != shorter:
        return False
    extra = longer[len(shorter) :]
    return not any(_SEQUEL_TOKEN_RE.match(token) for token in extra)


def compare_titles(a: str, b: str) -> TitleComparison:
    """Score a title pair and classify how the titles differ.

    Classification is checked from the most to the least certain variant:
    exact, punctuation/spacing only, subtitle added, transliteration spelling,
    generic fuzzy similarity, distinct.

    Args:
        a: First raw title.
        b: Second raw title.

    Returns:
        TitleComparison with the pair's score and variant.
    """
    na, nb = normalize(a), normalize(b)
    if not na or not nb:
        return TitleComparison(similarity=0.0, variant=TitleVariant.DISTINCT)

    if na == nb:
        return TitleComparison(similarity=1.0, variant=TitleVariant.EXACT)

    if aggressive_normalize(a) == aggressive_normalize(b):
        return TitleComparison(similarity=1.0, variant=TitleVariant.PUNCTUATION_VARIANT)

    base = similarity(a, b)

    if _is_subtitle_variant(a, b):
        return TitleComparison(
            similarity=max(base, SUBTITLE_VARIANT_SCORE),
            variant=TitleVariant.SUBTITLE_VARIANT,
        )

    fa, fb = transliteration_fold(a), transliteration_fold(b)
    if fa and fa == fb:
        return TitleComparison(similarity=max(base, similarity(fa, fb)),
                               variant=TitleVariant.TRANSLITERATION_VARIANT)

    if base >= FUZZY_VARIANT_FLOOR:
        return TitleComparison(similarity=base, variant=TitleVariant.FUZZY_VARIANT)
    return TitleComparison(similarity=base, variant=TitleVariant.DISTINCT)


def years_compatible(year_a: int | None, year_b: int | None, tolerance: int) -> bool:
    """Check release years are within tolerance; unknown years never block."""
    if year_a is None or year_b is None:
        return True
    return abs(year_a - year_b) <= tolerance


def titles_match(
    a: str,
    b: str,
    *,
    threshold: float,
    year_a: int | None = None,
    year_b: int | None = None,
    year_tolerance: int = 0,
) -> bool:
    """Decide whether two titles refer to the same film.

    Args:
        a: First raw title.
        b: Second raw title.
        threshold: Minimum ``compare_titles`` similarity.
        year_a: Release year of the first title, if known.
        year_b: Release year of the second title, if known.
        year_tolerance: Maximum allowed difference between known years.

    Returns:
        True if the titles are similar enough and the years compatible.
    """
    if not years_compatible(year_a, year_b, year_tolerance):
        return False
    return compare_titles(a, b).similarity >= threshold


def names_match(a: str, b: str, threshold: float = 0.85) -> bool:
    """Decide whether two person names refer to the same person.

    Besides plain similarity, a name contained in the other at a word
    boundary matches, which covers initials ("K. Raghavendra Rao" versus
    "Raghavendra Rao").
    """
    na, nb = normalize(a), normalize(b)
    if not na or not nb:
        return False
    if na == nb:
        return True
    shorter, longer = (na, nb) if len(na) <= len(nb) else (nb, na)
    if len(tokens(shorter)) >= 2 and f" {shorter} " in f" {longer} ":
        return True
    if transliteration_fold(na) == transliteration_fold(nb):
        return True
    return similarity(na, nb) >= threshold


__all__ = [
    "TitleComparison",
    "TitleVariant",
    "compare_titles",
    "edit_similarity",
    "names_match",
    "similarity",
    "titles_match",
    "token_overlap",
    "years_compatible",
]
