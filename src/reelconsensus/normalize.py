"""Text canonicalization for titles and person names.

Every comparison in the package goes through these functions, so the same
normalization is applied to both sides of any match. ``aggressive_normalize``
is for slug-like exact keys only: it erases word boundaries that the
similarity scorer depends on.
"""

import re
import unicodedata

# Removed outright: "R.R.R." -> "rrr", "Bhale Bhale Magadivoy!" keeps its words
_DROPPED_PUNCTUATION = ".'\"‘’‚‛“”„´`"
# Replaced by a space: separators between words
_SPACED_PUNCTUATION = ":-‐‑‒–—―!?,;/()[]"

_DROP_TABLE = str.maketrans("", "", _DROPPED_PUNCTUATION)
_SPACE_TABLE = str.maketrans({ch: " " for ch in _SPACED_PUNCTUATION})

_WHITESPACE_RE = re.compile(r"\s+")

# Subtitle separators, checked on the raw title before punctuation is stripped
_SUBTITLE_RE = re.compile(r"\s*(?::|\s[-–—]\s)\s*")

# Romanization variants common in Indian film titles and names.
# Order matters: aspirates before vowel folding.
_TRANSLITERATION_RULES: tuple[tuple[str, str], ...] = (
    ("bh", "b"),
    ("dh", "d"),
    ("gh", "g"),
    ("kh", "k"),
    ("th", "t"),
    ("ph", "f"),
    ("sh", "s"),
    ("aa", "a"),
    ("ee", "i"),
    ("ii", "i"),
    ("oo", "u"),
    ("uu", "u"),
    ("ayi", "ai"),
    ("w", "v"),
    ("z", "j"),
)
_DOUBLED_CONSONANT_RE = re.compile(r"([b-df-hj-np-tv-z])\1+")


def _strip_latin_diacritics(text: str) -> str:
    """Remove accents from Latin letters, leaving other scripts untouched.

    Vowel signs of Indic scripts are combining marks too, so only marks that
    follow an ASCII base character are dropped.
    """
    decomposed = unicodedata.normalize("NFD", text)
    kept: list[str] = []
    previous_base = ""
    for ch in decomposed:
        if unicodedata.combining(ch):
            if previous_base.isascii():
                continue
        else:
            previous_base = ch
        kept.append(ch)
    return unicodedata.normalize("NFC", "".join(kept))


def normalize(text: str | None) -> str:
    """Canonicalize free text for comparison.

    Lowercases, strips the fixed punctuation set and Latin diacritics,
    collapses whitespace and trims.

    Args:
        text: Raw title or name. ``None`` is treated as empty.

    Returns:
        Normalized string.

    Examples:
        >>> normalize("RRR: Rise Roar Revolt")
        'rrr rise roar revolt'
        >>> normalize("  Mr. Perfect ")
        'mr perfect'
    """
    if not text:
        return ""
    lowered = _strip_latin_diacritics(text.lower())
    stripped = lowered.translate(_DROP_TABLE).translate(_SPACE_TABLE)
    return _WHITESPACE_RE.sub(" ", stripped).strip()


def aggressive_normalize(text: str | None) -> str:
    """Normalize and drop every non-alphanumeric character.

    Combining marks are kept so non-Latin scripts survive intact.
    """
    return "".join(
        ch for ch in normalize(text) if ch.isalnum() or unicodedata.category(ch).startswith("M")
    )


def tokens(text: str | None) -> list[str]:
    """Split normalized text into word tokens."""
    normalized = normalize(text)
    return normalized.split(" ") if normalized else []


def split_subtitle(title: str | None) -> tuple[str, str | None]:
    """Split a raw title into main title and subtitle.

    Only an explicit separator counts: a colon, or a dash surrounded by
    spaces ("Bahubali - The Beginning"). Hyphenated words are left alone.
    """
    if not title:
        return "", None
    parts = _SUBTITLE_RE.split(title.strip(), maxsplit=1)
    if len(parts) == 2 and parts[0].strip() and parts[1].strip():
        return parts[0].strip(), parts[1].strip()
    return title.strip(), None


def transliteration_fold(text: str | None) -> str:
    """Fold common romanization variants onto one spelling, per token.

    ``"Baahubali"`` and ``"Bahubali"`` fold to the same string, as do
    ``"Abbai"`` and ``"Abbayi"``.
    """
    folded_tokens = []
    for token in tokens(text):
        folded = token
        for source, target in _TRANSLITERATION_RULES:
            folded = folded.replace(source, target)
        folded = _DOUBLED_CONSONANT_RE.sub(r"\1", folded)
        folded_tokens.append(folded)
    return " ".join(folded_tokens)


__all__ = [
    "aggressive_normalize",
    "normalize",
    "split_subtitle",
    "tokens",
    "transliteration_fold",
]
