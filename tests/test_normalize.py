"""Tests for text normalization."""

import pytest

from reelconsensus.normalize import (
    aggressive_normalize,
    normalize,
    split_subtitle,
    tokens,
    transliteration_fold,
)


class TestNormalize:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("RRR: Rise Roar Revolt", "rrr rise roar revolt"),
            ("  Mr. Perfect ", "mr perfect"),
            ("R.R.R.", "rrr"),
            ("Bhale Bhale Magadivoy!", "bhale bhale magadivoy"),
            ("Baahubali - The Beginning", "baahubali the beginning"),
            ("Athadu’s", "athadus"),
            ("Pokiri\t\n2006", "pokiri 2006"),
        ],
    )
    def test_examples(self, raw: str, expected: str) -> None:
        """Lowercases, strips punctuation and collapses whitespace."""
        assert normalize(raw) == expected

    def test_none_and_empty(self) -> None:
        """None and empty strings normalize to empty."""
        assert normalize(None) == ""
        assert normalize("") == ""
        assert normalize("  ...  ") == ""

    def test_latin_diacritics_removed(self) -> None:
        """Accented Latin letters lose their accents."""
        assert normalize("Café Société") == "cafe societe"

    def test_telugu_vowel_signs_kept(self) -> None:
        """Indic combining vowel signs survive normalization."""
        assert normalize("మగధీర") == "మగధీర"

    def test_idempotent(self) -> None:
        """Normalizing twice changes nothing."""
        once = normalize("Sye Raa: Narasimha Reddy")
        assert normalize(once) == once


class TestAggressiveNormalize:
    def test_drops_spaces_and_punctuation(self) -> None:
        """Only alphanumerics remain."""
        assert aggressive_normalize("Bhale Bhale Magadivoy!") == "bhalebhalemagadivoy"
        assert aggressive_normalize("BhaleBhale Magadivoy") == "bhalebhalemagadivoy"

    def test_keeps_telugu(self) -> None:
        """Non-Latin scripts are kept with their marks."""
        assert aggressive_normalize("మగ ధీర") == "మగధీర"


class TestTokens:
    def test_split(self) -> None:
        """Tokens are normalized words."""
        assert tokens("RRR: Rise Roar Revolt") == ["rrr", "rise", "roar", "revolt"]

    def test_empty(self) -> None:
        """Empty text has no tokens."""
        assert tokens("") == []
        assert tokens(None) == []


class TestSplitSubtitle:
    def test_colon(self) -> None:
        """A colon separates the subtitle."""
        assert split_subtitle("RRR: Rise Roar Revolt") == ("RRR", "Rise Roar Revolt")

    def test_spaced_dash(self) -> None:
        """A dash with spaces around it separates the subtitle."""
        assert split_subtitle("Baahubali - The Beginning") == ("Baahubali", "The Beginning")

    def test_hyphenated_word_not_split(self) -> None:
        """Hyphenated words are not subtitles."""
        assert split_subtitle("Jai Lava-Kusa") == ("Jai Lava-Kusa", None)

    def test_no_subtitle(self) -> None:
        """Plain titles have no subtitle."""
        assert split_subtitle("Magadheera") == ("Magadheera", None)
        assert split_subtitle(None) == ("", None)


class TestTransliterationFold:
    @pytest.mark.parametrize(
        ("a", "b"),
        [
            ("Baahubali", "Bahubali"),
            ("Abbai", "Abbayi"),
            ("Magadheera", "Magadhira"),
            ("Shankar", "Sankar"),
        ],
    )
    def test_spelling_variants_fold_together(self, a: str, b: str) -> None:
        """Common romanization variants fold to the same string."""
        assert transliteration_fold(a) == transliteration_fold(b)

    def test_distinct_titles_stay_distinct(self) -> None:
        """Folding does not merge unrelated titles."""
        assert transliteration_fold("Pokiri") != transliteration_fold("Athadu")
