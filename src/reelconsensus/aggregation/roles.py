"""Heuristic role classification for discovered appearances.

Rules are checked in order and the first that fires wins. Each carries a
fixed confidence reflecting how reliable its signal is: an explicit "cameo"
in the credit text is strong evidence, a lead inferred from billing order is
weaker.
"""

from collections.abc import Callable
from typing import NamedTuple

from reelconsensus.models import DiscoveredAppearance, RoleClassification, RoleType
from reelconsensus.normalize import normalize

CHILD_ACTOR_AGE = 18
LEAD_MAX_CAST_ORDER = 2  # zero-based billing position

CAMEO_KEYWORDS = (
    "cameo",
    "extended cameo",
    "special appearance",
    "guest",
    "guest appearance",
    "friendly appearance",
)
VOICE_KEYWORDS = ("voice", "voiceover", "dubbing", "dubbed", "narrator", "narration")
LEAD_ROLES = frozenset({"lead", "hero", "heroine", "protagonist", "main", "lead actor",
                        "lead actress", "lead role"})


class _Signals(NamedTuple):
    """Facts extracted once from an appearance."""

    credit_text: str
    role: str
    cast_order: int | None
    age_at_release: int | None

    @property
    def has_lead_signal(self) -> bool:
        return self.role in LEAD_ROLES or (
            self.cast_order is not None and self.cast_order <= LEAD_MAX_CAST_ORDER
        )

    def mentions(self, keywords: tuple[str, ...]) -> bool:
        padded = f" {self.credit_text} "
        return any(f" {keyword} " in padded for keyword in keywords)


def _child_actor(s: _Signals) -> RoleClassification | None:
    if s.age_at_release is not None and 0 <= s.age_at_release < CHILD_ACTOR_AGE:
        return RoleClassification(
            type=RoleType.CHILD_ACTOR, confidence=0.90, is_primary=s.has_lead_signal
        )
    return None


def _cameo(s: _Signals) -> RoleClassification | None:
    if s.mentions(CAMEO_KEYWORDS):
        return RoleClassification(type=RoleType.CAMEO, confidence=0.90)
    return None


def _voice(s: _Signals) -> RoleClassification | None:
    if s.mentions(VOICE_KEYWORDS):
        return RoleClassification(type=RoleType.VOICE, confidence=0.85)
    return None


def _lead(s: _Signals) -> RoleClassification | None:
    if s.has_lead_signal:
        return RoleClassification(type=RoleType.LEAD, confidence=0.75, is_primary=True)
    return None


def _supporting() -> RoleClassification:
    return RoleClassification(type=RoleType.SUPPORTING, confidence=0.70)


# Checked in order; anything no rule claims is supporting
ROLE_RULES: tuple[Callable[[_Signals], RoleClassification | None], ...] = (
    _child_actor,
    _cameo,
    _voice,
    _lead,
)


def classify_role(
    appearance: DiscoveredAppearance, person_birth_year: int | None = None
) -> RoleClassification:
    """Classify the kind of role a person plays in one appearance.

    Args:
        appearance: The discovered appearance.
        person_birth_year: Birth year of the person, if known. Needed for the
            child actor rule.

    Returns:
        The classification of the first matching rule.

    Examples:
        >>> classify_role(DiscoveredAppearance(title="Magadheera", year=2009,
        ...               character="Himself (cameo)")).type
        <RoleType.CAMEO: 'cameo'>
    """
    age = None
    if appearance.year is not None and person_birth_year is not None:
        age = appearance.year - person_birth_year

    signals = _Signals(
        credit_text=normalize(f"{appearance.role or ''} {appearance.character or ''}"),
        role=normalize(appearance.role),
        cast_order=appearance.cast_order,
        age_at_release=age,
    )
    for rule in ROLE_RULES:
        classification = rule(signals)
        if classification is not None:
            return classification
    return _supporting()


__all__ = [
    "CAMEO_KEYWORDS",
    "LEAD_ROLES",
    "ROLE_RULES",
    "VOICE_KEYWORDS",
    "classify_role",
]
