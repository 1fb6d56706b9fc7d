"""Confidence tiers and the threshold-gated automation policy.

Every engine reports a confidence; whether a recommendation is applied
automatically, queued for review or left to a human is decided here, per
kind of action, from the configured thresholds.
"""

from __future__ import annotations

import logging
import math
from enum import Enum

from reelconsensus.config import AutomationThresholds

logger = logging.getLogger(__name__)


class ConfidenceTier(str, Enum):
    """Coarse confidence bands for reporting."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    VERY_LOW = "very_low"

    @classmethod
    def from_confidence(cls, confidence: float) -> ConfidenceTier:
        """Map a confidence score to its tier.

        Examples:
            >>> ConfidenceTier.from_confidence(0.9)
            <ConfidenceTier.HIGH: 'high'>
            >>> ConfidenceTier.from_confidence(0.5)
            <ConfidenceTier.LOW: 'low'>
        """
        if confidence >= 0.85:
            return cls.HIGH
        if confidence >= 0.70:
            return cls.MEDIUM
        if confidence >= 0.50:
            return cls.LOW
        return cls.VERY_LOW

    @property
    def description(self) -> str:
        """Human-readable guidance for the tier."""
        return _TIER_DESCRIPTIONS[self]


_TIER_DESCRIPTIONS = {
    ConfidenceTier.HIGH: "High confidence: safe for auto-apply",
    ConfidenceTier.MEDIUM: "Medium confidence: flag for review",
    ConfidenceTier.LOW: "Low confidence: manual review recommended",
    ConfidenceTier.VERY_LOW: "Very low confidence: manual review required",
}


class AutomationKind(str, Enum):
    """Kinds of corrective action the engines can recommend."""

    REATTRIBUTE = "reattribute"
    ADD_MISSING = "add_missing"
    FIX_TMDB_ID = "fix_tmdb_id"
    FILL_TECH_CREDITS = "fill_tech_credits"
    FIX_DUPLICATES = "fix_duplicates"


class AutomationDecision(str, Enum):
    """What to do with a recommendation of a given confidence."""

    AUTO_FIX = "auto_fix"
    FLAG_REVIEW = "flag_review"
    MANUAL_REQUIRED = "manual_required"


def clamp_confidence(confidence: float) -> float:
    """Clamp a confidence to [0, 1]; NaN becomes 0."""
    if math.isnan(confidence):
        return 0.0
    return max(0.0, min(1.0, confidence))


class AutomationPolicy:
    """Decide between auto-fix, review and manual handling.

    The policy holds a frozen ``AutomationThresholds`` and is safe to share
    between concurrent evaluations.

    Example:
        >>> policy = AutomationPolicy()
        >>> policy.decide(AutomationKind.REATTRIBUTE, 0.95)
        <AutomationDecision.AUTO_FIX: 'auto_fix'>
        >>> policy.decide(AutomationKind.REATTRIBUTE, 0.80)
        <AutomationDecision.FLAG_REVIEW: 'flag_review'>
    """

    def __init__(self, thresholds: AutomationThresholds | None = None) -> None:
        self.thresholds = thresholds or AutomationThresholds()
        missing = {kind.value for kind in AutomationKind} - set(self.thresholds.auto_fix)
        if missing:
            raise ValueError(f"No auto-fix threshold for: {sorted(missing)}")

    def auto_fix_threshold(self, kind: AutomationKind) -> float:
        """Minimum confidence to apply ``kind`` automatically."""
        return self.thresholds.auto_fix[AutomationKind(kind).value]

    def review_threshold(self, kind: AutomationKind) -> float:
        """Minimum confidence to queue ``kind`` for review.

        Falls back to the manual floor when no review threshold is set.
        """
        return self.thresholds.flag_for_review.get(
            AutomationKind(kind).value, self.thresholds.manual_floor
        )

    def should_auto_fix(self, kind: AutomationKind, confidence: float) -> bool:
        """Check if a recommendation is confident enough to apply unattended."""
        return confidence >= self.auto_fix_threshold(kind)

    def should_flag_for_review(self, kind: AutomationKind, confidence: float) -> bool:
        """Check if a recommendation belongs in the review queue."""
        return self.review_threshold(kind) <= confidence < self.auto_fix_threshold(kind)

    def requires_manual_review(self, confidence: float) -> bool:
        """Check if confidence is below the floor for any automated handling."""
        return confidence < self.thresholds.manual_floor

    def decide(self, kind: AutomationKind, confidence: float) -> AutomationDecision:
        """Decide how a recommendation of ``kind`` should be handled.

        Args:
            kind: Kind of corrective action.
            confidence: Confidence reported by the engine.

        Returns:
            AUTO_FIX, FLAG_REVIEW or MANUAL_REQUIRED.
        """
        confidence = clamp_confidence(confidence)
        if self.should_auto_fix(kind, confidence):
            return AutomationDecision.AUTO_FIX
        if self.should_flag_for_review(kind, confidence):
            return AutomationDecision.FLAG_REVIEW
        return AutomationDecision.MANUAL_REQUIRED


__all__ = [
    "AutomationDecision",
    "AutomationKind",
    "AutomationPolicy",
    "ConfidenceTier",
    "clamp_confidence",
]
