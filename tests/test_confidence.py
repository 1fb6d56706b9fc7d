"""Tests for confidence tiers and the automation policy.

Tests:
- ConfidenceTier mapping and descriptions
- AutomationPolicy auto-fix, review and manual decisions per action kind
- Threshold overrides
- Edge cases (NaN, out-of-range, exact boundaries)
"""

import math

import pytest

from reelconsensus.config import AutomationThresholds
from reelconsensus.confidence import (
    AutomationDecision,
    AutomationKind,
    AutomationPolicy,
    ConfidenceTier,
    clamp_confidence,
)


class TestConfidenceTier:
    """Tests for ConfidenceTier mapping."""

    @pytest.mark.parametrize(
        ("confidence", "tier"),
        [
            (1.0, ConfidenceTier.HIGH),
            (0.85, ConfidenceTier.HIGH),
            (0.84, ConfidenceTier.MEDIUM),
            (0.70, ConfidenceTier.MEDIUM),
            (0.69, ConfidenceTier.LOW),
            (0.50, ConfidenceTier.LOW),
            (0.49, ConfidenceTier.VERY_LOW),
            (0.0, ConfidenceTier.VERY_LOW),
        ],
    )
    def test_from_confidence(self, confidence: float, tier: ConfidenceTier) -> None:
        """Scores map to tiers at 0.85, 0.70 and 0.50."""
        assert ConfidenceTier.from_confidence(confidence) == tier

    def test_every_tier_has_description(self) -> None:
        """All tiers have human-readable guidance."""
        for tier in ConfidenceTier:
            assert tier.description


class TestClampConfidence:
    def test_clamps_range(self) -> None:
        """Values are clamped to [0, 1]."""
        assert clamp_confidence(1.5) == 1.0
        assert clamp_confidence(-0.2) == 0.0
        assert clamp_confidence(0.42) == 0.42

    def test_nan_is_zero(self) -> None:
        """NaN is treated as no confidence."""
        assert clamp_confidence(math.nan) == 0.0


class TestAutomationPolicy:
    """Tests for threshold-gated decisions."""

    def test_reattribute_thresholds(self) -> None:
        """Re-attribution auto-fixes at 0.85 and is reviewed from 0.60."""
        policy = AutomationPolicy()
        assert policy.decide(AutomationKind.REATTRIBUTE, 0.95) == AutomationDecision.AUTO_FIX
        assert policy.decide(AutomationKind.REATTRIBUTE, 0.85) == AutomationDecision.AUTO_FIX
        assert policy.decide(AutomationKind.REATTRIBUTE, 0.80) == AutomationDecision.FLAG_REVIEW
        assert policy.decide(AutomationKind.REATTRIBUTE, 0.60) == AutomationDecision.FLAG_REVIEW
        assert (
            policy.decide(AutomationKind.REATTRIBUTE, 0.59) == AutomationDecision.MANUAL_REQUIRED
        )

    def test_add_missing_thresholds(self) -> None:
        """Two-source discoveries (0.75) go to review, three-source ones auto-add."""
        policy = AutomationPolicy()
        assert policy.decide(AutomationKind.ADD_MISSING, 0.95) == AutomationDecision.AUTO_FIX
        assert policy.decide(AutomationKind.ADD_MISSING, 0.75) == AutomationDecision.FLAG_REVIEW
        assert (
            policy.decide(AutomationKind.ADD_MISSING, 0.50) == AutomationDecision.MANUAL_REQUIRED
        )

    def test_duplicates_need_highest_confidence(self) -> None:
        """Duplicate merges require 0.90."""
        policy = AutomationPolicy()
        assert policy.should_auto_fix(AutomationKind.FIX_DUPLICATES, 0.90)
        assert not policy.should_auto_fix(AutomationKind.FIX_DUPLICATES, 0.89)

    def test_should_flag_for_review_band(self) -> None:
        """Review band is [review, auto-fix)."""
        policy = AutomationPolicy()
        assert policy.should_flag_for_review(AutomationKind.FIX_TMDB_ID, 0.70)
        assert not policy.should_flag_for_review(AutomationKind.FIX_TMDB_ID, 0.80)
        assert not policy.should_flag_for_review(AutomationKind.FIX_TMDB_ID, 0.59)

    def test_requires_manual_review(self) -> None:
        """Below the manual floor a human decides."""
        policy = AutomationPolicy()
        assert policy.requires_manual_review(0.49)
        assert not policy.requires_manual_review(0.50)

    def test_nan_confidence_is_manual(self) -> None:
        """NaN never triggers automation."""
        policy = AutomationPolicy()
        assert policy.decide(AutomationKind.REATTRIBUTE, math.nan) == (
            AutomationDecision.MANUAL_REQUIRED
        )

    def test_custom_thresholds(self) -> None:
        """Overrides change the decision boundaries."""
        thresholds = AutomationThresholds(
            auto_fix={
                "reattribute": 0.99,
                "add_missing": 0.85,
                "fix_tmdb_id": 0.80,
                "fill_tech_credits": 0.75,
                "fix_duplicates": 0.90,
            }
        )
        policy = AutomationPolicy(thresholds)
        assert policy.decide(AutomationKind.REATTRIBUTE, 0.95) == AutomationDecision.FLAG_REVIEW

    def test_missing_kind_rejected(self) -> None:
        """Every action kind needs an auto-fix threshold."""
        with pytest.raises(ValueError, match="No auto-fix threshold"):
            AutomationPolicy(AutomationThresholds(auto_fix={"reattribute": 0.85}))

    def test_review_threshold_falls_back_to_floor(self) -> None:
        """Kinds without a review threshold use the manual floor."""
        thresholds = AutomationThresholds(flag_for_review={})
        policy = AutomationPolicy(thresholds)
        assert policy.review_threshold(AutomationKind.ADD_MISSING) == 0.50
