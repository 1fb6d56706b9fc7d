"""Tests for weighted-vote consensus."""

from datetime import timedelta
from itertools import permutations

import pytest
from conftest import FIXED_TIME, make_record

from reelconsensus.aggregation.consensus import ConsensusEngine, value_key
from reelconsensus.config import ConsensusThresholds
from reelconsensus.models import ConsensusAction, ConsensusResult, InvariantViolation


@pytest.fixture
def engine(settings) -> ConsensusEngine:
    """Consensus engine with default registry and thresholds."""
    return ConsensusEngine(settings=settings)


def raj_records():
    """Two independent sources say Raj, a weaker one says Raju."""
    return [
        make_record("wikipedia", "Raj", 0.9),
        make_record("idlebrain", "Raj", 0.8),
        make_record("m9news", "Raju", 0.5),
    ]


class TestValueKey:
    def test_strings_normalized(self) -> None:
        """Case and punctuation do not split votes."""
        assert value_key("S.S. Rajamouli") == value_key("ss rajamouli")

    def test_numbers_and_numeric_strings_agree(self) -> None:
        """2009 and "2009" are the same value."""
        assert value_key(2009) == value_key("2009")
        assert value_key(2009.0) == value_key(2009)

    def test_lists_are_sets(self) -> None:
        """List order and case are ignored."""
        assert value_key(["NTR", "Ram Charan"]) == value_key(["ram charan", "N.T.R."])

    def test_booleans(self) -> None:
        """Booleans are not numbers."""
        assert value_key(True) == "true"
        assert value_key(1) != value_key(True)

    def test_empty_values(self) -> None:
        """None and blank strings carry no information."""
        assert value_key(None) == ""
        assert value_key("  ") == ""
        assert value_key([]) == ""


class TestResolve:
    def test_weighted_majority_wins(self, engine: ConsensusEngine) -> None:
        """Raj beats Raju on summed weight with a corroboration boost."""
        result = engine.resolve(raj_records())

        assert result.consensus_value == "Raj"
        assert result.agreeing_sources == ["idlebrain", "wikipedia"]
        assert result.disagreeing_sources == ["m9news"]
        # 1.7 / 2.2 plus one boost for the second independent family
        assert result.confidence == pytest.approx(1.7 / 2.2 + 0.03)
        assert result.action == ConsensusAction.AUTO_APPLY
        assert result.requires_audit is True
        assert result.responding_sources == 3

    def test_conflict_keeps_competing_values(self, engine: ConsensusEngine) -> None:
        """Disagreement is retained for a human."""
        result = engine.resolve(raj_records())

        assert result.conflict is not None
        assert [v.value for v in result.conflict.values] == ["Raj", "Raju"]
        assert result.conflict.values[0].weight == pytest.approx(1.7)
        assert result.conflict.values[1].sources == ["m9news"]

    def test_permutation_invariant(self, engine: ConsensusEngine) -> None:
        """Any order of the same records gives an identical result."""
        records = [*raj_records(), make_record("sakshi", "Raju", 0.84)]
        expected = engine.resolve(records).model_dump()

        for order in permutations(records):
            assert engine.resolve(list(order)).model_dump() == expected

    def test_agreeing_source_never_lowers_confidence(self, engine: ConsensusEngine) -> None:
        """Adding an independent agreeing source raises confidence."""
        before = engine.resolve(raj_records()).confidence
        after = engine.resolve([*raj_records(), make_record("sakshi", "Raj", 0.84)]).confidence

        assert after >= before

    def test_losing_source_never_raises_confidence(self, engine: ConsensusEngine) -> None:
        """A further source backing the losing value lowers confidence."""
        before = engine.resolve(raj_records())
        after = engine.resolve([*raj_records(), make_record("sakshi", "Raju", 0.84)])

        assert after.consensus_value == before.consensus_value == "Raj"
        assert after.confidence <= before.confidence
        assert after.confidence == pytest.approx(1.7 / 3.04 + 0.03)

    def test_new_value_never_raises_confidence(self, engine: ConsensusEngine) -> None:
        """A source reporting a third value dilutes the winner's share."""
        before = engine.resolve(raj_records())
        after = engine.resolve([*raj_records(), make_record("eenadu", "Rajesh", 0.86)])

        assert after.consensus_value == "Raj"
        assert after.confidence <= before.confidence
        assert len(after.conflict.values) == 3

    def test_flipped_consensus_is_scored_afresh(self, engine: ConsensusEngine) -> None:
        """When a new source tips the vote, the new winner gets its own confidence."""
        before = engine.resolve(
            [make_record("idlebrain", "X", 0.5), make_record("eenadu", "Y", 0.4)]
        )
        after = engine.resolve(
            [
                make_record("idlebrain", "X", 0.5),
                make_record("eenadu", "Y", 0.4),
                make_record("sakshi", "Y", 0.4),
            ]
        )

        assert before.consensus_value == "X"
        assert before.confidence == pytest.approx(0.5 / 0.9)
        assert after.consensus_value == "Y"
        assert after.confidence == pytest.approx(0.8 / 1.3 + 0.03)

    def test_unanimous_independent_sources(self, engine: ConsensusEngine) -> None:
        """Full agreement of three families hits the cap."""
        records = [
            make_record("tmdb", "S. S. Rajamouli", 0.95),
            make_record("idlebrain", "S S Rajamouli", 0.88),
            make_record("eenadu", "s. s. rajamouli", 0.86),
        ]

        result = engine.resolve(records)

        assert result.confidence == pytest.approx(0.98)
        assert result.action == ConsensusAction.AUTO_APPLY
        assert result.requires_audit is False
        assert result.conflict is None
        assert result.consensus_value == "S. S. Rajamouli"

    def test_single_family_is_capped(self, engine: ConsensusEngine) -> None:
        """Sources sharing an upstream count as one voice."""
        records = [
            make_record("wikipedia", "M. M. Keeravani", 0.85),
            make_record("wikidata", "M. M. Keeravani", 0.80),
        ]

        result = engine.resolve(records)

        assert result.confidence == pytest.approx(0.75)
        assert result.requires_audit is True

    def test_single_source_is_capped(self, engine: ConsensusEngine) -> None:
        """One source alone never exceeds the single-source cap."""
        result = engine.resolve([make_record("tmdb", "S. S. Rajamouli", 0.95)])

        assert result.confidence == pytest.approx(0.75)

    def test_even_split_flags_conflict(self, engine: ConsensusEngine) -> None:
        """Close disagreement is flagged rather than applied."""
        records = [
            make_record("tmdb", "Trivikram Srinivas", 0.95),
            make_record("idlebrain", "Koratala Siva", 0.88),
        ]

        result = engine.resolve(records)

        assert result.action == ConsensusAction.FLAG_CONFLICT
        assert result.consensus_value == "Trivikram Srinivas"
        assert result.confidence < 0.70

    def test_no_records(self, engine: ConsensusEngine) -> None:
        """No responses means insufficient data."""
        result = engine.resolve([], field_name="editor")

        assert result.field_name == "editor"
        assert result.consensus_value is None
        assert result.confidence == 0.0
        assert result.action == ConsensusAction.INSUFFICIENT_DATA

    def test_blank_values_do_not_count(self, engine: ConsensusEngine) -> None:
        """Blank values are not responses."""
        result = engine.resolve([make_record("tmdb", "  ", 0.95)])

        assert result.action == ConsensusAction.INSUFFICIENT_DATA
        assert result.responding_sources == 0

    def test_mixed_fields_rejected(self, engine: ConsensusEngine) -> None:
        """Records must all belong to one field."""
        records = [
            make_record("tmdb", "x", 0.95, field_name="director"),
            make_record("tmdb", "y", 0.95, field_name="hero"),
        ]
        with pytest.raises(ValueError, match="several fields"):
            engine.resolve(records)

    def test_latest_record_per_source(self, engine: ConsensusEngine) -> None:
        """A source's newer record replaces its older one."""
        records = [
            make_record("tmdb", "Old Name", 0.95, fetched_at=FIXED_TIME - timedelta(days=30)),
            make_record("tmdb", "S. S. Rajamouli", 0.95),
        ]

        result = engine.resolve(records)

        assert result.consensus_value == "S. S. Rajamouli"
        assert result.responding_sources == 1

    def test_zero_weights_fall_back_to_counts(self, engine: ConsensusEngine) -> None:
        """With no trust weight at all, votes are counted."""
        records = [
            make_record("x1", "A", 0.0),
            make_record("x2", "A", 0.0),
            make_record("x3", "B", 0.0),
        ]

        result = engine.resolve(records)

        assert result.consensus_value == "A"
        assert result.confidence == pytest.approx(2 / 3)

    def test_list_values(self, engine: ConsensusEngine) -> None:
        """Cast lists agree regardless of order."""
        records = [
            make_record("tmdb", ["NTR", "Ram Charan"], 0.95, field_name="cast"),
            make_record("idlebrain", ["Ram Charan", "N.T.R."], 0.88, field_name="cast"),
        ]

        result = engine.resolve(records)

        assert result.consensus_value == ["NTR", "Ram Charan"]
        assert result.conflict is None

    def test_agreement_below_audit_is_insufficient(self, settings) -> None:
        """Unanimous but weak agreement is insufficient, not a conflict."""
        engine = ConsensusEngine(
            thresholds=ConsensusThresholds(audit_threshold=0.80), settings=settings
        )

        result = engine.resolve([make_record("tmdb", "S. S. Rajamouli", 0.95)])

        assert result.action == ConsensusAction.INSUFFICIENT_DATA


class TestResolveFields:
    def test_groups_by_field(self, engine: ConsensusEngine) -> None:
        """Each field is resolved on its own."""
        records = [
            *raj_records(),
            make_record("tmdb", 2009, 0.95, field_name="year"),
            make_record("idlebrain", "2009", 0.88, field_name="year"),
        ]

        results = engine.resolve_fields(records)

        assert list(results) == ["director", "year"]
        assert results["year"].consensus_value == 2009
        assert results["year"].conflict is None

    def test_storable_excludes_validate_only(self, engine: ConsensusEngine) -> None:
        """Validate-only sources do not vote on stored values."""
        records = [
            make_record("imdb", "Wrong Director", 0.90),
            make_record("rottentomatoes", "Wrong Director", 0.90),
            make_record("tmdb", "S. S. Rajamouli", 0.95),
        ]

        results = engine.resolve_storable(records)

        assert results["director"].consensus_value == "S. S. Rajamouli"
        assert results["director"].agreeing_sources == ["tmdb"]
        assert results["director"].disagreeing_sources == []


class TestConsensusResultInvariant:
    def test_agree_and_disagree_overlap_rejected(self) -> None:
        """A source cannot sit on both sides."""
        with pytest.raises(InvariantViolation):
            ConsensusResult(
                field_name="director",
                consensus_value="Raj",
                confidence=0.8,
                agreeing_sources=["tmdb"],
                disagreeing_sources=["tmdb"],
                action=ConsensusAction.AUTO_APPLY,
            )
