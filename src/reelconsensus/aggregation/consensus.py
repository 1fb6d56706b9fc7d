"""Weighted-vote consensus over per-source field values.

For one field, values reported by different sources are grouped by
normalized equality; the group with the highest summed trust weight wins.
Confidence is the winner's share of the responding weight, boosted a little
for each further independent source family that agrees, and held down when
every agreeing source shares one upstream.

Aggregation is commutative: group sums use ``math.fsum`` and every tie is
broken on a stable key, so any permutation of the same records yields an
identical result.

Confidence is monotone only while the winning value stays the same: an
agreeing source never lowers it and a disagreeing one never raises it. A
disagreeing source that tips the vote makes a different value the winner,
and that value is scored on its own support.
"""

import logging
import math
from collections import defaultdict
from collections.abc import Iterable

from reelconsensus.config import ConsensusThresholds, Settings, get_settings
from reelconsensus.models import (
    CompetingValue,
    ConflictDetail,
    ConsensusAction,
    ConsensusResult,
    FieldValue,
    SourceRecord,
)
from reelconsensus.normalize import normalize
from reelconsensus.registry import SourceRegistry, default_registry

logger = logging.getLogger(__name__)


def value_key(value: FieldValue | None) -> str:
    """Normalized comparison key of a field value.

    Strings are normalized, numbers formatted so ``2019`` and ``"2019"``
    agree, and lists compared as sorted sets of normalized members. An empty
    key means the value carries no information.

    Examples:
        >>> value_key("S.S. Rajamouli")
        'ss rajamouli'
        >>> value_key(["NTR", "Ram Charan"]) == value_key(["ram charan", "ntr"])
        True
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return f"{float(value):g}"
    if isinstance(value, list):
        members = sorted({normalize(str(item)) for item in value} - {""})
        return "|".join(members)
    return normalize(str(value))


class _Group:
    """Sources backing one normalized value."""

    def __init__(self, key: str) -> None:
        self.key = key
        self.records: list[SourceRecord] = []
        self._values: dict[str, FieldValue] = {}

    def add(self, record: SourceRecord, value: FieldValue) -> None:
        self.records.append(record)
        self._values[record.source_id] = value

    @property
    def weight(self) -> float:
        return math.fsum(r.trust_weight for r in self.records)

    @property
    def sources(self) -> list[str]:
        return sorted(r.source_id for r in self.records)

    @property
    def representative(self) -> FieldValue:
        """Value as reported by the heaviest member (ties by source id)."""
        best = min(self.records, key=lambda r: (-r.trust_weight, r.source_id))
        return self._values[best.source_id]


class ConsensusEngine:
    """Resolve field values reported by multiple sources.

    Attributes:
        thresholds: Decision thresholds and boost shape.

    Example:
        >>> engine = ConsensusEngine()
        >>> result = engine.resolve(records)
        >>> result.action
        <ConsensusAction.AUTO_APPLY: 'auto_apply'>
    """

    def __init__(
        self,
        registry: SourceRegistry | None = None,
        thresholds: ConsensusThresholds | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            registry: Used for source families and the ingest filter.
            thresholds: Overrides ``Settings.consensus``.
            settings: Optional Settings instance.
        """
        self._registry = registry or default_registry()
        self.thresholds = thresholds or (settings or get_settings()).consensus

    def resolve(
        self, records: Iterable[SourceRecord], field_name: str | None = None
    ) -> ConsensusResult:
        """Decide the consensus value of one field.

        Args:
            records: Every source's record for the field. Records without a
                usable value do not count as responses.
            field_name: Name to report when ``records`` is empty.

        Returns:
            ConsensusResult with value, confidence, supporting sources and the
            recommended action.

        Raises:
            ValueError: If the records belong to more than one field.
        """
        records = list(records)
        names = {r.field_name for r in records}
        if len(names) > 1:
            raise ValueError(f"Records span several fields: {sorted(names)}")
        name = names.pop() if names else (field_name or "")

        latest = self._latest_per_source(records)
        if not latest:
            logger.debug(f"No source returned a value for {name}")
            return ConsensusResult(
                field_name=name,
                confidence=0.0,
                action=ConsensusAction.INSUFFICIENT_DATA,
            )

        groups: dict[str, _Group] = {}
        for record in latest:
            if record.value is None:
                continue
            key = value_key(record.value)
            groups.setdefault(key, _Group(key)).add(record, record.value)

        ranked = sorted(groups.values(), key=lambda g: (-g.weight, -len(g.records), g.key))
        winner = ranked[0]
        confidence = self._confidence(winner, latest)
        is_split = len(ranked) > 1

        conflict = None
        if is_split:
            conflict = ConflictDetail(
                values=[
                    CompetingValue(value=g.representative, weight=g.weight, sources=g.sources)
                    for g in ranked
                ]
            )

        t = self.thresholds
        requires_audit = False
        if confidence >= t.auto_apply_threshold:
            action = ConsensusAction.AUTO_APPLY
        elif confidence >= t.audit_threshold:
            action = ConsensusAction.AUTO_APPLY
            requires_audit = True
        elif is_split:
            action = ConsensusAction.FLAG_CONFLICT
        else:
            action = ConsensusAction.INSUFFICIENT_DATA

        disagreeing = sorted(r.source_id for g in ranked[1:] for r in g.records)
        result = ConsensusResult(
            field_name=name,
            consensus_value=winner.representative,
            confidence=confidence,
            agreeing_sources=winner.sources,
            disagreeing_sources=disagreeing,
            conflict=conflict,
            action=action,
            requires_audit=requires_audit,
            responding_sources=len(latest),
        )
        if action == ConsensusAction.FLAG_CONFLICT:
            logger.warning(
                f"Conflict on {name}: {len(ranked)} competing values, "
                f"best {confidence:.2f} from {winner.sources}"
            )
        else:
            logger.debug(f"Resolved {name} at {confidence:.2f}: {action.value}")
        return result

    def resolve_fields(self, records: Iterable[SourceRecord]) -> dict[str, ConsensusResult]:
        """Resolve every field present in the records.

        Returns:
            Results keyed by field name, in sorted field order.
        """
        by_field: dict[str, list[SourceRecord]] = defaultdict(list)
        for record in records:
            by_field[record.field_name].append(record)
        results = {name: self.resolve(by_field[name], name) for name in sorted(by_field)}
        actions = [r.action for r in results.values()]
        logger.info(
            f"Consensus complete: {len(results)} fields, "
            f"{actions.count(ConsensusAction.AUTO_APPLY)} auto-apply, "
            f"{actions.count(ConsensusAction.FLAG_CONFLICT)} conflicts"
        )
        return results

    def resolve_storable(self, records: Iterable[SourceRecord]) -> dict[str, ConsensusResult]:
        """Resolve fields using only records whose sources may be stored.

        Validate-only, license-gated, disabled and unregistered sources are
        removed by registry lookup before voting.
        """
        return self.resolve_fields(self._registry.ingest_candidates(records))

    @staticmethod
    def _latest_per_source(records: list[SourceRecord]) -> list[SourceRecord]:
        """One usable record per source: the most recent, ties by value key."""
        latest: dict[str, SourceRecord] = {}
        for record in records:
            if not value_key(record.value):
                continue
            current = latest.get(record.source_id)
            if current is None or (record.fetched_at, value_key(current.value)) > (
                current.fetched_at,
                value_key(record.value),
            ):
                latest[record.source_id] = record
        return [latest[source_id] for source_id in sorted(latest)]

    def _confidence(self, winner: _Group, responding: list[SourceRecord]) -> float:
        """Weighted share of the winner, boosted for independent agreement."""
        t = self.thresholds
        total = math.fsum(r.trust_weight for r in responding)
        if total > 0:
            base = winner.weight / total
        else:
            base = len(winner.records) / len(responding)

        families = {
            self._registry.family_of(r.source_id) for r in winner.records if r.trust_weight > 0
        }
        if len(families) >= 2:
            confidence = min(t.confidence_cap, base + t.corroboration_boost * (len(families) - 1))
        else:
            confidence = min(base, t.single_source_cap)
        return max(0.0, min(1.0, confidence))


__all__ = [
    "ConsensusEngine",
    "value_key",
]
