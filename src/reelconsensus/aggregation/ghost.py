"""Ghost credit analysis: is a person really credited on a film?

A "ghost" is a credit attached to the wrong film, typically a hero's name on a
film he never starred in. The engine cross-references cast and role data from
several sources and recommends keeping the credit, re-attributing it, or
asking a human. It never recommends deletion.
"""

import asyncio
import logging
import math
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from reelconsensus.aggregation.orchestrator import BatchOutcome, SourceOrchestrator
from reelconsensus.config import Settings, get_settings
from reelconsensus.confidence import AutomationKind, AutomationPolicy
from reelconsensus.models import (
    EntitySummary,
    GhostAnalysis,
    GhostEvidence,
    GhostVerdict,
    SourceRecord,
)
from reelconsensus.similarity import names_match

logger = logging.getLogger(__name__)

CAST_FIELD = "cast"

NO_DATA_CONFIDENCE = 0.40
REVIEW_CONFIDENCE = 0.60
TWO_SOURCE_CONFIDENCE = 0.80
THREE_SOURCE_CONFIDENCE = 0.95
CONFIRMED_CAP = 0.98


@dataclass
class _SourceView:
    """What one source says about the film's credits."""

    source_id: str
    weight: float = 0.0
    role_names: list[str] = field(default_factory=list)
    cast: list[str] = field(default_factory=list)

    @property
    def has_data(self) -> bool:
        return bool(self.role_names or self.cast)

    @property
    def suggestion(self) -> str | None:
        """The source's own pick for the role: its credit, else its top-billed actor."""
        if self.role_names:
            return self.role_names[0]
        return self.cast[0] if self.cast else None


@dataclass
class _Cluster:
    """Alternatives that name the same person."""

    names: list[str] = field(default_factory=list)
    sources: list[str] = field(default_factory=list)
    families: set[str] = field(default_factory=set)

    @property
    def display_name(self) -> str:
        """Most frequent spelling, ties broken alphabetically."""
        return min(set(self.names), key=lambda n: (-self.names.count(n), n))


def _as_names(value: object) -> list[str]:
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    if isinstance(value, str) and value.strip():
        return [value.strip()]
    return []


def _views(records: Iterable[SourceRecord], role: str) -> list[_SourceView]:
    views: dict[str, _SourceView] = {}
    for record in records:
        view = views.setdefault(record.source_id, _SourceView(record.source_id))
        view.weight = max(view.weight, record.trust_weight)
        if record.field_name == role:
            view.role_names = _as_names(record.value)
        elif record.field_name == CAST_FIELD:
            view.cast = _as_names(record.value)
    return [views[source_id] for source_id in sorted(views)]


def evaluate_attribution(
    entity_id: str,
    claimed_person: str,
    role: str,
    records: Iterable[SourceRecord],
    *,
    family_of: Callable[[str], str] = lambda source_id: source_id,
    name_threshold: float = 0.85,
) -> GhostAnalysis:
    """Decide whether ``claimed_person`` belongs on the film in ``role``.

    Decision tree:
    1. No source has role or cast data: flag for review (0.40). Absence of
       evidence is never grounds for removal.
    2. At least half of the sources with data credit the claimed person:
       confirmed, at the supporting weight share.
    3. Otherwise each dissenting source's alternative (its credit for the
       role, else its top-billed actor) is clustered by name. Three or more
       independent source families agreeing: reattribute (0.95). Exactly
       two: reattribute (0.80). Anything less, or a tie between
       alternatives: flag for review (0.60).

    Args:
        entity_id: Id of the film entity.
        claimed_person: Name currently credited.
        role: Credited role, e.g. "hero".
        records: Source records for ``role`` and ``"cast"``.
        family_of: Maps a source id to its upstream family.
        name_threshold: Minimum name similarity for a match.

    Returns:
        GhostAnalysis with verdict, suggestion, confidence and evidence.
    """
    views = [v for v in _views(records, role) if v.has_data]

    def analysis(
        verdict: GhostVerdict,
        confidence: float,
        evidence: list[GhostEvidence],
        suggested: str | None = None,
    ) -> GhostAnalysis:
        return GhostAnalysis(
            entity_id=entity_id,
            claimed_person=claimed_person,
            role=role,
            verdict=verdict,
            suggested_person=suggested,
            confidence=confidence,
            evidence=evidence,
        )

    if not views:
        logger.info(f"No cast data for {entity_id}; flagging {claimed_person} for review")
        return analysis(GhostVerdict.FLAG_FOR_REVIEW, NO_DATA_CONFIDENCE, [])

    evidence: list[GhostEvidence] = []
    supporting: list[_SourceView] = []
    dissenting: list[_SourceView] = []
    for view in views:
        credited = view.role_names + view.cast
        if any(names_match(claimed_person, name, name_threshold) for name in credited):
            supporting.append(view)
            evidence.append(GhostEvidence(source_id=view.source_id, supports=True))
        else:
            dissenting.append(view)
            evidence.append(
                GhostEvidence(
                    source_id=view.source_id,
                    supports=False,
                    suggested_person=view.suggestion,
                )
            )

    if supporting and 2 * len(supporting) >= len(views):
        total = math.fsum(v.weight for v in views)
        if total > 0:
            share = math.fsum(v.weight for v in supporting) / total
        else:
            share = len(supporting) / len(views)
        return analysis(GhostVerdict.CONFIRMED, min(share, CONFIRMED_CAP), evidence)

    clusters: list[_Cluster] = []
    for view in dissenting:
        name = view.suggestion
        if name is None:
            continue
        target = next(
            (c for c in clusters if names_match(c.names[0], name, name_threshold)), None
        )
        if target is None:
            target = _Cluster()
            clusters.append(target)
        target.names.append(name)
        target.sources.append(view.source_id)
        target.families.add(family_of(view.source_id))

    if not clusters:
        return analysis(GhostVerdict.FLAG_FOR_REVIEW, REVIEW_CONFIDENCE, evidence)

    clusters.sort(key=lambda c: (-len(c.families), -len(c.sources), c.display_name))
    best = clusters[0]
    agreeing = len(best.families)
    contested = len(clusters) > 1 and len(clusters[1].families) == agreeing

    if contested or agreeing < 2:
        logger.warning(
            f"Ghost check inconclusive for {claimed_person} on {entity_id}: "
            f"{len(clusters)} alternative(s), best backed by {agreeing} source(s)"
        )
        return analysis(
            GhostVerdict.FLAG_FOR_REVIEW, REVIEW_CONFIDENCE, evidence, best.display_name
        )

    confidence = THREE_SOURCE_CONFIDENCE if agreeing >= 3 else TWO_SOURCE_CONFIDENCE
    logger.info(
        f"Re-attribution suggested on {entity_id}: {claimed_person} -> "
        f"{best.display_name} ({agreeing} independent sources)"
    )
    return analysis(GhostVerdict.REATTRIBUTE, confidence, evidence, best.display_name)


class GhostReattributionEngine:
    """Check claimed credits against live source data.

    Example:
        >>> engine = GhostReattributionEngine(orchestrator)
        >>> analysis = await engine.analyze(entity, "Chiranjeevi", role="hero")
        >>> analysis.verdict
        <GhostVerdict.REATTRIBUTE: 'reattribute'>
    """

    def __init__(
        self,
        orchestrator: SourceOrchestrator,
        settings: Settings | None = None,
        policy: AutomationPolicy | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._settings = settings or get_settings()
        self._policy = policy or AutomationPolicy(self._settings.automation)

    async def analyze(
        self,
        entity: EntitySummary,
        claimed_person: str | None = None,
        role: str = "hero",
    ) -> GhostAnalysis:
        """Analyze one credit of one film.

        Args:
            entity: The film.
            claimed_person: Name to check. Defaults to the entity's own credit
                for ``role``.
            role: Credited role.

        Raises:
            ValueError: If no claimed person is given or credited.
        """
        claimed = claimed_person or entity.attributed_people.get(role)
        if not claimed:
            raise ValueError(f"No {role} credited on {entity.id} and none given")

        records = await self._orchestrator.query(entity, [role, CAST_FIELD])
        return evaluate_attribution(
            entity.id,
            claimed,
            role,
            records,
            family_of=self._orchestrator.registry.family_of,
            name_threshold=self._settings.name_match_threshold,
        )

    async def analyze_batch(
        self,
        entities: Iterable[EntitySummary],
        role: str = "hero",
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> BatchOutcome:
        """Analyze the ``role`` credit of many films in rate-limited batches.

        Entities without a credit for ``role`` are skipped.

        Returns:
            BatchOutcome whose results map entity ids to GhostAnalysis.
        """
        credited = [e for e in entities if e.attributed_people.get(role)]

        async def worker(entity: EntitySummary) -> GhostAnalysis:
            return await self.analyze(entity, role=role)

        outcome = await self._orchestrator.run_batches(
            credited, worker, key=lambda e: e.id, cancel_event=cancel_event
        )
        verdicts = [a.verdict for a in outcome.results.values()]
        logger.info(
            f"Ghost analysis complete: {len(verdicts)} analyzed, "
            f"{verdicts.count(GhostVerdict.REATTRIBUTE)} re-attributions, "
            f"{verdicts.count(GhostVerdict.FLAG_FOR_REVIEW)} flagged"
        )
        return outcome

    def should_auto_reattribute(self, analysis: GhostAnalysis) -> bool:
        """Whether a re-attribution is confident enough to apply unattended."""
        return analysis.verdict == GhostVerdict.REATTRIBUTE and self._policy.should_auto_fix(
            AutomationKind.REATTRIBUTE, analysis.confidence
        )


__all__ = [
    "GhostReattributionEngine",
    "evaluate_attribution",
]
