"""Multi-source consensus and entity resolution.

Provides source orchestration, weighted consensus, duplicate detection,
ghost credit analysis, missing film discovery and external id validation.
"""

from reelconsensus.aggregation.consensus import ConsensusEngine, value_key
from reelconsensus.aggregation.discovery import (
    MissingRecordDetector,
    MissingRecordReport,
    find_missing,
    merge_sources,
)
from reelconsensus.aggregation.duplicates import DuplicateDetector
from reelconsensus.aggregation.ghost import GhostReattributionEngine, evaluate_attribution
from reelconsensus.aggregation.id_validator import (
    ExternalIdValidator,
    IdAction,
    IdIssue,
    IdValidationResult,
)
from reelconsensus.aggregation.orchestrator import (
    BatchOutcome,
    QueryOutcome,
    SourceOrchestrator,
)
from reelconsensus.aggregation.roles import classify_role

__all__ = [
    # Orchestration exports
    "BatchOutcome",
    "QueryOutcome",
    "SourceOrchestrator",
    # Consensus exports
    "ConsensusEngine",
    "value_key",
    # Duplicate exports
    "DuplicateDetector",
    # Ghost exports
    "GhostReattributionEngine",
    "evaluate_attribution",
    # Discovery exports
    "MissingRecordDetector",
    "MissingRecordReport",
    "classify_role",
    "find_missing",
    "merge_sources",
    # Id validation exports
    "ExternalIdValidator",
    "IdAction",
    "IdIssue",
    "IdValidationResult",
]
