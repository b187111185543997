"""Case consolidation: atomic merges, merge history and chain resolution."""

from casegraph.consolidation.engine import CaseConsolidationEngine
from casegraph.consolidation.models import (
    MergeHistoryEntry,
    MergePreview,
    MergeResult,
    PrimaryResolution,
)

__all__ = [
    "CaseConsolidationEngine",
    "MergeHistoryEntry",
    "MergePreview",
    "MergeResult",
    "PrimaryResolution",
]
