"""Pattern-detection projection: documents, projector and queries."""

from casegraph.search.documents import CaseDocument, DocType, ReportDocument
from casegraph.search.projector import PatternIndexProjector
from casegraph.search.query import PatternQueryEngine, PersonCriterion
from casegraph.search.store import ProjectionStore

__all__ = [
    "CaseDocument",
    "DocType",
    "PatternIndexProjector",
    "PatternQueryEngine",
    "PersonCriterion",
    "ProjectionStore",
    "ReportDocument",
]
