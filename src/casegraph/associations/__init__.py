"""Labeled association graph between Persons, Reports and Cases."""

from casegraph.associations.models import (
    AssociationKind,
    AssociationMetadata,
    CaseCaseLabel,
    EvidentiaryStatus,
    PersonCaseLabel,
    PersonPersonLabel,
    PersonPersonSource,
    PersonReportLabel,
    ReportAssociationType,
)
from casegraph.associations.store import AssociationStore

__all__ = [
    "AssociationKind",
    "AssociationMetadata",
    "AssociationStore",
    "CaseCaseLabel",
    "EvidentiaryStatus",
    "PersonCaseLabel",
    "PersonPersonLabel",
    "PersonPersonSource",
    "PersonReportLabel",
    "ReportAssociationType",
]
