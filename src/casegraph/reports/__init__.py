"""Reports (RIUs): intake records with frozen content and tracked status."""

from casegraph.reports.guard import IMMUTABLE_FIELDS, ImmutabilityGuard
from casegraph.reports.models import QaStatus, Report, ReportCreate, ReportStatus, ReportType
from casegraph.reports.service import ReportService

__all__ = [
    "IMMUTABLE_FIELDS",
    "ImmutabilityGuard",
    "QaStatus",
    "Report",
    "ReportCreate",
    "ReportService",
    "ReportStatus",
    "ReportType",
]
