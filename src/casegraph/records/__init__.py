"""Base Person and Case records the association graph is built on."""

from casegraph.records.models import Case, CaseContentCounts, Person
from casegraph.records.service import RecordService

__all__ = ["Case", "CaseContentCounts", "Person", "RecordService"]
