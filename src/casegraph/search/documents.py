"""Shapes of the denormalized pattern-search documents.

The flat ``*_person_ids`` arrays exist for cheap term filtering; the nested
``associations.persons`` entries carry label and status together so that a
compound query can require both to match within one entry.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class DocType(StrEnum):
    CASE = "case"
    REPORT = "report"


class PersonEntry(BaseModel):
    person_id: str
    person_name: str
    label: str
    evidentiary_status: str | None = None
    is_active: bool = True


class LinkedReportEntry(BaseModel):
    report_id: str
    reference_number: str
    association_type: str
    reporter_person_ids: list[str] = Field(default_factory=list)


class LinkedCaseEntry(BaseModel):
    case_id: str
    reference_number: str
    label: str
    direction: str  # "outgoing" when this case is the association's source


class CaseAssociationsDoc(BaseModel):
    persons: list[PersonEntry] = Field(default_factory=list)
    linked_reports: list[LinkedReportEntry] = Field(default_factory=list)
    linked_cases: list[LinkedCaseEntry] = Field(default_factory=list)


class CaseDocument(BaseModel):
    case_id: str
    tenant_id: str
    reference_number: str
    status: str
    is_merged: bool = False
    merged_into_case_id: str | None = None
    created_at: datetime
    updated_at: datetime
    associations: CaseAssociationsDoc = Field(default_factory=CaseAssociationsDoc)
    person_ids: list[str] = Field(default_factory=list)
    subject_person_ids: list[str] = Field(default_factory=list)
    witness_person_ids: list[str] = Field(default_factory=list)
    reporter_person_ids: list[str] = Field(default_factory=list)
    investigator_person_ids: list[str] = Field(default_factory=list)


class ReportDocument(BaseModel):
    report_id: str
    tenant_id: str
    reference_number: str
    type: str
    status: str
    created_at: datetime
    reporter_person_ids: list[str] = Field(default_factory=list)
    mentioned_person_ids: list[str] = Field(default_factory=list)
    linked_case_ids: list[str] = Field(default_factory=list)
