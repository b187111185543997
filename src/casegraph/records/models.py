"""Pydantic models for the base Person and Case records."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from casegraph.core.types import CaseStatus, PersonSource, PersonStatus, PersonType


class Person(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    type: PersonType
    source: PersonSource
    status: PersonStatus = PersonStatus.ACTIVE
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    company: str | None = None
    merged_into_person_id: str | None = None
    created_by: str
    created_at: datetime
    updated_at: datetime


class Case(BaseModel):
    """An investigation unit, possibly a merge tombstone."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    reference_number: str
    status: CaseStatus = CaseStatus.NEW
    status_rationale: str | None = None
    pipeline_stage: str | None = None
    outcome: str | None = None
    summary: str | None = None
    is_merged: bool = False
    merged_into_case_id: str | None = None
    merged_at: datetime | None = None
    merged_by: str | None = None
    merged_reason: str | None = None
    created_by: str
    updated_by: str | None = None
    created_at: datetime
    updated_at: datetime


class CaseContentCounts(BaseModel):
    """Subordinate rows keyed by a case id."""

    subjects: int = 0
    investigations: int = 0
    messages: int = 0
    interactions: int = 0
