"""Result and preview models for case merges."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class MergeResult(BaseModel):
    """What a merge moved, for audit display."""

    source_case_id: str
    target_case_id: str
    source_reference: str
    target_reference: str
    reason: str
    merged_at: datetime
    merged_by: str

    person_associations_moved: int = 0
    case_associations_moved: int = 0
    report_links_moved: int = 0
    associations_collapsed: int = 0
    subjects_moved: int = 0
    investigations_moved: int = 0
    messages_moved: int = 0
    interactions_moved: int = 0

    # Entities whose projections depend on the two cases
    report_ids: list[str] = Field(default_factory=list)
    related_case_ids: list[str] = Field(default_factory=list)

    @property
    def associations_moved(self) -> int:
        return (
            self.person_associations_moved
            + self.case_associations_moved
            + self.report_links_moved
        )


class MergePreview(BaseModel):
    """Non-raising answer to "could these two cases be merged right now?"."""

    source_case_id: str
    target_case_id: str
    can_merge: bool
    reasons: list[str] = Field(default_factory=list)
    source_reference: str | None = None
    target_reference: str | None = None
    person_associations: int = 0
    report_links: int = 0
    case_associations: int = 0
    subjects: int = 0
    investigations: int = 0


class MergeHistoryEntry(BaseModel):
    case_id: str
    reference_number: str
    merged_at: datetime | None
    merged_by: str | None
    merged_reason: str | None


class PrimaryResolution(BaseModel):
    """End of a merge chain starting at ``case_id``."""

    case_id: str
    primary_case_id: str
    reference_number: str
    hops: int
    chain: list[str]
    truncated: bool = False
