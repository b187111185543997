"""Association kinds, labels and their row models.

Each relation kind is its own table and model. Person-Case labels split into
evidentiary labels (permanent facts whose status may change) and role labels
(time-bounded assignments with a start and an optional end).
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class AssociationKind(StrEnum):
    PERSON_CASE = "PERSON_CASE"
    PERSON_REPORT = "PERSON_REPORT"
    CASE_CASE = "CASE_CASE"
    PERSON_PERSON = "PERSON_PERSON"

    @classmethod
    def from_path(cls, value: str) -> AssociationKind:
        """Accept ``person-case`` as well as ``PERSON_CASE``."""
        return cls(value.replace("-", "_").upper())


class PersonCaseLabel(StrEnum):
    # Evidentiary
    REPORTER = "REPORTER"
    SUBJECT = "SUBJECT"
    WITNESS = "WITNESS"
    # Role
    ASSIGNED_INVESTIGATOR = "ASSIGNED_INVESTIGATOR"
    APPROVER = "APPROVER"
    STAKEHOLDER = "STAKEHOLDER"
    MANAGER_OF_SUBJECT = "MANAGER_OF_SUBJECT"
    REVIEWER = "REVIEWER"
    LEGAL_COUNSEL = "LEGAL_COUNSEL"


class PersonReportLabel(StrEnum):
    REPORTER = "REPORTER"
    SUBJECT_MENTIONED = "SUBJECT_MENTIONED"
    WITNESS_MENTIONED = "WITNESS_MENTIONED"


class CaseCaseLabel(StrEnum):
    """Read as ``source_case <label> target_case``."""

    PARENT = "PARENT"
    CHILD = "CHILD"
    SPLIT_FROM = "SPLIT_FROM"
    SPLIT_TO = "SPLIT_TO"
    RELATED = "RELATED"
    ESCALATED_TO = "ESCALATED_TO"
    SUPERSEDES = "SUPERSEDES"
    FOLLOW_UP_TO = "FOLLOW_UP_TO"
    MERGED_FROM = "MERGED_FROM"
    MERGED_INTO = "MERGED_INTO"


class PersonPersonLabel(StrEnum):
    MANAGER_OF = "MANAGER_OF"
    REPORTS_TO = "REPORTS_TO"
    SPOUSE = "SPOUSE"
    DOMESTIC_PARTNER = "DOMESTIC_PARTNER"
    FAMILY_MEMBER = "FAMILY_MEMBER"
    FORMER_COLLEAGUE = "FORMER_COLLEAGUE"
    BUSINESS_PARTNER = "BUSINESS_PARTNER"
    CLOSE_PERSONAL_FRIEND = "CLOSE_PERSONAL_FRIEND"


class PersonPersonSource(StrEnum):
    HRIS = "HRIS"
    DISCLOSURE = "DISCLOSURE"
    INVESTIGATION = "INVESTIGATION"
    MANUAL = "MANUAL"


class EvidentiaryStatus(StrEnum):
    ACTIVE = "ACTIVE"
    CLEARED = "CLEARED"
    SUBSTANTIATED = "SUBSTANTIATED"
    WITHDRAWN = "WITHDRAWN"


class ReportAssociationType(StrEnum):
    PRIMARY = "PRIMARY"
    RELATED = "RELATED"
    MERGED_FROM = "MERGED_FROM"


EVIDENTIARY_LABELS = frozenset(
    {PersonCaseLabel.REPORTER, PersonCaseLabel.SUBJECT, PersonCaseLabel.WITNESS}
)
ROLE_LABELS = frozenset(set(PersonCaseLabel) - EVIDENTIARY_LABELS)

DIRECTIONAL_LABELS: dict[PersonPersonLabel, tuple[str, str]] = {
    PersonPersonLabel.MANAGER_OF: ("manages", "reports to"),
    PersonPersonLabel.REPORTS_TO: ("reports to", "manages"),
}

COI_LABELS = frozenset(
    {
        PersonPersonLabel.SPOUSE,
        PersonPersonLabel.DOMESTIC_PARTNER,
        PersonPersonLabel.FAMILY_MEMBER,
        PersonPersonLabel.BUSINESS_PARTNER,
        PersonPersonLabel.CLOSE_PERSONAL_FRIEND,
    }
)

# Written only by the consolidation engine.
MERGE_CASE_LABELS = frozenset({CaseCaseLabel.MERGED_FROM, CaseCaseLabel.MERGED_INTO})

LABELS_BY_KIND: dict[AssociationKind, type[StrEnum]] = {
    AssociationKind.PERSON_CASE: PersonCaseLabel,
    AssociationKind.PERSON_REPORT: PersonReportLabel,
    AssociationKind.CASE_CASE: CaseCaseLabel,
    AssociationKind.PERSON_PERSON: PersonPersonLabel,
}


def is_evidentiary(kind: AssociationKind, label: str) -> bool:
    if kind == AssociationKind.PERSON_REPORT:
        return True
    if kind == AssociationKind.PERSON_CASE:
        return label in EVIDENTIARY_LABELS
    return False


class AssociationMetadata(BaseModel):
    """Optional fields accepted by ``AssociationStore.create``.

    Which of them apply depends on the kind and label; the store rejects a
    field that does not belong to the association being created.
    """

    model_config = ConfigDict(extra="forbid")

    evidentiary_status: EvidentiaryStatus | None = None
    status_reason: str | None = None
    started_at: datetime | None = None
    mention_context: str | None = None
    source: PersonPersonSource | None = None
    effective_from: datetime | None = None
    effective_until: datetime | None = None
    notes: str | None = None


# --- Row models ---


class _AssociationBase(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    notes: str | None = None
    created_by: str
    created_at: datetime
    removed_at: datetime | None = None
    removed_by: str | None = None


class PersonCaseAssociation(_AssociationBase):
    kind: AssociationKind = AssociationKind.PERSON_CASE
    person_id: str
    case_id: str
    label: PersonCaseLabel
    evidentiary_status: EvidentiaryStatus | None = None
    status_changed_at: datetime | None = None
    status_changed_by: str | None = None
    status_reason: str | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None
    ended_reason: str | None = None
    ended_by: str | None = None

    @property
    def is_evidentiary(self) -> bool:
        return self.label in EVIDENTIARY_LABELS

    @property
    def is_active(self) -> bool:
        if self.removed_at is not None:
            return False
        if self.is_evidentiary:
            return self.evidentiary_status != EvidentiaryStatus.WITHDRAWN
        return self.ended_at is None


class PersonReportAssociation(_AssociationBase):
    kind: AssociationKind = AssociationKind.PERSON_REPORT
    person_id: str
    report_id: str
    label: PersonReportLabel
    evidentiary_status: EvidentiaryStatus = EvidentiaryStatus.ACTIVE
    status_changed_at: datetime | None = None
    status_changed_by: str | None = None
    status_reason: str | None = None
    mention_context: str | None = None


class CaseCaseAssociation(_AssociationBase):
    kind: AssociationKind = AssociationKind.CASE_CASE
    source_case_id: str
    target_case_id: str
    label: CaseCaseLabel


class PersonPersonAssociation(_AssociationBase):
    kind: AssociationKind = AssociationKind.PERSON_PERSON
    person_a_id: str
    person_b_id: str
    label: PersonPersonLabel
    source: PersonPersonSource = PersonPersonSource.MANUAL
    is_directional: bool = False
    a_to_b: str | None = None
    b_to_a: str | None = None
    effective_from: datetime
    effective_until: datetime | None = None


class ReportCaseLink(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    report_id: str
    case_id: str
    association_type: ReportAssociationType = ReportAssociationType.PRIMARY
    created_by: str
    created_at: datetime
    removed_at: datetime | None = None
    removed_by: str | None = None


Association = (
    PersonCaseAssociation
    | PersonReportAssociation
    | CaseCaseAssociation
    | PersonPersonAssociation
)


class CaseAssociations(BaseModel):
    """Everything attached to one case."""

    case_id: str
    persons: list[PersonCaseAssociation] = Field(default_factory=list)
    cases: list[CaseCaseAssociation] = Field(default_factory=list)
    reports: list[ReportCaseLink] = Field(default_factory=list)


class PersonAssociations(BaseModel):
    """Everything attached to one person."""

    person_id: str
    cases: list[PersonCaseAssociation] = Field(default_factory=list)
    reports: list[PersonReportAssociation] = Field(default_factory=list)
    persons: list[PersonPersonAssociation] = Field(default_factory=list)
