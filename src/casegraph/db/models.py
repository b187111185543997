"""SQLAlchemy ORM models for all persistent tables.

Every row carries ``tenant_id``. Association tables are one class per kind;
their uniqueness is enforced on live (not soft-removed) rows only.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from casegraph.core.types import new_id, utcnow
from casegraph.db.base import Base


def _jsonb() -> type:
    """Return JSONB for Postgres, plain JSON for SQLite."""
    return JSON().with_variant(PG_JSONB(), "postgresql")


def _live_unique(name: str, *columns: str) -> Index:
    """Unique index restricted to rows that have not been soft-removed."""
    return Index(
        name,
        *columns,
        unique=True,
        postgresql_where=text("removed_at IS NULL"),
        sqlite_where=text("removed_at IS NULL"),
    )


# ---------------------------------------------------------------------------
# Base records: Persons, Cases, Reports
# ---------------------------------------------------------------------------


class PersonRow(Base):
    __tablename__ = "persons"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(64))
    type: Mapped[str] = mapped_column(String(32))
    source: Mapped[str] = mapped_column(String(32))
    status: Mapped[str] = mapped_column(String(16), default="ACTIVE")
    first_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    email: Mapped[str | None] = mapped_column(String(256), nullable=True)
    company: Mapped[str | None] = mapped_column(String(256), nullable=True)
    merged_into_person_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_by: Mapped[str] = mapped_column(String(128))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("ix_persons_tenant_type", "tenant_id", "type"),
    )


class CaseRow(Base):
    __tablename__ = "cases"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(64))
    reference_number: Mapped[str] = mapped_column(String(32))
    status: Mapped[str] = mapped_column(String(16), default="NEW")
    status_rationale: Mapped[str | None] = mapped_column(Text, nullable=True)
    pipeline_stage: Mapped[str | None] = mapped_column(String(64), nullable=True)
    outcome: Mapped[str | None] = mapped_column(String(64), nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_merged: Mapped[bool] = mapped_column(Boolean, default=False)
    merged_into_case_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    merged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    merged_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    merged_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str] = mapped_column(String(128))
    updated_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "reference_number", name="uq_cases_tenant_reference"),
        Index("ix_cases_tenant_merged_into", "tenant_id", "merged_into_case_id"),
        CheckConstraint(
            "is_merged = false OR (merged_into_case_id IS NOT NULL AND merged_at IS NOT NULL "
            "AND merged_by IS NOT NULL AND status = 'CLOSED')",
            name="ck_cases_tombstone_complete",
        ),
    )


class ReportRow(Base):
    __tablename__ = "reports"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(64))
    reference_number: Mapped[str] = mapped_column(String(32))
    type: Mapped[str] = mapped_column(String(32))
    source_channel: Mapped[str] = mapped_column(String(32))
    # Intake content, frozen after creation
    details: Mapped[str] = mapped_column(Text, default="")
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    category_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    severity: Mapped[str | None] = mapped_column(String(16), nullable=True)
    reporter_type: Mapped[str] = mapped_column(String(16), default="ANONYMOUS")
    reporter_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    reporter_email: Mapped[str | None] = mapped_column(String(256), nullable=True)
    reporter_phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    location_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    location_city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    location_country: Mapped[str | None] = mapped_column(String(64), nullable=True)
    custom_fields: Mapped[dict] = mapped_column(_jsonb(), default=dict)
    # Status and classification tracking
    status: Mapped[str] = mapped_column(String(32))
    status_changed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status_changed_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    assigned_to: Mapped[str | None] = mapped_column(String(128), nullable=True)
    language_detected: Mapped[str | None] = mapped_column(String(16), nullable=True)
    language_confirmed: Mapped[str | None] = mapped_column(String(16), nullable=True)
    language_effective: Mapped[str] = mapped_column(String(16), default="en")
    ai_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    ai_risk_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_by: Mapped[str] = mapped_column(String(128))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "reference_number", name="uq_reports_tenant_reference"),
    )


class HotlineExtensionRow(Base):
    __tablename__ = "report_hotline_extensions"

    report_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("reports.id", ondelete="CASCADE"), primary_key=True
    )
    tenant_id: Mapped[str] = mapped_column(String(64))
    call_duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    interpreter_used: Mapped[bool] = mapped_column(Boolean, default=False)
    interpreter_language: Mapped[str | None] = mapped_column(String(16), nullable=True)
    caller_demeanor: Mapped[str | None] = mapped_column(String(64), nullable=True)
    callback_requested: Mapped[bool] = mapped_column(Boolean, default=False)
    callback_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    operator_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    qa_status: Mapped[str] = mapped_column(String(16), default="PENDING")
    qa_reviewer_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    qa_reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    qa_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    qa_rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)


class WebFormExtensionRow(Base):
    __tablename__ = "report_web_form_extensions"

    report_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("reports.id", ondelete="CASCADE"), primary_key=True
    )
    tenant_id: Mapped[str] = mapped_column(String(64))
    form_definition_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    form_version: Mapped[int | None] = mapped_column(Integer, nullable=True)
    submission_source: Mapped[str | None] = mapped_column(String(64), nullable=True)
    completion_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    attachment_count: Mapped[int] = mapped_column(Integer, default=0)


class DisclosureExtensionRow(Base):
    __tablename__ = "report_disclosure_extensions"

    report_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("reports.id", ondelete="CASCADE"), primary_key=True
    )
    tenant_id: Mapped[str] = mapped_column(String(64))
    disclosure_type: Mapped[str] = mapped_column(String(64))
    disclosure_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    disclosure_currency: Mapped[str | None] = mapped_column(String(8), nullable=True)
    related_company: Mapped[str | None] = mapped_column(String(256), nullable=True)
    related_person_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    threshold_triggered: Mapped[bool] = mapped_column(Boolean, default=False)
    conflict_detected: Mapped[bool] = mapped_column(Boolean, default=False)


class ReportCaseLinkRow(Base):
    __tablename__ = "report_case_links"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(64))
    report_id: Mapped[str] = mapped_column(String(64), ForeignKey("reports.id"))
    case_id: Mapped[str] = mapped_column(String(64), ForeignKey("cases.id"))
    association_type: Mapped[str] = mapped_column(String(16), default="PRIMARY")
    created_by: Mapped[str] = mapped_column(String(128))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    removed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    removed_by: Mapped[str | None] = mapped_column(String(128), nullable=True)

    __table_args__ = (
        _live_unique("uq_report_case_links_live", "tenant_id", "report_id", "case_id"),
        Index("ix_report_case_links_tenant_case", "tenant_id", "case_id"),
    )


# ---------------------------------------------------------------------------
# Subordinate case content (relocated by merges)
# ---------------------------------------------------------------------------


class SubjectRow(Base):
    __tablename__ = "case_subjects"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(64))
    case_id: Mapped[str] = mapped_column(String(64), ForeignKey("cases.id"))
    person_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    name: Mapped[str] = mapped_column(String(256), default="")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (Index("ix_case_subjects_tenant_case", "tenant_id", "case_id"),)


class InvestigationRow(Base):
    __tablename__ = "investigations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(64))
    case_id: Mapped[str] = mapped_column(String(64), ForeignKey("cases.id"))
    status: Mapped[str] = mapped_column(String(32), default="OPEN")
    investigator_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (Index("ix_investigations_tenant_case", "tenant_id", "case_id"),)


class CaseMessageRow(Base):
    __tablename__ = "case_messages"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(64))
    case_id: Mapped[str] = mapped_column(String(64), ForeignKey("cases.id"))
    direction: Mapped[str] = mapped_column(String(16), default="INBOUND")
    body: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (Index("ix_case_messages_tenant_case", "tenant_id", "case_id"),)


class InteractionRow(Base):
    __tablename__ = "interactions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(64))
    case_id: Mapped[str] = mapped_column(String(64), ForeignKey("cases.id"))
    channel: Mapped[str] = mapped_column(String(32), default="PHONE")
    summary: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (Index("ix_interactions_tenant_case", "tenant_id", "case_id"),)


# ---------------------------------------------------------------------------
# Associations
# ---------------------------------------------------------------------------


class PersonCaseAssociationRow(Base):
    __tablename__ = "person_case_associations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(64))
    person_id: Mapped[str] = mapped_column(String(64), ForeignKey("persons.id"))
    case_id: Mapped[str] = mapped_column(String(64), ForeignKey("cases.id"))
    label: Mapped[str] = mapped_column(String(32))
    evidentiary_status: Mapped[str | None] = mapped_column(String(16), nullable=True)
    status_changed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status_changed_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    status_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ended_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    ended_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str] = mapped_column(String(128))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    removed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    removed_by: Mapped[str | None] = mapped_column(String(128), nullable=True)

    __table_args__ = (
        _live_unique(
            "uq_person_case_associations_live", "tenant_id", "person_id", "case_id", "label"
        ),
        Index("ix_person_case_associations_tenant_case", "tenant_id", "case_id"),
        Index("ix_person_case_associations_tenant_person", "tenant_id", "person_id"),
        CheckConstraint(
            "evidentiary_status IS NULL OR ended_at IS NULL",
            name="ck_person_case_evidentiary_never_ends",
        ),
        CheckConstraint(
            "evidentiary_status IS NOT NULL OR started_at IS NOT NULL",
            name="ck_person_case_role_has_start",
        ),
        CheckConstraint(
            "ended_at IS NULL OR ended_reason IS NOT NULL",
            name="ck_person_case_end_has_reason",
        ),
    )


class PersonReportAssociationRow(Base):
    __tablename__ = "person_report_associations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(64))
    person_id: Mapped[str] = mapped_column(String(64), ForeignKey("persons.id"))
    report_id: Mapped[str] = mapped_column(String(64), ForeignKey("reports.id"))
    label: Mapped[str] = mapped_column(String(32))
    evidentiary_status: Mapped[str] = mapped_column(String(16), default="ACTIVE")
    status_changed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status_changed_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    status_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    mention_context: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str] = mapped_column(String(128))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    removed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    removed_by: Mapped[str | None] = mapped_column(String(128), nullable=True)

    __table_args__ = (
        _live_unique(
            "uq_person_report_associations_live", "tenant_id", "person_id", "report_id", "label"
        ),
        Index("ix_person_report_associations_tenant_report", "tenant_id", "report_id"),
        Index("ix_person_report_associations_tenant_person", "tenant_id", "person_id"),
    )


class CaseCaseAssociationRow(Base):
    __tablename__ = "case_case_associations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(64))
    source_case_id: Mapped[str] = mapped_column(String(64), ForeignKey("cases.id"))
    target_case_id: Mapped[str] = mapped_column(String(64), ForeignKey("cases.id"))
    label: Mapped[str] = mapped_column(String(32))
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str] = mapped_column(String(128))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    removed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    removed_by: Mapped[str | None] = mapped_column(String(128), nullable=True)

    __table_args__ = (
        _live_unique(
            "uq_case_case_associations_live",
            "tenant_id", "source_case_id", "target_case_id", "label",
        ),
        Index("ix_case_case_associations_tenant_source", "tenant_id", "source_case_id"),
        Index("ix_case_case_associations_tenant_target", "tenant_id", "target_case_id"),
    )


class PersonPersonAssociationRow(Base):
    __tablename__ = "person_person_associations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(64))
    person_a_id: Mapped[str] = mapped_column(String(64), ForeignKey("persons.id"))
    person_b_id: Mapped[str] = mapped_column(String(64), ForeignKey("persons.id"))
    label: Mapped[str] = mapped_column(String(32))
    source: Mapped[str] = mapped_column(String(16), default="MANUAL")
    is_directional: Mapped[bool] = mapped_column(Boolean, default=False)
    a_to_b: Mapped[str | None] = mapped_column(String(64), nullable=True)
    b_to_a: Mapped[str | None] = mapped_column(String(64), nullable=True)
    effective_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    effective_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str] = mapped_column(String(128))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    removed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    removed_by: Mapped[str | None] = mapped_column(String(128), nullable=True)

    __table_args__ = (
        _live_unique(
            "uq_person_person_associations_live",
            "tenant_id", "person_a_id", "person_b_id", "label",
        ),
        Index("ix_person_person_associations_tenant_a", "tenant_id", "person_a_id"),
        Index("ix_person_person_associations_tenant_b", "tenant_id", "person_b_id"),
    )


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


class AuditEventRow(Base):
    __tablename__ = "audit_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(String(64), unique=True)
    tenant_id: Mapped[str] = mapped_column(String(64))
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    actor: Mapped[str] = mapped_column(String(128))
    entity_type: Mapped[str] = mapped_column(String(16))
    entity_id: Mapped[str] = mapped_column(String(64))
    action: Mapped[str] = mapped_column(String(64))
    description: Mapped[str] = mapped_column(Text, default="")
    details: Mapped[dict] = mapped_column(_jsonb(), default=dict)
    previous_hash: Mapped[str] = mapped_column(String(128), default="")
    entry_hash: Mapped[str] = mapped_column(String(128), default="")

    __table_args__ = (
        Index("ix_audit_events_tenant_entity", "tenant_id", "entity_type", "entity_id"),
        Index("ix_audit_events_timestamp", "timestamp"),
    )


# ---------------------------------------------------------------------------
# Pattern projection (written only by the projector)
# ---------------------------------------------------------------------------


class PatternDocumentRow(Base):
    __tablename__ = "pattern_documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64))
    doc_type: Mapped[str] = mapped_column(String(16))
    doc_id: Mapped[str] = mapped_column(String(64))
    document: Mapped[dict] = mapped_column(_jsonb(), default=dict)
    source_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    indexed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "doc_type", "doc_id", name="uq_pattern_documents_doc"),
    )


class PatternEntryRow(Base):
    """One nested ``associations.persons`` entry of a projected document."""

    __tablename__ = "pattern_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64))
    doc_type: Mapped[str] = mapped_column(String(16))
    doc_id: Mapped[str] = mapped_column(String(64))
    person_id: Mapped[str] = mapped_column(String(64))
    label: Mapped[str] = mapped_column(String(32))
    evidentiary_status: Mapped[str | None] = mapped_column(String(16), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    __table_args__ = (
        Index("ix_pattern_entries_tenant_person", "tenant_id", "doc_type", "person_id"),
        Index("ix_pattern_entries_tenant_doc", "tenant_id", "doc_type", "doc_id"),
    )
