"""Initial schema: records, reports, case content, associations, audit.

Revision ID: 0001
Revises:
Create Date: 2026-09-14

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_LIVE = sa.text("removed_at IS NULL")


def _removal_columns() -> list[sa.Column]:
    return [
        sa.Column("created_by", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("removed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("removed_by", sa.String(128), nullable=True),
    ]


def _live_unique(name: str, table: str, columns: list[str]) -> None:
    op.create_index(
        name, table, columns, unique=True, postgresql_where=_LIVE, sqlite_where=_LIVE
    )


def upgrade() -> None:
    # -- Persons --
    op.create_table(
        "persons",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("source", sa.String(32), nullable=False),
        sa.Column("status", sa.String(16), server_default="ACTIVE"),
        sa.Column("first_name", sa.String(128), nullable=True),
        sa.Column("last_name", sa.String(128), nullable=True),
        sa.Column("email", sa.String(256), nullable=True),
        sa.Column("company", sa.String(256), nullable=True),
        sa.Column("merged_into_person_id", sa.String(64), nullable=True),
        sa.Column("created_by", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_persons_tenant_type", "persons", ["tenant_id", "type"])

    # -- Cases --
    op.create_table(
        "cases",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("reference_number", sa.String(32), nullable=False),
        sa.Column("status", sa.String(16), server_default="NEW"),
        sa.Column("status_rationale", sa.Text, nullable=True),
        sa.Column("pipeline_stage", sa.String(64), nullable=True),
        sa.Column("outcome", sa.String(64), nullable=True),
        sa.Column("summary", sa.Text, nullable=True),
        sa.Column("is_merged", sa.Boolean, server_default="false"),
        sa.Column("merged_into_case_id", sa.String(64), nullable=True),
        sa.Column("merged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("merged_by", sa.String(128), nullable=True),
        sa.Column("merged_reason", sa.Text, nullable=True),
        sa.Column("created_by", sa.String(128), nullable=False),
        sa.Column("updated_by", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("tenant_id", "reference_number", name="uq_cases_tenant_reference"),
        sa.CheckConstraint(
            "is_merged = false OR (merged_into_case_id IS NOT NULL AND merged_at IS NOT NULL "
            "AND merged_by IS NOT NULL AND status = 'CLOSED')",
            name="ck_cases_tombstone_complete",
        ),
    )
    op.create_index(
        "ix_cases_tenant_merged_into", "cases", ["tenant_id", "merged_into_case_id"]
    )

    # -- Reports (RIUs) --
    op.create_table(
        "reports",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("reference_number", sa.String(32), nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("source_channel", sa.String(32), nullable=False),
        sa.Column("details", sa.Text, server_default=""),
        sa.Column("summary", sa.Text, nullable=True),
        sa.Column("category_id", sa.String(64), nullable=True),
        sa.Column("severity", sa.String(16), nullable=True),
        sa.Column("reporter_type", sa.String(16), server_default="ANONYMOUS"),
        sa.Column("reporter_name", sa.String(256), nullable=True),
        sa.Column("reporter_email", sa.String(256), nullable=True),
        sa.Column("reporter_phone", sa.String(64), nullable=True),
        sa.Column("location_name", sa.String(256), nullable=True),
        sa.Column("location_city", sa.String(128), nullable=True),
        sa.Column("location_country", sa.String(64), nullable=True),
        sa.Column("custom_fields", sa.JSON, nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("status_changed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status_changed_by", sa.String(128), nullable=True),
        sa.Column("assigned_to", sa.String(128), nullable=True),
        sa.Column("language_detected", sa.String(16), nullable=True),
        sa.Column("language_confirmed", sa.String(16), nullable=True),
        sa.Column("language_effective", sa.String(16), server_default="en"),
        sa.Column("ai_summary", sa.Text, nullable=True),
        sa.Column("ai_risk_score", sa.Float, nullable=True),
        sa.Column("created_by", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("tenant_id", "reference_number", name="uq_reports_tenant_reference"),
    )

    op.create_table(
        "report_hotline_extensions",
        sa.Column(
            "report_id",
            sa.String(64),
            sa.ForeignKey("reports.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("call_duration", sa.Integer, nullable=True),
        sa.Column("interpreter_used", sa.Boolean, server_default="false"),
        sa.Column("interpreter_language", sa.String(16), nullable=True),
        sa.Column("caller_demeanor", sa.String(64), nullable=True),
        sa.Column("callback_requested", sa.Boolean, server_default="false"),
        sa.Column("callback_number", sa.String(64), nullable=True),
        sa.Column("operator_notes", sa.Text, nullable=True),
        sa.Column("qa_status", sa.String(16), server_default="PENDING"),
        sa.Column("qa_reviewer_id", sa.String(128), nullable=True),
        sa.Column("qa_reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("qa_notes", sa.Text, nullable=True),
        sa.Column("qa_rejection_reason", sa.Text, nullable=True),
    )

    op.create_table(
        "report_web_form_extensions",
        sa.Column(
            "report_id",
            sa.String(64),
            sa.ForeignKey("reports.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("form_definition_id", sa.String(64), nullable=True),
        sa.Column("form_version", sa.Integer, nullable=True),
        sa.Column("submission_source", sa.String(64), nullable=True),
        sa.Column("completion_seconds", sa.Integer, nullable=True),
        sa.Column("attachment_count", sa.Integer, server_default="0"),
    )

    op.create_table(
        "report_disclosure_extensions",
        sa.Column(
            "report_id",
            sa.String(64),
            sa.ForeignKey("reports.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("disclosure_type", sa.String(64), nullable=False),
        sa.Column("disclosure_value", sa.Float, nullable=True),
        sa.Column("disclosure_currency", sa.String(8), nullable=True),
        sa.Column("related_company", sa.String(256), nullable=True),
        sa.Column("related_person_name", sa.String(256), nullable=True),
        sa.Column("threshold_triggered", sa.Boolean, server_default="false"),
        sa.Column("conflict_detected", sa.Boolean, server_default="false"),
    )

    op.create_table(
        "report_case_links",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("report_id", sa.String(64), sa.ForeignKey("reports.id"), nullable=False),
        sa.Column("case_id", sa.String(64), sa.ForeignKey("cases.id"), nullable=False),
        sa.Column("association_type", sa.String(16), server_default="PRIMARY"),
        *_removal_columns(),
    )
    _live_unique(
        "uq_report_case_links_live", "report_case_links", ["tenant_id", "report_id", "case_id"]
    )
    op.create_index(
        "ix_report_case_links_tenant_case", "report_case_links", ["tenant_id", "case_id"]
    )

    # -- Case content --
    op.create_table(
        "case_subjects",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("case_id", sa.String(64), sa.ForeignKey("cases.id"), nullable=False),
        sa.Column("person_id", sa.String(64), nullable=True),
        sa.Column("name", sa.String(256), server_default=""),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_table(
        "investigations",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("case_id", sa.String(64), sa.ForeignKey("cases.id"), nullable=False),
        sa.Column("status", sa.String(32), server_default="OPEN"),
        sa.Column("investigator_id", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_table(
        "case_messages",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("case_id", sa.String(64), sa.ForeignKey("cases.id"), nullable=False),
        sa.Column("direction", sa.String(16), server_default="INBOUND"),
        sa.Column("body", sa.Text, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_table(
        "interactions",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("case_id", sa.String(64), sa.ForeignKey("cases.id"), nullable=False),
        sa.Column("channel", sa.String(32), server_default="PHONE"),
        sa.Column("summary", sa.Text, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    for table in ("case_subjects", "investigations", "case_messages", "interactions"):
        op.create_index(f"ix_{table}_tenant_case", table, ["tenant_id", "case_id"])

    # -- Associations --
    op.create_table(
        "person_case_associations",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("person_id", sa.String(64), sa.ForeignKey("persons.id"), nullable=False),
        sa.Column("case_id", sa.String(64), sa.ForeignKey("cases.id"), nullable=False),
        sa.Column("label", sa.String(32), nullable=False),
        sa.Column("evidentiary_status", sa.String(16), nullable=True),
        sa.Column("status_changed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status_changed_by", sa.String(128), nullable=True),
        sa.Column("status_reason", sa.Text, nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ended_reason", sa.Text, nullable=True),
        sa.Column("ended_by", sa.String(128), nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        *_removal_columns(),
        sa.CheckConstraint(
            "evidentiary_status IS NULL OR ended_at IS NULL",
            name="ck_person_case_evidentiary_never_ends",
        ),
        sa.CheckConstraint(
            "evidentiary_status IS NOT NULL OR started_at IS NOT NULL",
            name="ck_person_case_role_has_start",
        ),
        sa.CheckConstraint(
            "ended_at IS NULL OR ended_reason IS NOT NULL",
            name="ck_person_case_end_has_reason",
        ),
    )
    _live_unique(
        "uq_person_case_associations_live",
        "person_case_associations",
        ["tenant_id", "person_id", "case_id", "label"],
    )
    op.create_index(
        "ix_person_case_associations_tenant_case",
        "person_case_associations", ["tenant_id", "case_id"],
    )
    op.create_index(
        "ix_person_case_associations_tenant_person",
        "person_case_associations", ["tenant_id", "person_id"],
    )

    op.create_table(
        "person_report_associations",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("person_id", sa.String(64), sa.ForeignKey("persons.id"), nullable=False),
        sa.Column("report_id", sa.String(64), sa.ForeignKey("reports.id"), nullable=False),
        sa.Column("label", sa.String(32), nullable=False),
        sa.Column("evidentiary_status", sa.String(16), server_default="ACTIVE"),
        sa.Column("status_changed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status_changed_by", sa.String(128), nullable=True),
        sa.Column("status_reason", sa.Text, nullable=True),
        sa.Column("mention_context", sa.Text, nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        *_removal_columns(),
    )
    _live_unique(
        "uq_person_report_associations_live",
        "person_report_associations",
        ["tenant_id", "person_id", "report_id", "label"],
    )
    op.create_index(
        "ix_person_report_associations_tenant_report",
        "person_report_associations", ["tenant_id", "report_id"],
    )
    op.create_index(
        "ix_person_report_associations_tenant_person",
        "person_report_associations", ["tenant_id", "person_id"],
    )

    op.create_table(
        "case_case_associations",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("source_case_id", sa.String(64), sa.ForeignKey("cases.id"), nullable=False),
        sa.Column("target_case_id", sa.String(64), sa.ForeignKey("cases.id"), nullable=False),
        sa.Column("label", sa.String(32), nullable=False),
        sa.Column("notes", sa.Text, nullable=True),
        *_removal_columns(),
    )
    _live_unique(
        "uq_case_case_associations_live",
        "case_case_associations",
        ["tenant_id", "source_case_id", "target_case_id", "label"],
    )
    op.create_index(
        "ix_case_case_associations_tenant_source",
        "case_case_associations", ["tenant_id", "source_case_id"],
    )
    op.create_index(
        "ix_case_case_associations_tenant_target",
        "case_case_associations", ["tenant_id", "target_case_id"],
    )

    op.create_table(
        "person_person_associations",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("person_a_id", sa.String(64), sa.ForeignKey("persons.id"), nullable=False),
        sa.Column("person_b_id", sa.String(64), sa.ForeignKey("persons.id"), nullable=False),
        sa.Column("label", sa.String(32), nullable=False),
        sa.Column("source", sa.String(16), server_default="MANUAL"),
        sa.Column("is_directional", sa.Boolean, server_default="false"),
        sa.Column("a_to_b", sa.String(64), nullable=True),
        sa.Column("b_to_a", sa.String(64), nullable=True),
        sa.Column("effective_from", sa.DateTime(timezone=True), nullable=False),
        sa.Column("effective_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        *_removal_columns(),
    )
    _live_unique(
        "uq_person_person_associations_live",
        "person_person_associations",
        ["tenant_id", "person_a_id", "person_b_id", "label"],
    )
    op.create_index(
        "ix_person_person_associations_tenant_a",
        "person_person_associations", ["tenant_id", "person_a_id"],
    )
    op.create_index(
        "ix_person_person_associations_tenant_b",
        "person_person_associations", ["tenant_id", "person_b_id"],
    )

    # -- Audit Events --
    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("event_id", sa.String(64), nullable=False, unique=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actor", sa.String(128), nullable=False),
        sa.Column("entity_type", sa.String(16), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("description", sa.Text, server_default=""),
        sa.Column("details", sa.JSON, nullable=False),
        sa.Column("previous_hash", sa.String(128), nullable=False),
        sa.Column("entry_hash", sa.String(128), nullable=False),
    )
    op.create_index(
        "ix_audit_events_tenant_entity", "audit_events", ["tenant_id", "entity_type", "entity_id"]
    )
    op.create_index("ix_audit_events_timestamp", "audit_events", ["timestamp"])


def downgrade() -> None:
    op.drop_table("audit_events")
    op.drop_table("person_person_associations")
    op.drop_table("case_case_associations")
    op.drop_table("person_report_associations")
    op.drop_table("person_case_associations")
    op.drop_table("interactions")
    op.drop_table("case_messages")
    op.drop_table("investigations")
    op.drop_table("case_subjects")
    op.drop_table("report_case_links")
    op.drop_table("report_disclosure_extensions")
    op.drop_table("report_web_form_extensions")
    op.drop_table("report_hotline_extensions")
    op.drop_table("reports")
    op.drop_table("cases")
    op.drop_table("persons")
