"""Report (RIU) models and their channel-specific extensions."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ReportType(StrEnum):
    HOTLINE = "HOTLINE"
    WEB_FORM = "WEB_FORM"
    INCIDENT_FORM = "INCIDENT_FORM"
    DISCLOSURE = "DISCLOSURE"
    ATTESTATION = "ATTESTATION"
    SURVEY = "SURVEY"


class ReportStatus(StrEnum):
    PENDING_QA = "PENDING_QA"
    IN_QA = "IN_QA"
    QA_REJECTED = "QA_REJECTED"
    RELEASED = "RELEASED"
    RECEIVED = "RECEIVED"
    COMPLETED = "COMPLETED"
    LINKED = "LINKED"
    CLOSED = "CLOSED"


class QaStatus(StrEnum):
    PENDING = "PENDING"
    IN_REVIEW = "IN_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    NEEDS_REVISION = "NEEDS_REVISION"


class ReporterType(StrEnum):
    ANONYMOUS = "ANONYMOUS"
    CONFIDENTIAL = "CONFIDENTIAL"
    IDENTIFIED = "IDENTIFIED"


class SourceChannel(StrEnum):
    PHONE = "PHONE"
    WEB_FORM = "WEB_FORM"
    EMAIL = "EMAIL"
    CHATBOT = "CHATBOT"
    PROXY = "PROXY"
    CAMPAIGN = "CAMPAIGN"


class Severity(StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class ExtensionKind(StrEnum):
    HOTLINE = "hotline"
    WEB_FORM = "web_form"
    DISCLOSURE = "disclosure"


EXTENSION_BY_TYPE: dict[ReportType, ExtensionKind] = {
    ReportType.HOTLINE: ExtensionKind.HOTLINE,
    ReportType.WEB_FORM: ExtensionKind.WEB_FORM,
    ReportType.INCIDENT_FORM: ExtensionKind.WEB_FORM,
    ReportType.SURVEY: ExtensionKind.WEB_FORM,
    ReportType.DISCLOSURE: ExtensionKind.DISCLOSURE,
    ReportType.ATTESTATION: ExtensionKind.DISCLOSURE,
}


class HotlineExtension(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    call_duration: int | None = None
    interpreter_used: bool = False
    interpreter_language: str | None = None
    caller_demeanor: str | None = None
    callback_requested: bool = False
    callback_number: str | None = None
    operator_notes: str | None = None
    qa_status: QaStatus = QaStatus.PENDING
    qa_reviewer_id: str | None = None
    qa_reviewed_at: datetime | None = None
    qa_notes: str | None = None
    qa_rejection_reason: str | None = None


class WebFormExtension(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    form_definition_id: str | None = None
    form_version: int | None = None
    submission_source: str | None = None
    completion_seconds: int | None = None
    attachment_count: int = 0


class DisclosureExtension(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    disclosure_type: str
    disclosure_value: float | None = None
    disclosure_currency: str | None = None
    related_company: str | None = None
    related_person_name: str | None = None
    threshold_triggered: bool = False
    conflict_detected: bool = False


class Report(BaseModel):
    """A report as stored, with its single channel extension."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    reference_number: str
    type: ReportType
    source_channel: SourceChannel
    details: str
    summary: str | None = None
    category_id: str | None = None
    severity: Severity | None = None
    reporter_type: ReporterType = ReporterType.ANONYMOUS
    reporter_name: str | None = None
    reporter_email: str | None = None
    reporter_phone: str | None = None
    location_name: str | None = None
    location_city: str | None = None
    location_country: str | None = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)
    status: ReportStatus
    status_changed_at: datetime | None = None
    status_changed_by: str | None = None
    assigned_to: str | None = None
    language_detected: str | None = None
    language_confirmed: str | None = None
    language_effective: str
    ai_summary: str | None = None
    ai_risk_score: float | None = None
    created_by: str
    created_at: datetime
    updated_at: datetime

    hotline: HotlineExtension | None = None
    web_form: WebFormExtension | None = None
    disclosure: DisclosureExtension | None = None


class ReportCreate(BaseModel):
    """Intake payload for a new report."""

    type: ReportType
    source_channel: SourceChannel
    details: str = Field(min_length=1)
    summary: str | None = None
    category_id: str | None = None
    severity: Severity | None = None
    reporter_type: ReporterType = ReporterType.ANONYMOUS
    reporter_name: str | None = None
    reporter_email: str | None = None
    reporter_phone: str | None = None
    reporter_person_id: str | None = None
    location_name: str | None = None
    location_city: str | None = None
    location_country: str | None = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)
    language_detected: str | None = None
    language_confirmed: str | None = None

    hotline: HotlineExtension | None = None
    web_form: WebFormExtension | None = None
    disclosure: DisclosureExtension | None = None
