"""Report intake and post-intake updates."""

from __future__ import annotations

import logging
from typing import Any

import pydantic
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from casegraph.associations.models import AssociationKind, PersonReportLabel
from casegraph.associations.store import AssociationStore
from casegraph.core.errors import ConflictError, ValidationError
from casegraph.core.types import ActorContext, EntityType, new_id, utcnow
from casegraph.db.engine import DatabaseManager
from casegraph.db.models import (
    DisclosureExtensionRow,
    HotlineExtensionRow,
    ReportRow,
    WebFormExtensionRow,
)
from casegraph.events.models import DomainEvent, EventAction, EventTopic
from casegraph.events.queue import EventQueue
from casegraph.governance.audit import AuditTrail
from casegraph.records.service import RecordService, load_report, next_reference_number
from casegraph.reports.guard import ImmutabilityGuard
from casegraph.reports.models import (
    EXTENSION_BY_TYPE,
    DisclosureExtension,
    ExtensionKind,
    HotlineExtension,
    Report,
    ReportCreate,
    ReporterType,
    ReportType,
    WebFormExtension,
)

logger = logging.getLogger(__name__)

_REFERENCE_ATTEMPTS = 3
_QA_FIELDS = {"qa_status", "qa_notes", "qa_rejection_reason"}

_EXTENSION_ROWS: dict[ExtensionKind, Any] = {
    ExtensionKind.HOTLINE: HotlineExtensionRow,
    ExtensionKind.WEB_FORM: WebFormExtensionRow,
    ExtensionKind.DISCLOSURE: DisclosureExtensionRow,
}

_EXTENSION_MODELS: dict[ExtensionKind, Any] = {
    ExtensionKind.HOTLINE: HotlineExtension,
    ExtensionKind.WEB_FORM: WebFormExtension,
    ExtensionKind.DISCLOSURE: DisclosureExtension,
}


class ReportService:
    """Creates reports with their extension row and guards later writes."""

    def __init__(
        self,
        db: DatabaseManager,
        audit: AuditTrail,
        guard: ImmutabilityGuard,
        records: RecordService,
        associations: AssociationStore,
        queue: EventQueue | None = None,
    ) -> None:
        self._db = db
        self._audit = audit
        self._guard = guard
        self._records = records
        self._associations = associations
        self._queue = queue

    @property
    def guard(self) -> ImmutabilityGuard:
        return self._guard

    async def create(self, ctx: ActorContext, payload: ReportCreate | dict[str, Any]) -> Report:
        """Record a new intake.

        Writes the report, exactly one extension row for its channel and the
        REPORTER association in one transaction. The reporter is the given
        person, or the tenant's anonymous placeholder for anonymous reports.
        """
        if not isinstance(payload, ReportCreate):
            try:
                payload = ReportCreate.model_validate(payload)
            except pydantic.ValidationError as exc:
                fields = sorted({str(e["loc"][0]) for e in exc.errors() if e["loc"]})
                raise ValidationError(f"Invalid report: {exc}", fields=fields)

        extension_kind = EXTENSION_BY_TYPE[payload.type]
        foreign = sorted(
            k.value for k in ExtensionKind
            if k != extension_kind and getattr(payload, k.value) is not None
        )
        if foreign:
            raise ValidationError(
                f"{payload.type.value} reports carry a {extension_kind.value} extension only",
                fields=foreign,
            )
        extension = getattr(payload, extension_kind.value)
        if extension is None:
            if extension_kind == ExtensionKind.DISCLOSURE:
                raise ValidationError(
                    f"{payload.type.value} reports require disclosure details",
                    fields=["disclosure"],
                )
            extension = _EXTENSION_MODELS[extension_kind]()

        reporter_id = payload.reporter_person_id
        if reporter_id is not None:
            await self._records.require_person(ctx, reporter_id)
        elif payload.reporter_type == ReporterType.ANONYMOUS:
            reporter_id = (await self._records.get_or_create_anonymous_placeholder(ctx)).id

        initial_status = self._guard.initial_status(payload.type)
        fields = payload.model_dump(
            exclude={"hotline", "web_form", "disclosure", "reporter_person_id"}
        )

        for attempt in range(_REFERENCE_ATTEMPTS):
            async with self._db.session() as db:
                now = utcnow()
                row = ReportRow(
                    id=new_id(),
                    tenant_id=ctx.tenant_id,
                    reference_number=await next_reference_number(
                        db, ReportRow, ctx.tenant_id, "RIU"
                    ),
                    status=initial_status.value,
                    status_changed_at=now,
                    status_changed_by=ctx.actor_id,
                    language_effective=self._guard.effective_language(
                        payload.language_confirmed, payload.language_detected
                    ),
                    created_by=ctx.actor_id,
                    created_at=now,
                    updated_at=now,
                    **fields,
                )
                db.add(row)
                ext_row = _EXTENSION_ROWS[extension_kind](
                    report_id=row.id, tenant_id=ctx.tenant_id, **extension.model_dump()
                )
                db.add(ext_row)
                try:
                    await db.flush()
                except IntegrityError:
                    await db.rollback()
                    if attempt == _REFERENCE_ATTEMPTS - 1:
                        raise ConflictError("Could not allocate a report reference number")
                    continue
                # The reporter link commits with the report or not at all
                reporter_row = None
                if reporter_id is not None:
                    reporter_row = await self._associations.stage(
                        db, ctx, AssociationKind.PERSON_REPORT, reporter_id, row.id,
                        PersonReportLabel.REPORTER,
                    )
                try:
                    await db.commit()
                except IntegrityError:
                    await db.rollback()
                    if attempt == _REFERENCE_ATTEMPTS - 1:
                        raise ConflictError("Could not allocate a report reference number")
                    continue
            break

        report = self._to_model(row, extension_kind, ext_row)
        await self._audit.record(
            ctx, EntityType.REPORT, report.id, "created",
            description=f"Report {report.reference_number} received via {report.source_channel}",
            details={"type": report.type.value, "status": report.status.value},
        )
        self._publish(ctx, report.id, EventAction.CREATED)

        if reporter_row is not None:
            await self._associations.announce_created(
                ctx, AssociationKind.PERSON_REPORT, reporter_row
            )
        return report

    async def get(self, ctx: ActorContext, report_id: str) -> Report:
        async with self._db.session() as db:
            row = await load_report(db, ctx.tenant_id, report_id)
            kind, ext_row = await self._load_extension(db, row)
            return self._to_model(row, kind, ext_row)

    async def update(self, ctx: ActorContext, report_id: str, changes: dict[str, Any]) -> Report:
        """Apply status/classification changes. Intake fields are rejected."""
        self._guard.check_update(changes)

        async with self._db.session() as db:
            row = await load_report(db, ctx.tenant_id, report_id)
            kind, ext_row = await self._load_extension(db, row)
            report_type = ReportType(row.type)
            now = utcnow()
            applied: dict[str, Any] = {}

            if "status" in changes and changes["status"] != row.status:
                target = self._guard.check_transition(report_type, row.status, changes["status"])
                applied["status"] = {"from": row.status, "to": target.value}
                row.status = target.value
                row.status_changed_at = now
                row.status_changed_by = ctx.actor_id

            qa_changes = _QA_FIELDS & changes.keys()
            if qa_changes:
                if kind != ExtensionKind.HOTLINE:
                    raise ValidationError(
                        "QA review applies to hotline reports only", fields=sorted(qa_changes)
                    )
                self._apply_qa(ctx, ext_row, changes, applied)

            for field in ("assigned_to", "ai_summary", "ai_risk_score"):
                if field in changes:
                    setattr(row, field, changes[field])
                    applied[field] = changes[field]

            if "language_detected" in changes or "language_confirmed" in changes:
                for field in ("language_detected", "language_confirmed"):
                    if field in changes:
                        setattr(row, field, changes[field])
                        applied[field] = changes[field]
                row.language_effective = self._guard.effective_language(
                    row.language_confirmed, row.language_detected
                )

            row.updated_at = now
            await db.commit()
            report = self._to_model(row, kind, ext_row)

        await self._audit.record(
            ctx, EntityType.REPORT, report_id, "updated", details={"changes": applied}
        )
        self._publish(ctx, report_id, EventAction.UPDATED, {"fields": sorted(changes)})
        return report

    def _apply_qa(
        self,
        ctx: ActorContext,
        ext_row: HotlineExtensionRow,
        changes: dict[str, Any],
        applied: dict[str, Any],
    ) -> None:
        if "qa_status" in changes:
            target = self._guard.check_qa_transition(ext_row.qa_status, changes["qa_status"])
            if target.value == "REJECTED" and not (
                changes.get("qa_rejection_reason") or ext_row.qa_rejection_reason
            ):
                raise ValidationError(
                    "Rejecting a hotline report requires a reason",
                    fields=["qa_rejection_reason"],
                )
            applied["qa_status"] = {"from": ext_row.qa_status, "to": target.value}
            ext_row.qa_status = target.value
            ext_row.qa_reviewer_id = ctx.actor_id
            ext_row.qa_reviewed_at = utcnow()
        for field in ("qa_notes", "qa_rejection_reason"):
            if field in changes:
                setattr(ext_row, field, changes[field])
                applied[field] = changes[field]

    async def _load_extension(
        self, db: AsyncSession, row: ReportRow
    ) -> tuple[ExtensionKind, Any]:
        kind = EXTENSION_BY_TYPE[ReportType(row.type)]
        ext_row = await db.get(_EXTENSION_ROWS[kind], row.id)
        return kind, ext_row

    @staticmethod
    def _to_model(row: ReportRow, kind: ExtensionKind, ext_row: Any) -> Report:
        report = Report.model_validate(row)
        if ext_row is not None:
            setattr(report, kind.value, _EXTENSION_MODELS[kind].model_validate(ext_row))
        return report

    def _publish(
        self,
        ctx: ActorContext,
        report_id: str,
        action: EventAction,
        payload: dict[str, Any] | None = None,
    ) -> None:
        if self._queue is not None:
            self._queue.publish(
                DomainEvent(
                    topic=EventTopic.REPORT,
                    action=action,
                    tenant_id=ctx.tenant_id,
                    subject_id=report_id,
                    payload={"actor": ctx.actor_id, **(payload or {})},
                )
            )
