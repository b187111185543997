"""Persistence and invariants for the labeled association graph.

Every mutation runs in its own session, is audited through
:class:`AuditTrail.record` and, once committed, publishes a
:class:`DomainEvent` on the outbound queue for the pattern projector.
Rows are never hard-deleted: ``remove`` stamps ``removed_at``/``removed_by``
and removed rows drop out of reads and uniqueness checks.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import pydantic
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from casegraph.associations.models import (
    COI_LABELS,
    DIRECTIONAL_LABELS,
    LABELS_BY_KIND,
    MERGE_CASE_LABELS,
    Association,
    AssociationKind,
    AssociationMetadata,
    CaseAssociations,
    CaseCaseAssociation,
    CaseCaseLabel,
    EvidentiaryStatus,
    PersonAssociations,
    PersonCaseAssociation,
    PersonPersonAssociation,
    PersonPersonLabel,
    PersonPersonSource,
    PersonReportAssociation,
    ReportAssociationType,
    ReportCaseLink,
    is_evidentiary,
)
from casegraph.core.errors import ConflictError, NotFoundError, ValidationError
from casegraph.core.types import ActorContext, EntityType, as_utc, utcnow
from casegraph.db.engine import DatabaseManager
from casegraph.db.models import (
    CaseCaseAssociationRow,
    PersonCaseAssociationRow,
    PersonPersonAssociationRow,
    PersonReportAssociationRow,
    ReportCaseLinkRow,
)
from casegraph.events.models import DomainEvent, EventAction, EventTopic
from casegraph.events.queue import EventQueue
from casegraph.governance.audit import AuditTrail
from casegraph.records.service import load_case, load_person, load_report

logger = logging.getLogger(__name__)

REPORT_CASE_LINK = "REPORT_CASE"

_ROWS: dict[AssociationKind, Any] = {
    AssociationKind.PERSON_CASE: PersonCaseAssociationRow,
    AssociationKind.PERSON_REPORT: PersonReportAssociationRow,
    AssociationKind.CASE_CASE: CaseCaseAssociationRow,
    AssociationKind.PERSON_PERSON: PersonPersonAssociationRow,
}

_MODELS: dict[AssociationKind, Any] = {
    AssociationKind.PERSON_CASE: PersonCaseAssociation,
    AssociationKind.PERSON_REPORT: PersonReportAssociation,
    AssociationKind.CASE_CASE: CaseCaseAssociation,
    AssociationKind.PERSON_PERSON: PersonPersonAssociation,
}

# (subject column, object column) of the uniqueness key, per kind
_ENDPOINTS: dict[AssociationKind, tuple[str, str]] = {
    AssociationKind.PERSON_CASE: ("person_id", "case_id"),
    AssociationKind.PERSON_REPORT: ("person_id", "report_id"),
    AssociationKind.CASE_CASE: ("source_case_id", "target_case_id"),
    AssociationKind.PERSON_PERSON: ("person_a_id", "person_b_id"),
}

_EVIDENTIARY_FIELDS = {"evidentiary_status", "status_reason", "notes"}
_ROLE_FIELDS = {"started_at", "notes"}
_ALLOWED_FIELDS: dict[AssociationKind, set[str]] = {
    AssociationKind.PERSON_REPORT: _EVIDENTIARY_FIELDS | {"mention_context"},
    AssociationKind.CASE_CASE: {"notes"},
    AssociationKind.PERSON_PERSON: {"source", "effective_from", "effective_until", "notes"},
}


def parse_kind(kind: AssociationKind | str) -> AssociationKind:
    try:
        return AssociationKind.from_path(str(kind))
    except ValueError:
        raise ValidationError(f"Unknown association kind {kind!r}", fields=["kind"])


def _parse_label(kind: AssociationKind, label: str) -> Any:
    try:
        return LABELS_BY_KIND[kind](str(label).upper())
    except ValueError:
        raise ValidationError(
            f"Label {label!r} is not valid for {kind.value} associations",
            fields=["label"],
        )


def _parse_metadata(metadata: AssociationMetadata | dict[str, Any] | None) -> AssociationMetadata:
    if isinstance(metadata, AssociationMetadata):
        return metadata
    try:
        return AssociationMetadata.model_validate(metadata or {})
    except pydantic.ValidationError as exc:
        fields = sorted({str(err["loc"][0]) for err in exc.errors() if err["loc"]})
        raise ValidationError(f"Invalid association metadata: {exc}", fields=fields)


class AssociationStore:
    """Tenant-scoped create/update/end/remove and reads for all four kinds."""

    def __init__(
        self,
        db: DatabaseManager,
        audit: AuditTrail,
        queue: EventQueue | None = None,
    ) -> None:
        self._db = db
        self._audit = audit
        self._queue = queue

    # --- Writes ---

    async def create(
        self,
        ctx: ActorContext,
        kind: AssociationKind | str,
        subject_id: str,
        object_id: str,
        label: str,
        metadata: AssociationMetadata | dict[str, Any] | None = None,
    ) -> Association:
        """Create one association.

        Raises ValidationError for a label outside the kind, a field that does
        not apply to the label, or a self-association; NotFoundError when an
        endpoint is not in the tenant; ConflictError for a duplicate live row
        or a tombstoned case endpoint.
        """
        kind = parse_kind(kind)
        async with self._db.session() as db:
            row = await self.stage(db, ctx, kind, subject_id, object_id, label, metadata)
            await self._commit(db, kind)
        return await self.announce_created(ctx, kind, row)

    async def stage(
        self,
        db: AsyncSession,
        ctx: ActorContext,
        kind: AssociationKind | str,
        subject_id: str,
        object_id: str,
        label: str,
        metadata: AssociationMetadata | dict[str, Any] | None = None,
    ) -> Any:
        """Validate an association and add its row to the caller's session.

        The caller owns the transaction and must call :meth:`announce_created`
        once it has committed.
        """
        kind = parse_kind(kind)
        row = await self._prepare(db, ctx, kind, subject_id, object_id, label, metadata)
        db.add(row)
        return row

    async def announce_created(
        self, ctx: ActorContext, kind: AssociationKind | str, row: Any
    ) -> Association:
        """Audit and publish a committed association row."""
        kind = parse_kind(kind)
        created = _MODELS[kind].model_validate(row)
        await self._after_write(ctx, kind, created, EventAction.CREATED)
        return created

    async def update_status(
        self,
        ctx: ActorContext,
        kind: AssociationKind | str,
        association_id: str,
        new_status: EvidentiaryStatus | str,
        reason: str | None = None,
    ) -> Association:
        """Change the status of an evidentiary association."""
        kind = parse_kind(kind)
        if kind not in (AssociationKind.PERSON_CASE, AssociationKind.PERSON_REPORT):
            raise ValidationError(
                f"{kind.value} associations carry no evidentiary status", fields=["kind"]
            )
        try:
            status = EvidentiaryStatus(str(new_status).upper())
        except ValueError:
            raise ValidationError(f"Unknown evidentiary status {new_status!r}", fields=["status"])

        async with self._db.session() as db:
            row = await self._load_live(db, ctx, kind, association_id)
            if not is_evidentiary(kind, row.label):
                raise ValidationError(
                    f"{row.label} is a role association; end it instead of changing status",
                    fields=["status"],
                )
            previous = row.evidentiary_status
            row.evidentiary_status = status.value
            row.status_changed_at = utcnow()
            row.status_changed_by = ctx.actor_id
            row.status_reason = reason
            await self._commit(db, kind)
        updated = _MODELS[kind].model_validate(row)
        await self._after_write(
            ctx, kind, updated, EventAction.STATUS_CHANGED,
            details={"from": previous, "to": status.value, "reason": reason},
        )
        return updated

    async def end_role(
        self,
        ctx: ActorContext,
        association_id: str,
        reason: str,
        ended_at: datetime | None = None,
    ) -> PersonCaseAssociation:
        """Close the validity window of a Person-Case role association."""
        if not reason or not reason.strip():
            raise ValidationError("Ending a role requires a reason", fields=["reason"])

        kind = AssociationKind.PERSON_CASE
        async with self._db.session() as db:
            row = await self._load_live(db, ctx, kind, association_id)
            if is_evidentiary(kind, row.label):
                raise ValidationError(
                    f"{row.label} is evidentiary and cannot be ended; change its status instead",
                    fields=["ended_at"],
                )
            if row.ended_at is not None:
                raise ConflictError(f"Role association {association_id!r} has already ended")
            ended_at = ended_at or utcnow()
            if as_utc(ended_at) < as_utc(row.started_at):
                raise ValidationError("A role cannot end before it started", fields=["ended_at"])
            row.ended_at = ended_at
            row.ended_reason = reason
            row.ended_by = ctx.actor_id
            await self._commit(db, kind)
        ended = PersonCaseAssociation.model_validate(row)
        await self._after_write(ctx, kind, ended, EventAction.ENDED, details={"reason": reason})
        return ended

    async def remove(
        self, ctx: ActorContext, kind: AssociationKind | str, association_id: str
    ) -> Association:
        """Soft-remove an association. The row stays for audit."""
        kind = parse_kind(kind)
        async with self._db.session() as db:
            row = await self._load_live(db, ctx, kind, association_id)
            row.removed_at = utcnow()
            row.removed_by = ctx.actor_id
            await self._commit(db, kind)
        removed = _MODELS[kind].model_validate(row)
        await self._after_write(ctx, kind, removed, EventAction.REMOVED)
        return removed

    async def link_report_to_case(
        self,
        ctx: ActorContext,
        report_id: str,
        case_id: str,
        association_type: ReportAssociationType | str = ReportAssociationType.PRIMARY,
    ) -> ReportCaseLink:
        try:
            link_type = ReportAssociationType(str(association_type).upper())
        except ValueError:
            raise ValidationError(
                f"Unknown report link type {association_type!r}", fields=["association_type"]
            )
        if link_type == ReportAssociationType.MERGED_FROM:
            raise ValidationError(
                "MERGED_FROM links are written by case merges", fields=["association_type"]
            )

        async with self._db.session() as db:
            await load_report(db, ctx.tenant_id, report_id)
            case = await load_case(db, ctx.tenant_id, case_id)
            if case.is_merged:
                raise ConflictError(f"Case {case.reference_number} is merged and read-only")
            existing = await db.execute(
                select(ReportCaseLinkRow.id).where(
                    ReportCaseLinkRow.tenant_id == ctx.tenant_id,
                    ReportCaseLinkRow.report_id == report_id,
                    ReportCaseLinkRow.case_id == case_id,
                    ReportCaseLinkRow.removed_at.is_(None),
                )
            )
            if existing.first() is not None:
                raise ConflictError(
                    f"Report {report_id!r} is already linked to case {case.reference_number}"
                )
            row = ReportCaseLinkRow(
                tenant_id=ctx.tenant_id,
                report_id=report_id,
                case_id=case_id,
                association_type=link_type.value,
                created_by=ctx.actor_id,
            )
            db.add(row)
            await self._commit(db, REPORT_CASE_LINK)
        link = ReportCaseLink.model_validate(row)
        await self._after_link(ctx, link, EventAction.CREATED)
        return link

    async def remove_report_link(self, ctx: ActorContext, link_id: str) -> ReportCaseLink:
        async with self._db.session() as db:
            row = await db.get(ReportCaseLinkRow, link_id)
            if row is None or row.tenant_id != ctx.tenant_id or row.removed_at is not None:
                raise NotFoundError(f"Report link {link_id!r} not found")
            row.removed_at = utcnow()
            row.removed_by = ctx.actor_id
            await self._commit(db, REPORT_CASE_LINK)
        link = ReportCaseLink.model_validate(row)
        await self._after_link(ctx, link, EventAction.REMOVED)
        return link

    # --- Convenience writes ---

    async def create_case_hierarchy(
        self, ctx: ActorContext, parent_case_id: str, child_case_id: str
    ) -> tuple[CaseCaseAssociation, CaseCaseAssociation]:
        """Write both ends of a parent/child pair in one transaction."""
        return await self._create_pair(
            ctx,
            (parent_case_id, child_case_id, CaseCaseLabel.PARENT),
            (child_case_id, parent_case_id, CaseCaseLabel.CHILD),
        )

    async def create_case_split(
        self, ctx: ActorContext, original_case_id: str, new_case_id: str
    ) -> tuple[CaseCaseAssociation, CaseCaseAssociation]:
        return await self._create_pair(
            ctx,
            (original_case_id, new_case_id, CaseCaseLabel.SPLIT_TO),
            (new_case_id, original_case_id, CaseCaseLabel.SPLIT_FROM),
        )

    async def create_manager_relationship(
        self,
        ctx: ActorContext,
        manager_id: str,
        report_id: str,
        source: PersonPersonSource = PersonPersonSource.HRIS,
    ) -> PersonPersonAssociation:
        return await self.create(
            ctx,
            AssociationKind.PERSON_PERSON,
            manager_id,
            report_id,
            PersonPersonLabel.MANAGER_OF,
            {"source": source},
        )

    # --- Reads ---

    async def get(
        self, ctx: ActorContext, kind: AssociationKind | str, association_id: str
    ) -> Association:
        kind = parse_kind(kind)
        async with self._db.session() as db:
            row = await self._load_live(db, ctx, kind, association_id)
            return _MODELS[kind].model_validate(row)

    async def list_for_case(self, ctx: ActorContext, case_id: str) -> CaseAssociations:
        async with self._db.session() as db:
            await load_case(db, ctx.tenant_id, case_id)
            persons = await db.execute(
                self._live(AssociationKind.PERSON_CASE, ctx)
                .where(PersonCaseAssociationRow.case_id == case_id)
                .order_by(PersonCaseAssociationRow.created_at)
            )
            cases = await db.execute(
                self._live(AssociationKind.CASE_CASE, ctx)
                .where(
                    or_(
                        CaseCaseAssociationRow.source_case_id == case_id,
                        CaseCaseAssociationRow.target_case_id == case_id,
                    )
                )
                .order_by(CaseCaseAssociationRow.created_at)
            )
            reports = await db.execute(
                select(ReportCaseLinkRow)
                .where(
                    ReportCaseLinkRow.tenant_id == ctx.tenant_id,
                    ReportCaseLinkRow.case_id == case_id,
                    ReportCaseLinkRow.removed_at.is_(None),
                )
                .order_by(ReportCaseLinkRow.created_at)
            )
            return CaseAssociations(
                case_id=case_id,
                persons=[PersonCaseAssociation.model_validate(r) for r in persons.scalars()],
                cases=[CaseCaseAssociation.model_validate(r) for r in cases.scalars()],
                reports=[ReportCaseLink.model_validate(r) for r in reports.scalars()],
            )

    async def list_for_person(self, ctx: ActorContext, person_id: str) -> PersonAssociations:
        async with self._db.session() as db:
            await load_person(db, ctx.tenant_id, person_id)
            cases = await db.execute(
                self._live(AssociationKind.PERSON_CASE, ctx)
                .where(PersonCaseAssociationRow.person_id == person_id)
                .order_by(PersonCaseAssociationRow.created_at)
            )
            reports = await db.execute(
                self._live(AssociationKind.PERSON_REPORT, ctx)
                .where(PersonReportAssociationRow.person_id == person_id)
                .order_by(PersonReportAssociationRow.created_at)
            )
            persons = await db.execute(
                self._live(AssociationKind.PERSON_PERSON, ctx)
                .where(
                    or_(
                        PersonPersonAssociationRow.person_a_id == person_id,
                        PersonPersonAssociationRow.person_b_id == person_id,
                    )
                )
                .order_by(PersonPersonAssociationRow.created_at)
            )
            return PersonAssociations(
                person_id=person_id,
                cases=[PersonCaseAssociation.model_validate(r) for r in cases.scalars()],
                reports=[PersonReportAssociation.model_validate(r) for r in reports.scalars()],
                persons=[PersonPersonAssociation.model_validate(r) for r in persons.scalars()],
            )

    async def list_report_persons(
        self, ctx: ActorContext, report_id: str
    ) -> list[PersonReportAssociation]:
        async with self._db.session() as db:
            await load_report(db, ctx.tenant_id, report_id)
            result = await db.execute(
                self._live(AssociationKind.PERSON_REPORT, ctx)
                .where(PersonReportAssociationRow.report_id == report_id)
                .order_by(PersonReportAssociationRow.created_at)
            )
            return [PersonReportAssociation.model_validate(r) for r in result.scalars()]

    async def find_by_label(
        self,
        ctx: ActorContext,
        kind: AssociationKind | str,
        label: str,
        active_only: bool = False,
    ) -> list[Association]:
        kind = parse_kind(kind)
        label = _parse_label(kind, label)
        row_cls = _ROWS[kind]
        async with self._db.session() as db:
            result = await db.execute(
                self._live(kind, ctx)
                .where(row_cls.label == label.value)
                .order_by(row_cls.created_at)
            )
            found = [_MODELS[kind].model_validate(r) for r in result.scalars()]
        if active_only and kind == AssociationKind.PERSON_CASE:
            found = [a for a in found if a.is_active]
        return found

    async def get_person_case_history(
        self, ctx: ActorContext, person_id: str, label: str | None = None
    ) -> list[PersonCaseAssociation]:
        """Every live Person-Case row of a person, ended roles included."""
        stmt = self._live(AssociationKind.PERSON_CASE, ctx).where(
            PersonCaseAssociationRow.person_id == person_id
        )
        if label is not None:
            stmt = stmt.where(
                PersonCaseAssociationRow.label
                == _parse_label(AssociationKind.PERSON_CASE, label).value
            )
        async with self._db.session() as db:
            await load_person(db, ctx.tenant_id, person_id)
            result = await db.execute(stmt.order_by(PersonCaseAssociationRow.created_at))
            return [PersonCaseAssociation.model_validate(r) for r in result.scalars()]

    async def find_relationship(
        self, ctx: ActorContext, person_a_id: str, person_b_id: str
    ) -> list[PersonPersonAssociation]:
        """Person-Person rows between two people, in either stored order."""
        async with self._db.session() as db:
            result = await db.execute(
                self._live(AssociationKind.PERSON_PERSON, ctx).where(
                    or_(
                        (PersonPersonAssociationRow.person_a_id == person_a_id)
                        & (PersonPersonAssociationRow.person_b_id == person_b_id),
                        (PersonPersonAssociationRow.person_a_id == person_b_id)
                        & (PersonPersonAssociationRow.person_b_id == person_a_id),
                    )
                )
            )
            return [PersonPersonAssociation.model_validate(r) for r in result.scalars()]

    async def find_coi_relationships(
        self, ctx: ActorContext, person_id: str
    ) -> list[PersonPersonAssociation]:
        """Currently effective relationships that signal a conflict of interest."""
        async with self._db.session() as db:
            result = await db.execute(
                self._live(AssociationKind.PERSON_PERSON, ctx).where(
                    or_(
                        PersonPersonAssociationRow.person_a_id == person_id,
                        PersonPersonAssociationRow.person_b_id == person_id,
                    ),
                    PersonPersonAssociationRow.label.in_([label.value for label in COI_LABELS]),
                )
            )
            rows = [PersonPersonAssociation.model_validate(r) for r in result.scalars()]
        now = utcnow()
        return [r for r in rows if r.effective_until is None or as_utc(r.effective_until) > now]

    # --- Internals ---

    def _live(self, kind: AssociationKind, ctx: ActorContext):
        row_cls = _ROWS[kind]
        return select(row_cls).where(
            row_cls.tenant_id == ctx.tenant_id,
            row_cls.removed_at.is_(None),
        )

    async def _load_live(
        self, db: AsyncSession, ctx: ActorContext, kind: AssociationKind, association_id: str
    ) -> Any:
        result = await db.execute(
            self._live(kind, ctx).where(_ROWS[kind].id == association_id)
        )
        row = result.scalar_one_or_none()
        if row is None:
            raise NotFoundError(f"{kind.value} association {association_id!r} not found")
        return row

    async def _prepare(
        self,
        db: AsyncSession,
        ctx: ActorContext,
        kind: AssociationKind,
        subject_id: str,
        object_id: str,
        label: str,
        metadata: AssociationMetadata | dict[str, Any] | None,
    ) -> Any:
        """Validate a new association and build its (unsaved) row."""
        label = _parse_label(kind, label)
        meta = _parse_metadata(metadata)
        evidentiary = is_evidentiary(kind, label)

        if kind == AssociationKind.PERSON_CASE:
            allowed = _EVIDENTIARY_FIELDS if evidentiary else _ROLE_FIELDS
        else:
            allowed = _ALLOWED_FIELDS[kind]
        given = set(meta.model_dump(exclude_none=True))
        misplaced = sorted(given - allowed)
        if misplaced:
            raise ValidationError(
                f"Fields not applicable to {kind.value} label {label.value}: "
                f"{', '.join(misplaced)}",
                fields=misplaced,
            )
        if kind in (AssociationKind.CASE_CASE, AssociationKind.PERSON_PERSON) and (
            subject_id == object_id
        ):
            raise ValidationError(
                f"A {kind.value} association needs two distinct endpoints",
                fields=["object_id"],
            )
        if kind == AssociationKind.CASE_CASE and label in MERGE_CASE_LABELS:
            raise ValidationError(f"{label.value} is written by case merges", fields=["label"])

        fields: dict[str, Any] = {
            "tenant_id": ctx.tenant_id,
            "label": label.value,
            "notes": meta.notes,
            "created_by": ctx.actor_id,
        }

        if kind == AssociationKind.PERSON_CASE:
            await load_person(db, ctx.tenant_id, subject_id)
            await self._require_open_case(db, ctx, object_id)
            fields.update(person_id=subject_id, case_id=object_id)
            if evidentiary:
                fields.update(
                    evidentiary_status=(meta.evidentiary_status or EvidentiaryStatus.ACTIVE).value,
                    status_reason=meta.status_reason,
                )
            else:
                fields["started_at"] = meta.started_at or utcnow()

        elif kind == AssociationKind.PERSON_REPORT:
            await load_person(db, ctx.tenant_id, subject_id)
            await load_report(db, ctx.tenant_id, object_id)
            fields.update(
                person_id=subject_id,
                report_id=object_id,
                evidentiary_status=(meta.evidentiary_status or EvidentiaryStatus.ACTIVE).value,
                status_reason=meta.status_reason,
                mention_context=meta.mention_context,
            )

        elif kind == AssociationKind.CASE_CASE:
            await self._require_open_case(db, ctx, subject_id)
            await self._require_open_case(db, ctx, object_id)
            fields.update(source_case_id=subject_id, target_case_id=object_id)

        else:
            await load_person(db, ctx.tenant_id, subject_id)
            await load_person(db, ctx.tenant_id, object_id)
            effective_from = meta.effective_from or utcnow()
            if meta.effective_until is not None and as_utc(meta.effective_until) <= as_utc(
                effective_from
            ):
                raise ValidationError(
                    "effective_until must be after effective_from", fields=["effective_until"]
                )
            directions = DIRECTIONAL_LABELS.get(label)
            if directions is None:
                # Symmetric: one canonical row per unordered pair
                person_a_id, person_b_id = sorted((subject_id, object_id))
            else:
                person_a_id, person_b_id = subject_id, object_id
            fields.update(
                person_a_id=person_a_id,
                person_b_id=person_b_id,
                source=(meta.source or PersonPersonSource.MANUAL).value,
                is_directional=directions is not None,
                a_to_b=directions[0] if directions else None,
                b_to_a=directions[1] if directions else None,
                effective_from=effective_from,
                effective_until=meta.effective_until,
            )

        row = _ROWS[kind](**fields)
        await self._ensure_unique(db, ctx, kind, row)
        return row

    async def _require_open_case(self, db: AsyncSession, ctx: ActorContext, case_id: str) -> None:
        case = await load_case(db, ctx.tenant_id, case_id)
        if case.is_merged:
            raise ConflictError(
                f"Case {case.reference_number} is merged into another case and read-only"
            )

    async def _ensure_unique(
        self, db: AsyncSession, ctx: ActorContext, kind: AssociationKind, row: Any
    ) -> None:
        row_cls = _ROWS[kind]
        subject_col, object_col = _ENDPOINTS[kind]
        result = await db.execute(
            self._live(kind, ctx).where(
                getattr(row_cls, subject_col) == getattr(row, subject_col),
                getattr(row_cls, object_col) == getattr(row, object_col),
                row_cls.label == row.label,
            )
        )
        if result.first() is not None:
            raise ConflictError(
                f"{kind.value} association {row.label} between "
                f"{getattr(row, subject_col)!r} and {getattr(row, object_col)!r} already exists"
            )

    async def _create_pair(
        self,
        ctx: ActorContext,
        first: tuple[str, str, CaseCaseLabel],
        second: tuple[str, str, CaseCaseLabel],
    ) -> tuple[CaseCaseAssociation, CaseCaseAssociation]:
        kind = AssociationKind.CASE_CASE
        async with self._db.session() as db:
            rows = []
            for subject_id, object_id, label in (first, second):
                row = await self._prepare(db, ctx, kind, subject_id, object_id, label, None)
                db.add(row)
                rows.append(row)
            await self._commit(db, kind)
        pair = tuple(CaseCaseAssociation.model_validate(r) for r in rows)
        for association in pair:
            await self._after_write(ctx, kind, association, EventAction.CREATED)
        return pair  # type: ignore[return-value]

    @staticmethod
    async def _commit(db: AsyncSession, kind: AssociationKind | str) -> None:
        try:
            await db.commit()
        except IntegrityError as exc:
            await db.rollback()
            raise ConflictError(f"Concurrent write conflict on {kind} association") from exc

    async def _after_write(
        self,
        ctx: ActorContext,
        kind: AssociationKind,
        association: Association,
        action: EventAction,
        details: dict[str, Any] | None = None,
    ) -> None:
        subject_col, object_col = _ENDPOINTS[kind]
        subject_id = getattr(association, subject_col)
        object_id = getattr(association, object_col)

        if kind == AssociationKind.PERSON_CASE:
            entity_type, entity_id = EntityType.CASE, object_id
        elif kind == AssociationKind.PERSON_REPORT:
            entity_type, entity_id = EntityType.REPORT, object_id
        elif kind == AssociationKind.CASE_CASE:
            entity_type, entity_id = EntityType.CASE, subject_id
        else:
            entity_type, entity_id = EntityType.PERSON, subject_id

        await self._audit.record(
            ctx,
            entity_type,
            entity_id,
            f"association_{action.value}",
            description=f"{kind.value} {association.label.value} {action.value}",
            details={
                "association_id": association.id,
                "kind": kind.value,
                "label": association.label.value,
                "subject_id": subject_id,
                "object_id": object_id,
                **(details or {}),
            },
        )
        logger.info(
            "%s association %s %s (%s -> %s, tenant %s)",
            kind.value, association.id, action.value, subject_id, object_id, ctx.tenant_id,
        )
        self._publish(
            DomainEvent(
                topic=EventTopic.ASSOCIATION,
                action=action,
                tenant_id=ctx.tenant_id,
                subject_id=subject_id,
                object_id=object_id,
                association_type=kind.value,
                payload={
                    "association_id": association.id,
                    "label": association.label.value,
                    "actor": ctx.actor_id,
                },
            )
        )

    async def _after_link(
        self, ctx: ActorContext, link: ReportCaseLink, action: EventAction
    ) -> None:
        await self._audit.record(
            ctx,
            EntityType.CASE,
            link.case_id,
            f"report_link_{action.value}",
            details={
                "link_id": link.id,
                "report_id": link.report_id,
                "association_type": link.association_type.value,
            },
        )
        self._publish(
            DomainEvent(
                topic=EventTopic.ASSOCIATION,
                action=action,
                tenant_id=ctx.tenant_id,
                subject_id=link.report_id,
                object_id=link.case_id,
                association_type=REPORT_CASE_LINK,
                payload={"link_id": link.id, "actor": ctx.actor_id},
            )
        )

    def _publish(self, event: DomainEvent) -> None:
        if self._queue is not None:
            self._queue.publish(event)
