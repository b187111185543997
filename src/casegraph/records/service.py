"""Base Person and Case records.

Only the parts the association graph depends on: creation, tenant-scoped
lookups and existence checks, the per-tenant anonymous placeholder, and the
subordinate case content that merges relocate.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from casegraph.core.errors import ConflictError, NotFoundError, ValidationError
from casegraph.core.types import (
    ActorContext,
    CaseStatus,
    EntityType,
    PersonSource,
    PersonStatus,
    PersonType,
    utcnow,
)
from casegraph.db.engine import DatabaseManager
from casegraph.db.models import (
    CaseMessageRow,
    CaseRow,
    InteractionRow,
    InvestigationRow,
    PersonRow,
    ReportRow,
    SubjectRow,
)
from casegraph.events.models import DomainEvent, EventAction, EventTopic
from casegraph.events.queue import EventQueue
from casegraph.governance.audit import AuditTrail
from casegraph.records.models import Case, CaseContentCounts, Person

logger = logging.getLogger(__name__)

_REFERENCE_ATTEMPTS = 3
_PERSON_WRITE_ONCE = frozenset({"type", "source"})
_PERSON_MUTABLE = frozenset(
    {"first_name", "last_name", "email", "company", "status", "merged_into_person_id"}
)


# --- Session-level helpers shared by the services ---


async def load_person(db: AsyncSession, tenant_id: str, person_id: str) -> PersonRow:
    row = await db.get(PersonRow, person_id)
    if row is None or row.tenant_id != tenant_id:
        raise NotFoundError(f"Person {person_id!r} not found")
    return row


async def load_case(
    db: AsyncSession, tenant_id: str, case_id: str, for_update: bool = False
) -> CaseRow:
    stmt = select(CaseRow).where(CaseRow.id == case_id, CaseRow.tenant_id == tenant_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    row = result.scalar_one_or_none()
    if row is None:
        raise NotFoundError(f"Case {case_id!r} not found")
    return row


async def load_report(db: AsyncSession, tenant_id: str, report_id: str) -> ReportRow:
    row = await db.get(ReportRow, report_id)
    if row is None or row.tenant_id != tenant_id:
        raise NotFoundError(f"Report {report_id!r} not found")
    return row


async def next_reference_number(
    db: AsyncSession, row_cls: Any, tenant_id: str, prefix: str
) -> str:
    """Next ``PREFIX-YYYY-NNNNN`` for the tenant. Numbers restart each year."""
    year_prefix = f"{prefix}-{utcnow().year}-"
    result = await db.execute(
        select(func.max(row_cls.reference_number)).where(
            row_cls.tenant_id == tenant_id,
            row_cls.reference_number.like(f"{year_prefix}%"),
        )
    )
    last = result.scalar_one_or_none()
    sequence = int(last.rsplit("-", 1)[1]) + 1 if last else 1
    return f"{year_prefix}{sequence:05d}"


class RecordService:
    """Tenant-scoped access to Persons, Cases and case content."""

    def __init__(
        self,
        db: DatabaseManager,
        audit: AuditTrail,
        queue: EventQueue | None = None,
    ) -> None:
        self._db = db
        self._audit = audit
        self._queue = queue

    # --- Persons ---

    async def create_person(
        self,
        ctx: ActorContext,
        type: PersonType = PersonType.EMPLOYEE,
        source: PersonSource = PersonSource.MANUAL,
        first_name: str | None = None,
        last_name: str | None = None,
        email: str | None = None,
        company: str | None = None,
    ) -> Person:
        if PersonType(type) == PersonType.ANONYMOUS_PLACEHOLDER:
            raise ValidationError(
                "The anonymous placeholder is created by the system", fields=["type"]
            )
        row = PersonRow(
            tenant_id=ctx.tenant_id,
            type=PersonType(type).value,
            source=PersonSource(source).value,
            status=PersonStatus.ACTIVE.value,
            first_name=first_name,
            last_name=last_name,
            email=email,
            company=company,
            created_by=ctx.actor_id,
        )
        async with self._db.session() as db:
            db.add(row)
            await db.commit()

        person = Person.model_validate(row)
        await self._audit.record(
            ctx, EntityType.PERSON, person.id, "created",
            description=f"Person {self.display_name(person)} created",
            details={"type": person.type.value, "source": person.source.value},
        )
        return person

    async def get_person(self, ctx: ActorContext, person_id: str) -> Person:
        async with self._db.session() as db:
            row = await load_person(db, ctx.tenant_id, person_id)
            return Person.model_validate(row)

    async def require_person(self, ctx: ActorContext, person_id: str) -> Person:
        return await self.get_person(ctx, person_id)

    async def update_person(
        self, ctx: ActorContext, person_id: str, changes: dict[str, Any]
    ) -> Person:
        """Update identity fields. ``type`` and ``source`` are write-once."""
        write_once = sorted(_PERSON_WRITE_ONCE & changes.keys())
        if write_once:
            raise ValidationError(
                f"Person fields cannot change after creation: {', '.join(write_once)}",
                fields=write_once,
            )
        unknown = sorted(changes.keys() - _PERSON_MUTABLE)
        if unknown:
            raise ValidationError(f"Unknown person fields: {', '.join(unknown)}", fields=unknown)

        async with self._db.session() as db:
            row = await load_person(db, ctx.tenant_id, person_id)
            if "status" in changes:
                status = PersonStatus(changes["status"])
                merged_into = changes.get("merged_into_person_id", row.merged_into_person_id)
                if status == PersonStatus.MERGED:
                    if not merged_into:
                        raise ValidationError(
                            "A merged person must name the surviving person",
                            fields=["merged_into_person_id"],
                        )
                    if merged_into == person_id:
                        raise ValidationError(
                            "A person cannot be merged into itself",
                            fields=["merged_into_person_id"],
                        )
                    await load_person(db, ctx.tenant_id, merged_into)
                changes = {**changes, "status": status.value}
            for field, value in changes.items():
                setattr(row, field, value)
            row.updated_at = utcnow()
            await db.commit()
            person = Person.model_validate(row)

        await self._audit.record(
            ctx, EntityType.PERSON, person_id, "updated",
            details={"fields": sorted(changes)},
        )
        if self._queue is not None:
            self._queue.publish(
                DomainEvent(
                    topic=EventTopic.PERSON,
                    action=EventAction.UPDATED,
                    tenant_id=ctx.tenant_id,
                    subject_id=person_id,
                    payload={"actor": ctx.actor_id, "fields": sorted(changes)},
                )
            )
        return person

    async def get_or_create_anonymous_placeholder(self, ctx: ActorContext) -> Person:
        """Return the tenant's single anonymous placeholder, creating it once."""
        async with self._db.session() as db:
            result = await db.execute(
                select(PersonRow)
                .where(
                    PersonRow.tenant_id == ctx.tenant_id,
                    PersonRow.type == PersonType.ANONYMOUS_PLACEHOLDER.value,
                )
                .order_by(PersonRow.created_at)
                .limit(1)
            )
            row = result.scalar_one_or_none()
            if row is not None:
                return Person.model_validate(row)

            row = PersonRow(
                tenant_id=ctx.tenant_id,
                type=PersonType.ANONYMOUS_PLACEHOLDER.value,
                source=PersonSource.INTAKE_CREATED.value,
                status=PersonStatus.ACTIVE.value,
                created_by=ctx.actor_id,
            )
            db.add(row)
            await db.commit()
            logger.info("Created anonymous placeholder for tenant %s", ctx.tenant_id)
            return Person.model_validate(row)

    @staticmethod
    def display_name(person: Person) -> str:
        if person.type == PersonType.ANONYMOUS_PLACEHOLDER:
            return "Anonymous Placeholder"
        name = " ".join(p for p in (person.first_name, person.last_name) if p)
        return name or person.email or person.company or "Anonymous"

    # --- Cases ---

    async def create_case(
        self,
        ctx: ActorContext,
        summary: str | None = None,
        pipeline_stage: str | None = None,
    ) -> Case:
        for attempt in range(_REFERENCE_ATTEMPTS):
            async with self._db.session() as db:
                row = CaseRow(
                    tenant_id=ctx.tenant_id,
                    reference_number=await next_reference_number(
                        db, CaseRow, ctx.tenant_id, "CASE"
                    ),
                    status=CaseStatus.NEW.value,
                    summary=summary,
                    pipeline_stage=pipeline_stage,
                    created_by=ctx.actor_id,
                )
                db.add(row)
                try:
                    await db.commit()
                except IntegrityError:
                    await db.rollback()
                    if attempt == _REFERENCE_ATTEMPTS - 1:
                        raise ConflictError("Could not allocate a case reference number")
                    continue
            break

        case = Case.model_validate(row)
        await self._audit.record(
            ctx, EntityType.CASE, case.id, "created",
            description=f"Case {case.reference_number} created",
        )
        self._publish(ctx, case.id, EventAction.CREATED)
        return case

    async def get_case(self, ctx: ActorContext, case_id: str) -> Case:
        async with self._db.session() as db:
            row = await load_case(db, ctx.tenant_id, case_id)
            return Case.model_validate(row)

    async def require_case(self, ctx: ActorContext, case_id: str) -> Case:
        return await self.get_case(ctx, case_id)

    async def require_report(self, ctx: ActorContext, report_id: str) -> str:
        async with self._db.session() as db:
            row = await load_report(db, ctx.tenant_id, report_id)
            return row.id

    async def list_cases(self, ctx: ActorContext, include_merged: bool = True) -> list[Case]:
        async with self._db.session() as db:
            stmt = select(CaseRow).where(CaseRow.tenant_id == ctx.tenant_id)
            if not include_merged:
                stmt = stmt.where(CaseRow.is_merged.is_(False))
            result = await db.execute(stmt.order_by(CaseRow.created_at))
            return [Case.model_validate(r) for r in result.scalars().all()]

    async def update_case_status(
        self,
        ctx: ActorContext,
        case_id: str,
        status: CaseStatus,
        rationale: str | None = None,
        outcome: str | None = None,
    ) -> Case:
        """Move a case between NEW, OPEN and CLOSED. Tombstones stay closed."""
        status = CaseStatus(status)
        async with self._db.session() as db:
            row = await load_case(db, ctx.tenant_id, case_id)
            if row.is_merged:
                raise ConflictError(f"Case {row.reference_number} is merged and read-only")
            previous = row.status
            row.status = status.value
            row.status_rationale = rationale
            if outcome is not None:
                row.outcome = outcome
            row.updated_by = ctx.actor_id
            row.updated_at = utcnow()
            await db.commit()
            case = Case.model_validate(row)

        await self._audit.record(
            ctx, EntityType.CASE, case_id, "status_changed",
            details={"from": previous, "to": status.value, "rationale": rationale},
        )
        self._publish(ctx, case_id, EventAction.STATUS_CHANGED)
        return case

    # --- Subordinate case content ---

    async def add_subject(
        self,
        ctx: ActorContext,
        case_id: str,
        name: str,
        person_id: str | None = None,
        notes: str | None = None,
    ) -> str:
        return await self._add_content(
            ctx, case_id,
            SubjectRow(tenant_id=ctx.tenant_id, person_id=person_id, name=name, notes=notes),
        )

    async def add_investigation(
        self, ctx: ActorContext, case_id: str, investigator_id: str | None = None
    ) -> str:
        return await self._add_content(
            ctx, case_id,
            InvestigationRow(tenant_id=ctx.tenant_id, investigator_id=investigator_id),
        )

    async def add_message(
        self, ctx: ActorContext, case_id: str, body: str, direction: str = "INBOUND"
    ) -> str:
        return await self._add_content(
            ctx, case_id,
            CaseMessageRow(tenant_id=ctx.tenant_id, body=body, direction=direction),
        )

    async def add_interaction(
        self, ctx: ActorContext, case_id: str, summary: str, channel: str = "PHONE"
    ) -> str:
        return await self._add_content(
            ctx, case_id,
            InteractionRow(tenant_id=ctx.tenant_id, summary=summary, channel=channel),
        )

    async def count_case_content(self, ctx: ActorContext, case_id: str) -> CaseContentCounts:
        async with self._db.session() as db:
            await load_case(db, ctx.tenant_id, case_id)
            counts = {}
            for key, row_cls in (
                ("subjects", SubjectRow),
                ("investigations", InvestigationRow),
                ("messages", CaseMessageRow),
                ("interactions", InteractionRow),
            ):
                result = await db.execute(
                    select(func.count()).select_from(row_cls).where(
                        row_cls.tenant_id == ctx.tenant_id,
                        row_cls.case_id == case_id,
                    )
                )
                counts[key] = result.scalar_one()
        return CaseContentCounts(**counts)

    async def _add_content(self, ctx: ActorContext, case_id: str, row: Any) -> str:
        async with self._db.session() as db:
            case = await load_case(db, ctx.tenant_id, case_id)
            if case.is_merged:
                raise ConflictError(f"Case {case.reference_number} is merged and read-only")
            row.case_id = case_id
            db.add(row)
            await db.commit()
            return row.id

    def _publish(self, ctx: ActorContext, case_id: str, action: EventAction) -> None:
        if self._queue is not None:
            self._queue.publish(
                DomainEvent(
                    topic=EventTopic.CASE,
                    action=action,
                    tenant_id=ctx.tenant_id,
                    subject_id=case_id,
                    payload={"actor": ctx.actor_id},
                )
            )
