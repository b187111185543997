"""Atomic case consolidation.

``merge(source, target)`` moves the source case's whole association and
content graph onto the target and leaves the source behind as a closed,
read-only tombstone pointing at the target. All relational writes happen in
one transaction; audit entries and domain events follow the commit.

Preconditions are checked before the transaction and checked again inside
it after both case rows are locked (``SELECT ... FOR UPDATE``), so of two
concurrent merges touching the same case the loser gets a ConflictError.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from casegraph.associations.models import (
    CaseCaseLabel,
    EvidentiaryStatus,
    ReportAssociationType,
)
from casegraph.consolidation.models import (
    MergeHistoryEntry,
    MergePreview,
    MergeResult,
    PrimaryResolution,
)
from casegraph.core.config import MergeConfig
from casegraph.core.errors import CaseGraphError, ConflictError, InternalError, ValidationError
from casegraph.core.types import ActorContext, CaseStatus, EntityType, as_utc, utcnow
from casegraph.db.engine import DatabaseManager
from casegraph.db.models import (
    CaseCaseAssociationRow,
    CaseMessageRow,
    CaseRow,
    InteractionRow,
    InvestigationRow,
    PersonCaseAssociationRow,
    ReportCaseLinkRow,
    SubjectRow,
)
from casegraph.events.models import DomainEvent, EventAction, EventTopic
from casegraph.events.queue import EventQueue
from casegraph.governance.audit import AuditTrail
from casegraph.records.service import load_case

logger = logging.getLogger(__name__)

_CONTENT_ROWS = (
    ("subjects_moved", SubjectRow),
    ("investigations_moved", InvestigationRow),
    ("messages_moved", CaseMessageRow),
    ("interactions_moved", InteractionRow),
)

# Lock timeouts and serialization or deadlock failures (PostgreSQL SQLSTATEs)
_CONFLICT_SQLSTATES = frozenset({"40001", "40P01", "55P03"})


def _is_write_conflict(exc: DBAPIError) -> bool:
    if isinstance(exc, IntegrityError):
        return True
    for orig in (exc.orig, getattr(exc.orig, "__cause__", None)):
        if orig is None:
            continue
        if getattr(orig, "sqlstate", None) in _CONFLICT_SQLSTATES:
            return True
        if getattr(orig, "pgcode", None) in _CONFLICT_SQLSTATES:
            return True
        if "database is locked" in str(orig).lower():
            return True
    return False


def _source_role_supersedes(
    existing: PersonCaseAssociationRow, row: PersonCaseAssociationRow
) -> bool:
    """An open role on the source outlives an ended one on the target."""
    return (
        row.evidentiary_status is None
        and row.ended_at is None
        and existing.ended_at is not None
    )


def _carry_evidentiary_status(
    existing: PersonCaseAssociationRow, row: PersonCaseAssociationRow
) -> None:
    """Copy the source row's status onto its surviving duplicate when it is
    the later decision. An undecided ACTIVE row yields to any decision."""
    if row.evidentiary_status is None or row.evidentiary_status == existing.evidentiary_status:
        return
    row_at = as_utc(row.status_changed_at)
    existing_at = as_utc(existing.status_changed_at)
    if existing_at is None:
        undecided = existing.evidentiary_status == EvidentiaryStatus.ACTIVE.value
        later = row_at is not None or undecided
    else:
        later = row_at is not None and row_at > existing_at
    if later:
        existing.evidentiary_status = row.evidentiary_status
        existing.status_changed_at = row.status_changed_at
        existing.status_changed_by = row.status_changed_by
        existing.status_reason = row.status_reason


class CaseConsolidationEngine:
    """Merges duplicate cases and resolves merge chains."""

    def __init__(
        self,
        db: DatabaseManager,
        audit: AuditTrail,
        queue: EventQueue | None = None,
        config: MergeConfig | None = None,
    ) -> None:
        self._db = db
        self._audit = audit
        self._queue = queue
        self._config = config or MergeConfig()

    async def merge(
        self,
        ctx: ActorContext,
        source_case_id: str,
        target_case_id: str,
        reason: str,
    ) -> MergeResult:
        """Merge ``source_case_id`` into ``target_case_id``.

        Raises:
            ValidationError: the reason is blank.
            NotFoundError: either case is not in the tenant.
            ConflictError: self-merge, a tombstone on either side, or a
                concurrent merge won the race.
            InternalError: any other failure; nothing was applied.
        """
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A merge requires a reason", fields=["reason"])
        if source_case_id == target_case_id:
            raise ConflictError("A case cannot be merged into itself")

        async with self._db.session() as db:
            source = await load_case(db, ctx.tenant_id, source_case_id)
            target = await load_case(db, ctx.tenant_id, target_case_id)
            self._check_not_tombstone(source, "source")
            self._check_not_tombstone(target, "target")

        try:
            async with self._db.session() as db:
                async with db.begin():
                    result = await self._apply(db, ctx, source_case_id, target_case_id, reason)
        except CaseGraphError:
            raise
        except DBAPIError as exc:
            if not _is_write_conflict(exc):
                logger.exception(
                    "Merge %s -> %s failed in the database and was rolled back (tenant %s)",
                    source_case_id, target_case_id, ctx.tenant_id,
                )
                raise InternalError("Merge failed; no changes were applied") from exc
            logger.warning(
                "Merge %s -> %s lost a concurrent write (tenant %s): %s",
                source_case_id, target_case_id, ctx.tenant_id, exc,
            )
            raise ConflictError(
                "The cases were modified by a concurrent operation; reload and retry"
            ) from exc
        except Exception as exc:
            logger.exception(
                "Merge %s -> %s failed and was rolled back (tenant %s)",
                source_case_id, target_case_id, ctx.tenant_id,
            )
            raise InternalError("Merge failed; no changes were applied") from exc

        logger.info(
            "Merged case %s into %s: %d associations moved, %d collapsed, %d subjects, "
            "%d investigations",
            result.source_reference, result.target_reference, result.associations_moved,
            result.associations_collapsed, result.subjects_moved, result.investigations_moved,
        )
        await self._after_merge(ctx, result)
        return result

    async def can_merge(
        self, ctx: ActorContext, source_case_id: str, target_case_id: str
    ) -> MergePreview:
        """Report whether a merge would pass its preconditions. Never raises
        for domain reasons; those come back in ``reasons``."""
        preview = MergePreview(
            source_case_id=source_case_id, target_case_id=target_case_id, can_merge=False
        )
        if source_case_id == target_case_id:
            preview.reasons.append("A case cannot be merged into itself")

        async with self._db.session() as db:
            cases = {}
            for role, case_id in (("source", source_case_id), ("target", target_case_id)):
                row = await self._find_case(db, ctx, case_id)
                if row is None:
                    preview.reasons.append(f"The {role} case was not found")
                    continue
                cases[role] = row
                if row.is_merged:
                    preview.reasons.append(
                        f"The {role} case {row.reference_number} is already merged"
                    )

            if "source" in cases:
                preview.source_reference = cases["source"].reference_number
                await self._count_preview(db, ctx, source_case_id, preview)
            if "target" in cases:
                preview.target_reference = cases["target"].reference_number

        preview.can_merge = not preview.reasons
        return preview

    async def get_merge_history(
        self, ctx: ActorContext, case_id: str
    ) -> list[MergeHistoryEntry]:
        """Cases merged directly into ``case_id``."""
        async with self._db.session() as db:
            await load_case(db, ctx.tenant_id, case_id)
            result = await db.execute(
                select(CaseRow)
                .where(
                    CaseRow.tenant_id == ctx.tenant_id,
                    CaseRow.merged_into_case_id == case_id,
                )
                .order_by(CaseRow.merged_at)
            )
            return [
                MergeHistoryEntry(
                    case_id=r.id,
                    reference_number=r.reference_number,
                    merged_at=r.merged_at,
                    merged_by=r.merged_by,
                    merged_reason=r.merged_reason,
                )
                for r in result.scalars().all()
            ]

    async def resolve_primary(self, ctx: ActorContext, case_id: str) -> PrimaryResolution:
        """Follow ``merged_into_case_id`` to the surviving case.

        The walk stops after ``MergeConfig.max_chain_hops`` hops; the case
        reached at that point is returned and the result is marked
        ``truncated``.
        """
        max_hops = self._config.max_chain_hops
        async with self._db.session() as db:
            current = await load_case(db, ctx.tenant_id, case_id)
            chain = [current.id]
            truncated = False

            while current.is_merged and current.merged_into_case_id:
                if len(chain) - 1 >= max_hops:
                    logger.warning(
                        "Merge chain from case %s exceeds %d hops; stopping at %s (tenant %s)",
                        case_id, max_hops, current.id, ctx.tenant_id,
                    )
                    truncated = True
                    break
                next_case = await self._find_case(db, ctx, current.merged_into_case_id)
                if next_case is None:
                    logger.warning(
                        "Broken merge chain: case %s points to missing case %s (tenant %s)",
                        current.id, current.merged_into_case_id, ctx.tenant_id,
                    )
                    truncated = True
                    break
                current = next_case
                chain.append(current.id)

        return PrimaryResolution(
            case_id=case_id,
            primary_case_id=current.id,
            reference_number=current.reference_number,
            hops=len(chain) - 1,
            chain=chain,
            truncated=truncated,
        )

    # --- Transaction steps ---

    async def _apply(
        self,
        db: AsyncSession,
        ctx: ActorContext,
        source_case_id: str,
        target_case_id: str,
        reason: str,
    ) -> MergeResult:
        source = await load_case(db, ctx.tenant_id, source_case_id, for_update=True)
        target = await load_case(db, ctx.tenant_id, target_case_id, for_update=True)
        self._check_not_tombstone(source, "source")
        self._check_not_tombstone(target, "target")

        now = utcnow()
        result = MergeResult(
            source_case_id=source.id,
            target_case_id=target.id,
            source_reference=source.reference_number,
            target_reference=target.reference_number,
            reason=reason,
            merged_at=now,
            merged_by=ctx.actor_id,
        )

        await self._relocate_associations(db, ctx, source, target, result)
        await self._relocate_content(db, ctx, source, target, result)
        self._tombstone(ctx, source, target, reason, now)
        target.updated_at = now
        target.updated_by = ctx.actor_id
        await db.flush()
        return result

    async def _relocate_associations(
        self,
        db: AsyncSession,
        ctx: ActorContext,
        source: CaseRow,
        target: CaseRow,
        result: MergeResult,
    ) -> None:
        now = utcnow()

        # Person-Case: every row follows the case; of two live duplicates the
        # one carrying the more current state survives
        target_rows = await db.execute(
            select(PersonCaseAssociationRow).where(
                PersonCaseAssociationRow.tenant_id == ctx.tenant_id,
                PersonCaseAssociationRow.case_id == target.id,
                PersonCaseAssociationRow.removed_at.is_(None),
            )
        )
        taken = {(r.person_id, r.label): r for r in target_rows.scalars()}
        source_rows = await db.execute(
            select(PersonCaseAssociationRow).where(
                PersonCaseAssociationRow.tenant_id == ctx.tenant_id,
                PersonCaseAssociationRow.case_id == source.id,
            )
        )
        moving = source_rows.scalars().all()
        displaced = False
        for row in moving:
            if row.removed_at is not None:
                continue
            key = (row.person_id, row.label)
            existing = taken.get(key)
            if existing is None:
                taken[key] = row
                result.person_associations_moved += 1
            elif _source_role_supersedes(existing, row):
                self._collapse(ctx, existing, now)
                taken[key] = row
                displaced = True
                result.person_associations_moved += 1
                result.associations_collapsed += 1
            else:
                _carry_evidentiary_status(existing, row)
                self._collapse(ctx, row, now)
                result.associations_collapsed += 1
        if displaced:
            # Displaced target rows must leave the live index before rows move in
            await db.flush()
        for row in moving:
            row.case_id = target.id

        # Report links become historical MERGED_FROM links on the target
        target_links = await db.execute(
            select(ReportCaseLinkRow.report_id).where(
                ReportCaseLinkRow.tenant_id == ctx.tenant_id,
                ReportCaseLinkRow.case_id == target.id,
                ReportCaseLinkRow.removed_at.is_(None),
            )
        )
        linked = set(target_links.scalars())
        source_links = await db.execute(
            select(ReportCaseLinkRow).where(
                ReportCaseLinkRow.tenant_id == ctx.tenant_id,
                ReportCaseLinkRow.case_id == source.id,
            )
        )
        report_ids = set(linked)
        for link in source_links.scalars().all():
            report_ids.add(link.report_id)
            if link.removed_at is None:
                if link.report_id in linked:
                    self._collapse(ctx, link, now)
                    result.associations_collapsed += 1
                else:
                    linked.add(link.report_id)
                    result.report_links_moved += 1
            link.case_id = target.id
            link.association_type = ReportAssociationType.MERGED_FROM.value
        result.report_ids = sorted(report_ids)

        # Case-Case: every row touching the source re-points, removed rows
        # included; live edges between the two cases collapse
        case_rows = await db.execute(
            select(CaseCaseAssociationRow).where(
                CaseCaseAssociationRow.tenant_id == ctx.tenant_id,
                or_(
                    CaseCaseAssociationRow.source_case_id.in_([source.id, target.id]),
                    CaseCaseAssociationRow.target_case_id.in_([source.id, target.id]),
                ),
            )
        )
        rows = case_rows.scalars().all()
        existing = {
            (r.source_case_id, r.target_case_id, r.label)
            for r in rows
            if r.removed_at is None and source.id not in (r.source_case_id, r.target_case_id)
        }
        related: set[str] = set()
        for row in rows:
            ends = {row.source_case_id, row.target_case_id}
            if source.id not in ends:
                continue
            live = row.removed_at is None
            between = ends == {source.id, target.id}
            if row.source_case_id == source.id:
                row.source_case_id = target.id
            if row.target_case_id == source.id:
                row.target_case_id = target.id
            if not live:
                continue
            if between:
                self._collapse(ctx, row, now)
                result.associations_collapsed += 1
                continue
            related.update(ends - {source.id})
            key = (row.source_case_id, row.target_case_id, row.label)
            if key in existing:
                self._collapse(ctx, row, now)
                result.associations_collapsed += 1
            else:
                existing.add(key)
                result.case_associations_moved += 1
        result.related_case_ids = sorted(related)

        db.add(
            CaseCaseAssociationRow(
                tenant_id=ctx.tenant_id,
                source_case_id=target.id,
                target_case_id=source.id,
                label=CaseCaseLabel.MERGED_FROM.value,
                notes=result.reason,
                created_by=ctx.actor_id,
                created_at=now,
            )
        )

    async def _relocate_content(
        self,
        db: AsyncSession,
        ctx: ActorContext,
        source: CaseRow,
        target: CaseRow,
        result: MergeResult,
    ) -> None:
        for field, row_cls in _CONTENT_ROWS:
            moved = await db.execute(
                update(row_cls)
                .where(row_cls.tenant_id == ctx.tenant_id, row_cls.case_id == source.id)
                .values(case_id=target.id)
                .execution_options(synchronize_session=False)
            )
            setattr(result, field, moved.rowcount or 0)

    @staticmethod
    def _tombstone(
        ctx: ActorContext, source: CaseRow, target: CaseRow, reason: str, now: Any
    ) -> None:
        source.status = CaseStatus.CLOSED.value
        source.status_rationale = f"Merged into {target.reference_number}: {reason}"
        source.is_merged = True
        source.merged_into_case_id = target.id
        source.merged_at = now
        source.merged_by = ctx.actor_id
        source.merged_reason = reason
        source.updated_at = now
        source.updated_by = ctx.actor_id

    @staticmethod
    def _collapse(ctx: ActorContext, row: Any, now: Any) -> None:
        row.removed_at = now
        row.removed_by = ctx.actor_id

    # --- Helpers ---

    @staticmethod
    def _check_not_tombstone(case: CaseRow, role: str) -> None:
        if case.is_merged:
            raise ConflictError(
                f"The {role} case {case.reference_number} is already merged into another case"
            )

    @staticmethod
    async def _find_case(db: AsyncSession, ctx: ActorContext, case_id: str) -> CaseRow | None:
        result = await db.execute(
            select(CaseRow).where(CaseRow.id == case_id, CaseRow.tenant_id == ctx.tenant_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def _count_preview(
        db: AsyncSession, ctx: ActorContext, case_id: str, preview: MergePreview
    ) -> None:
        async def count(row_cls: Any, *criteria: Any) -> int:
            result = await db.execute(
                select(func.count()).select_from(row_cls).where(
                    row_cls.tenant_id == ctx.tenant_id, *criteria
                )
            )
            return result.scalar_one()

        preview.person_associations = await count(
            PersonCaseAssociationRow,
            PersonCaseAssociationRow.case_id == case_id,
            PersonCaseAssociationRow.removed_at.is_(None),
        )
        preview.report_links = await count(
            ReportCaseLinkRow,
            ReportCaseLinkRow.case_id == case_id,
            ReportCaseLinkRow.removed_at.is_(None),
        )
        preview.case_associations = await count(
            CaseCaseAssociationRow,
            or_(
                CaseCaseAssociationRow.source_case_id == case_id,
                CaseCaseAssociationRow.target_case_id == case_id,
            ),
            CaseCaseAssociationRow.removed_at.is_(None),
        )
        preview.subjects = await count(SubjectRow, SubjectRow.case_id == case_id)
        preview.investigations = await count(InvestigationRow, InvestigationRow.case_id == case_id)

    async def _after_merge(self, ctx: ActorContext, result: MergeResult) -> None:
        details = result.model_dump(mode="json")
        await self._audit.record(
            ctx, EntityType.CASE, result.source_case_id, "merged",
            description=f"Merged into {result.target_reference}: {result.reason}",
            details=details,
        )
        await self._audit.record(
            ctx, EntityType.CASE, result.target_case_id, "received_merge",
            description=f"Received merge of {result.source_reference}: {result.reason}",
            details=details,
        )
        if self._queue is None:
            return
        payload = {
            "actor": ctx.actor_id,
            "reason": result.reason,
            "report_ids": result.report_ids,
            "related_case_ids": result.related_case_ids,
        }
        self._queue.publish(
            DomainEvent(
                topic=EventTopic.CASE,
                action=EventAction.MERGED,
                tenant_id=ctx.tenant_id,
                subject_id=result.source_case_id,
                object_id=result.target_case_id,
                payload=payload,
            )
        )
        self._queue.publish(
            DomainEvent(
                topic=EventTopic.CASE,
                action=EventAction.RECEIVED_MERGE,
                tenant_id=ctx.tenant_id,
                subject_id=result.target_case_id,
                object_id=result.source_case_id,
                payload=payload,
            )
        )
