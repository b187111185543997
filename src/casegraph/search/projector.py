"""Keeps the pattern-search projection in step with the relational store.

The projector subscribes to the outbound event queue, works out which case
and report documents an event touches, re-reads those entities from the
relational store and rewrites their documents. It never writes relational
data; a failure propagates to the queue, which retries the event.
"""

from __future__ import annotations

import logging

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from casegraph.associations.models import (
    EVIDENTIARY_LABELS,
    AssociationKind,
    EvidentiaryStatus,
    PersonCaseLabel,
    PersonReportLabel,
)
from casegraph.associations.store import REPORT_CASE_LINK
from casegraph.core.types import as_utc
from casegraph.db.engine import DatabaseManager
from casegraph.db.models import (
    CaseCaseAssociationRow,
    CaseRow,
    PersonCaseAssociationRow,
    PersonReportAssociationRow,
    PersonRow,
    ReportCaseLinkRow,
    ReportRow,
)
from casegraph.events.models import DomainEvent, EventTopic
from casegraph.events.queue import EventQueue
from casegraph.records.models import Person
from casegraph.records.service import RecordService
from casegraph.search.documents import (
    CaseAssociationsDoc,
    CaseDocument,
    DocType,
    LinkedCaseEntry,
    LinkedReportEntry,
    PersonEntry,
    ReportDocument,
)
from casegraph.search.store import ProjectionStore

logger = logging.getLogger(__name__)

_INVESTIGATOR_LABELS = {PersonCaseLabel.ASSIGNED_INVESTIGATOR.value}


class PatternIndexProjector:
    """Rewrites case and report documents affected by domain events."""

    def __init__(self, db: DatabaseManager, store: ProjectionStore) -> None:
        self._db = db
        self._store = store

    def attach(self, queue: EventQueue) -> None:
        queue.subscribe(self.handle)

    async def handle(self, event: DomainEvent) -> None:
        case_ids, report_ids = await self._affected(event)
        for case_id in sorted(case_ids):
            await self.reindex_case(event.tenant_id, case_id)
        for report_id in sorted(report_ids):
            await self.reindex_report(event.tenant_id, report_id)
        logger.debug(
            "Projected %s: %d case and %d report documents",
            event.name, len(case_ids), len(report_ids),
        )

    async def rebuild_tenant(self, tenant_id: str) -> dict[str, int]:
        """Drop and re-project every case and report of a tenant."""
        await self._store.clear_tenant(tenant_id)
        async with self._db.session() as db:
            case_ids = (
                await db.execute(select(CaseRow.id).where(CaseRow.tenant_id == tenant_id))
            ).scalars().all()
            report_ids = (
                await db.execute(select(ReportRow.id).where(ReportRow.tenant_id == tenant_id))
            ).scalars().all()
        for case_id in case_ids:
            await self.reindex_case(tenant_id, case_id)
        for report_id in report_ids:
            await self.reindex_report(tenant_id, report_id)
        logger.info(
            "Rebuilt pattern projection for tenant %s: %d cases, %d reports",
            tenant_id, len(case_ids), len(report_ids),
        )
        return {"cases": len(case_ids), "reports": len(report_ids)}

    async def reindex_case(self, tenant_id: str, case_id: str) -> CaseDocument | None:
        async with self._db.session() as db:
            document = await self._build_case_document(db, tenant_id, case_id)
        if document is None:
            await self._store.delete(tenant_id, DocType.CASE, case_id)
            return None

        # Tombstones stay retrievable but contribute no entries to queries
        entries = [] if document.is_merged else document.associations.persons
        await self._store.upsert(
            tenant_id,
            DocType.CASE,
            case_id,
            document.model_dump(mode="json"),
            entries,
            source_updated_at=document.updated_at,
        )
        return document

    async def reindex_report(self, tenant_id: str, report_id: str) -> ReportDocument | None:
        async with self._db.session() as db:
            document = await self._build_report_document(db, tenant_id, report_id)
        if document is None:
            await self._store.delete(tenant_id, DocType.REPORT, report_id)
            return None

        entries = [
            PersonEntry(person_id=pid, person_name="", label=PersonReportLabel.REPORTER.value)
            for pid in document.reporter_person_ids
        ] + [
            PersonEntry(person_id=pid, person_name="", label="MENTIONED")
            for pid in document.mentioned_person_ids
        ]
        await self._store.upsert(
            tenant_id,
            DocType.REPORT,
            report_id,
            document.model_dump(mode="json"),
            entries,
            source_updated_at=document.created_at,
        )
        return document

    # --- Event routing ---

    async def _affected(self, event: DomainEvent) -> tuple[set[str], set[str]]:
        cases: set[str] = set()
        reports: set[str] = set()

        if event.topic == EventTopic.ASSOCIATION:
            kind = event.association_type
            if kind == AssociationKind.PERSON_CASE:
                cases.add(event.object_id)
            elif kind == AssociationKind.CASE_CASE:
                cases.update({event.subject_id, event.object_id})
            elif kind == AssociationKind.PERSON_REPORT:
                reports.add(event.object_id)
                cases.update(await self._cases_linked_to(event.tenant_id, event.object_id))
            elif kind == REPORT_CASE_LINK:
                reports.add(event.subject_id)
                cases.add(event.object_id)
        elif event.topic == EventTopic.CASE:
            cases.add(event.subject_id)
            if event.object_id:
                cases.add(event.object_id)
            cases.update(event.payload.get("related_case_ids", []))
            reports.update(event.payload.get("report_ids", []))
        elif event.topic == EventTopic.REPORT:
            reports.add(event.subject_id)
        elif event.topic == EventTopic.PERSON:
            # Display names are denormalized into case documents
            cases.update(await self._cases_involving(event.tenant_id, event.subject_id))

        cases.discard(None)
        reports.discard(None)
        return cases, reports

    async def _cases_linked_to(self, tenant_id: str, report_id: str) -> set[str]:
        async with self._db.session() as db:
            result = await db.execute(
                select(ReportCaseLinkRow.case_id).where(
                    ReportCaseLinkRow.tenant_id == tenant_id,
                    ReportCaseLinkRow.report_id == report_id,
                    ReportCaseLinkRow.removed_at.is_(None),
                )
            )
            return set(result.scalars().all())

    async def _cases_involving(self, tenant_id: str, person_id: str) -> set[str]:
        async with self._db.session() as db:
            result = await db.execute(
                select(PersonCaseAssociationRow.case_id).where(
                    PersonCaseAssociationRow.tenant_id == tenant_id,
                    PersonCaseAssociationRow.person_id == person_id,
                    PersonCaseAssociationRow.removed_at.is_(None),
                )
            )
            return set(result.scalars().all())

    # --- Document builders ---

    async def _build_case_document(
        self, db: AsyncSession, tenant_id: str, case_id: str
    ) -> CaseDocument | None:
        result = await db.execute(
            select(CaseRow).where(CaseRow.id == case_id, CaseRow.tenant_id == tenant_id)
        )
        case = result.scalar_one_or_none()
        if case is None:
            return None

        person_rows = await db.execute(
            select(PersonCaseAssociationRow, PersonRow)
            .join(PersonRow, PersonRow.id == PersonCaseAssociationRow.person_id)
            .where(
                PersonCaseAssociationRow.tenant_id == tenant_id,
                PersonCaseAssociationRow.case_id == case_id,
                PersonCaseAssociationRow.removed_at.is_(None),
            )
            .order_by(PersonCaseAssociationRow.created_at)
        )
        persons = [
            PersonEntry(
                person_id=assoc.person_id,
                person_name=RecordService.display_name(Person.model_validate(person)),
                label=assoc.label,
                evidentiary_status=assoc.evidentiary_status,
                is_active=_is_active(assoc),
            )
            for assoc, person in person_rows.all()
        ]

        link_rows = await db.execute(
            select(ReportCaseLinkRow, ReportRow)
            .join(ReportRow, ReportRow.id == ReportCaseLinkRow.report_id)
            .where(
                ReportCaseLinkRow.tenant_id == tenant_id,
                ReportCaseLinkRow.case_id == case_id,
                ReportCaseLinkRow.removed_at.is_(None),
            )
            .order_by(ReportCaseLinkRow.created_at)
        )
        links = link_rows.all()
        reporters = await self._reporters_of(db, tenant_id, [report.id for _, report in links])
        linked_reports = [
            LinkedReportEntry(
                report_id=report.id,
                reference_number=report.reference_number,
                association_type=link.association_type,
                reporter_person_ids=reporters.get(report.id, []),
            )
            for link, report in links
        ]

        case_rows = await db.execute(
            select(CaseCaseAssociationRow).where(
                CaseCaseAssociationRow.tenant_id == tenant_id,
                CaseCaseAssociationRow.removed_at.is_(None),
                or_(
                    CaseCaseAssociationRow.source_case_id == case_id,
                    CaseCaseAssociationRow.target_case_id == case_id,
                ),
            )
        )
        edges = case_rows.scalars().all()
        other_ids = {
            e.target_case_id if e.source_case_id == case_id else e.source_case_id for e in edges
        }
        references = {}
        if other_ids:
            ref_rows = await db.execute(
                select(CaseRow.id, CaseRow.reference_number).where(
                    CaseRow.tenant_id == tenant_id, CaseRow.id.in_(other_ids)
                )
            )
            references = dict(ref_rows.all())
        linked_cases = []
        for edge in edges:
            outgoing = edge.source_case_id == case_id
            other = edge.target_case_id if outgoing else edge.source_case_id
            linked_cases.append(
                LinkedCaseEntry(
                    case_id=other,
                    reference_number=references.get(other, ""),
                    label=edge.label,
                    direction="outgoing" if outgoing else "incoming",
                )
            )

        def ids_for(labels: set[str]) -> list[str]:
            return sorted({p.person_id for p in persons if p.label in labels})

        return CaseDocument(
            case_id=case.id,
            tenant_id=tenant_id,
            reference_number=case.reference_number,
            status=case.status,
            is_merged=case.is_merged,
            merged_into_case_id=case.merged_into_case_id,
            created_at=as_utc(case.created_at),
            updated_at=as_utc(case.updated_at),
            associations=CaseAssociationsDoc(
                persons=persons,
                linked_reports=linked_reports,
                linked_cases=linked_cases,
            ),
            person_ids=sorted({p.person_id for p in persons}),
            subject_person_ids=ids_for({PersonCaseLabel.SUBJECT.value}),
            witness_person_ids=ids_for({PersonCaseLabel.WITNESS.value}),
            reporter_person_ids=ids_for({PersonCaseLabel.REPORTER.value}),
            investigator_person_ids=ids_for(_INVESTIGATOR_LABELS),
        )

    async def _build_report_document(
        self, db: AsyncSession, tenant_id: str, report_id: str
    ) -> ReportDocument | None:
        report = await db.get(ReportRow, report_id)
        if report is None or report.tenant_id != tenant_id:
            return None

        assoc_rows = await db.execute(
            select(PersonReportAssociationRow).where(
                PersonReportAssociationRow.tenant_id == tenant_id,
                PersonReportAssociationRow.report_id == report_id,
                PersonReportAssociationRow.removed_at.is_(None),
            )
        )
        reporters: set[str] = set()
        mentioned: set[str] = set()
        for assoc in assoc_rows.scalars().all():
            if assoc.label == PersonReportLabel.REPORTER.value:
                reporters.add(assoc.person_id)
            else:
                mentioned.add(assoc.person_id)

        case_rows = await db.execute(
            select(ReportCaseLinkRow.case_id).where(
                ReportCaseLinkRow.tenant_id == tenant_id,
                ReportCaseLinkRow.report_id == report_id,
                ReportCaseLinkRow.removed_at.is_(None),
            )
        )
        return ReportDocument(
            report_id=report.id,
            tenant_id=tenant_id,
            reference_number=report.reference_number,
            type=report.type,
            status=report.status,
            created_at=as_utc(report.created_at),
            reporter_person_ids=sorted(reporters),
            mentioned_person_ids=sorted(mentioned),
            linked_case_ids=sorted(set(case_rows.scalars().all())),
        )

    @staticmethod
    async def _reporters_of(
        db: AsyncSession, tenant_id: str, report_ids: list[str]
    ) -> dict[str, list[str]]:
        if not report_ids:
            return {}
        result = await db.execute(
            select(PersonReportAssociationRow.report_id, PersonReportAssociationRow.person_id)
            .where(
                PersonReportAssociationRow.tenant_id == tenant_id,
                PersonReportAssociationRow.report_id.in_(report_ids),
                PersonReportAssociationRow.label == PersonReportLabel.REPORTER.value,
                PersonReportAssociationRow.removed_at.is_(None),
            )
        )
        reporters: dict[str, list[str]] = {}
        for report_id, person_id in result.all():
            reporters.setdefault(report_id, []).append(person_id)
        return {k: sorted(v) for k, v in reporters.items()}


def _is_active(assoc: PersonCaseAssociationRow) -> bool:
    if assoc.label in EVIDENTIARY_LABELS:
        return assoc.evidentiary_status != EvidentiaryStatus.WITHDRAWN.value
    return assoc.ended_at is None
