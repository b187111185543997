"""Cross-entity pattern queries over the projection.

Every query is tenant-filtered and reads only projected documents, never
the relational store, so results may trail the latest writes by one
event-processing cycle.
"""

from __future__ import annotations

from collections import Counter
from typing import Any

from pydantic import BaseModel, Field

from casegraph.associations.models import PersonCaseLabel, PersonReportLabel
from casegraph.core.errors import ValidationError
from casegraph.core.types import ActorContext
from casegraph.search.documents import DocType
from casegraph.search.store import ProjectionStore

_MAX_LIMIT = 200


class PersonCriterion(BaseModel):
    person_id: str
    roles: list[str] | None = None
    statuses: list[str] | None = None


class CaseMatch(BaseModel):
    case_id: str
    reference_number: str
    status: str
    updated_at: str
    match_count: int
    roles: list[str] = Field(default_factory=list)
    role_breakdown: list[dict[str, Any]] = Field(default_factory=list)


class ReporterHistory(BaseModel):
    person_id: str
    count: int
    show_badge: bool
    label: str
    report_ids: list[str] = Field(default_factory=list)
    case_ids: list[str] = Field(default_factory=list)


class InvolvementSummary(BaseModel):
    person_id: str
    total_cases: int
    active_involvements: int
    by_role: dict[str, int] = Field(default_factory=dict)
    by_status: dict[str, int] = Field(default_factory=dict)


class RepeatInvolvement(BaseModel):
    person_id: str
    case_count: int


class RelatedCase(BaseModel):
    case_id: str
    reference_number: str
    label: str
    direction: str


class PatternQueryEngine:
    """Read-only queries answered from :class:`ProjectionStore`."""

    def __init__(self, store: ProjectionStore) -> None:
        self._store = store

    async def find_cases_involving_person(
        self,
        ctx: ActorContext,
        person_id: str,
        roles: list[str] | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[CaseMatch]:
        """Cases where the person appears, most matching entries first.

        Each match carries the person's entries on that case as its role
        breakdown.
        """
        labels = _normalize_roles(roles)
        ranked = await self._store.rank_docs_for_person(
            ctx.tenant_id, DocType.CASE, person_id, labels,
            limit=max(1, min(limit, _MAX_LIMIT)), offset=max(0, offset),
        )
        docs = await self._store.get_many(ctx.tenant_id, DocType.CASE, [d for d, _ in ranked])

        matches = []
        for doc_id, count in ranked:
            doc = docs.get(doc_id)
            if doc is None:
                continue
            entries = [
                e for e in doc["associations"]["persons"]
                if e["person_id"] == person_id and (not labels or e["label"] in labels)
            ]
            matches.append(
                CaseMatch(
                    case_id=doc_id,
                    reference_number=doc["reference_number"],
                    status=doc["status"],
                    updated_at=doc["updated_at"],
                    match_count=count,
                    roles=sorted({e["label"] for e in entries}),
                    role_breakdown=[
                        {
                            "label": e["label"],
                            "evidentiary_status": e["evidentiary_status"],
                            "is_active": e["is_active"],
                        }
                        for e in entries
                    ],
                )
            )
        return matches

    async def find_cases_with_person_combination(
        self, ctx: ActorContext, criteria: list[PersonCriterion | dict[str, Any]]
    ) -> list[CaseMatch]:
        """Cases satisfying every criterion at once.

        A criterion matches only when a single entry carries its person and
        one of its roles; criteria met on different cases do not combine.
        """
        parsed = [
            c if isinstance(c, PersonCriterion) else PersonCriterion.model_validate(c)
            for c in criteria
        ]
        if not parsed:
            raise ValidationError("At least one criterion is required", fields=["criteria"])

        matching: set[str] | None = None
        for criterion in parsed:
            doc_ids = await self._store.doc_ids_with_entry(
                ctx.tenant_id,
                DocType.CASE,
                criterion.person_id,
                _normalize_roles(criterion.roles),
                [s.upper() for s in criterion.statuses] if criterion.statuses else None,
            )
            matching = doc_ids if matching is None else matching & doc_ids
            if not matching:
                return []

        docs = await self._store.get_many(ctx.tenant_id, DocType.CASE, sorted(matching))
        wanted = {c.person_id for c in parsed}
        results = []
        for doc_id, doc in docs.items():
            entries = [e for e in doc["associations"]["persons"] if e["person_id"] in wanted]
            results.append(
                CaseMatch(
                    case_id=doc_id,
                    reference_number=doc["reference_number"],
                    status=doc["status"],
                    updated_at=doc["updated_at"],
                    match_count=len(entries),
                    roles=sorted({e["label"] for e in entries}),
                    role_breakdown=[
                        {
                            "person_id": e["person_id"],
                            "label": e["label"],
                            "evidentiary_status": e["evidentiary_status"],
                            "is_active": e["is_active"],
                        }
                        for e in entries
                    ],
                )
            )
        results.sort(key=lambda m: m.updated_at, reverse=True)
        return results

    async def get_reporter_history(
        self,
        ctx: ActorContext,
        person_id: str,
        excluding_report_id: str | None = None,
    ) -> ReporterHistory:
        """How many distinct earlier intakes this person reported.

        Counts report documents naming the person as reporter, plus cases
        where the person is a case-level REPORTER and none of the case's
        linked reports was already counted. Cases linked to the excluded
        report are the current intake's own and are skipped.
        """
        report_ids = await self._store.doc_ids_with_entry(
            ctx.tenant_id, DocType.REPORT, person_id, [PersonReportLabel.REPORTER.value]
        )
        report_ids.discard(excluding_report_id)

        case_ids = await self._store.doc_ids_with_entry(
            ctx.tenant_id, DocType.CASE, person_id, [PersonCaseLabel.REPORTER.value]
        )
        case_docs = await self._store.get_many(ctx.tenant_id, DocType.CASE, sorted(case_ids))
        counted_cases = []
        for case_id, doc in sorted(case_docs.items()):
            linked = {r["report_id"] for r in doc["associations"]["linked_reports"]}
            if excluding_report_id is not None and excluding_report_id in linked:
                continue
            if linked & report_ids:
                continue
            counted_cases.append(case_id)

        count = len(report_ids) + len(counted_cases)
        return ReporterHistory(
            person_id=person_id,
            count=count,
            show_badge=count > 0,
            label=_reports_label(count),
            report_ids=sorted(report_ids),
            case_ids=counted_cases,
        )

    async def get_person_involvement_summary(
        self, ctx: ActorContext, person_id: str
    ) -> InvolvementSummary:
        entries = await self._store.entries_for_person(ctx.tenant_id, DocType.CASE, person_id)
        return InvolvementSummary(
            person_id=person_id,
            total_cases=len({e.doc_id for e in entries}),
            active_involvements=sum(1 for e in entries if e.is_active),
            by_role=dict(Counter(e.label for e in entries)),
            by_status=dict(
                Counter(e.evidentiary_status for e in entries if e.evidentiary_status)
            ),
        )

    async def find_repeat_involvements(
        self, ctx: ActorContext, label: str, min_count: int = 2
    ) -> list[RepeatInvolvement]:
        """People holding ``label`` on at least ``min_count`` cases."""
        labels = _normalize_roles([label])
        if min_count < 1:
            raise ValidationError("min_count must be at least 1", fields=["min_count"])
        rows = await self._store.repeat_persons(ctx.tenant_id, DocType.CASE, labels[0], min_count)
        return [RepeatInvolvement(person_id=pid, case_count=count) for pid, count in rows]

    async def get_related_cases(self, ctx: ActorContext, case_id: str) -> list[RelatedCase]:
        doc = await self._store.get(ctx.tenant_id, DocType.CASE, case_id)
        if doc is None:
            return []
        return [RelatedCase(**entry) for entry in doc["associations"]["linked_cases"]]


def _normalize_roles(roles: list[str] | None) -> list[str] | None:
    if not roles:
        return None
    normalized = []
    for role in roles:
        try:
            normalized.append(PersonCaseLabel(str(role).upper()).value)
        except ValueError:
            raise ValidationError(f"Unknown role {role!r}", fields=["roles"])
    return normalized


def _reports_label(count: int) -> str:
    return "1 previous report" if count == 1 else f"{count} previous reports"
