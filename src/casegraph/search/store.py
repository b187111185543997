"""Storage for projected pattern documents.

Documents are kept whole in ``pattern_documents``; each nested person entry
is also flattened into ``pattern_entries`` so that per-entry matching runs
as plain indexed SQL. The projector is the only caller of the write methods.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import and_, delete, func, select

from casegraph.core.types import utcnow
from casegraph.db.engine import DatabaseManager
from casegraph.db.models import PatternDocumentRow, PatternEntryRow
from casegraph.search.documents import DocType, PersonEntry


class ProjectionStore:
    """Tenant-partitioned document store backing the pattern queries."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    # --- Writes (projector only) ---

    async def upsert(
        self,
        tenant_id: str,
        doc_type: DocType,
        doc_id: str,
        document: dict[str, Any],
        entries: list[PersonEntry],
        source_updated_at: datetime | None = None,
    ) -> None:
        """Replace a document and its flattened entries in one transaction."""
        async with self._db.session() as db:
            await db.execute(
                delete(PatternEntryRow).where(
                    PatternEntryRow.tenant_id == tenant_id,
                    PatternEntryRow.doc_type == doc_type.value,
                    PatternEntryRow.doc_id == doc_id,
                )
            )
            result = await db.execute(
                select(PatternDocumentRow).where(
                    PatternDocumentRow.tenant_id == tenant_id,
                    PatternDocumentRow.doc_type == doc_type.value,
                    PatternDocumentRow.doc_id == doc_id,
                )
            )
            row = result.scalar_one_or_none()
            if row is None:
                row = PatternDocumentRow(tenant_id=tenant_id, doc_type=doc_type.value, doc_id=doc_id)
                db.add(row)
            row.document = document
            row.source_updated_at = source_updated_at
            row.indexed_at = utcnow()

            for entry in entries:
                db.add(
                    PatternEntryRow(
                        tenant_id=tenant_id,
                        doc_type=doc_type.value,
                        doc_id=doc_id,
                        person_id=entry.person_id,
                        label=entry.label,
                        evidentiary_status=entry.evidentiary_status,
                        is_active=entry.is_active,
                    )
                )
            await db.commit()

    async def delete(self, tenant_id: str, doc_type: DocType, doc_id: str) -> None:
        async with self._db.session() as db:
            for row_cls in (PatternEntryRow, PatternDocumentRow):
                await db.execute(
                    delete(row_cls).where(
                        row_cls.tenant_id == tenant_id,
                        row_cls.doc_type == doc_type.value,
                        row_cls.doc_id == doc_id,
                    )
                )
            await db.commit()

    async def clear_tenant(self, tenant_id: str) -> None:
        async with self._db.session() as db:
            for row_cls in (PatternEntryRow, PatternDocumentRow):
                await db.execute(delete(row_cls).where(row_cls.tenant_id == tenant_id))
            await db.commit()

    # --- Reads ---

    async def get(self, tenant_id: str, doc_type: DocType, doc_id: str) -> dict[str, Any] | None:
        docs = await self.get_many(tenant_id, doc_type, [doc_id])
        return docs.get(doc_id)

    async def get_many(
        self, tenant_id: str, doc_type: DocType, doc_ids: list[str]
    ) -> dict[str, dict[str, Any]]:
        if not doc_ids:
            return {}
        async with self._db.session() as db:
            result = await db.execute(
                select(PatternDocumentRow).where(
                    PatternDocumentRow.tenant_id == tenant_id,
                    PatternDocumentRow.doc_type == doc_type.value,
                    PatternDocumentRow.doc_id.in_(doc_ids),
                )
            )
            return {r.doc_id: r.document for r in result.scalars().all()}

    async def rank_docs_for_person(
        self,
        tenant_id: str,
        doc_type: DocType,
        person_id: str,
        labels: list[str] | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[tuple[str, int]]:
        """``(doc_id, matching entries)`` ordered by matches, then recency."""
        matches = func.count(PatternEntryRow.id).label("matches")
        stmt = (
            select(PatternEntryRow.doc_id, matches)
            .join(
                PatternDocumentRow,
                and_(
                    PatternDocumentRow.tenant_id == PatternEntryRow.tenant_id,
                    PatternDocumentRow.doc_type == PatternEntryRow.doc_type,
                    PatternDocumentRow.doc_id == PatternEntryRow.doc_id,
                ),
            )
            .where(
                PatternEntryRow.tenant_id == tenant_id,
                PatternEntryRow.doc_type == doc_type.value,
                PatternEntryRow.person_id == person_id,
            )
        )
        if labels:
            stmt = stmt.where(PatternEntryRow.label.in_(labels))
        stmt = (
            stmt.group_by(PatternEntryRow.doc_id, PatternDocumentRow.source_updated_at)
            .order_by(matches.desc(), PatternDocumentRow.source_updated_at.desc())
            .limit(limit)
            .offset(offset)
        )
        async with self._db.session() as db:
            result = await db.execute(stmt)
            return [(doc_id, count) for doc_id, count in result.all()]

    async def doc_ids_with_entry(
        self,
        tenant_id: str,
        doc_type: DocType,
        person_id: str,
        labels: list[str] | None = None,
        statuses: list[str] | None = None,
    ) -> set[str]:
        """Documents holding one entry that matches person, label and status."""
        stmt = select(PatternEntryRow.doc_id).where(
            PatternEntryRow.tenant_id == tenant_id,
            PatternEntryRow.doc_type == doc_type.value,
            PatternEntryRow.person_id == person_id,
        )
        if labels:
            stmt = stmt.where(PatternEntryRow.label.in_(labels))
        if statuses:
            stmt = stmt.where(PatternEntryRow.evidentiary_status.in_(statuses))
        async with self._db.session() as db:
            result = await db.execute(stmt.distinct())
            return set(result.scalars().all())

    async def entries_for_person(
        self, tenant_id: str, doc_type: DocType, person_id: str
    ) -> list[PatternEntryRow]:
        async with self._db.session() as db:
            result = await db.execute(
                select(PatternEntryRow).where(
                    PatternEntryRow.tenant_id == tenant_id,
                    PatternEntryRow.doc_type == doc_type.value,
                    PatternEntryRow.person_id == person_id,
                )
            )
            return list(result.scalars().all())

    async def repeat_persons(
        self, tenant_id: str, doc_type: DocType, label: str, min_count: int
    ) -> list[tuple[str, int]]:
        """``(person_id, distinct documents)`` for people appearing under
        ``label`` in at least ``min_count`` documents."""
        docs = func.count(func.distinct(PatternEntryRow.doc_id)).label("docs")
        async with self._db.session() as db:
            result = await db.execute(
                select(PatternEntryRow.person_id, docs)
                .where(
                    PatternEntryRow.tenant_id == tenant_id,
                    PatternEntryRow.doc_type == doc_type.value,
                    PatternEntryRow.label == label,
                )
                .group_by(PatternEntryRow.person_id)
                .having(docs >= min_count)
                .order_by(docs.desc(), PatternEntryRow.person_id)
            )
            return [(person_id, count) for person_id, count in result.all()]

    async def count_docs(self, tenant_id: str, doc_type: DocType) -> int:
        async with self._db.session() as db:
            result = await db.execute(
                select(func.count()).select_from(PatternDocumentRow).where(
                    PatternDocumentRow.tenant_id == tenant_id,
                    PatternDocumentRow.doc_type == doc_type.value,
                )
            )
            return result.scalar_one()
