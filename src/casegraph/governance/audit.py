"""Database-backed audit trail with a per-tenant hash chain.

Each entry's hash = SHA-256(previous_hash + event_json), so altering any
stored entry breaks the chain for every later entry of that tenant.
Business operations call :meth:`AuditTrail.record`, which never raises.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select

from casegraph.core.config import AuditConfig
from casegraph.core.types import ActorContext, AuditEvent, EntityType
from casegraph.db.engine import DatabaseManager
from casegraph.db.models import AuditEventRow

logger = logging.getLogger(__name__)


class AuditEntry:
    """Wrapper around an AuditEvent with chain hash metadata."""

    def __init__(self, event: AuditEvent, previous_hash: str, entry_hash: str) -> None:
        self.event = event
        self.previous_hash = previous_hash
        self.entry_hash = entry_hash


class AuditTrail:
    """Append-only, hash-chained audit log stored in ``audit_events``."""

    def __init__(self, db: DatabaseManager, config: AuditConfig | None = None) -> None:
        self._db = db
        self._config = config or AuditConfig()
        self._lock = asyncio.Lock()
        self._failures = 0

    @staticmethod
    def _genesis_hash(tenant_id: str) -> str:
        return hashlib.sha256(f"casegraph-genesis:{tenant_id}".encode("utf-8")).hexdigest()

    def _compute_hash(self, previous_hash: str, event_json: str) -> str:
        payload = (previous_hash + event_json).encode("utf-8")
        return hashlib.new(self._config.hash_algorithm, payload).hexdigest()

    @staticmethod
    def _canonical_json(event: AuditEvent) -> str:
        data = json.loads(event.model_dump_json())
        return json.dumps(data, sort_keys=True)

    async def _last_hash(self, tenant_id: str) -> str:
        async with self._db.session() as db:
            result = await db.execute(
                select(AuditEventRow.entry_hash)
                .where(AuditEventRow.tenant_id == tenant_id)
                .order_by(AuditEventRow.id.desc())
                .limit(1)
            )
            last = result.scalar_one_or_none()
        return last or self._genesis_hash(tenant_id)

    async def log(self, event: AuditEvent) -> AuditEntry:
        """Append an event to its tenant's chain. Raises on storage failure."""
        async with self._lock:
            previous_hash = await self._last_hash(event.tenant_id)
            event_json = self._canonical_json(event)
            entry_hash = self._compute_hash(previous_hash, event_json)

            async with self._db.session() as db:
                db.add(
                    AuditEventRow(
                        event_id=event.event_id,
                        tenant_id=event.tenant_id,
                        timestamp=event.timestamp,
                        actor=event.actor,
                        entity_type=event.entity_type.value,
                        entity_id=event.entity_id,
                        action=event.action,
                        description=event.description,
                        details=json.loads(event_json)["details"],
                        previous_hash=previous_hash,
                        entry_hash=entry_hash,
                    )
                )
                await db.commit()

            return AuditEntry(event=event, previous_hash=previous_hash, entry_hash=entry_hash)

    async def record(
        self,
        ctx: ActorContext,
        entity_type: EntityType,
        entity_id: str,
        action: str,
        description: str = "",
        details: dict[str, Any] | None = None,
    ) -> AuditEntry | None:
        """Log an audit event; failures are logged and counted, never raised."""
        if not self._config.enabled:
            return None
        event = AuditEvent(
            tenant_id=ctx.tenant_id,
            actor=ctx.actor_id,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            description=description,
            details=details or {},
        )
        try:
            return await self.log(event)
        except Exception:
            self._failures += 1
            logger.exception(
                "Audit write failed for %s %s:%s (tenant %s)",
                action, entity_type.value, entity_id, ctx.tenant_id,
            )
            return None

    async def verify_chain(self, tenant_id: str) -> bool:
        """Recompute every hash of a tenant's chain in insertion order."""
        async with self._db.session() as db:
            result = await db.execute(
                select(AuditEventRow)
                .where(AuditEventRow.tenant_id == tenant_id)
                .order_by(AuditEventRow.id)
            )
            rows = result.scalars().all()

        expected_previous = self._genesis_hash(tenant_id)
        for row in rows:
            if row.previous_hash != expected_previous:
                return False
            event_json = self._canonical_json(self._row_to_event(row))
            if row.entry_hash != self._compute_hash(expected_previous, event_json):
                return False
            expected_previous = row.entry_hash
        return True

    async def query(
        self, tenant_id: str, filters: dict[str, Any] | None = None
    ) -> list[AuditEvent]:
        """Query a tenant's events.

        Supported filter keys: ``actor``, ``action``, ``entity_type``,
        ``entity_id`` (exact match) and ``after``/``before`` (ISO datetimes).
        """
        filters = filters or {}
        async with self._db.session() as db:
            stmt = select(AuditEventRow).where(AuditEventRow.tenant_id == tenant_id)

            if "actor" in filters:
                stmt = stmt.where(AuditEventRow.actor == filters["actor"])
            if "action" in filters:
                stmt = stmt.where(AuditEventRow.action == filters["action"])
            if "entity_type" in filters:
                stmt = stmt.where(AuditEventRow.entity_type == str(filters["entity_type"]))
            if "entity_id" in filters:
                stmt = stmt.where(AuditEventRow.entity_id == filters["entity_id"])
            if "after" in filters:
                stmt = stmt.where(AuditEventRow.timestamp > _parse_dt(filters["after"]))
            if "before" in filters:
                stmt = stmt.where(AuditEventRow.timestamp < _parse_dt(filters["before"]))

            result = await db.execute(stmt.order_by(AuditEventRow.id))
            return [self._row_to_event(r) for r in result.scalars().all()]

    @property
    def failure_count(self) -> int:
        return self._failures

    @staticmethod
    def _row_to_event(row: AuditEventRow) -> AuditEvent:
        timestamp = row.timestamp
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return AuditEvent(
            event_id=row.event_id,
            timestamp=timestamp,
            tenant_id=row.tenant_id,
            actor=row.actor,
            entity_type=EntityType(row.entity_type),
            entity_id=row.entity_id,
            action=row.action,
            description=row.description,
            details=row.details or {},
        )


def _parse_dt(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
