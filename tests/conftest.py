"""Shared test fixtures and helpers."""

from __future__ import annotations

import pytest

from casegraph.associations.store import AssociationStore
from casegraph.consolidation.engine import CaseConsolidationEngine
from casegraph.core.config import MergeConfig, ProjectionConfig
from casegraph.core.types import ActorContext, PersonType
from casegraph.db.engine import DatabaseManager
from casegraph.events.queue import EventQueue
from casegraph.governance.audit import AuditTrail
from casegraph.records.service import RecordService
from casegraph.reports.guard import ImmutabilityGuard
from casegraph.reports.service import ReportService
from casegraph.search.projector import PatternIndexProjector
from casegraph.search.query import PatternQueryEngine
from casegraph.search.store import ProjectionStore

TENANT = "tenant-a"
OTHER_TENANT = "tenant-b"


@pytest.fixture
async def db():
    """A DatabaseManager over an in-memory SQLite database with all tables."""
    manager = DatabaseManager("sqlite+aiosqlite:///:memory:")
    await manager.create_all()
    yield manager
    await manager.close()


@pytest.fixture
def ctx() -> ActorContext:
    return ActorContext(tenant_id=TENANT, actor_id="investigator-1", roles=["compliance_officer"])


@pytest.fixture
def other_ctx() -> ActorContext:
    return ActorContext(tenant_id=OTHER_TENANT, actor_id="investigator-9", roles=["admin"])


@pytest.fixture
def audit(db) -> AuditTrail:
    return AuditTrail(db)


@pytest.fixture
def queue() -> EventQueue:
    return EventQueue(ProjectionConfig(queue_maxsize=1000, retry_base_delay_seconds=0))


@pytest.fixture
def records(db, audit, queue) -> RecordService:
    return RecordService(db, audit, queue)


@pytest.fixture
def associations(db, audit, queue) -> AssociationStore:
    return AssociationStore(db, audit, queue)


@pytest.fixture
def reports(db, audit, records, associations, queue) -> ReportService:
    return ReportService(db, audit, ImmutabilityGuard(), records, associations, queue)


@pytest.fixture
def merge_config() -> MergeConfig:
    return MergeConfig()


@pytest.fixture
def engine(db, audit, queue, merge_config) -> CaseConsolidationEngine:
    return CaseConsolidationEngine(db, audit, queue, merge_config)


@pytest.fixture
def projection_store(db) -> ProjectionStore:
    return ProjectionStore(db)


@pytest.fixture
def projector(db, projection_store, queue) -> PatternIndexProjector:
    projector = PatternIndexProjector(db, projection_store)
    projector.attach(queue)
    return projector


@pytest.fixture
def patterns(projection_store, projector) -> PatternQueryEngine:
    return PatternQueryEngine(projection_store)


@pytest.fixture
def make_person(records, ctx):
    """Factory creating an employee (or other type) in the default tenant."""

    async def _make(first_name: str, last_name: str = "Tester", **kwargs):
        kwargs.setdefault("type", PersonType.EMPLOYEE)
        return await records.create_person(
            kwargs.pop("actor", ctx), first_name=first_name, last_name=last_name, **kwargs
        )

    return _make


@pytest.fixture
def make_case(records, ctx):
    async def _make(summary: str = "Expense irregularities", actor: ActorContext | None = None):
        return await records.create_case(actor or ctx, summary=summary)

    return _make
