"""FastAPI application for the case association and consolidation service.

Wires the relational store, audit trail, event queue, pattern projection
and routers onto one app instance.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from casegraph import __version__
from casegraph.associations.store import AssociationStore
from casegraph.auth.middleware import ActorContextMiddleware
from casegraph.consolidation.engine import CaseConsolidationEngine
from casegraph.core.config import Settings
from casegraph.core.errors import CaseGraphError
from casegraph.core.types import HealthStatus
from casegraph.db.engine import DatabaseManager
from casegraph.events.queue import EventQueue
from casegraph.governance.audit import AuditTrail
from casegraph.records.service import RecordService
from casegraph.reports.guard import ImmutabilityGuard
from casegraph.reports.service import ReportService
from casegraph.search.projector import PatternIndexProjector
from casegraph.search.query import PatternQueryEngine
from casegraph.search.store import ProjectionStore
from casegraph.web.association_router import router as association_router
from casegraph.web.case_router import router as case_router
from casegraph.web.pattern_router import router as pattern_router
from casegraph.web.record_router import router as record_router

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    db: DatabaseManager | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Uses the factory pattern so tests can build isolated app instances
    against their own database.

    Args:
        settings: Application settings. Defaults to Settings().
        db: Optional pre-built DatabaseManager. Built from
            ``settings.database`` when omitted.

    Returns:
        A configured FastAPI instance.
    """
    if settings is None:
        settings = Settings()

    logging.getLogger("casegraph").setLevel(settings.log_level.upper())

    if db is None:
        db = DatabaseManager.from_config(settings.database)

    audit = AuditTrail(db, config=settings.audit)
    queue = EventQueue(settings.projection)

    record_service = RecordService(db, audit, queue)
    association_store = AssociationStore(db, audit, queue)
    report_service = ReportService(
        db,
        audit,
        ImmutabilityGuard.from_config(settings.report),
        record_service,
        association_store,
        queue,
    )
    consolidation_engine = CaseConsolidationEngine(db, audit, queue, settings.merge)

    projection_store = ProjectionStore(db)
    projector = PatternIndexProjector(db, projection_store)
    projector.attach(queue)
    pattern_query_engine = PatternQueryEngine(projection_store)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if settings.create_schema:
            await db.create_all()
        if settings.projection.run_worker:
            queue.start()
        logger.info(
            "CaseGraph started (environment=%s, worker=%s)",
            settings.environment, settings.projection.run_worker,
        )
        yield
        await queue.stop()
        await db.close()
        logger.info("CaseGraph stopped")

    app = FastAPI(
        title="CaseGraph",
        description="Case association, consolidation and pattern detection",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(ActorContextMiddleware)

    # Store on app state for access in route handlers
    app.state.settings = settings
    app.state.db = db
    app.state.audit_trail = audit
    app.state.event_queue = queue
    app.state.record_service = record_service
    app.state.association_store = association_store
    app.state.report_service = report_service
    app.state.consolidation_engine = consolidation_engine
    app.state.projection_store = projection_store
    app.state.pattern_projector = projector
    app.state.pattern_query_engine = pattern_query_engine

    @app.exception_handler(CaseGraphError)
    async def casegraph_error_handler(request: Request, exc: CaseGraphError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    app.include_router(record_router)
    app.include_router(case_router)
    app.include_router(association_router)
    app.include_router(pattern_router)

    @app.get("/api/health")
    async def health() -> dict:
        """Service health, including event queue backlog."""
        status = HealthStatus(
            service="casegraph",
            healthy=True,
            details={
                "version": __version__,
                "queue_pending": queue.pending,
                "queue_dropped": queue.dropped,
                "worker_running": queue.running,
                "dead_letters": len(queue.dead_letters),
                "audit_failures": audit.failure_count,
            },
        )
        return status.model_dump()

    return app
