"""FastAPI router for pattern-detection queries."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from casegraph.auth.middleware import get_actor, require_elevated
from casegraph.core.types import ActorContext
from casegraph.search.query import PersonCriterion

router = APIRouter()


class CombinationRequest(BaseModel):
    criteria: list[PersonCriterion] = Field(min_length=1)


def _engine(request: Request):
    engine = getattr(request.app.state, "pattern_query_engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Pattern query engine not available")
    return engine


@router.get("/api/patterns/persons/{person_id}/cases")
async def find_cases_involving_person(
    person_id: str,
    request: Request,
    roles: list[str] | None = Query(default=None),
    limit: int = 50,
    offset: int = 0,
    actor: ActorContext = Depends(get_actor),
) -> list[dict[str, Any]]:
    matches = await _engine(request).find_cases_involving_person(
        actor, person_id, roles, limit=limit, offset=offset
    )
    return [m.model_dump(mode="json") for m in matches]


@router.post("/api/patterns/combination")
async def find_cases_with_person_combination(
    body: CombinationRequest, request: Request, actor: ActorContext = Depends(get_actor)
) -> list[dict[str, Any]]:
    matches = await _engine(request).find_cases_with_person_combination(actor, body.criteria)
    return [m.model_dump(mode="json") for m in matches]


@router.get("/api/patterns/persons/{person_id}/reporter-history")
async def get_reporter_history(
    person_id: str,
    request: Request,
    excluding_report_id: str | None = None,
    actor: ActorContext = Depends(get_actor),
) -> dict[str, Any]:
    history = await _engine(request).get_reporter_history(actor, person_id, excluding_report_id)
    return history.model_dump(mode="json")


@router.get("/api/patterns/persons/{person_id}/summary")
async def get_person_involvement_summary(
    person_id: str, request: Request, actor: ActorContext = Depends(get_actor)
) -> dict[str, Any]:
    summary = await _engine(request).get_person_involvement_summary(actor, person_id)
    return summary.model_dump(mode="json")


@router.get("/api/patterns/repeat")
async def find_repeat_involvements(
    label: str,
    request: Request,
    min_count: int = 2,
    actor: ActorContext = Depends(get_actor),
) -> list[dict[str, Any]]:
    repeats = await _engine(request).find_repeat_involvements(actor, label, min_count)
    return [r.model_dump(mode="json") for r in repeats]


@router.get("/api/patterns/cases/{case_id}/related")
async def get_related_cases(
    case_id: str, request: Request, actor: ActorContext = Depends(get_actor)
) -> list[dict[str, Any]]:
    related = await _engine(request).get_related_cases(actor, case_id)
    return [r.model_dump(mode="json") for r in related]


@router.post("/api/patterns/rebuild")
async def rebuild_projection(
    request: Request, actor: ActorContext = require_elevated()
) -> dict[str, Any]:
    """Re-project every case and report of the caller's tenant."""
    projector = getattr(request.app.state, "pattern_projector", None)
    if projector is None:
        raise HTTPException(status_code=503, detail="Pattern projector not available")
    counts = await projector.rebuild_tenant(actor.tenant_id)
    return {"tenant_id": actor.tenant_id, **counts}


@router.post("/api/patterns/dead-letters/replay")
async def replay_dead_letters(
    request: Request, actor: ActorContext = require_elevated()
) -> dict[str, Any]:
    """Re-queue projection events whose handlers gave up on them."""
    queue = getattr(request.app.state, "event_queue", None)
    if queue is None:
        raise HTTPException(status_code=503, detail="Event queue not available")
    replayed = queue.replay_dead_letters()
    return {"replayed": replayed, "remaining": len(queue.dead_letters)}
