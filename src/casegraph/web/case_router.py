"""FastAPI router for cases and case merges."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from casegraph.auth.middleware import get_actor, require_elevated
from casegraph.core.types import ActorContext

router = APIRouter()


class CreateCaseRequest(BaseModel):
    summary: str | None = None
    pipeline_stage: str | None = None


class MergeRequest(BaseModel):
    source_case_id: str
    target_case_id: str
    reason: str


def _engine(request: Request):
    engine = getattr(request.app.state, "consolidation_engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Consolidation engine not available")
    return engine


def _records(request: Request):
    records = getattr(request.app.state, "record_service", None)
    if records is None:
        raise HTTPException(status_code=503, detail="Record service not available")
    return records


@router.post("/api/cases", status_code=201)
async def create_case(
    body: CreateCaseRequest, request: Request, actor: ActorContext = Depends(get_actor)
) -> dict[str, Any]:
    case = await _records(request).create_case(actor, body.summary, body.pipeline_stage)
    return case.model_dump(mode="json")


@router.post("/api/cases/merge")
async def merge_cases(
    body: MergeRequest,
    request: Request,
    actor: ActorContext = require_elevated(),
) -> dict[str, Any]:
    """Merge the source case into the target. Requires an elevated role."""
    result = await _engine(request).merge(
        actor, body.source_case_id, body.target_case_id, body.reason
    )
    data = result.model_dump(mode="json")
    data["associations_moved"] = result.associations_moved
    return data


@router.get("/api/cases/merge/check")
async def check_merge(
    source_case_id: str,
    target_case_id: str,
    request: Request,
    actor: ActorContext = Depends(get_actor),
) -> dict[str, Any]:
    preview = await _engine(request).can_merge(actor, source_case_id, target_case_id)
    return preview.model_dump(mode="json")


@router.get("/api/cases/{case_id}")
async def get_case(
    case_id: str, request: Request, actor: ActorContext = Depends(get_actor)
) -> dict[str, Any]:
    case = await _records(request).get_case(actor, case_id)
    return case.model_dump(mode="json")


@router.get("/api/cases/{case_id}/merge-history")
async def get_merge_history(
    case_id: str, request: Request, actor: ActorContext = Depends(get_actor)
) -> list[dict[str, Any]]:
    history = await _engine(request).get_merge_history(actor, case_id)
    return [entry.model_dump(mode="json") for entry in history]


@router.get("/api/cases/{case_id}/primary")
async def resolve_primary(
    case_id: str, request: Request, actor: ActorContext = Depends(get_actor)
) -> dict[str, Any]:
    resolution = await _engine(request).resolve_primary(actor, case_id)
    return resolution.model_dump(mode="json")
