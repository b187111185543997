"""FastAPI router for association endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from casegraph.auth.middleware import get_actor
from casegraph.core.types import ActorContext

router = APIRouter()


class CreateAssociationRequest(BaseModel):
    subject_id: str
    object_id: str
    label: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class StatusUpdateRequest(BaseModel):
    status: str
    reason: str | None = None


class EndRoleRequest(BaseModel):
    reason: str
    ended_at: datetime | None = None


class LinkReportRequest(BaseModel):
    report_id: str
    association_type: str = "PRIMARY"


def _store(request: Request):
    store = getattr(request.app.state, "association_store", None)
    if store is None:
        raise HTTPException(status_code=503, detail="Association store not available")
    return store


@router.post("/api/associations/{kind}", status_code=201)
async def create_association(
    kind: str,
    body: CreateAssociationRequest,
    request: Request,
    actor: ActorContext = Depends(get_actor),
) -> dict[str, Any]:
    """Create a Person-Case, Person-Report, Case-Case or Person-Person association."""
    association = await _store(request).create(
        actor, kind, body.subject_id, body.object_id, body.label, body.metadata
    )
    return association.model_dump(mode="json")


@router.patch("/api/associations/{kind}/{association_id}/status")
async def update_association_status(
    kind: str,
    association_id: str,
    body: StatusUpdateRequest,
    request: Request,
    actor: ActorContext = Depends(get_actor),
) -> dict[str, Any]:
    association = await _store(request).update_status(
        actor, kind, association_id, body.status, body.reason
    )
    return association.model_dump(mode="json")


@router.post("/api/associations/person-case/{association_id}/end")
async def end_role(
    association_id: str,
    body: EndRoleRequest,
    request: Request,
    actor: ActorContext = Depends(get_actor),
) -> dict[str, Any]:
    association = await _store(request).end_role(
        actor, association_id, body.reason, body.ended_at
    )
    return association.model_dump(mode="json")


@router.delete("/api/associations/{kind}/{association_id}")
async def remove_association(
    kind: str,
    association_id: str,
    request: Request,
    actor: ActorContext = Depends(get_actor),
) -> dict[str, Any]:
    association = await _store(request).remove(actor, kind, association_id)
    return association.model_dump(mode="json")


@router.get("/api/cases/{case_id}/associations")
async def list_case_associations(
    case_id: str, request: Request, actor: ActorContext = Depends(get_actor)
) -> dict[str, Any]:
    associations = await _store(request).list_for_case(actor, case_id)
    return associations.model_dump(mode="json")


@router.post("/api/cases/{case_id}/reports", status_code=201)
async def link_report(
    case_id: str,
    body: LinkReportRequest,
    request: Request,
    actor: ActorContext = Depends(get_actor),
) -> dict[str, Any]:
    link = await _store(request).link_report_to_case(
        actor, body.report_id, case_id, body.association_type
    )
    return link.model_dump(mode="json")


@router.get("/api/persons/{person_id}/associations")
async def list_person_associations(
    person_id: str, request: Request, actor: ActorContext = Depends(get_actor)
) -> dict[str, Any]:
    associations = await _store(request).list_for_person(actor, person_id)
    return associations.model_dump(mode="json")


@router.get("/api/persons/{person_id}/conflicts")
async def list_conflicts_of_interest(
    person_id: str, request: Request, actor: ActorContext = Depends(get_actor)
) -> list[dict[str, Any]]:
    """Currently effective relationships that signal a conflict of interest."""
    relationships = await _store(request).find_coi_relationships(actor, person_id)
    return [r.model_dump(mode="json") for r in relationships]
