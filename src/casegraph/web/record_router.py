"""FastAPI router for persons and reports."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from casegraph.auth.middleware import get_actor
from casegraph.core.types import ActorContext, PersonSource, PersonType
from casegraph.reports.models import ReportCreate

router = APIRouter()


class CreatePersonRequest(BaseModel):
    type: PersonType = PersonType.EMPLOYEE
    source: PersonSource = PersonSource.MANUAL
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    company: str | None = None


def _records(request: Request):
    records = getattr(request.app.state, "record_service", None)
    if records is None:
        raise HTTPException(status_code=503, detail="Record service not available")
    return records


def _reports(request: Request):
    reports = getattr(request.app.state, "report_service", None)
    if reports is None:
        raise HTTPException(status_code=503, detail="Report service not available")
    return reports


@router.post("/api/persons", status_code=201)
async def create_person(
    body: CreatePersonRequest, request: Request, actor: ActorContext = Depends(get_actor)
) -> dict[str, Any]:
    person = await _records(request).create_person(actor, **body.model_dump())
    return person.model_dump(mode="json")


@router.get("/api/persons/{person_id}")
async def get_person(
    person_id: str, request: Request, actor: ActorContext = Depends(get_actor)
) -> dict[str, Any]:
    records = _records(request)
    person = await records.get_person(actor, person_id)
    data = person.model_dump(mode="json")
    data["display_name"] = records.display_name(person)
    return data


@router.patch("/api/persons/{person_id}")
async def update_person(
    person_id: str,
    changes: dict[str, Any],
    request: Request,
    actor: ActorContext = Depends(get_actor),
) -> dict[str, Any]:
    person = await _records(request).update_person(actor, person_id, changes)
    return person.model_dump(mode="json")


@router.post("/api/reports", status_code=201)
async def create_report(
    body: ReportCreate, request: Request, actor: ActorContext = Depends(get_actor)
) -> dict[str, Any]:
    report = await _reports(request).create(actor, body)
    return report.model_dump(mode="json")


@router.get("/api/reports/{report_id}")
async def get_report(
    report_id: str, request: Request, actor: ActorContext = Depends(get_actor)
) -> dict[str, Any]:
    report = await _reports(request).get(actor, report_id)
    return report.model_dump(mode="json")


@router.patch("/api/reports/{report_id}")
async def update_report(
    report_id: str,
    changes: dict[str, Any],
    request: Request,
    actor: ActorContext = Depends(get_actor),
) -> dict[str, Any]:
    """Update status or classification fields. Intake content is rejected with 422."""
    report = await _reports(request).update(actor, report_id, changes)
    return report.model_dump(mode="json")
