"""Core type definitions shared across all CaseGraph modules."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class EntityType(StrEnum):
    PERSON = "PERSON"
    CASE = "CASE"
    REPORT = "REPORT"


class CaseStatus(StrEnum):
    NEW = "NEW"
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class PersonType(StrEnum):
    EMPLOYEE = "EMPLOYEE"
    EXTERNAL_CONTACT = "EXTERNAL_CONTACT"
    ANONYMOUS_PLACEHOLDER = "ANONYMOUS_PLACEHOLDER"


class PersonSource(StrEnum):
    HRIS_SYNC = "HRIS_SYNC"
    MANUAL = "MANUAL"
    INTAKE_CREATED = "INTAKE_CREATED"


class PersonStatus(StrEnum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    MERGED = "MERGED"


class ActorContext(BaseModel):
    """Who is making a request, and under which tenant.

    Every service operation takes one. No read or write crosses
    ``tenant_id``.
    """

    tenant_id: str
    actor_id: str
    roles: list[str] = Field(default_factory=list)

    def has_any_role(self, roles: list[str]) -> bool:
        return any(r in self.roles for r in roles)


class AuditEvent(BaseModel):
    """Audit log entry for a single mutation."""

    event_id: str = Field(default_factory=new_id)
    timestamp: datetime = Field(default_factory=utcnow)
    tenant_id: str
    actor: str
    entity_type: EntityType
    entity_id: str
    action: str
    description: str = ""
    details: dict[str, Any] = Field(default_factory=dict)


class HealthStatus(BaseModel):
    """Health check response for any service."""

    service: str
    healthy: bool
    details: dict[str, Any] = Field(default_factory=dict)
