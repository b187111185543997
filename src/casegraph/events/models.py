"""Domain event models emitted by the write path."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from casegraph.core.types import new_id, utcnow


class EventTopic(StrEnum):
    ASSOCIATION = "association"
    CASE = "case"
    PERSON = "person"
    REPORT = "report"


class EventAction(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    STATUS_CHANGED = "status_changed"
    ENDED = "ended"
    REMOVED = "removed"
    MERGED = "merged"
    RECEIVED_MERGE = "received_merge"


class DomainEvent(BaseModel):
    """A single graph or record mutation, published after commit.

    For associations ``association_type`` names the kind and
    ``subject_id``/``object_id`` its two endpoints. Case events put the
    case in ``subject_id`` and the counterpart case in ``object_id``.
    """

    event_id: str = Field(default_factory=new_id)
    topic: EventTopic
    action: EventAction
    tenant_id: str
    subject_id: str
    object_id: str | None = None
    association_type: str | None = None
    occurred_at: datetime = Field(default_factory=utcnow)
    payload: dict[str, Any] = Field(default_factory=dict)

    @property
    def name(self) -> str:
        """Dotted event name, e.g. ``association.person_case.created``."""
        parts = [self.topic.value]
        if self.association_type:
            parts.append(self.association_type.lower())
        parts.append(self.action.value)
        return ".".join(parts)
