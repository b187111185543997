"""Domain events and the outbound queue that carries them to subscribers."""

from casegraph.events.models import DomainEvent, EventAction, EventTopic
from casegraph.events.queue import EventQueue

__all__ = ["DomainEvent", "EventAction", "EventQueue", "EventTopic"]
