"""Tests for the outbound event queue: delivery, retries and dead letters."""

from __future__ import annotations

import asyncio

from casegraph.core.config import ProjectionConfig
from casegraph.core.errors import InternalError
from casegraph.events.models import DomainEvent, EventAction, EventTopic
from casegraph.events.queue import EventQueue


def _event(subject_id: str = "case-1") -> DomainEvent:
    return DomainEvent(
        topic=EventTopic.CASE,
        action=EventAction.CREATED,
        tenant_id="tenant-a",
        subject_id=subject_id,
    )


def _queue(**overrides) -> EventQueue:
    overrides.setdefault("retry_base_delay_seconds", 0)
    return EventQueue(ProjectionConfig(**overrides))


def test_event_name():
    event = DomainEvent(
        topic=EventTopic.ASSOCIATION,
        action=EventAction.CREATED,
        tenant_id="t",
        subject_id="p",
        object_id="c",
        association_type="PERSON_CASE",
    )
    assert event.name == "association.person_case.created"
    assert _event().name == "case.created"


async def test_drain_delivers_to_every_subscriber():
    queue = _queue()
    seen_a, seen_b = [], []

    async def handler_a(event):
        seen_a.append(event.subject_id)

    async def handler_b(event):
        seen_b.append(event.subject_id)

    queue.subscribe(handler_a)
    queue.subscribe(handler_b)
    queue.publish(_event("c1"))
    queue.publish(_event("c2"))

    assert queue.pending == 2
    assert await queue.drain() == 2
    assert seen_a == ["c1", "c2"]
    assert seen_b == ["c1", "c2"]
    assert queue.pending == 0


async def test_failed_handler_is_retried():
    queue = _queue(max_attempts=3)
    attempts = []

    async def flaky(event):
        attempts.append(event.event_id)
        if len(attempts) < 3:
            raise RuntimeError("index unavailable")

    queue.subscribe(flaky)
    queue.publish(_event())
    await queue.drain()

    assert len(attempts) == 3
    assert not queue.dead_letters


async def test_exhausted_event_goes_to_dead_letters():
    queue = _queue(max_attempts=2)

    async def broken(event):
        raise RuntimeError("index unavailable")

    queue.subscribe(broken)
    event = _event()
    queue.publish(event)
    await queue.drain()

    assert len(queue.dead_letters) == 1
    letter = queue.dead_letters[0]
    assert letter.event.event_id == event.event_id
    assert isinstance(letter.error, InternalError)
    assert "broken" in letter.handler_name


async def test_publish_drops_when_full():
    queue = _queue(queue_maxsize=1)
    assert queue.publish(_event("c1")) is True
    assert queue.publish(_event("c2")) is False
    assert queue.dropped == 1
    assert queue.pending == 1


async def test_background_worker_processes_events():
    queue = _queue()
    delivered = asyncio.Event()

    async def handler(event):
        delivered.set()

    queue.subscribe(handler)
    queue.start()
    assert queue.running
    queue.publish(_event())
    await asyncio.wait_for(delivered.wait(), timeout=2)
    await queue.stop()
    assert not queue.running


async def test_replay_reruns_only_the_failed_handler():
    queue = _queue(max_attempts=1)
    healthy_calls, flaky_calls = [], []

    async def healthy(event):
        healthy_calls.append(event.subject_id)

    async def flaky(event):
        flaky_calls.append(event.subject_id)
        if len(flaky_calls) == 1:
            raise RuntimeError("index unavailable")

    queue.subscribe(healthy)
    queue.subscribe(flaky)
    queue.publish(_event("c1"))
    await queue.drain()

    assert len(queue.dead_letters) == 1
    assert queue.replay_dead_letters() == 1
    assert not queue.dead_letters
    assert await queue.drain() == 1

    assert healthy_calls == ["c1"]
    assert flaky_calls == ["c1", "c1"]
    assert not queue.dead_letters


async def test_replay_keeps_letters_that_do_not_fit():
    queue = _queue(max_attempts=1, queue_maxsize=1)

    async def broken(event):
        raise RuntimeError("index unavailable")

    queue.subscribe(broken)
    for subject_id in ("c1", "c2"):
        queue.publish(_event(subject_id))
        await queue.drain()

    assert len(queue.dead_letters) == 2
    assert queue.replay_dead_letters() == 1
    assert [l.event.subject_id for l in queue.dead_letters] == ["c2"]


async def test_dead_letters_are_bounded():
    queue = _queue(max_attempts=1, dead_letter_maxsize=2)

    async def broken(event):
        raise RuntimeError("index unavailable")

    queue.subscribe(broken)
    for subject_id in ("c1", "c2", "c3"):
        queue.publish(_event(subject_id))
    await queue.drain()

    assert [l.event.subject_id for l in queue.dead_letters] == ["c2", "c3"]
