"""Outbound event queue between the write path and its subscribers.

Publishing never blocks the caller: events go onto a bounded in-process
queue and a background worker (or an explicit :meth:`EventQueue.drain`)
delivers them. Each handler call is retried with exponential backoff;
events that exhaust their attempts are kept in ``dead_letters`` (bounded,
oldest evicted first) until :meth:`EventQueue.replay_dead_letters` puts them
back on the queue.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable

from casegraph.core.config import ProjectionConfig
from casegraph.core.errors import InternalError
from casegraph.events.models import DomainEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[DomainEvent], Awaitable[None]]

# A queued delivery: the event and, for a replayed dead letter, the one
# handler it is meant for (None fans out to every subscriber)
_Delivery = tuple[DomainEvent, EventHandler | None]


class DeadLetter:
    """An event a handler could not process within its attempt budget."""

    def __init__(
        self,
        event: DomainEvent,
        handler: EventHandler,
        handler_name: str,
        error: InternalError,
    ) -> None:
        self.event = event
        self.handler = handler
        self.handler_name = handler_name
        self.error = error


class EventQueue:
    """Bounded asyncio queue with retrying fan-out to subscribers."""

    def __init__(self, config: ProjectionConfig | None = None) -> None:
        self._config = config or ProjectionConfig()
        self._queue: asyncio.Queue[_Delivery] = asyncio.Queue(
            maxsize=self._config.queue_maxsize
        )
        self._handlers: list[EventHandler] = []
        self._worker: asyncio.Task[None] | None = None
        self._dropped = 0
        self.dead_letters: deque[DeadLetter] = deque(maxlen=self._config.dead_letter_maxsize)

    def subscribe(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    def publish(self, event: DomainEvent) -> bool:
        """Enqueue an event without waiting. Returns False if it was dropped."""
        try:
            self._queue.put_nowait((event, None))
        except asyncio.QueueFull:
            self._dropped += 1
            logger.error(
                "Event queue full (%d), dropped %s for tenant %s",
                self._queue.maxsize, event.name, event.tenant_id,
            )
            return False
        return True

    def replay_dead_letters(self) -> int:
        """Re-queue dead-lettered events, each for the handler that gave up on it.

        Letters that no longer fit on the queue stay in ``dead_letters``.
        Returns the number re-queued.
        """
        replayed = 0
        while self.dead_letters:
            letter = self.dead_letters[0]
            try:
                self._queue.put_nowait((letter.event, letter.handler))
            except asyncio.QueueFull:
                logger.warning(
                    "Event queue full, %d dead letters left for a later replay",
                    len(self.dead_letters),
                )
                break
            self.dead_letters.popleft()
            replayed += 1
        if replayed:
            logger.info("Re-queued %d dead-lettered events", replayed)
        return replayed

    async def drain(self) -> int:
        """Deliver every queued event in the calling task. Returns the count."""
        processed = 0
        while True:
            try:
                event, handler = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return processed
            try:
                await self._dispatch(event, handler)
            finally:
                self._queue.task_done()
            processed += 1

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="casegraph-event-worker")

    async def stop(self, timeout: float = 5.0) -> None:
        """Let the worker finish queued events (bounded), then cancel it."""
        if self._worker is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Event worker stopped with %d undelivered events", self._queue.qsize()
            )
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None

    async def join(self) -> None:
        await self._queue.join()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def dropped(self) -> int:
        return self._dropped

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def _run(self) -> None:
        while True:
            event, handler = await self._queue.get()
            try:
                await self._dispatch(event, handler)
            finally:
                self._queue.task_done()

    async def _dispatch(self, event: DomainEvent, only: EventHandler | None = None) -> None:
        for handler in [only] if only is not None else self._handlers:
            await self._deliver(handler, event)

    async def _deliver(self, handler: EventHandler, event: DomainEvent) -> None:
        max_attempts = max(1, self._config.max_attempts)
        handler_name = getattr(handler, "__qualname__", repr(handler))

        for attempt in range(max_attempts):
            try:
                await handler(event)
                return
            except Exception as exc:
                if attempt < max_attempts - 1:
                    delay = self._config.retry_base_delay_seconds * (2 ** attempt)
                    logger.warning(
                        "Handler %s failed on %s: %s, retrying in %.2fs (%d/%d)",
                        handler_name, event.name, exc, delay, attempt + 1, max_attempts,
                    )
                    await asyncio.sleep(delay)
                    continue
                error = InternalError(
                    f"{handler_name} gave up on {event.name} after {max_attempts} attempts: {exc}"
                )
                if self.dead_letters and len(self.dead_letters) == self.dead_letters.maxlen:
                    evicted = self.dead_letters[0]
                    logger.warning(
                        "Dead letters full, evicting %s for %s",
                        evicted.event.name, evicted.handler_name,
                    )
                self.dead_letters.append(DeadLetter(event, handler, handler_name, error))
                logger.error("%s", error.message, exc_info=exc)
