"""In-process fan-out of job state changes to push subscribers."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator
from uuid import UUID

from ..domain.models import JobEvent

logger = logging.getLogger(__name__)


class JobEventBroker:
    """Deliver :class:`JobEvent` objects to subscribers of a single job.

    Each subscriber owns a bounded queue. A subscriber that falls behind loses
    the newest events instead of slowing down publishers. ``publish`` may be
    called from worker threads; delivery is then scheduled on the loop that
    owns the subscriptions.
    """

    def __init__(self, *, max_queue_size: int = 32) -> None:
        self._max_queue_size = max_queue_size
        self._subscribers: dict[UUID, set[asyncio.Queue[JobEvent]]] = defaultdict(set)
        self._loop: asyncio.AbstractEventLoop | None = None

    def subscribe(self, job_id: UUID) -> asyncio.Queue[JobEvent]:
        self._loop = asyncio.get_running_loop()
        queue: asyncio.Queue[JobEvent] = asyncio.Queue(maxsize=self._max_queue_size)
        self._subscribers[job_id].add(queue)
        return queue

    def unsubscribe(self, job_id: UUID, queue: asyncio.Queue[JobEvent]) -> None:
        subscribers = self._subscribers.get(job_id)
        if not subscribers:
            return
        subscribers.discard(queue)
        if not subscribers:
            self._subscribers.pop(job_id, None)

    @asynccontextmanager
    async def subscription(self, job_id: UUID) -> AsyncIterator[asyncio.Queue[JobEvent]]:
        queue = self.subscribe(job_id)
        try:
            yield queue
        finally:
            self.unsubscribe(job_id, queue)

    def subscriber_count(self, job_id: UUID) -> int:
        return len(self._subscribers.get(job_id, ()))

    def publish(self, event: JobEvent) -> None:
        if event.job_id not in self._subscribers:
            return
        loop = self._loop
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if loop is not None and running is not loop:
            if loop.is_closed():
                return
            loop.call_soon_threadsafe(self._dispatch, event)
            return
        self._dispatch(event)

    def _dispatch(self, event: JobEvent) -> None:
        for queue in list(self._subscribers.get(event.job_id, ())):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.debug(
                    "events.subscriber.dropped",
                    extra={"job_id": str(event.job_id), "state": event.state.value},
                )


__all__ = ["JobEventBroker"]
