from __future__ import annotations

import asyncio
import threading
from uuid import uuid4

import pytest

from printcraft.domain.models import JobEvent, JobState
from printcraft.services.events import JobEventBroker
from tests.helpers.clock import START


def _event(job_id, state: JobState = JobState.PROCESSING) -> JobEvent:
    return JobEvent(job_id=job_id, state=state, occurred_at=START)


@pytest.mark.asyncio
async def test_subscribers_receive_events_for_their_job_only() -> None:
    broker = JobEventBroker()
    job_id = uuid4()

    async with broker.subscription(job_id) as events:
        broker.publish(_event(uuid4()))
        broker.publish(_event(job_id))

        received = await asyncio.wait_for(events.get(), timeout=1)

    assert received.job_id == job_id
    assert events.empty()
    assert broker.subscriber_count(job_id) == 0


@pytest.mark.asyncio
async def test_publish_from_worker_thread_is_delivered() -> None:
    broker = JobEventBroker()
    job_id = uuid4()

    async with broker.subscription(job_id) as events:
        thread = threading.Thread(target=broker.publish, args=(_event(job_id, JobState.COMPLETED),))
        thread.start()
        thread.join()

        received = await asyncio.wait_for(events.get(), timeout=1)

    assert received.state is JobState.COMPLETED


@pytest.mark.asyncio
async def test_slow_subscriber_drops_overflow() -> None:
    broker = JobEventBroker(max_queue_size=2)
    job_id = uuid4()

    async with broker.subscription(job_id) as events:
        for _ in range(5):
            broker.publish(_event(job_id))

        assert events.qsize() == 2


def test_publish_without_subscribers_is_noop() -> None:
    JobEventBroker().publish(_event(uuid4()))
