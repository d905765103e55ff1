from __future__ import annotations

from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from printcraft.domain.models import JobPriority
from printcraft.exceptions import QueueUnavailableError
from printcraft.infrastructure.queue import SqlAlchemyWorkQueue
from tests.helpers.clock import FakeClock


def test_enqueue_is_idempotent_per_job(queue: SqlAlchemyWorkQueue, clock: FakeClock) -> None:
    job_id = uuid4()

    assert queue.enqueue(job_id, JobPriority.STANDARD, now=clock()) is True
    assert queue.enqueue(job_id, JobPriority.STANDARD, now=clock()) is False

    assert queue.depth(now=clock()).total == 1


def test_dequeue_leases_message_until_visibility_timeout(
    queue: SqlAlchemyWorkQueue, clock: FakeClock
) -> None:
    job_id = uuid4()
    queue.enqueue(job_id, JobPriority.STANDARD, now=clock())

    first = queue.dequeue(now=clock())
    assert first is not None
    assert first.job_id == job_id
    assert first.delivery_count == 1
    assert queue.dequeue(now=clock.advance(30)) is None

    redelivered = queue.dequeue(now=clock.advance(61))
    assert redelivered is not None
    assert redelivered.delivery_count == 2
    assert redelivered.receipt != first.receipt


def test_ack_requires_current_receipt(queue: SqlAlchemyWorkQueue, clock: FakeClock) -> None:
    queue.enqueue(uuid4(), JobPriority.STANDARD, now=clock())
    stale = queue.dequeue(now=clock())
    current = queue.dequeue(now=clock.advance(120))

    assert queue.ack(stale) is False
    assert queue.ack(current) is True
    assert queue.depth(now=clock()).total == 0


def test_nack_delays_redelivery(queue: SqlAlchemyWorkQueue, clock: FakeClock) -> None:
    job_id = uuid4()
    queue.enqueue(job_id, JobPriority.STANDARD, now=clock())
    message = queue.dequeue(now=clock())

    assert queue.nack(message, now=clock(), delay_seconds=10) is True
    assert queue.dequeue(now=clock.advance(5)) is None
    depth = queue.depth(now=clock())
    assert (depth.ready, depth.delayed, depth.in_flight) == (0, 1, 0)

    again = queue.dequeue(now=clock.advance(6))
    assert again is not None and again.job_id == job_id


def test_premium_jobs_are_dequeued_first(queue: SqlAlchemyWorkQueue, clock: FakeClock) -> None:
    standard = uuid4()
    premium = uuid4()
    queue.enqueue(standard, JobPriority.STANDARD, now=clock())
    queue.enqueue(premium, JobPriority.PREMIUM, now=clock.advance(10))

    first = queue.dequeue(now=clock())
    second = queue.dequeue(now=clock())

    assert first.job_id == premium
    assert first.priority is JobPriority.PREMIUM
    assert second.job_id == standard


def test_standard_jobs_are_fifo(queue: SqlAlchemyWorkQueue, clock: FakeClock) -> None:
    ids = [uuid4() for _ in range(3)]
    for job_id in ids:
        queue.enqueue(job_id, JobPriority.STANDARD, now=clock.advance(1))

    delivered = [queue.dequeue(now=clock()).job_id for _ in ids]

    assert delivered == ids


def test_enqueue_pulls_delayed_entry_forward(queue: SqlAlchemyWorkQueue, clock: FakeClock) -> None:
    job_id = uuid4()
    queue.enqueue(job_id, JobPriority.STANDARD, now=clock(), delay_seconds=60)
    assert queue.dequeue(now=clock()) is None

    assert queue.enqueue(job_id, JobPriority.STANDARD, now=clock()) is False
    assert queue.dequeue(now=clock()).job_id == job_id


def test_enqueue_does_not_disturb_leased_entry(queue: SqlAlchemyWorkQueue, clock: FakeClock) -> None:
    job_id = uuid4()
    queue.enqueue(job_id, JobPriority.STANDARD, now=clock())
    message = queue.dequeue(now=clock())

    queue.enqueue(job_id, JobPriority.STANDARD, now=clock.advance(1))

    assert queue.dequeue(now=clock()) is None
    assert queue.ack(message) is True


def test_discard_removes_entry(queue: SqlAlchemyWorkQueue, clock: FakeClock) -> None:
    job_id = uuid4()
    queue.enqueue(job_id, JobPriority.STANDARD, now=clock())

    assert queue.discard(job_id) is True
    assert queue.discard(job_id) is False
    assert queue.dequeue(now=clock()) is None


def test_depth_by_priority(queue: SqlAlchemyWorkQueue, clock: FakeClock) -> None:
    queue.enqueue(uuid4(), JobPriority.STANDARD, now=clock())
    queue.enqueue(uuid4(), JobPriority.PREMIUM, now=clock())
    queue.enqueue(uuid4(), JobPriority.PREMIUM, now=clock(), delay_seconds=30)

    premium = queue.depth(now=clock(), priority=JobPriority.PREMIUM)

    assert (premium.ready, premium.delayed) == (1, 1)
    assert queue.depth(now=clock(), priority=JobPriority.STANDARD).ready == 1


def test_database_errors_surface_as_queue_unavailable(clock: FakeClock) -> None:
    def broken_session():
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    queue = SqlAlchemyWorkQueue(broken_session)

    with pytest.raises(QueueUnavailableError):
        queue.enqueue(uuid4(), JobPriority.STANDARD, now=clock())
