from __future__ import annotations

from datetime import timedelta

import pytest

from printcraft.domain.models import ArtifactRef, ErrorKind, JobError, JobState, Principal
from printcraft.exceptions import NotFoundError
from printcraft.infrastructure.queue import SqlAlchemyWorkQueue
from printcraft.repositories import JobRepository
from printcraft.services.status_service import (
    EXHAUSTED_RETRIES_MESSAGE,
    MAX_ERROR_MESSAGE_LENGTH,
    StatusService,
    project,
)
from tests.helpers.clock import START, FakeClock
from tests.helpers.jobs import STANDARD_USER, make_job


@pytest.fixture
def service(repository: JobRepository, queue: SqlAlchemyWorkQueue, clock: FakeClock) -> StatusService:
    return StatusService(repository=repository, queue=queue, clock=clock)


def test_get_returns_projection(service: StatusService, repository: JobRepository) -> None:
    job = repository.create(make_job(state=JobState.PROCESSING, progress=0.4, attempt=1))

    projection = service.get(job.id, STANDARD_USER)

    assert projection.id == job.id
    assert projection.state is JobState.PROCESSING
    assert projection.progress == 0.4
    assert projection.result_url is None
    assert projection.to_dict()["state"] == "PROCESSING"


def test_foreign_job_looks_missing(service: StatusService, repository: JobRepository) -> None:
    job = repository.create(make_job(owner_id="someone-else"))

    with pytest.raises(NotFoundError):
        service.get(job.id, STANDARD_USER)


def test_completed_projection_exposes_result(service: StatusService, repository: JobRepository) -> None:
    artifact = ArtifactRef(
        url="https://cdn.printcraft.test/artifacts/a.png",
        storage_key="generations/user-1/a.png",
        size_bytes=2048,
        content_type="image/png",
        width=1024,
        height=1024,
    )
    job = repository.create(make_job(state=JobState.COMPLETED, result=artifact, progress=1.0))

    payload = service.get(job.id, STANDARD_USER).to_dict()

    assert payload["result_url"] == artifact.url
    assert payload["result"] == {"size_bytes": 2048, "content_type": "image/png", "width": 1024, "height": 1024}
    assert "storage_key" not in payload["result"]


def test_error_messages_are_sanitised() -> None:
    exhausted = make_job(
        state=JobState.FAILED,
        error=JobError(kind=ErrorKind.EXHAUSTED_RETRIES, message="TRANSIENT_PROVIDER: 503 from upstream"),
    )
    rejected = make_job(
        state=JobState.FAILED,
        error=JobError(kind=ErrorKind.PROVIDER_REJECTED, message="x" * 1000),
    )

    assert project(exhausted).error == {"kind": "EXHAUSTED_RETRIES", "message": EXHAUSTED_RETRIES_MESSAGE}
    assert len(project(rejected).error["message"]) == MAX_ERROR_MESSAGE_LENGTH


def test_list_for_owner_paginates(service: StatusService, repository: JobRepository) -> None:
    for minutes in range(5):
        repository.create(make_job(created_at=START + timedelta(minutes=minutes)))

    page = service.list_for_owner(STANDARD_USER, page=2, limit=2)

    assert page.total == 5
    assert (page.page, page.limit) == (2, 2)
    assert [item.created_at for item in page.items] == [
        START + timedelta(minutes=2),
        START + timedelta(minutes=1),
    ]


def test_list_limit_is_clamped(service: StatusService) -> None:
    page = service.list_for_owner(Principal(owner_id="nobody"), page=0, limit=1000)

    assert (page.page, page.limit, page.total) == (1, 100, 0)


def test_cancel_queued_job_discards_queue_item(
    service: StatusService,
    repository: JobRepository,
    queue: SqlAlchemyWorkQueue,
    clock: FakeClock,
) -> None:
    job = repository.create(make_job(state=JobState.QUEUED))
    queue.enqueue(job.id, job.priority, now=clock())

    projection = service.cancel(job.id, STANDARD_USER)

    assert projection.state is JobState.CANCELLED
    assert projection.error["kind"] == "CANCELLED"
    stored = repository.get(job.id)
    assert stored.completed_at == clock()
    assert queue.depth(now=clock()).total == 0


def test_cancel_terminal_job_is_a_no_op(service: StatusService, repository: JobRepository) -> None:
    job = repository.create(make_job(state=JobState.COMPLETED, progress=1.0))

    projection = service.cancel(job.id, STANDARD_USER)

    assert projection.state is JobState.COMPLETED
    assert repository.get(job.id).version == job.version


def test_cancel_foreign_job_is_not_found(service: StatusService, repository: JobRepository) -> None:
    job = repository.create(make_job(owner_id="someone-else"))

    with pytest.raises(NotFoundError):
        service.cancel(job.id, STANDARD_USER)
    assert repository.get(job.id).state is JobState.PENDING
