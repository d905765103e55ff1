from __future__ import annotations

from datetime import timedelta

import pytest

from printcraft.domain.models import ArtifactRef, ErrorKind, JobError, JobState
from printcraft.domain.state_machine import InvalidTransitionError
from printcraft.exceptions import IntegrityConstraintViolation, JobStateConflictError
from printcraft.repositories import JobRepository
from tests.helpers.clock import START
from tests.helpers.jobs import make_job, make_request


def test_create_and_get_round_trip(repository: JobRepository) -> None:
    job = make_job(request=make_request(seed=42, params={"num_inference_steps": 25}))

    repository.create(job)
    loaded = repository.get(job.id)

    assert loaded is not None
    assert loaded.state is JobState.PENDING
    assert loaded.request == job.request
    assert loaded.created_at == START
    assert loaded.created_at.tzinfo is not None
    assert loaded.version == 0


def test_get_missing_returns_none(repository: JobRepository) -> None:
    assert repository.get(make_job().id) is None


def test_duplicate_create_is_rejected(repository: JobRepository) -> None:
    job = make_job()
    repository.create(job)

    with pytest.raises(IntegrityConstraintViolation):
        repository.create(job)


def test_transition_bumps_version_and_persists_fields(repository: JobRepository) -> None:
    job = repository.create(make_job())
    now = START + timedelta(seconds=5)

    queued = repository.transition(job, JobState.QUEUED, now=now)
    processing = repository.transition(queued, JobState.PROCESSING, now=now, started_at=now)
    artifact = ArtifactRef(
        url="https://cdn.printcraft.test/artifacts/a.png",
        storage_key="generations/user-1/a.png",
        size_bytes=10,
        content_type="image/png",
        width=1024,
        height=1024,
    )
    completed = repository.transition(
        processing,
        JobState.COMPLETED,
        now=now,
        result=artifact,
        progress=1.0,
        completed_at=now,
    )

    assert [queued.version, processing.version, completed.version] == [1, 2, 3]
    assert completed.result == artifact
    assert completed.started_at == now
    assert completed.updated_at == now
    assert repository.get(job.id) == completed


def test_transition_with_stale_snapshot_conflicts(repository: JobRepository) -> None:
    job = repository.create(make_job())
    repository.transition(job, JobState.QUEUED, now=START)

    with pytest.raises(JobStateConflictError):
        repository.transition(job, JobState.CANCELLED, now=START)

    assert repository.get(job.id).state is JobState.QUEUED


def test_transition_refuses_illegal_moves(repository: JobRepository) -> None:
    job = repository.create(make_job())
    queued = repository.transition(job, JobState.QUEUED, now=START)

    with pytest.raises(InvalidTransitionError):
        repository.transition(queued, JobState.PENDING, now=START)


def test_cancel_beats_late_completion(repository: JobRepository) -> None:
    job = repository.create(make_job())
    processing = repository.transition(
        repository.transition(job, JobState.QUEUED, now=START),
        JobState.PROCESSING,
        now=START,
    )
    repository.transition(
        processing,
        JobState.CANCELLED,
        now=START,
        error=JobError(kind=ErrorKind.CANCELLED, message="Cancelled by the owner."),
    )

    with pytest.raises(JobStateConflictError):
        repository.transition(processing, JobState.COMPLETED, now=START)

    stored = repository.get(job.id)
    assert stored.state is JobState.CANCELLED
    assert stored.error.kind is ErrorKind.CANCELLED


def test_list_stale_skips_recent_and_terminal_rows(repository: JobRepository) -> None:
    old = repository.create(make_job(created_at=START - timedelta(minutes=10)))
    repository.create(make_job(created_at=START))
    done = repository.create(
        make_job(state=JobState.COMPLETED, created_at=START - timedelta(minutes=10))
    )

    stale = repository.list_stale(
        states=(JobState.PENDING, JobState.COMPLETED),
        updated_before=START - timedelta(minutes=1),
        limit=10,
    )

    assert [job.id for job in stale] == [old.id]
    assert done.id not in {job.id for job in stale}


def test_list_for_owner_is_newest_first_and_scoped(repository: JobRepository) -> None:
    for minutes in range(3):
        repository.create(make_job(created_at=START + timedelta(minutes=minutes)))
    repository.create(make_job(owner_id="someone-else"))

    page = repository.list_for_owner("user-1", offset=0, limit=2)

    assert page.total == 3
    assert [job.created_at for job in page.items] == [
        START + timedelta(minutes=2),
        START + timedelta(minutes=1),
    ]


def test_count_created_since_excludes_states(repository: JobRepository) -> None:
    repository.create(make_job(created_at=START))
    repository.create(make_job(state=JobState.FAILED, created_at=START))
    repository.create(make_job(created_at=START - timedelta(days=2)))

    count = repository.count_created_since(
        "user-1",
        since=START - timedelta(hours=24),
        exclude_states=(JobState.FAILED, JobState.CANCELLED),
    )

    assert count == 1


def test_count_by_state_reports_every_state(repository: JobRepository) -> None:
    repository.create(make_job())
    repository.create(make_job(state=JobState.COMPLETED))

    counts = repository.count_by_state()

    assert counts[JobState.PENDING] == 1
    assert counts[JobState.COMPLETED] == 1
    assert counts[JobState.PROCESSING] == 0
    assert set(counts) == set(JobState)


def test_completion_durations(repository: JobRepository) -> None:
    repository.create(
        make_job(
            state=JobState.COMPLETED,
            started_at=START,
            completed_at=START + timedelta(seconds=12),
        )
    )
    repository.create(make_job(state=JobState.FAILED, started_at=START, completed_at=START))

    durations = repository.completion_durations(since=START - timedelta(minutes=15))

    assert durations == [("standard", 12.0)]
