"""Read and cancel generation jobs on behalf of their owners."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from ..domain.models import ErrorKind, Job, JobError, JobEvent, JobState, Principal, utcnow
from ..exceptions import JobStateConflictError, QueueUnavailableError, ensure_found
from ..infrastructure.queue.base import WorkQueue
from ..repositories.job_repository import JobRepository
from .events import JobEventBroker

logger = logging.getLogger(__name__)

MAX_ERROR_MESSAGE_LENGTH = 300
EXHAUSTED_RETRIES_MESSAGE = "The image could not be generated right now. Please try again later."
CANCELLED_MESSAGE = "Cancelled by the owner."
_CANCEL_ATTEMPTS = 5


@dataclass(frozen=True, slots=True)
class JobProjection:
    """Client-facing view of a job."""

    id: UUID
    state: JobState
    progress: float | None
    result_url: str | None
    result: dict[str, Any] | None
    error: dict[str, str] | None
    attempt: int
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "state": self.state.value,
            "progress": self.progress,
            "result_url": self.result_url,
            "result": self.result,
            "error": self.error,
            "attempt": self.attempt,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass(frozen=True, slots=True)
class ProjectionPage:
    items: list[JobProjection]
    page: int
    limit: int
    total: int


def sanitize_error(error: JobError) -> dict[str, str]:
    if error.kind is ErrorKind.EXHAUSTED_RETRIES:
        message = EXHAUSTED_RETRIES_MESSAGE
    else:
        message = error.message[:MAX_ERROR_MESSAGE_LENGTH]
    return {"kind": error.kind.value, "message": message}


def project(job: Job) -> JobProjection:
    result = None
    if job.result is not None:
        result = {
            "size_bytes": job.result.size_bytes,
            "content_type": job.result.content_type,
            "width": job.result.width,
            "height": job.result.height,
        }
    return JobProjection(
        id=job.id,
        state=job.state,
        progress=job.progress,
        result_url=job.result.url if job.result else None,
        result=result,
        error=sanitize_error(job.error) if job.error else None,
        attempt=job.attempt,
        created_at=job.created_at,
        updated_at=job.updated_at,
        completed_at=job.completed_at,
    )


class StatusService:
    def __init__(
        self,
        *,
        repository: JobRepository,
        queue: WorkQueue | None = None,
        events: JobEventBroker | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.repository = repository
        self.queue = queue
        self.events = events
        self._clock = clock or utcnow

    def get(self, job_id: UUID, principal: Principal) -> JobProjection:
        """Return the projection of ``job_id``; foreign jobs look like missing ones."""

        return project(self._load_owned(job_id, principal))

    def list_for_owner(self, principal: Principal, *, page: int = 1, limit: int = 20) -> ProjectionPage:
        page = max(1, page)
        limit = max(1, min(limit, 100))
        result = self.repository.list_for_owner(
            principal.owner_id,
            offset=(page - 1) * limit,
            limit=limit,
        )
        return ProjectionPage(
            items=[project(job) for job in result.items],
            page=page,
            limit=limit,
            total=result.total,
        )

    def cancel(self, job_id: UUID, principal: Principal) -> JobProjection:
        """Cancel a non-terminal job. Terminal jobs are returned unchanged."""

        for _ in range(_CANCEL_ATTEMPTS):
            job = self._load_owned(job_id, principal)
            if job.is_terminal:
                return project(job)
            now = self._clock()
            try:
                job = self.repository.transition(
                    job,
                    JobState.CANCELLED,
                    now=now,
                    error=JobError(kind=ErrorKind.CANCELLED, message=CANCELLED_MESSAGE),
                    completed_at=now,
                )
            except JobStateConflictError:
                continue
            logger.info("status.job.cancelled", extra={"job_id": str(job.id), "owner_id": job.owner_id})
            self._discard_queue_item(job.id)
            if self.events is not None:
                self.events.publish(JobEvent.from_job(job))
            return project(job)
        # the row kept changing under us; report whatever it is now
        return project(self._load_owned(job_id, principal))

    def _load_owned(self, job_id: UUID, principal: Principal) -> Job:
        job = self.repository.get(job_id)
        if job is not None and job.owner_id != principal.owner_id:
            job = None
        return ensure_found(job, entity="generation", identifier=str(job_id))

    def _discard_queue_item(self, job_id: UUID) -> None:
        if self.queue is None:
            return
        try:
            self.queue.discard(job_id)
        except QueueUnavailableError:
            logger.warning("status.queue.discard_failed", extra={"job_id": str(job_id)}, exc_info=True)


__all__ = [
    "EXHAUSTED_RETRIES_MESSAGE",
    "JobProjection",
    "ProjectionPage",
    "StatusService",
    "project",
    "sanitize_error",
]
