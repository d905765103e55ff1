"""Accept generation requests and hand them to the work queue."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from ..domain.models import Job, JobEvent, JobPriority, JobState, Principal, utcnow
from ..exceptions import JobStateConflictError, QueueUnavailableError, QuotaExceededError
from ..infrastructure.queue.base import WorkQueue
from ..repositories.job_repository import JobRepository
from .events import JobEventBroker
from .quota import QuotaChecker
from .validators import validate_generation_request

logger = logging.getLogger(__name__)


class SubmissionService:
    """Validate, persist and enqueue new generation jobs.

    The job row is written before the queue sees it, so a crash between the
    two leaves a ``PENDING`` row that the reconciliation sweep picks up.
    :meth:`submit` returns the record as created; clients observe the
    ``QUEUED`` and later states through the status API.
    """

    def __init__(
        self,
        *,
        repository: JobRepository,
        queue: WorkQueue,
        quota_checker: QuotaChecker,
        events: JobEventBroker | None = None,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], UUID] = uuid4,
    ) -> None:
        self.repository = repository
        self.queue = queue
        self.quota_checker = quota_checker
        self.events = events
        self._clock = clock or utcnow
        self._id_factory = id_factory

    def submit(self, principal: Principal, payload: Mapping[str, Any]) -> Job:
        request = validate_generation_request(payload, principal=principal)
        now = self._clock()
        if self.quota_checker.remaining(principal, now=now) <= 0:
            logger.info("submission.quota.exceeded", extra={"owner_id": principal.owner_id})
            raise QuotaExceededError("generation quota exhausted for the current window")

        priority = JobPriority.PREMIUM if principal.is_premium else JobPriority.STANDARD
        job = self.repository.create(
            Job(
                id=self._id_factory(),
                owner_id=principal.owner_id,
                request=request,
                state=JobState.PENDING,
                priority=priority,
                created_at=now,
                updated_at=now,
            )
        )
        logger.info(
            "submission.job.created",
            extra={"job_id": str(job.id), "owner_id": job.owner_id, "priority": priority.value},
        )
        self._publish(job)

        try:
            self.queue.enqueue(job.id, priority, now=now)
        except QueueUnavailableError:
            logger.warning("submission.enqueue.failed", extra={"job_id": str(job.id)}, exc_info=True)
            return job

        try:
            queued = self.repository.transition(job, JobState.QUEUED, now=self._clock())
        except JobStateConflictError:
            # a worker already claimed the message
            logger.debug("submission.queued.skipped", extra={"job_id": str(job.id)})
        else:
            self._publish(queued)
        return job

    def _publish(self, job: Job) -> None:
        if self.events is not None:
            self.events.publish(JobEvent.from_job(job))


__all__ = ["SubmissionService"]
