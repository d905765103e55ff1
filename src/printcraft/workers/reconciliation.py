"""Reconciliation sweep re-enqueueing jobs the queue lost track of."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from ..domain.models import Job, JobState
from ..exceptions import JobStateConflictError
from ..infrastructure.queue.base import WorkQueue
from ..repositories.job_repository import JobRepository

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SweepReport:
    pending_requeued: int = 0
    stuck_requeued: int = 0
    skipped: int = 0

    @property
    def total(self) -> int:
        return self.pending_requeued + self.stuck_requeued


class ReconciliationSweep:
    """Find non-terminal jobs whose row stopped moving and hand them back to the queue.

    ``PENDING`` rows older than the grace period never reached the queue (the
    submission crashed or the queue was down); they are enqueued and moved to
    ``QUEUED``. ``QUEUED`` and ``PROCESSING`` rows untouched for longer than the
    stuck threshold are enqueued again. The queue deduplicates by job id, so
    running the sweep twice never creates two work items. Terminal rows are
    never selected.
    """

    def __init__(
        self,
        *,
        repository: JobRepository,
        queue: WorkQueue,
        pending_grace_seconds: float = 30.0,
        stuck_threshold_seconds: float = 120.0,
        batch_size: int = 200,
    ) -> None:
        self.repository = repository
        self.queue = queue
        self.pending_grace = timedelta(seconds=pending_grace_seconds)
        self.stuck_threshold = timedelta(seconds=stuck_threshold_seconds)
        self.batch_size = max(1, batch_size)

    def run_once(self, *, now: datetime) -> SweepReport:
        report = SweepReport()

        pending = self.repository.list_stale(
            states=(JobState.PENDING,),
            updated_before=now - self.pending_grace,
            limit=self.batch_size,
        )
        for job in pending:
            if self._requeue_pending(job, now=now):
                report.pending_requeued += 1
            else:
                report.skipped += 1

        stuck = self.repository.list_stale(
            states=(JobState.QUEUED, JobState.PROCESSING),
            updated_before=now - self.stuck_threshold,
            limit=self.batch_size,
        )
        for job in stuck:
            self.queue.enqueue(job.id, job.priority, now=now)
            report.stuck_requeued += 1
            logger.info(
                "sweep.job.requeued",
                extra={"job_id": str(job.id), "state": job.state.value, "updated_at": job.updated_at.isoformat()},
            )

        if report.total or report.skipped:
            logger.info(
                "sweep.completed",
                extra={
                    "pending_requeued": report.pending_requeued,
                    "stuck_requeued": report.stuck_requeued,
                    "skipped": report.skipped,
                },
            )
        return report

    def _requeue_pending(self, job: Job, *, now: datetime) -> bool:
        self.queue.enqueue(job.id, job.priority, now=now)
        try:
            self.repository.transition(job, JobState.QUEUED, now=now)
        except JobStateConflictError:
            # claimed or cancelled since it was listed; the queue item is harmless
            return False
        logger.info("sweep.pending.requeued", extra={"job_id": str(job.id)})
        return True


__all__ = ["ReconciliationSweep", "SweepReport"]
