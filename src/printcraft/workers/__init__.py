"""Background workers of the generation pipeline."""

from .queue_worker import GenerationWorker, StepOutcome
from .reconciliation import ReconciliationSweep, SweepReport
from .worker_pool import WorkerPool

__all__ = ["GenerationWorker", "ReconciliationSweep", "StepOutcome", "SweepReport", "WorkerPool"]
