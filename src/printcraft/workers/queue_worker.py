"""Queue worker driving generation jobs through the provider and the artifact store."""

from __future__ import annotations

import asyncio
import inspect
import logging
import random
from collections.abc import Awaitable, Callable
from datetime import datetime
from enum import Enum
from typing import Any, TypeVar

from ..domain.backoff import RetryPolicy
from ..domain.models import (
    ArtifactRef,
    ErrorKind,
    Job,
    JobError,
    JobEvent,
    JobState,
    utcnow,
)
from ..exceptions import (
    ImageProcessingError,
    JobStateConflictError,
    QueueUnavailableError,
    RepositoryError,
)
from ..infrastructure.queue.base import QueueMessage, WorkQueue
from ..media.artifact_store import ArtifactStore, artifact_key, read_image_dimensions
from ..media.image_optimizer import ImageOptimizer
from ..providers.base import (
    PermanentProviderError,
    PollStatus,
    ProviderAdapter,
    ProviderOutput,
    TransientProviderError,
)
from ..repositories.job_repository import JobRepository
from ..services.events import JobEventBroker

T = TypeVar("T")


class StepOutcome(str, Enum):
    """What happened to the queue message after one step."""

    ACKED = "acked"
    RESCHEDULED = "rescheduled"
    ABANDONED = "abandoned"


class GenerationWorker:
    """Process one queue message at a time as a step of the job state machine.

    A message never holds a worker for the whole generation. Each delivery
    performs one step (submit, poll or finish) and then acks the message or
    nacks it with a delay: the poll interval while the provider is working,
    the retry backoff after a transient failure.
    """

    def __init__(
        self,
        *,
        repository: JobRepository,
        queue: WorkQueue,
        provider: ProviderAdapter,
        artifact_store: ArtifactStore,
        image_optimizer: ImageOptimizer | None = None,
        retry_policy: RetryPolicy | None = None,
        events: JobEventBroker | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Any] | None = None,
        rng: Callable[[], float] = random.random,
        poll_interval_seconds: float = 5.0,
        idle_sleep_seconds: float = 1.0,
        request_timeout_seconds: float = 30.0,
        worker_id: str = "worker-0",
    ) -> None:
        self.repository = repository
        self.queue = queue
        self.provider = provider
        self.artifact_store = artifact_store
        self.image_optimizer = image_optimizer
        self.retry_policy = retry_policy or RetryPolicy()
        self.events = events
        self.worker_id = worker_id
        self._clock = clock or utcnow
        self._sleep = self._wrap_sleep(sleep)
        self._rng = rng
        self._poll_interval = max(0.0, poll_interval_seconds)
        self._idle_sleep = max(0.01, idle_sleep_seconds)
        self._request_timeout_seconds = max(0.1, request_timeout_seconds)
        self._logger = logging.getLogger(__name__)

    @staticmethod
    def _wrap_sleep(
        sleep: Callable[[float], Any] | None,
    ) -> Callable[[float], Awaitable[None]]:
        if sleep is None:
            return asyncio.sleep

        async def _async_sleep(seconds: float) -> None:
            result = sleep(seconds)
            if inspect.isawaitable(result):
                await result  # type: ignore[no-any-return]

        return _async_sleep

    @staticmethod
    async def _run_sync(func: Callable[..., T], /, *args: Any, **kwargs: Any) -> T:
        """Execute ``func`` in a worker thread to avoid blocking the event loop."""

        return await asyncio.to_thread(func, *args, **kwargs)

    # ------------------------------------------------------------------
    # High-level control flow
    # ------------------------------------------------------------------
    async def run_once(
        self,
        *,
        now: datetime | None = None,
        shutdown_event: asyncio.Event | None = None,
    ) -> bool:
        """Dequeue and process at most one message. Return ``False`` when idle."""

        if shutdown_event is not None and shutdown_event.is_set():
            return False
        try:
            message = await self._run_sync(self.queue.dequeue, now=now or self._clock())
        except QueueUnavailableError:
            self._logger.warning("worker.dequeue.failed", extra={"worker_id": self.worker_id}, exc_info=True)
            return False
        if message is None:
            return False
        await self.process_message(message)
        return True

    async def run_forever(
        self,
        *,
        shutdown_event: asyncio.Event,
        semaphore: asyncio.Semaphore | None = None,
    ) -> None:
        """Continuously process messages until ``shutdown_event`` is set.

        ``semaphore`` is acquired before dequeueing, so a loop never takes a
        message it has no capacity for.
        """

        try:
            while not shutdown_event.is_set():
                try:
                    if semaphore is None:
                        has_message = await self.run_once(shutdown_event=shutdown_event)
                    else:
                        async with semaphore:
                            has_message = await self.run_once(shutdown_event=shutdown_event)
                except Exception:
                    # the message stays leased and is redelivered after the visibility timeout
                    self._logger.exception("worker.step.unexpected_error", extra={"worker_id": self.worker_id})
                    has_message = False
                if not has_message:
                    await self._idle(shutdown_event)
        except asyncio.CancelledError:
            self._logger.debug("GenerationWorker %s cancelled", self.worker_id)
            raise

    async def _idle(self, shutdown_event: asyncio.Event) -> None:
        sleeper = asyncio.ensure_future(self._sleep(self._idle_sleep))
        waiter = asyncio.ensure_future(shutdown_event.wait())
        try:
            await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, waiter):
                if not task.done():
                    task.cancel()

    async def process_message(self, message: QueueMessage) -> StepOutcome:
        """Run one state machine step for ``message``.

        Persistence failures leave the message leased; it is redelivered once
        the visibility timeout expires.
        """

        try:
            return await self._step(message)
        except (RepositoryError, QueueUnavailableError):
            self._logger.exception(
                "worker.step.persistence_error",
                extra={"worker_id": self.worker_id, "job_id": str(message.job_id)},
            )
            return StepOutcome.ABANDONED

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------
    async def _step(self, message: QueueMessage) -> StepOutcome:
        job = await self._run_sync(self.repository.get, message.job_id)
        if job is None or job.is_terminal:
            self._logger.info(
                "worker.job.skipped",
                extra={
                    "job_id": str(message.job_id),
                    "state": job.state.value if job else None,
                },
            )
            return await self._ack(message)

        try:
            job = await self._claim(job)
        except JobStateConflictError:
            return await self._resolve_conflict(message)

        if job.provider_handle is None:
            return await self._submit(job, message)
        return await self._poll(job, message, job.provider_handle)

    async def _claim(self, job: Job) -> Job:
        now = self._clock()
        if job.state is JobState.PENDING:
            job = await self._run_sync(self.repository.transition, job, JobState.QUEUED, now=now)
        if job.state is JobState.QUEUED:
            job = await self._run_sync(
                self.repository.transition,
                job,
                JobState.PROCESSING,
                now=now,
                started_at=now,
            )
            self._logger.info(
                "worker.job.claimed",
                extra={"worker_id": self.worker_id, "job_id": str(job.id)},
            )
            self._publish(job)
            return job
        return await self._run_sync(self.repository.transition, job, JobState.PROCESSING, now=now)

    async def _submit(self, job: Job, message: QueueMessage) -> StepOutcome:
        try:
            result = await self._call_with_timeout(self.provider.submit(job.request), label="submit")
        except PermanentProviderError as exc:
            return await self._fail(job, message, ErrorKind.PROVIDER_REJECTED, str(exc))
        except Exception as exc:
            return await self._retry(job, message, ErrorKind.TRANSIENT_PROVIDER, exc)

        self._logger.info(
            "worker.provider.submitted",
            extra={"job_id": str(job.id), "handle": result.handle},
        )
        try:
            job = await self._run_sync(
                self.repository.transition,
                job,
                JobState.PROCESSING,
                now=self._clock(),
                provider_handle=result.handle,
                progress=0.0,
            )
        except JobStateConflictError:
            return await self._resolve_conflict(message)

        if result.output is not None:
            return await self._finish(job, message, result.output)
        return await self._nack(message, self._poll_interval)

    async def _poll(self, job: Job, message: QueueMessage, handle: str) -> StepOutcome:
        try:
            result = await self._call_with_timeout(self.provider.poll(handle), label="poll")
        except PermanentProviderError as exc:
            return await self._fail(job, message, ErrorKind.PROVIDER_REJECTED, str(exc))
        except Exception as exc:
            return await self._retry(job, message, ErrorKind.TRANSIENT_PROVIDER, exc)

        if result.status is PollStatus.SUCCEEDED:
            if result.output is None:
                return await self._retry(
                    job,
                    message,
                    ErrorKind.TRANSIENT_PROVIDER,
                    TransientProviderError(f"prediction {handle} succeeded without output"),
                )
            return await self._finish(job, message, result.output)

        if result.progress is not None and result.progress != job.progress:
            try:
                job = await self._run_sync(
                    self.repository.transition,
                    job,
                    JobState.PROCESSING,
                    now=self._clock(),
                    progress=result.progress,
                )
            except JobStateConflictError:
                return await self._resolve_conflict(message)
            self._publish(job)
        return await self._nack(message, self._poll_interval)

    async def _finish(self, job: Job, message: QueueMessage, output: ProviderOutput) -> StepOutcome:
        try:
            fetched = await self._call_with_timeout(self.provider.fetch_output(output), label="fetch_output")
        except Exception as exc:
            return await self._retry(job, message, ErrorKind.TRANSIENT_PROVIDER, exc)

        data, content_type = fetched.data, fetched.content_type
        if self.image_optimizer is not None:
            try:
                optimized = await self._run_sync(self.image_optimizer.optimize, data)
            except ImageProcessingError as exc:
                return await self._retry(job, message, ErrorKind.TRANSIENT_PROVIDER, exc)
            data, content_type = optimized.data, optimized.content_type
            dimensions: tuple[int, int] | None = (optimized.width, optimized.height)
        else:
            dimensions = read_image_dimensions(data)

        key = artifact_key(job.owner_id, job.id, content_type)
        try:
            stored = await self._run_sync(
                self.artifact_store.upload,
                key,
                data,
                content_type=content_type,
                metadata={"job_id": str(job.id), "owner_id": job.owner_id},
            )
        except Exception as exc:
            return await self._retry(job, message, ErrorKind.STORAGE_FAILURE, exc)

        width, height = dimensions or (job.request.width, job.request.height)
        artifact = ArtifactRef(
            url=stored.url,
            storage_key=stored.key,
            size_bytes=stored.size_bytes,
            content_type=content_type,
            width=width,
            height=height,
        )
        now = self._clock()
        try:
            job = await self._run_sync(
                self.repository.transition,
                job,
                JobState.COMPLETED,
                now=now,
                result=artifact,
                progress=1.0,
                completed_at=now,
            )
        except JobStateConflictError:
            return await self._discard_late_result(job, message, stored.key)

        self._logger.info(
            "worker.job.completed",
            extra={
                "worker_id": self.worker_id,
                "job_id": str(job.id),
                "attempt": job.attempt,
                "size_bytes": artifact.size_bytes,
            },
        )
        self._publish(job)
        return await self._ack(message)

    async def _discard_late_result(self, job: Job, message: QueueMessage, key: str) -> StepOutcome:
        current = await self._run_sync(self.repository.get, job.id)
        if current is not None and not current.is_terminal:
            return await self._nack(message, self._poll_interval)
        if current is None or current.state is not JobState.COMPLETED:
            try:
                await self._run_sync(self.artifact_store.delete, key)
            except Exception:
                self._logger.warning("worker.artifact.delete_failed", extra={"key": key}, exc_info=True)
            self._logger.info(
                "worker.result.discarded",
                extra={"job_id": str(job.id), "state": current.state.value if current else None},
            )
        return await self._ack(message)

    # ------------------------------------------------------------------
    # Failure handling
    # ------------------------------------------------------------------
    async def _retry(self, job: Job, message: QueueMessage, kind: ErrorKind, exc: BaseException) -> StepOutcome:
        attempt = job.attempt + 1
        detail = str(exc) or exc.__class__.__name__
        if self.retry_policy.is_exhausted(attempt):
            return await self._fail(
                job,
                message,
                ErrorKind.EXHAUSTED_RETRIES,
                f"{kind.value}: {detail}",
                attempt=attempt,
            )

        delay = self.retry_policy.delay_for(attempt, rng=self._rng)
        self._logger.warning(
            "worker.job.retry",
            extra={
                "job_id": str(job.id),
                "attempt": attempt,
                "kind": kind.value,
                "delay_seconds": round(delay, 3),
                "error": detail,
            },
        )
        try:
            await self._run_sync(
                self.repository.transition,
                job,
                JobState.PROCESSING,
                now=self._clock(),
                attempt=attempt,
            )
        except JobStateConflictError:
            return await self._resolve_conflict(message)
        return await self._nack(message, delay)

    async def _fail(
        self,
        job: Job,
        message: QueueMessage,
        kind: ErrorKind,
        detail: str,
        *,
        attempt: int | None = None,
    ) -> StepOutcome:
        now = self._clock()
        changes: dict[str, Any] = {
            "error": JobError(kind=kind, message=detail),
            "completed_at": now,
        }
        if attempt is not None:
            changes["attempt"] = attempt
        try:
            job = await self._run_sync(self.repository.transition, job, JobState.FAILED, now=now, **changes)
        except JobStateConflictError:
            return await self._resolve_conflict(message)
        self._logger.warning(
            "worker.job.failed",
            extra={"job_id": str(job.id), "kind": kind.value, "attempt": job.attempt, "error": detail},
        )
        self._publish(job)
        return await self._ack(message)

    async def _resolve_conflict(self, message: QueueMessage) -> StepOutcome:
        current = await self._run_sync(self.repository.get, message.job_id)
        if current is None or current.is_terminal:
            return await self._ack(message)
        return await self._nack(message, self._poll_interval)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    async def _ack(self, message: QueueMessage) -> StepOutcome:
        await self._run_sync(self.queue.ack, message)
        return StepOutcome.ACKED

    async def _nack(self, message: QueueMessage, delay_seconds: float) -> StepOutcome:
        await self._run_sync(self.queue.nack, message, now=self._clock(), delay_seconds=delay_seconds)
        return StepOutcome.RESCHEDULED

    async def _call_with_timeout(self, awaitable: Awaitable[T], *, label: str) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._request_timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise TimeoutError(
                f"Provider operation {label} timed out after {self._request_timeout_seconds:.1f}s"
            ) from exc

    def _publish(self, job: Job) -> None:
        if self.events is not None:
            self.events.publish(JobEvent.from_job(job))


__all__ = ["GenerationWorker", "StepOutcome"]
