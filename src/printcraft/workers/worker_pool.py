"""Run several :class:`GenerationWorker` loops in one process."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence

from .queue_worker import GenerationWorker

logger = logging.getLogger(__name__)


class WorkerPool:
    """Own the worker tasks of a process and share one concurrency limit."""

    def __init__(self, workers: Sequence[GenerationWorker], *, concurrency: int) -> None:
        if not workers:
            raise ValueError("WorkerPool requires at least one worker")
        self.workers = list(workers)
        self.concurrency = max(1, concurrency)
        self._tasks: list[asyncio.Task[None]] = []
        self._shutdown_event: asyncio.Event | None = None

    @classmethod
    def build(
        cls,
        *,
        worker_count: int,
        concurrency: int,
        factory: Callable[[str], GenerationWorker],
    ) -> "WorkerPool":
        workers = [factory(f"worker-{index}") for index in range(max(1, worker_count))]
        return cls(workers, concurrency=concurrency)

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def start(self) -> None:
        if self._tasks:
            return
        shutdown_event = asyncio.Event()
        semaphore = asyncio.Semaphore(self.concurrency)
        for worker in self.workers:
            self._tasks.append(
                asyncio.create_task(
                    worker.run_forever(shutdown_event=shutdown_event, semaphore=semaphore),
                    name=f"printcraft-{worker.worker_id}",
                )
            )
        self._shutdown_event = shutdown_event
        logger.info(
            "worker_pool.started",
            extra={"workers": len(self.workers), "concurrency": self.concurrency},
        )

    async def stop(self, *, grace_seconds: float = 10.0) -> None:
        """Signal shutdown and wait for in-flight steps, cancelling after ``grace_seconds``."""

        if self._shutdown_event is not None:
            self._shutdown_event.set()
        tasks = self._tasks
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=grace_seconds)
            for task in pending:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks = []
        self._shutdown_event = None
        logger.info("worker_pool.stopped")

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """Run until ``shutdown_event`` is set."""

        await self.start()
        try:
            await shutdown_event.wait()
        finally:
            await self.stop()


__all__ = ["WorkerPool"]
