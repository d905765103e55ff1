"""Prometheus metrics exporter without external dependencies."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable, Sequence

from ..domain.models import JobPriority, JobState, utcnow
from ..infrastructure.queue.base import QueueDepth, WorkQueue
from ..repositories.job_repository import JobRepository

BUCKETS = [5, 10, 20, 30, 45, 60, 90, 120, 300]


@dataclass(slots=True)
class DurationSample:
    priority: str
    seconds: float


@dataclass(slots=True)
class MetricsSnapshot:
    queue_depth: dict[JobPriority, QueueDepth]
    jobs_by_state: dict[JobState, int]
    durations: Sequence[DurationSample]
    window_minutes: int


class MetricsExporter:
    """Collects queue and job statistics and renders them as Prometheus text format."""

    def __init__(
        self,
        repository: JobRepository,
        queue: WorkQueue,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repository = repository
        self._queue = queue
        self._clock = clock or utcnow

    def collect(self, window_minutes: int = 15) -> str:
        """Build metrics text for Prometheus scraping."""
        window_minutes = max(1, window_minutes)
        now = self._clock()
        snapshot = MetricsSnapshot(
            queue_depth={priority: self._queue.depth(now=now, priority=priority) for priority in JobPriority},
            jobs_by_state=self._repository.count_by_state(),
            durations=[
                DurationSample(priority=priority, seconds=seconds)
                for priority, seconds in self._repository.completion_durations(
                    since=now - timedelta(minutes=window_minutes)
                )
            ],
            window_minutes=window_minutes,
        )
        return format_prometheus(snapshot)


def format_prometheus(snapshot: MetricsSnapshot) -> str:
    """Render metrics snapshot into Prometheus text format."""
    lines: list[str] = []

    lines.append("# HELP generation_queue_depth Work queue entries by priority and status.")
    lines.append("# TYPE generation_queue_depth gauge")
    for priority, depth in snapshot.queue_depth.items():
        for status, value in (("ready", depth.ready), ("delayed", depth.delayed), ("in_flight", depth.in_flight)):
            lines.append(
                f'generation_queue_depth{{priority="{priority.value}",status="{status}"}} {value}'
            )

    lines.append("# HELP generation_jobs Generation jobs by state.")
    lines.append("# TYPE generation_jobs gauge")
    for state, count in snapshot.jobs_by_state.items():
        lines.append(f'generation_jobs{{state="{state.value}"}} {count}')

    lines.extend(_format_histogram(snapshot.durations))

    return "\n".join(lines) + "\n"


def _format_histogram(durations: Sequence[DurationSample]) -> Iterable[str]:
    """Render histogram buckets, sum and count for generation duration."""
    lines: list[str] = [
        "# HELP generation_duration_seconds Time from claim to completion of recently completed jobs.",
        "# TYPE generation_duration_seconds histogram",
    ]
    grouped: dict[str, list[float]] = defaultdict(list)
    for sample in durations:
        grouped[sample.priority].append(sample.seconds)

    # every priority gets a series, even without samples
    for priority in JobPriority:
        samples_sorted = sorted(grouped.get(priority.value, []))
        count = len(samples_sorted)
        idx = 0
        for bucket in BUCKETS:
            while idx < count and samples_sorted[idx] <= bucket:
                idx += 1
            lines.append(
                f'generation_duration_seconds_bucket{{priority="{priority.value}",le="{bucket}"}} {idx}'
            )
        lines.append(f'generation_duration_seconds_bucket{{priority="{priority.value}",le="+Inf"}} {count}')
        lines.append(f'generation_duration_seconds_sum{{priority="{priority.value}"}} {sum(samples_sorted):.6f}')
        lines.append(f'generation_duration_seconds_count{{priority="{priority.value}"}} {count}')

    return lines


__all__ = ["BUCKETS", "DurationSample", "MetricsExporter", "MetricsSnapshot", "format_prometheus"]
