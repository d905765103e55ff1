"""Work queue contract shared by the submission API, the sweep and the workers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from ...domain.models import JobPriority


@dataclass(frozen=True, slots=True)
class QueueMessage:
    """A leased queue entry. ``receipt`` identifies this particular delivery."""

    job_id: UUID
    receipt: str
    priority: JobPriority
    delivery_count: int
    enqueued_at: datetime


@dataclass(frozen=True, slots=True)
class QueueDepth:
    ready: int
    delayed: int
    in_flight: int

    @property
    def total(self) -> int:
        return self.ready + self.delayed + self.in_flight


class WorkQueue(ABC):
    """At-least-once queue keyed by job id.

    A job has at most one entry. Enqueueing a job that already has an entry is a
    no-op apart from pulling a waiting entry's availability forward. A dequeued
    entry is hidden for the visibility timeout and becomes deliverable again if
    neither :meth:`ack` nor :meth:`nack` arrives in time.
    """

    @abstractmethod
    def enqueue(
        self,
        job_id: UUID,
        priority: JobPriority,
        *,
        now: datetime,
        delay_seconds: float = 0.0,
    ) -> bool:
        """Add ``job_id``; return ``False`` if it was already present."""

    @abstractmethod
    def dequeue(self, *, now: datetime) -> QueueMessage | None:
        """Lease the next ready entry, premium first, or return ``None``."""

    @abstractmethod
    def ack(self, message: QueueMessage) -> bool:
        """Remove the entry. Stale receipts are ignored and return ``False``."""

    @abstractmethod
    def nack(self, message: QueueMessage, *, now: datetime, delay_seconds: float) -> bool:
        """Release the lease and make the entry visible after ``delay_seconds``."""

    @abstractmethod
    def discard(self, job_id: UUID) -> bool:
        """Drop the entry for ``job_id`` regardless of its lease."""

    @abstractmethod
    def depth(self, *, now: datetime, priority: JobPriority | None = None) -> QueueDepth:
        """Count entries, optionally restricted to one priority class."""


__all__ = ["QueueDepth", "QueueMessage", "WorkQueue"]
