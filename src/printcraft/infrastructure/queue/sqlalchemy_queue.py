"""Database-backed work queue.

The queue lives in the ``queue_item`` table next to the job records. On
PostgreSQL the dequeue query takes the row with ``FOR UPDATE SKIP LOCKED`` so
that concurrent workers never block on each other. SQLite ignores the locking
clause; there the conditional lease update (matching the previous receipt)
keeps two workers from leasing the same row.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID, uuid4

from sqlalchemy import and_, delete, func, or_, select, true, update
from sqlalchemy import exc as sa_exc
from sqlalchemy.orm import Session

from ...db.db_models import QueueItemModel
from ...domain.models import JobPriority
from ...exceptions import QueueUnavailableError
from .base import QueueDepth, QueueMessage, WorkQueue

_LEASE_RETRIES = 3


@dataclass(slots=True)
class QueueConfig:
    """Tuning knobs of the database queue."""

    visibility_timeout_seconds: float = 90.0
    premium_boost_seconds: float = 30.0


class SqlAlchemyWorkQueue(WorkQueue):
    """Concrete :class:`WorkQueue` on top of a SQLAlchemy session factory."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        config: QueueConfig | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.config = config or QueueConfig()

    # Public API ---------------------------------------------------------

    def enqueue(
        self,
        job_id: UUID,
        priority: JobPriority,
        *,
        now: datetime,
        delay_seconds: float = 0.0,
    ) -> bool:
        available_at = now + timedelta(seconds=max(0.0, delay_seconds))
        sort_key = self._sort_key(available_at, priority)
        with self._operation("enqueue") as session:
            existing = session.get(QueueItemModel, str(job_id))
            if existing is not None:
                is_leased = existing.leased_until is not None and existing.leased_until > now
                if not is_leased and available_at < existing.available_at:
                    existing.available_at = available_at
                    existing.sort_key = min(existing.sort_key, sort_key)
                    session.commit()
                return False
            session.add(
                QueueItemModel(
                    job_id=str(job_id),
                    priority=priority.value,
                    available_at=available_at,
                    sort_key=sort_key,
                    leased_until=None,
                    receipt=None,
                    delivery_count=0,
                    enqueued_at=now,
                )
            )
            try:
                session.commit()
            except sa_exc.IntegrityError:
                # concurrent enqueue of the same job
                session.rollback()
                return False
        return True

    def dequeue(self, *, now: datetime) -> QueueMessage | None:
        lease_until = now + timedelta(seconds=self.config.visibility_timeout_seconds)
        with self._operation("dequeue") as session:
            for _ in range(_LEASE_RETRIES):
                row = session.scalars(
                    select(QueueItemModel)
                    .where(self._is_ready(now))
                    .order_by(QueueItemModel.sort_key, QueueItemModel.enqueued_at)
                    .limit(1)
                    .with_for_update(skip_locked=True)
                ).first()
                if row is None:
                    session.rollback()
                    return None
                previous_receipt = row.receipt
                receipt = uuid4().hex
                leased = session.execute(
                    update(QueueItemModel)
                    .where(
                        QueueItemModel.job_id == row.job_id,
                        QueueItemModel.receipt == previous_receipt
                        if previous_receipt is not None
                        else QueueItemModel.receipt.is_(None),
                    )
                    .values(
                        leased_until=lease_until,
                        receipt=receipt,
                        delivery_count=QueueItemModel.delivery_count + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
                if leased.rowcount != 1:
                    session.rollback()
                    continue
                message = QueueMessage(
                    job_id=UUID(row.job_id),
                    receipt=receipt,
                    priority=JobPriority(row.priority),
                    delivery_count=row.delivery_count + 1,
                    enqueued_at=row.enqueued_at,
                )
                session.commit()
                return message
        return None

    def ack(self, message: QueueMessage) -> bool:
        with self._operation("ack") as session:
            outcome = session.execute(
                delete(QueueItemModel).where(
                    QueueItemModel.job_id == str(message.job_id),
                    QueueItemModel.receipt == message.receipt,
                )
            )
            session.commit()
            return outcome.rowcount == 1

    def nack(self, message: QueueMessage, *, now: datetime, delay_seconds: float) -> bool:
        available_at = now + timedelta(seconds=max(0.0, delay_seconds))
        with self._operation("nack") as session:
            outcome = session.execute(
                update(QueueItemModel)
                .where(
                    QueueItemModel.job_id == str(message.job_id),
                    QueueItemModel.receipt == message.receipt,
                )
                .values(
                    available_at=available_at,
                    sort_key=self._sort_key(available_at, message.priority),
                    leased_until=None,
                    receipt=None,
                )
                .execution_options(synchronize_session=False)
            )
            session.commit()
            return outcome.rowcount == 1

    def discard(self, job_id: UUID) -> bool:
        with self._operation("discard") as session:
            outcome = session.execute(
                delete(QueueItemModel).where(QueueItemModel.job_id == str(job_id))
            )
            session.commit()
            return outcome.rowcount == 1

    def depth(self, *, now: datetime, priority: JobPriority | None = None) -> QueueDepth:
        idle = or_(QueueItemModel.leased_until.is_(None), QueueItemModel.leased_until <= now)
        scope = QueueItemModel.priority == priority.value if priority is not None else true()

        def count(condition) -> int:
            return int(
                session.scalar(
                    select(func.count()).select_from(QueueItemModel).where(scope, condition)
                )
                or 0
            )

        with self._operation("depth") as session:
            ready = count(self._is_ready(now))
            delayed = count(and_(idle, QueueItemModel.available_at > now))
            in_flight = count(QueueItemModel.leased_until > now)
        return QueueDepth(ready=ready, delayed=delayed, in_flight=in_flight)

    # Helpers ------------------------------------------------------------

    def _sort_key(self, available_at: datetime, priority: JobPriority) -> datetime:
        if priority is JobPriority.PREMIUM:
            return available_at - timedelta(seconds=self.config.premium_boost_seconds)
        return available_at

    @staticmethod
    def _is_ready(now: datetime):
        return and_(
            QueueItemModel.available_at <= now,
            or_(QueueItemModel.leased_until.is_(None), QueueItemModel.leased_until <= now),
        )

    @contextmanager
    def _operation(self, name: str) -> Iterator[Session]:
        try:
            with self._session_factory() as session:
                yield session
        except sa_exc.SQLAlchemyError as exc:
            raise QueueUnavailableError(f"failed to {name} queue item") from exc


__all__ = ["QueueConfig", "SqlAlchemyWorkQueue"]
