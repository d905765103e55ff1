"""Persistence layer for generation jobs.

Every state change goes through :meth:`JobRepository.transition`, a single
``UPDATE ... WHERE id = :id AND state = :state AND version = :version``. When
no row matches, another writer got there first and
:class:`~printcraft.exceptions.JobStateConflictError` is raised; callers re-read
the job and decide what to do.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from ..db.db_models import GenerationJobModel
from ..domain.models import (
    ArtifactRef,
    ErrorKind,
    GenerationRequest,
    Job,
    JobError,
    JobPriority,
    JobState,
)
from ..domain.state_machine import ensure_transition
from ..exceptions import JobStateConflictError, handle_sqlalchemy_errors


class _Unset:
    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return "UNSET"


UNSET: Any = _Unset()


@dataclass(slots=True)
class OwnerJobPage:
    """Slice of an owner's jobs ordered from newest to oldest."""

    items: list[Job]
    total: int


class JobRepository:
    """Manage ``generation_job`` records."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def create(self, job: Job) -> Job:
        with handle_sqlalchemy_errors(entity="generation_job"):
            with self._session_factory() as session:
                session.add(self._to_model(job))
                session.commit()
        return job

    def get(self, job_id: UUID) -> Job | None:
        with handle_sqlalchemy_errors(entity="generation_job"):
            with self._session_factory() as session:
                model = session.get(GenerationJobModel, str(job_id))
                return self._to_domain(model) if model else None

    def transition(
        self,
        job: Job,
        target: JobState,
        *,
        now: datetime,
        attempt: int = UNSET,
        provider_handle: str | None = UNSET,
        progress: float | None = UNSET,
        result: ArtifactRef | None = UNSET,
        error: JobError | None = UNSET,
        started_at: datetime | None = UNSET,
        completed_at: datetime | None = UNSET,
    ) -> Job:
        """Move ``job`` to ``target`` if nobody changed the row since it was read.

        ``job`` must be the snapshot the caller based its decision on. The
        returned job carries the incremented ``version``.
        """

        ensure_transition(job.state, target)
        values: dict[str, Any] = {
            "state": target.value,
            "version": job.version + 1,
            "updated_at": now,
        }
        if attempt is not UNSET:
            values["attempt"] = attempt
        if provider_handle is not UNSET:
            values["provider_handle"] = provider_handle
        if progress is not UNSET:
            values["progress"] = progress
        if result is not UNSET:
            values["result_json"] = json.dumps(result.to_dict()) if result else None
        if error is not UNSET:
            values["error_kind"] = error.kind.value if error else None
            values["error_message"] = error.message if error else None
        if started_at is not UNSET:
            values["started_at"] = started_at
        if completed_at is not UNSET:
            values["completed_at"] = completed_at

        with handle_sqlalchemy_errors(entity="generation_job"):
            with self._session_factory() as session:
                outcome = session.execute(
                    update(GenerationJobModel)
                    .where(
                        GenerationJobModel.id == str(job.id),
                        GenerationJobModel.state == job.state.value,
                        GenerationJobModel.version == job.version,
                    )
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if outcome.rowcount != 1:
                    session.rollback()
                    raise JobStateConflictError(
                        f"generation_job '{job.id}' changed concurrently "
                        f"(expected {job.state.value} v{job.version})"
                    )
                session.commit()
                model = session.get(GenerationJobModel, str(job.id), populate_existing=True)
                assert model is not None
                return self._to_domain(model)

    def list_stale(
        self,
        *,
        states: Iterable[JobState],
        updated_before: datetime,
        limit: int,
    ) -> list[Job]:
        """Return non-terminal jobs in ``states`` whose row has not moved since ``updated_before``."""

        state_values = [state.value for state in states if not state.is_terminal]
        if not state_values:
            return []
        with handle_sqlalchemy_errors(entity="generation_job"):
            with self._session_factory() as session:
                rows = session.scalars(
                    select(GenerationJobModel)
                    .where(
                        GenerationJobModel.state.in_(state_values),
                        GenerationJobModel.updated_at < updated_before,
                    )
                    .order_by(GenerationJobModel.updated_at)
                    .limit(limit)
                ).all()
                return [self._to_domain(row) for row in rows]

    def list_for_owner(self, owner_id: str, *, offset: int, limit: int) -> OwnerJobPage:
        with handle_sqlalchemy_errors(entity="generation_job"):
            with self._session_factory() as session:
                total = session.scalar(
                    select(func.count())
                    .select_from(GenerationJobModel)
                    .where(GenerationJobModel.owner_id == owner_id)
                )
                rows = session.scalars(
                    select(GenerationJobModel)
                    .where(GenerationJobModel.owner_id == owner_id)
                    .order_by(GenerationJobModel.created_at.desc(), GenerationJobModel.id)
                    .offset(offset)
                    .limit(limit)
                ).all()
                return OwnerJobPage(items=[self._to_domain(row) for row in rows], total=int(total or 0))

    def count_created_since(
        self,
        owner_id: str,
        *,
        since: datetime,
        exclude_states: Iterable[JobState] = (),
    ) -> int:
        """Count the owner's jobs created at or after ``since``."""

        query = (
            select(func.count())
            .select_from(GenerationJobModel)
            .where(
                GenerationJobModel.owner_id == owner_id,
                GenerationJobModel.created_at >= since,
            )
        )
        excluded = [state.value for state in exclude_states]
        if excluded:
            query = query.where(GenerationJobModel.state.not_in(excluded))
        with handle_sqlalchemy_errors(entity="generation_job"):
            with self._session_factory() as session:
                return int(session.scalar(query) or 0)

    def count_by_state(self) -> dict[JobState, int]:
        with handle_sqlalchemy_errors(entity="generation_job"):
            with self._session_factory() as session:
                rows = session.execute(
                    select(GenerationJobModel.state, func.count()).group_by(GenerationJobModel.state)
                ).all()
        counts = {state: 0 for state in JobState}
        for state, count in rows:
            counts[JobState(state)] = int(count)
        return counts

    def completion_durations(self, *, since: datetime) -> list[tuple[str, float]]:
        """Return ``(priority, seconds from started_at to completed_at)`` of jobs completed since ``since``."""

        with handle_sqlalchemy_errors(entity="generation_job"):
            with self._session_factory() as session:
                rows = session.execute(
                    select(
                        GenerationJobModel.priority,
                        GenerationJobModel.started_at,
                        GenerationJobModel.completed_at,
                    ).where(
                        GenerationJobModel.state == JobState.COMPLETED.value,
                        GenerationJobModel.completed_at >= since,
                        GenerationJobModel.started_at.is_not(None),
                    )
                ).all()
        return [
            (priority, max(0.0, (completed_at - started_at).total_seconds()))
            for priority, started_at, completed_at in rows
        ]

    # Mapping ------------------------------------------------------------

    @staticmethod
    def _to_model(job: Job) -> GenerationJobModel:
        return GenerationJobModel(
            id=str(job.id),
            owner_id=job.owner_id,
            state=job.state.value,
            priority=job.priority.value,
            request_json=json.dumps(job.request.to_dict()),
            attempt=job.attempt,
            version=job.version,
            provider_handle=job.provider_handle,
            progress=job.progress,
            result_json=json.dumps(job.result.to_dict()) if job.result else None,
            error_kind=job.error.kind.value if job.error else None,
            error_message=job.error.message if job.error else None,
            created_at=job.created_at,
            updated_at=job.updated_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
        )

    @staticmethod
    def _to_domain(model: GenerationJobModel) -> Job:
        error = None
        if model.error_kind:
            error = JobError(kind=ErrorKind(model.error_kind), message=model.error_message or "")
        return Job(
            id=UUID(model.id),
            owner_id=model.owner_id,
            request=GenerationRequest.from_dict(json.loads(model.request_json)),
            state=JobState(model.state),
            priority=JobPriority(model.priority),
            created_at=model.created_at,
            updated_at=model.updated_at,
            attempt=model.attempt,
            version=model.version,
            provider_handle=model.provider_handle,
            progress=model.progress,
            result=ArtifactRef.from_dict(json.loads(model.result_json)) if model.result_json else None,
            error=error,
            started_at=model.started_at,
            completed_at=model.completed_at,
        )


__all__ = ["JobRepository", "OwnerJobPage", "UNSET"]
