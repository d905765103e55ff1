"""Factories for job records used across tests."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from printcraft.domain.models import (
    GenerationRequest,
    GenerationStyle,
    Job,
    JobPriority,
    JobState,
    Principal,
)
from tests.helpers.clock import START

STANDARD_USER = Principal(owner_id="user-1")
PREMIUM_USER = Principal(owner_id="user-9", tier=JobPriority.PREMIUM)


def make_request(**changes: Any) -> GenerationRequest:
    values: dict[str, Any] = {
        "prompt": "a red bicycle",
        "style": GenerationStyle.MINIMALIST,
    }
    values.update(changes)
    return GenerationRequest(**values)


def make_job(
    *,
    job_id: UUID | None = None,
    owner_id: str = STANDARD_USER.owner_id,
    state: JobState = JobState.PENDING,
    priority: JobPriority = JobPriority.STANDARD,
    created_at: datetime = START,
    request: GenerationRequest | None = None,
    **changes: Any,
) -> Job:
    return Job(
        id=job_id or uuid4(),
        owner_id=owner_id,
        request=request or make_request(),
        state=state,
        priority=priority,
        created_at=created_at,
        updated_at=changes.pop("updated_at", created_at),
        **changes,
    )
