"""Pydantic response schemas for the generations API."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel


class GenerationAccepted(BaseModel):
    id: UUID
    state: str


class GenerationError(BaseModel):
    kind: str
    message: str


class GenerationStatusResponse(BaseModel):
    id: UUID
    state: str
    progress: float | None = None
    result_url: str | None = None
    result: dict[str, Any] | None = None
    error: GenerationError | None = None
    attempt: int
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None


class GenerationListResponse(BaseModel):
    items: list[GenerationStatusResponse]
    page: int
    limit: int
    total: int


class HealthResponse(BaseModel):
    status: str
    database: str
    queue_depth: int | None = None
