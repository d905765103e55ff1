"""Domain models of the generation pipeline.

The module exposes lightweight dataclasses and enums shared by the record
store, the queue workers and the HTTP layer. A :class:`Job` is the only
stateful entity; everything else is an immutable value attached to it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping
from uuid import UUID


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobState(str, Enum):
    """Life cycle of a generation job.

    ``PENDING`` rows exist in the record store but are not yet known to the
    queue. ``QUEUED`` rows have a queue message. A worker claiming the job moves
    it to ``PROCESSING``; ``COMPLETED``, ``FAILED`` and ``CANCELLED`` are
    terminal.
    """

    PENDING = "PENDING"
    QUEUED = "QUEUED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset({JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED})


class JobPriority(str, Enum):
    """Priority class derived from the owner's subscription tier."""

    STANDARD = "standard"
    PREMIUM = "premium"


class ErrorKind(str, Enum):
    """Failure taxonomy shared by the API and the job ``error`` field."""

    VALIDATION = "VALIDATION"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    TRANSIENT_PROVIDER = "TRANSIENT_PROVIDER"
    PERMANENT_PROVIDER = "PERMANENT_PROVIDER"
    PROVIDER_REJECTED = "PROVIDER_REJECTED"
    STORAGE_FAILURE = "STORAGE_FAILURE"
    EXHAUSTED_RETRIES = "EXHAUSTED_RETRIES"
    CANCELLED = "CANCELLED"


class GenerationStyle(str, Enum):
    """Styles offered by the mobile client."""

    REALISTIC = "realistic"
    ARTISTIC = "artistic"
    CARTOON = "cartoon"
    ANIME = "anime"
    VINTAGE = "vintage"
    MINIMALIST = "minimalist"
    ABSTRACT = "abstract"
    WATERCOLOR = "watercolor"
    NEON = "neon"
    RENDER_3D = "3d"

    @property
    def is_premium(self) -> bool:
        return self in PREMIUM_STYLES


PREMIUM_STYLES = frozenset({GenerationStyle.NEON, GenerationStyle.RENDER_3D})

ALLOWED_DIMENSIONS: tuple[int, ...] = (512, 768, 1024, 1280, 1536)
DEFAULT_DIMENSION = 1024


@dataclass(frozen=True, slots=True)
class GenerationRequest:
    """Immutable input payload captured once at submission."""

    prompt: str
    style: GenerationStyle
    width: int = DEFAULT_DIMENSION
    height: int = DEFAULT_DIMENSION
    seed: int | None = None
    negative_prompt: str | None = None
    params: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "prompt": self.prompt,
            "style": self.style.value,
            "width": self.width,
            "height": self.height,
            "seed": self.seed,
            "negative_prompt": self.negative_prompt,
            "params": dict(self.params),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GenerationRequest":
        return cls(
            prompt=str(data["prompt"]),
            style=GenerationStyle(data["style"]),
            width=int(data.get("width") or DEFAULT_DIMENSION),
            height=int(data.get("height") or DEFAULT_DIMENSION),
            seed=data.get("seed"),
            negative_prompt=data.get("negative_prompt"),
            params=dict(data.get("params") or {}),
        )


@dataclass(frozen=True, slots=True)
class ArtifactRef:
    """Reference to a stored artifact, attached to completed jobs."""

    url: str
    storage_key: str
    size_bytes: int
    content_type: str
    width: int | None = None
    height: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "storage_key": self.storage_key,
            "size_bytes": self.size_bytes,
            "content_type": self.content_type,
            "width": self.width,
            "height": self.height,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ArtifactRef":
        return cls(
            url=str(data["url"]),
            storage_key=str(data["storage_key"]),
            size_bytes=int(data["size_bytes"]),
            content_type=str(data["content_type"]),
            width=data.get("width"),
            height=data.get("height"),
        )


@dataclass(frozen=True, slots=True)
class JobError:
    """Structured failure reason stored on terminal jobs."""

    kind: ErrorKind
    message: str


@dataclass(slots=True)
class Job:
    """Generation job as persisted in the record store."""

    id: UUID
    owner_id: str
    request: GenerationRequest
    state: JobState
    priority: JobPriority
    created_at: datetime
    updated_at: datetime
    attempt: int = 0
    version: int = 0
    provider_handle: str | None = None
    progress: float | None = None
    result: ArtifactRef | None = None
    error: JobError | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated caller as supplied by the account service."""

    owner_id: str
    tier: JobPriority = JobPriority.STANDARD

    @property
    def is_premium(self) -> bool:
        return self.tier is JobPriority.PREMIUM


@dataclass(frozen=True, slots=True)
class JobEvent:
    """Notification emitted on every state transition."""

    job_id: UUID
    state: JobState
    occurred_at: datetime
    progress: float | None = None
    result_url: str | None = None
    error_kind: ErrorKind | None = None

    @classmethod
    def from_job(cls, job: Job) -> "JobEvent":
        return cls(
            job_id=job.id,
            state=job.state,
            occurred_at=job.updated_at,
            progress=job.progress,
            result_url=job.result.url if job.result else None,
            error_kind=job.error.kind if job.error else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.job_id),
            "state": self.state.value,
            "occurred_at": self.occurred_at.isoformat(),
            "progress": self.progress,
            "result_url": self.result_url,
            "error_kind": self.error_kind.value if self.error_kind else None,
        }


__all__ = [
    "ALLOWED_DIMENSIONS",
    "ArtifactRef",
    "DEFAULT_DIMENSION",
    "ErrorKind",
    "GenerationRequest",
    "GenerationStyle",
    "Job",
    "JobError",
    "JobEvent",
    "JobPriority",
    "JobState",
    "PREMIUM_STYLES",
    "Principal",
    "utcnow",
]
