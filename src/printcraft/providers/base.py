"""Base interfaces for image generation provider adapters.

A provider turns a :class:`~printcraft.domain.models.GenerationRequest` into an
image through a submit-then-poll protocol. Adapters never retry on their own:
every failure is classified as transient or permanent and handed back to the
worker, which owns the retry policy.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

from ..domain.models import GenerationRequest
from ..exceptions import AppError


class ProviderError(AppError):
    """Base class of provider failures."""


class TransientProviderError(ProviderError):
    """Failure that may succeed when retried (rate limits, outages, timeouts)."""


class PermanentProviderError(ProviderError):
    """Failure the provider will repeat for the same input."""


class PollStatus(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"


@dataclass(frozen=True, slots=True)
class ProviderOutput:
    """Location of a finished image on the provider side."""

    uri: str
    content_type: str | None = None


@dataclass(frozen=True, slots=True)
class SubmitResult:
    handle: str
    output: ProviderOutput | None = None


@dataclass(frozen=True, slots=True)
class PollResult:
    status: PollStatus
    output: ProviderOutput | None = None
    progress: float | None = None


@dataclass(frozen=True, slots=True)
class FetchedOutput:
    data: bytes
    content_type: str


class ProviderAdapter(ABC):
    """Abstract adapter that hides provider-specific integrations.

    Implementations are expected to:

    * return an opaque handle from :meth:`submit` that the worker persists so
      later deliveries poll instead of submitting again;
    * raise :class:`TransientProviderError` or :class:`PermanentProviderError`
      and nothing else for provider-side failures;
    * keep every call bounded by their own request timeout.
    """

    provider_id: str

    @abstractmethod
    async def submit(self, request: GenerationRequest) -> SubmitResult:
        """Start a generation and return its handle."""

    @abstractmethod
    async def poll(self, handle: str) -> PollResult:
        """Return the current status of ``handle``."""

    @abstractmethod
    async def fetch_output(self, output: ProviderOutput) -> FetchedOutput:
        """Download the finished image."""

    @abstractmethod
    async def cancel(self, handle: str) -> None:
        """Ask the provider to stop working on ``handle``."""

    async def aclose(self) -> None:
        """Release network resources held by the adapter."""


__all__ = [
    "FetchedOutput",
    "PermanentProviderError",
    "PollResult",
    "PollStatus",
    "ProviderAdapter",
    "ProviderError",
    "ProviderOutput",
    "SubmitResult",
    "TransientProviderError",
]
