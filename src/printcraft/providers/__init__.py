"""Image generation provider adapters."""

from .base import (
    FetchedOutput,
    PermanentProviderError,
    PollResult,
    PollStatus,
    ProviderAdapter,
    ProviderError,
    ProviderOutput,
    SubmitResult,
    TransientProviderError,
)
from .providers_factory import create_provider
from .replicate import ReplicateProvider

__all__ = [
    "FetchedOutput",
    "PermanentProviderError",
    "PollResult",
    "PollStatus",
    "ProviderAdapter",
    "ProviderError",
    "ProviderOutput",
    "ReplicateProvider",
    "SubmitResult",
    "TransientProviderError",
    "create_provider",
]
