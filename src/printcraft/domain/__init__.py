"""Domain models and rules of the generation pipeline."""

from .backoff import RetryPolicy, calculate_backoff
from .models import (
    ALLOWED_DIMENSIONS,
    DEFAULT_DIMENSION,
    PREMIUM_STYLES,
    ArtifactRef,
    ErrorKind,
    GenerationRequest,
    GenerationStyle,
    Job,
    JobError,
    JobEvent,
    JobPriority,
    JobState,
    Principal,
    utcnow,
)
from .state_machine import (
    CANCELLABLE_STATES,
    InvalidTransitionError,
    can_transition,
    ensure_transition,
)

__all__ = [
    "ALLOWED_DIMENSIONS",
    "ArtifactRef",
    "CANCELLABLE_STATES",
    "DEFAULT_DIMENSION",
    "ErrorKind",
    "GenerationRequest",
    "GenerationStyle",
    "InvalidTransitionError",
    "Job",
    "JobError",
    "JobEvent",
    "JobPriority",
    "JobState",
    "PREMIUM_STYLES",
    "Principal",
    "RetryPolicy",
    "calculate_backoff",
    "can_transition",
    "ensure_transition",
    "utcnow",
]
