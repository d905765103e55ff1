"""Allowed job state transitions.

Transitions are strictly forward. ``PROCESSING -> PROCESSING`` is allowed so
that a worker can claim a continuation (a re-delivered poll step) with the same
compare-and-swap that guards the first claim.
"""

from __future__ import annotations

from .models import JobState


class InvalidTransitionError(ValueError):
    """Raised when a transition would move a job backwards."""


ALLOWED_TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.PENDING: frozenset({JobState.QUEUED, JobState.CANCELLED}),
    JobState.QUEUED: frozenset({JobState.PROCESSING, JobState.CANCELLED}),
    JobState.PROCESSING: frozenset(
        {
            JobState.PROCESSING,
            JobState.COMPLETED,
            JobState.FAILED,
            JobState.CANCELLED,
        }
    ),
    JobState.COMPLETED: frozenset(),
    JobState.FAILED: frozenset(),
    JobState.CANCELLED: frozenset(),
}

CANCELLABLE_STATES = frozenset({JobState.PENDING, JobState.QUEUED, JobState.PROCESSING})


def can_transition(current: JobState, target: JobState) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def ensure_transition(current: JobState, target: JobState) -> None:
    """Raise :class:`InvalidTransitionError` unless ``current -> target`` is legal."""

    if not can_transition(current, target):
        raise InvalidTransitionError(f"cannot move job from {current.value} to {target.value}")


__all__ = [
    "ALLOWED_TRANSITIONS",
    "CANCELLABLE_STATES",
    "InvalidTransitionError",
    "can_transition",
    "ensure_transition",
]
