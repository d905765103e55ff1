"""Generation quota checks."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta

from ..domain.models import JobState, Principal
from ..repositories.job_repository import JobRepository

_UNCOUNTED_STATES = (JobState.FAILED, JobState.CANCELLED)


class QuotaChecker(ABC):
    """Answers how many generations an owner may still submit."""

    @abstractmethod
    def remaining(self, principal: Principal, *, now: datetime) -> int:
        ...


@dataclass(slots=True)
class RollingWindowQuotaChecker(QuotaChecker):
    """Count the owner's jobs created within ``window`` against the tier limit.

    Failed and cancelled jobs do not consume quota.
    """

    repository: JobRepository
    window: timedelta
    standard_limit: int
    premium_limit: int

    def limit_for(self, principal: Principal) -> int:
        return self.premium_limit if principal.is_premium else self.standard_limit

    def remaining(self, principal: Principal, *, now: datetime) -> int:
        used = self.repository.count_created_since(
            principal.owner_id,
            since=now - self.window,
            exclude_states=_UNCOUNTED_STATES,
        )
        return max(0, self.limit_for(principal) - used)


__all__ = ["QuotaChecker", "RollingWindowQuotaChecker"]
