"""Application services used by the HTTP layer and the workers."""

from .events import JobEventBroker
from .quota import QuotaChecker, RollingWindowQuotaChecker
from .status_service import JobProjection, ProjectionPage, StatusService, project
from .submission_service import SubmissionService

__all__ = [
    "JobEventBroker",
    "JobProjection",
    "ProjectionPage",
    "QuotaChecker",
    "RollingWindowQuotaChecker",
    "StatusService",
    "SubmissionService",
    "project",
]
