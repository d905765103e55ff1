"""Repositories backed by SQLAlchemy sessions."""

from .job_repository import JobRepository, OwnerJobPage

__all__ = ["JobRepository", "OwnerJobPage"]
