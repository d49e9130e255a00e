"""Request-level services."""

from staticomment.services.submission_service import SubmissionService

__all__ = ["SubmissionService"]
