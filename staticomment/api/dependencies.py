"""
Dependency injection for FastAPI endpoints.

Components are built once by the application factory and stored on
``app.state``; these accessors hand them to route handlers.
"""

from fastapi import Request

from staticomment.services.submission_service import SubmissionService


def get_submission_service(request: Request) -> SubmissionService:
    """Get the submission service for this application."""
    return request.app.state.submission_service
