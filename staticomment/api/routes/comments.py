"""
Comment submission endpoint.

Accepts every method so the guard pipeline, not the router, answers
non-POST requests with its own plain-text 405.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response

from staticomment.api.dependencies import get_submission_service
from staticomment.services.submission_service import SubmissionService

router = APIRouter()

_ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


@router.api_route(
    "/comment",
    methods=_ALL_METHODS,
    summary="Submit a comment",
    description=(
        "Form post (`application/x-www-form-urlencoded`) with fields "
        "`name`, `email`, `body`, `slug`, `reply_to`, `url`. Answers with a "
        "303 redirect to `url`, or a plain-text 4xx when `url` cannot be trusted."
    ),
    responses={
        303: {"description": "Redirect back to the page (success or comment_error)"},
        400: {"description": "Malformed request with no usable redirect URL"},
        403: {"description": "Origin or redirect URL not allowed"},
        405: {"description": "Method other than POST"},
    },
)
async def submit_comment(
    request: Request,
    service: SubmissionService = Depends(get_submission_service),
) -> Response:
    return await service.submit(request)
