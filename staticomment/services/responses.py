"""
Response builders for comment submissions.

Error redirects only ever target a URL that already passed the
redirect-origin check; anything else gets a plain-text status.
"""

from starlette.responses import PlainTextResponse, RedirectResponse, Response

from staticomment.guard.pipeline import Rejection
from staticomment.guard.validators import with_fragment, with_query_param

ERROR_PARAM = "comment_error"
SUCCESS_FRAGMENT = "comment-submitted"


def plain_error(status_code: int, message: str) -> PlainTextResponse:
    return PlainTextResponse(message, status_code=status_code)


def error_redirect(redirect_url: str, message: str) -> RedirectResponse:
    """303 back to the page with ``comment_error=<message>`` added."""
    return RedirectResponse(with_query_param(redirect_url, ERROR_PARAM, message), status_code=303)


def success_redirect(redirect_url: str) -> RedirectResponse:
    """303 back to the page, anchored at the submission notice."""
    return RedirectResponse(with_fragment(redirect_url, SUCCESS_FRAGMENT), status_code=303)


def rejection_response(rejection: Rejection) -> Response:
    if rejection.redirect_url:
        return error_redirect(rejection.redirect_url, rejection.message)
    return plain_error(rejection.status_code, rejection.message)
