"""
Guard pipeline: decides whether a comment submission may be published.

Checks run in a fixed order and the first failure short-circuits:

 1. method must be POST                       -> 405
 2. Origin (or Referer) must be allowed        -> 403
 3. raw body capped before parsing             -> 400
 4. redirect URL origin must be allowed        -> 403
 5. required fields                            -> redirect, or 400 without url
 6. body length                                -> redirect
 7. slug / reply_to format                     -> redirect
 8. honeypot                                   -> redirect (generic)
 9. minimum elapsed time                       -> redirect (generic)
10. links and blocked patterns                 -> redirect
11. per-IP rate limit                          -> redirect
12. post existence (optional)                  -> redirect

Until step 4 has passed the redirect URL is untrusted, so earlier
failures answer with a plain status instead of a redirect.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import parse_qsl

from slowapi.util import get_remote_address
from starlette.requests import Request

from staticomment.comments.schemas import Submission
from staticomment.config.settings import Settings
from staticomment.guard import spam
from staticomment.guard.rate_limit import SlidingWindowRateLimiter
from staticomment.guard.validators import (
    is_allowed_origin,
    is_allowed_redirect,
    is_valid_slug,
    missing_required,
    request_origin,
)

logger = logging.getLogger(__name__)

MSG_METHOD_NOT_ALLOWED = "Method not allowed"
MSG_ORIGIN_FORBIDDEN = "Forbidden: origin not allowed"
MSG_REDIRECT_FORBIDDEN = "Forbidden: redirect URL origin not allowed"
MSG_BAD_REQUEST = "Bad request"
MSG_MISSING_FIELDS = "Missing required fields (name, body, slug, url)"
MSG_BODY_TOO_LONG = "Comment body too long"
MSG_INVALID_SLUG = "Invalid slug"
MSG_INVALID_REPLY_TO = "Invalid reply_to"
# Shared by every bot heuristic so the response does not reveal which one fired
MSG_REJECTED = "Comment rejected"
MSG_RATE_LIMITED = "Too many comments, please try again later"
MSG_POST_NOT_FOUND = "Post not found"

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


class Rejection(Exception):
    """
    A submission that must not proceed.

    Attributes:
        status_code: HTTP status used when there is no safe redirect target
        message: User-visible text
        redirect_url: Validated URL to send the error to, or None
    """

    def __init__(self, status_code: int, message: str, redirect_url: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.redirect_url = redirect_url


def post_exists(posts_dir: Path, slug: str) -> bool:
    """
    Whether a content file for `slug` exists.

    Matches ``<slug>.*`` and the Jekyll date-prefixed ``YYYY-MM-DD-<slug>.*``.
    The slug must already be validated, it is used as a glob pattern.
    """
    if not posts_dir.is_dir():
        return False
    for pattern in (f"{slug}.*", f"[0-9][0-9][0-9][0-9]-[0-9][0-9]-[0-9][0-9]-{slug}.*"):
        if any(posts_dir.glob(pattern)):
            return True
    return False


async def read_form(request: Request, limit: int) -> dict[str, str]:
    """
    Read and parse a url-encoded body of at most `limit` bytes.

    Only the first value of a repeated field is kept.

    Raises:
        Rejection: 400 if the body is too large, not url-encoded or not UTF-8
    """
    content_type = request.headers.get("content-type", FORM_CONTENT_TYPE)
    if content_type.split(";", 1)[0].strip().lower() != FORM_CONTENT_TYPE:
        raise Rejection(400, MSG_BAD_REQUEST)

    declared = request.headers.get("content-length", "")
    if declared.isdigit() and int(declared) > limit:
        raise Rejection(400, MSG_BAD_REQUEST)

    chunks: list[bytes] = []
    size = 0
    async for chunk in request.stream():
        size += len(chunk)
        if size > limit:
            raise Rejection(400, MSG_BAD_REQUEST)
        chunks.append(chunk)

    try:
        text = b"".join(chunks).decode("utf-8")
    except UnicodeDecodeError as e:
        raise Rejection(400, MSG_BAD_REQUEST) from e

    form: dict[str, str] = {}
    for key, value in parse_qsl(text, keep_blank_values=True):
        form.setdefault(key, value)
    return form


class GuardPipeline:
    """
    Runs every request-level check for a comment submission.

    Args:
        settings: Resolved configuration
        rate_limiter: Shared per-IP limiter
        resolve: Maps a repository-relative path into the working copy;
            required when post-existence validation is enabled
        clock: Wall-clock source in epoch seconds (for the timestamp check)
    """

    def __init__(
        self,
        settings: Settings,
        rate_limiter: SlidingWindowRateLimiter,
        resolve: Callable[[str], Path] | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        if settings.post_validation_enabled and resolve is None:
            raise ValueError("post-existence validation requires a path resolver")
        self._settings = settings
        self._rate_limiter = rate_limiter
        self._resolve = resolve
        self._clock = clock
        self._allowed = settings.allowed_origin_list
        self._blocked = settings.blocked_pattern_list

    async def evaluate(self, request: Request) -> Submission:
        """
        Validate a request and build the submission it carries.

        Raises:
            Rejection: On the first failed check
        """
        s = self._settings

        if request.method != "POST":
            raise Rejection(405, MSG_METHOD_NOT_ALLOWED)

        origin = request_origin(request.headers)
        if not is_allowed_origin(origin, self._allowed):
            logger.info("Rejected origin %r", origin)
            raise Rejection(403, MSG_ORIGIN_FORBIDDEN)

        form = await read_form(request, s.max_request_bytes)
        fields = {
            key: form.get(key, "").strip()
            for key in ("name", "email", "body", "slug", "reply_to", "url")
        }
        redirect_url = fields["url"]

        if redirect_url and not is_allowed_redirect(redirect_url, self._allowed):
            logger.info("Rejected redirect URL %r", redirect_url)
            raise Rejection(403, MSG_REDIRECT_FORBIDDEN)

        if missing_required(fields):
            raise Rejection(400, MSG_MISSING_FIELDS, redirect_url or None)

        if len(fields["body"]) > s.max_body_length:
            raise Rejection(400, MSG_BODY_TOO_LONG, redirect_url)

        if not is_valid_slug(fields["slug"]):
            raise Rejection(400, MSG_INVALID_SLUG, redirect_url)

        if fields["reply_to"] and not is_valid_slug(fields["reply_to"]):
            raise Rejection(400, MSG_INVALID_REPLY_TO, redirect_url)

        if spam.check_honeypot(form, s.honeypot_field):
            logger.info("Honeypot triggered for slug %s", fields["slug"])
            raise Rejection(400, MSG_REJECTED, redirect_url)

        now = self._clock() if self._clock is not None else None
        if spam.check_submit_time(form, s.timestamp_field, s.min_submit_time, now=now):
            logger.info("Submission too fast for slug %s", fields["slug"])
            raise Rejection(400, MSG_REJECTED, redirect_url)

        content_error = spam.check_body_content(fields["body"], s.max_links, self._blocked)
        if content_error:
            raise Rejection(400, content_error, redirect_url)

        client_ip = get_remote_address(request)
        if not self._rate_limiter.allow(client_ip):
            raise Rejection(429, MSG_RATE_LIMITED, redirect_url)

        if s.post_validation_enabled and not post_exists(
            self._resolve(s.posts_path), fields["slug"]
        ):
            raise Rejection(404, MSG_POST_NOT_FOUND, redirect_url)

        return Submission(
            name=fields["name"],
            body=fields["body"],
            slug=fields["slug"],
            redirect_url=redirect_url,
            email=fields["email"],
            reply_to=fields["reply_to"],
            origin=origin or "",
            client_ip=client_ip,
            received_at=datetime.now(timezone.utc),
        )
