"""
Spam heuristics for comment submissions.

Each check returns a verdict without side effects:
- check_honeypot: hidden field filled in
- check_submit_time: form submitted faster than a human could
- check_body_content: too many links or blocked phrases
"""

import logging
import re
import time
from collections.abc import Mapping, Sequence

logger = logging.getLogger(__name__)

LINK_PATTERN = re.compile(r"https?://")
# Plain ASCII integer, no underscores or unicode digits
_EPOCH_PATTERN = re.compile(r"[+-]?[0-9]+")


def check_honeypot(form: Mapping[str, str], field_name: str) -> bool:
    """Return True if the honeypot field is filled (indicating a bot)."""
    if not field_name:
        return False
    return bool(form.get(field_name, "").strip())


def check_submit_time(
    form: Mapping[str, str],
    field_name: str,
    min_seconds: int,
    now: float | None = None,
) -> bool:
    """
    Return True if the submission was too fast (likely a bot).

    The hidden timestamp field carries unix epoch seconds from when the
    form was rendered. A missing field is not penalized; a malformed one is.
    """
    if min_seconds <= 0 or not field_name:
        return False
    raw = form.get(field_name, "").strip()
    if not raw:
        return False
    if not _EPOCH_PATTERN.fullmatch(raw):
        logger.debug("Malformed submission timestamp %r", raw)
        return True
    rendered_at = int(raw)
    now = time.time() if now is None else now
    return int(now) - rendered_at < min_seconds


def count_links(body: str) -> int:
    return len(LINK_PATTERN.findall(body))


def check_body_content(
    body: str,
    max_links: int,
    blocked_patterns: Sequence[re.Pattern[str]],
) -> str | None:
    """
    Check the comment body for excessive links and blocked patterns.

    Returns:
        A user-facing error message, or None if the body is acceptable
    """
    if max_links > 0 and count_links(body) > max_links:
        return f"Too many links (max {max_links})"

    for pattern in blocked_patterns:
        if pattern.search(body):
            return "Comment contains blocked content"

    return None
