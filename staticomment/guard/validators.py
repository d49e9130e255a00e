"""
Stateless request validators: origins, redirect targets, slugs.

All functions are pure; they take plain strings and configuration values
so they can be exercised without an HTTP request.
"""

import re
from collections.abc import Iterable, Mapping
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

_SLUG_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")

REQUIRED_FIELDS = ("name", "body", "slug", "url")


def origin_of(url: str) -> str | None:
    """
    Return ``scheme://host[:port]`` for a URL, or None if it has neither.

    Any userinfo component is dropped so ``https://evil@example.com``
    resolves to ``https://example.com``.
    """
    try:
        parts = urlsplit(url)
    except ValueError:
        return None
    host = parts.netloc.rpartition("@")[2]
    if not parts.scheme or not host:
        return None
    return f"{parts.scheme}://{host}"


def request_origin(headers: Mapping[str, str]) -> str | None:
    """Origin of a request: the Origin header, else the Referer's origin."""
    origin = headers.get("origin", "")
    if origin:
        return origin
    referer = headers.get("referer", "")
    if not referer:
        return None
    return origin_of(referer)


def is_allowed_origin(origin: str | None, allowed: Iterable[str]) -> bool:
    """Exact match against the allow-list."""
    if not origin:
        return False
    return any(origin == candidate for candidate in allowed)


def is_allowed_redirect(url: str, allowed: Iterable[str]) -> bool:
    return is_allowed_origin(origin_of(url), allowed)


def is_valid_slug(slug: str) -> bool:
    """
    Check that a slug is safe to use as a directory name.

    Rejects empty values, path separators, ``..`` and anything outside
    ASCII letters, digits, hyphen and underscore.
    """
    if not slug:
        return False
    if ".." in slug or "/" in slug or "\\" in slug:
        return False
    return _SLUG_PATTERN.match(slug) is not None


def missing_required(fields: Mapping[str, str]) -> list[str]:
    """Names of required fields that are empty after trimming."""
    return [name for name in REQUIRED_FIELDS if not fields.get(name, "").strip()]


def with_query_param(url: str, key: str, value: str) -> str:
    """Set one query parameter on a URL, keeping the others and the fragment."""
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != key]
    query.append((key, value))
    return urlunsplit(parts._replace(query=urlencode(sorted(query))))


def with_fragment(url: str, fragment: str) -> str:
    return urlunsplit(urlsplit(url)._replace(fragment=fragment))
