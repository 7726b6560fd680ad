"""Helpers for safe debug logging.

Every request URL carries the caller's identity token in its query string
and snapshot bodies can be arbitrarily large.  This module masks the former
and truncates the latter before anything reaches a DEBUG log.
"""

from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

_SENSITIVE_QUERY_KEYS: frozenset[str] = frozenset(
    {
        "auth",
        "access_token",
        "id_token",
        "token",
    }
)

_REDACTED = "<redacted>"


def truncate_body(body: str | None, *, max_length: int = 512) -> str | None:
    """Shorten a request or response body for debug logs."""
    if body is None or len(body) <= max_length:
        return body
    return f"{body[:max_length]}…<truncated {len(body) - max_length} chars>"


def redact_url(url: str) -> str:
    """Mask sensitive query parameters (notably ``auth``) in *url*."""
    parts = urlsplit(url)
    if not parts.query:
        return url
    params = parse_qsl(parts.query, keep_blank_values=True)
    masked = [(key, _REDACTED if key.lower() in _SENSITIVE_QUERY_KEYS else val) for key, val in params]
    return urlunsplit(parts._replace(query=urlencode(masked, safe="<>")))
