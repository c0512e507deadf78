"""Name Sanitizer for agent-side skill directory names."""

from __future__ import annotations

import re

MAX_NAME_LENGTH = 255
FALLBACK_NAME = "unnamed-skill"

_DISALLOWED_RUN_RE = re.compile(r"[^a-z0-9._]+")
_EDGE_RE = re.compile(r"^[.\-]+|[.\-]+$")


def sanitize_name(name: str) -> str:
    """Turn an arbitrary display name into a bounded, separator-free segment.

    Never raises: a non-string or an input that sanitizes to nothing yields
    ``FALLBACK_NAME``.

    Examples:
        >>> sanitize_name("Git Review Before Commit")
        'git-review-before-commit'
        >>> sanitize_name("../../../etc/passwd")
        'etc-passwd'
    """
    if not isinstance(name, str):
        return FALLBACK_NAME
    sanitized = _DISALLOWED_RUN_RE.sub("-", name.lower())
    sanitized = _EDGE_RE.sub("", sanitized)
    # Truncation can expose a trailing dot or hyphen again.
    sanitized = _EDGE_RE.sub("", sanitized[:MAX_NAME_LENGTH])
    return sanitized or FALLBACK_NAME
