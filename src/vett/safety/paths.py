"""Path Safety Guard.

Pure checks that keep untrusted values (registry JSON, skill-authored file
paths) from steering a filesystem write outside its intended directory.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path

from vett.errors import PathTraversalError, SymlinkTraversalError

logger = logging.getLogger(__name__)

# Positive allowlist for a single path segment. Explicit ranges keep it ASCII-only.
_SAFE_SEGMENT_RE = re.compile(r"[A-Za-z0-9._-]+")

MAX_SEGMENT_LENGTH = 200

_COMPONENT_SPLIT_RE = re.compile(r"[\\/]+")


def is_path_safe(segment: str) -> bool:
    """Return True when ``segment`` is safe to use as one filesystem path segment.

    Rejects empty values, ``.``/``..``, anything containing ``..``, separators,
    drive letters, null bytes, shell and Windows-reserved characters, non-ASCII
    characters and surrounding whitespace. Everything outside
    ``[A-Za-z0-9._-]`` is refused.
    """
    if not isinstance(segment, str) or not segment:
        return False
    if len(segment) > MAX_SEGMENT_LENGTH:
        return False
    if segment in (".", "..") or ".." in segment:
        return False
    return _SAFE_SEGMENT_RE.fullmatch(segment) is not None


def is_safe_relative_path(path: str) -> bool:
    """Return True for a relative POSIX path whose every segment is safe.

    Used for file paths inside a skill manifest (``rules/setup.md``).
    """
    if not isinstance(path, str) or not path:
        return False
    if path.startswith("/"):
        return False
    segments = path.split("/")
    return all(is_path_safe(segment) for segment in segments)


def assert_within_base(
    base_dir: str | Path,
    candidate: str | Path,
    follow_symlinks: bool = True,
) -> Path:
    """Resolve ``candidate`` against ``base_dir`` and require it to stay inside.

    Both paths are made absolute and canonical first. The candidate must equal
    the base or live beneath it; ``/base-evil`` does not count as inside
    ``/base``. With ``follow_symlinks=False`` the check is purely lexical,
    for callers about to replace whatever sits at ``candidate``.

    Returns:
        The resolved candidate path.

    Raises:
        PathTraversalError: If the candidate escapes the base directory.
    """
    if follow_symlinks:
        base = Path(base_dir).resolve()
    else:
        base = Path(os.path.abspath(base_dir))
    candidate_path = Path(candidate)
    if not candidate_path.is_absolute():
        candidate_path = base / candidate_path
    resolved = candidate_path.resolve() if follow_symlinks else Path(os.path.abspath(candidate_path))

    if resolved != base and not resolved.is_relative_to(base):
        logger.warning(f"Refused path outside base directory {base}")
        raise PathTraversalError()
    return resolved


def assert_no_symlink_components(base_dir: str | Path, relative_path: str) -> None:
    """Fail if any existing component of ``relative_path`` under ``base_dir`` is a symlink.

    Only components that already exist on disk are inspected. A dangling
    symlink counts as existing. Must run before every file write, since a
    previous install may have planted a link inside the tree.

    Raises:
        SymlinkTraversalError: If a symlink component is found.
    """
    base = os.path.abspath(base_dir)
    segments = [s for s in _COMPONENT_SPLIT_RE.split(relative_path) if s and s != "."]

    current = base
    for segment in segments:
        current = os.path.abspath(os.path.join(current, segment))
        if not os.path.lexists(current):
            continue
        if os.path.islink(current):
            logger.warning(f"Refused write through symlink inside {base}")
            raise SymlinkTraversalError(current)

    if current != base and not current.startswith(base + os.sep):
        raise SymlinkTraversalError(current)
