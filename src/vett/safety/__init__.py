"""Filesystem safety checks applied to every untrusted path or name."""

from vett.safety.names import FALLBACK_NAME, MAX_NAME_LENGTH, sanitize_name
from vett.safety.paths import (
    assert_no_symlink_components,
    assert_within_base,
    is_path_safe,
    is_safe_relative_path,
)

__all__ = [
    "FALLBACK_NAME",
    "MAX_NAME_LENGTH",
    "assert_no_symlink_components",
    "assert_within_base",
    "is_path_safe",
    "is_safe_relative_path",
    "sanitize_name",
]
