"""Persistent local state: configuration and install index."""

from vett.storage.state import (
    FindResult,
    InstalledSkill,
    StateStore,
    VettIndex,
    file_lock,
    write_atomic,
)

__all__ = [
    "FindResult",
    "InstalledSkill",
    "StateStore",
    "VettIndex",
    "file_lock",
    "write_atomic",
]
