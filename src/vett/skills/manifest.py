"""Skill manifests and the guarded canonical-store writer.

A manifest is the signed JSON document a registry serves for one skill
version: a schema version, an optional entry point and a list of files.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
import uuid
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from vett.errors import InvalidManifestError
from vett.safety.paths import (
    assert_no_symlink_components,
    assert_within_base,
    is_safe_relative_path,
)

logger = logging.getLogger(__name__)

SKILL_MANIFEST_SCHEMA_VERSION = 1
DEFAULT_MAX_FILE_BYTES = 512 * 1024
DEFAULT_MAX_TOTAL_BYTES = 5 * 1024 * 1024


class ManifestFile(BaseModel):
    """One file inside a skill manifest."""

    model_config = ConfigDict(populate_by_name=True)

    path: str = Field(min_length=1)
    content: str
    content_type: str | None = Field(default=None, alias="contentType", min_length=1)

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        if not is_safe_relative_path(v):
            raise ValueError("Invalid file path: must be relative and contain only safe segments")
        return v

    @property
    def size(self) -> int:
        return len(self.content.encode("utf-8"))


class SkillManifest(BaseModel):
    """A validated skill manifest."""

    model_config = ConfigDict(populate_by_name=True)

    schema_version: int = Field(alias="schemaVersion")
    entry_point: str | None = Field(default=None, alias="entryPoint", min_length=1)
    files: list[ManifestFile] = Field(min_length=1)

    @field_validator("schema_version")
    @classmethod
    def validate_schema_version(cls, v: int) -> int:
        if v != SKILL_MANIFEST_SCHEMA_VERSION:
            raise ValueError(f"Unsupported manifest schema version (expected {SKILL_MANIFEST_SCHEMA_VERSION})")
        return v

    @property
    def total_size(self) -> int:
        return sum(f.size for f in self.files)


def parse_manifest(
    data: bytes,
    max_file_bytes: int = DEFAULT_MAX_FILE_BYTES,
    max_total_bytes: int = DEFAULT_MAX_TOTAL_BYTES,
) -> SkillManifest:
    """Parse and bound-check manifest bytes exactly as downloaded.

    Raises:
        InvalidManifestError: On malformed JSON, schema violations, unsafe
            paths, duplicate paths, a dangling entry point or size overruns
    """
    try:
        raw = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise InvalidManifestError("Skill manifest is not valid UTF-8 JSON") from e

    try:
        manifest = SkillManifest.model_validate(raw)
    except ValidationError as e:
        messages = sorted({err["msg"] for err in e.errors()})
        raise InvalidManifestError(f"Skill manifest failed validation: {', '.join(messages)}") from e

    seen: set[str] = set()
    for file in manifest.files:
        if file.path in seen:
            raise InvalidManifestError("Skill manifest failed validation: duplicate file path")
        seen.add(file.path)
        if file.size > max_file_bytes:
            raise InvalidManifestError(
                f"Skill manifest failed validation: file is too large (max {max_file_bytes} bytes)"
            )

    if manifest.total_size > max_total_bytes:
        raise InvalidManifestError(
            f"Skill manifest failed validation: manifest is too large (max {max_total_bytes} bytes)"
        )

    if manifest.entry_point is not None and manifest.entry_point not in seen:
        raise InvalidManifestError("Skill manifest failed validation: entry point is not a manifest file")

    return manifest


def _write_file_atomic(target: Path, content: str) -> None:
    fd, temp_path = tempfile.mkstemp(dir=str(target.parent), prefix=".vett-", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, target)
    except BaseException:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise


def write_manifest_files(manifest: SkillManifest, skill_dir: Path) -> list[Path]:
    """Write manifest files beneath ``skill_dir``.

    Every path is checked before the first byte is written, and again right
    before its own write, so a symlink planted mid-install is still refused.

    Returns:
        Paths of the written files
    """
    skill_dir.mkdir(parents=True, exist_ok=True)

    targets: list[tuple[Path, str, str]] = []
    for file in manifest.files:
        target = assert_within_base(skill_dir, file.path)
        assert_no_symlink_components(skill_dir, file.path)
        targets.append((target, file.path, file.content))

    written: list[Path] = []
    for target, rel_path, content in targets:
        assert_no_symlink_components(skill_dir, rel_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        _write_file_atomic(target, content)
        written.append(target)
    return written


def replace_skill_directory(manifest: SkillManifest, skill_dir: Path) -> Path:
    """Materialize ``manifest`` at ``skill_dir``, replacing any previous version.

    Files are written to a staging directory next to ``skill_dir`` which is
    then renamed into place, so an interrupted install leaves either the old
    tree or the new tree. Between the two renames the directory is briefly
    absent.

    Returns:
        The skill directory
    """
    parent = skill_dir.parent
    parent.mkdir(parents=True, exist_ok=True)
    token = uuid.uuid4().hex[:8]
    staging = parent / f".{skill_dir.name}.staging-{token}"
    backup = parent / f".{skill_dir.name}.old-{token}"

    try:
        write_manifest_files(manifest, staging)
        if skill_dir.is_symlink():
            skill_dir.unlink()
        elif skill_dir.exists():
            os.replace(skill_dir, backup)
        os.replace(staging, skill_dir)
    except BaseException:
        shutil.rmtree(staging, ignore_errors=True)
        if backup.exists() and not skill_dir.exists():
            os.replace(backup, skill_dir)
        raise

    if backup.exists():
        shutil.rmtree(backup, ignore_errors=True)
    logger.debug(f"Wrote {len(manifest.files)} files to {skill_dir}")
    return skill_dir
