"""
Local state store: configuration and install index documents.

Both documents are rewritten atomically (temp file in the same directory,
fsync, rename) while holding a lock file, so concurrent vett processes never
interleave a read-modify-write cycle. Mutations always reload the document
under the lock, patch it and save the whole collection.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from vett.config.app import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_REGISTRY_URL,
    TelemetryConfig,
    VettConfig,
    is_valid_device_id,
)
from vett.errors import LockTimeoutError
from vett.registry.schemas import SafeSegment

logger = logging.getLogger(__name__)

INDEX_SCHEMA_VERSION = 1

LOCK_TIMEOUT = 2.5
LOCK_RETRY_INTERVAL = 0.05
LOCK_STALE_AFTER = 10.0


@contextmanager
def file_lock(
    lock_path: Path,
    timeout: float = LOCK_TIMEOUT,
    retry_interval: float = LOCK_RETRY_INTERVAL,
    stale_after: float = LOCK_STALE_AFTER,
) -> Iterator[None]:
    """Hold an exclusive lock file for the duration of the block.

    The lock is a file created with ``O_CREAT | O_EXCL``. A lock older than
    ``stale_after`` seconds is assumed to belong to a crashed process and is
    taken over.

    Raises:
        LockTimeoutError: If the lock cannot be acquired within ``timeout``
    """
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    started = time.monotonic()

    while True:
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            os.write(fd, str(os.getpid()).encode())
            os.close(fd)
            break
        except FileExistsError:
            try:
                age = time.time() - lock_path.stat().st_mtime
                if age > stale_after:
                    logger.warning(f"Removing stale lock {lock_path} ({age:.1f}s old)")
                    lock_path.unlink()
                    continue
            except FileNotFoundError:
                # released between open and stat
                continue
            if time.monotonic() - started > timeout:
                raise LockTimeoutError(str(lock_path), timeout) from None
            time.sleep(retry_interval)

    try:
        yield
    finally:
        try:
            lock_path.unlink()
        except FileNotFoundError:
            logger.debug(f"Lock {lock_path} already removed")


def write_atomic(path: Path, content: str) -> None:
    """Write ``content`` to ``path`` via a temp file and an atomic rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, path)
    except BaseException:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise


class InstalledSkill(BaseModel):
    """A skill recorded in the install index."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    owner: SafeSegment
    repo: SafeSegment | None = None
    name: SafeSegment
    version: str
    installed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    canonical_path: str = Field(
        validation_alias=AliasChoices("canonical_path", "canonicalPath", "path"),
    )
    agents: list[str] = Field(default_factory=list)
    scope: Literal["global", "project"] = "global"
    project_dir: str | None = None
    slug: str | None = None

    @field_validator("agents")
    @classmethod
    def dedupe_agents(cls, v: list[str]) -> list[str]:
        return list(dict.fromkeys(v))

    @property
    def ref(self) -> str:
        return "/".join(p for p in (self.owner, self.repo, self.name) if p)

    def matches(self, owner: str, repo: str | None, name: str) -> bool:
        return self.owner == owner and self.repo == repo and self.name == name


class VettIndex(BaseModel):
    schema_version: int = INDEX_SCHEMA_VERSION
    installed_skills: list[InstalledSkill] = Field(default_factory=list)


@dataclass
class FindResult:
    """Outcome of looking up an installed skill by reference."""

    status: Literal["found", "not_found", "ambiguous"]
    skill: InstalledSkill | None = None
    matches: list[InstalledSkill] = field(default_factory=list)


def _pick(raw: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in raw:
            return raw[key]
    return None


def _parse_skills(raw_skills: list[Any]) -> list[InstalledSkill]:
    skills: list[InstalledSkill] = []
    for entry in raw_skills:
        try:
            skills.append(InstalledSkill.model_validate(entry))
        except ValidationError:
            logger.warning("Skipping malformed entry in install index")
    return skills


class StateStore:
    """Reads and writes ``config.yaml`` and ``index.json`` under the vett home."""

    def __init__(self, home: Path, lock_timeout: float = LOCK_TIMEOUT) -> None:
        self.home = Path(home)
        self.config_path = self.home / "config.yaml"
        self.index_path = self.home / "index.json"
        self.lock_timeout = lock_timeout

    @property
    def default_install_dir(self) -> Path:
        return self.home / "skills"

    def _lock(self, path: Path):
        return file_lock(path.with_name(path.name + ".lock"), timeout=self.lock_timeout)

    # --- configuration ---

    def _read_config_raw(self) -> Any:
        if not self.config_path.exists():
            return None
        try:
            return yaml.safe_load(self.config_path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as e:
            logger.warning(f"Could not read {self.config_path}, using defaults: {e}")
            return None

    def _normalize_config(self, raw: Any) -> tuple[VettConfig, list[Any] | None, bool]:
        """Coerce a raw config document into a VettConfig.

        Returns:
            Tuple of (config, legacy installed-skills list or None, changed)
        """
        default_dir = str(self.default_install_dir)
        if not isinstance(raw, dict):
            config = VettConfig(
                install_dir=default_dir,
                telemetry=TelemetryConfig(device_id=str(uuid.uuid4())),
            )
            return config, None, True

        changed = False
        legacy = _pick(raw, "installed_skills", "installedSkills")
        if isinstance(legacy, list):
            changed = True
        else:
            legacy = None

        if _pick(raw, "schema_version", "schemaVersion") != CONFIG_SCHEMA_VERSION:
            changed = True

        install_dir = _pick(raw, "install_dir", "installDir")
        if not isinstance(install_dir, str) or not install_dir:
            changed = changed or install_dir is not None
            install_dir = default_dir

        registry_url = _pick(raw, "registry_url", "registryUrl")
        if not isinstance(registry_url, str) or not registry_url.startswith(("http://", "https://")):
            changed = changed or registry_url is not None
            registry_url = DEFAULT_REGISTRY_URL

        enabled = True
        device_id = None
        telemetry = raw.get("telemetry")
        if isinstance(telemetry, dict):
            if isinstance(telemetry.get("enabled"), bool):
                enabled = telemetry["enabled"]
            elif "enabled" in telemetry:
                changed = True
            candidate = _pick(telemetry, "device_id", "deviceId")
            if is_valid_device_id(candidate):
                device_id = candidate
        elif telemetry is not None:
            changed = True

        if device_id is None:
            device_id = str(uuid.uuid4())
            changed = True

        config = VettConfig(
            schema_version=CONFIG_SCHEMA_VERSION,
            registry_url=registry_url,
            install_dir=install_dir,
            telemetry=TelemetryConfig(enabled=enabled, device_id=device_id),
        )
        return config, legacy, changed

    def _write_config(self, config: VettConfig) -> None:
        content = yaml.safe_dump(config.model_dump(mode="json"), sort_keys=False)
        write_atomic(self.config_path, content)

    def load_config(self) -> VettConfig:
        """Load config.yaml, repairing and migrating it when needed.

        A legacy ``installed_skills`` list embedded in the configuration is
        moved into index.json the first time the index does not exist.
        """
        with self._lock(self.config_path):
            raw = self._read_config_raw()
            config, legacy, changed = self._normalize_config(raw)
            if legacy is not None and not self.index_path.exists():
                self._migrate_legacy(legacy)
            if changed or not self.config_path.exists():
                self._write_config(config)
        return config

    def save_config(self, config: VettConfig) -> None:
        with self._lock(self.config_path):
            self._write_config(config)

    def _migrate_legacy(self, legacy: list[Any]) -> None:
        skills = _parse_skills(legacy)
        logger.info(f"Migrating {len(skills)} installed skills from config.yaml to index.json")
        with self._lock(self.index_path):
            if not self.index_path.exists():
                self._write_index(VettIndex(installed_skills=skills))

    # --- install index ---

    def _read_index(self) -> VettIndex:
        if not self.index_path.exists():
            return VettIndex()
        try:
            raw = json.loads(self.index_path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Could not read {self.index_path}, starting empty: {e}")
            return VettIndex()
        if not isinstance(raw, dict):
            return VettIndex()
        skills = _pick(raw, "installed_skills", "installedSkills")
        return VettIndex(installed_skills=_parse_skills(skills if isinstance(skills, list) else []))

    def _write_index(self, index: VettIndex) -> None:
        index.schema_version = INDEX_SCHEMA_VERSION
        write_atomic(self.index_path, json.dumps(index.model_dump(mode="json"), indent=2) + "\n")

    def load_index(self) -> VettIndex:
        """Load index.json, migrating a legacy list out of config.yaml if it is absent."""
        if not self.index_path.exists():
            with self._lock(self.config_path):
                config, legacy, _ = self._normalize_config(self._read_config_raw())
                if legacy is not None:
                    self._migrate_legacy(legacy)
                    self._write_config(config)
        with self._lock(self.index_path):
            return self._read_index()

    def save_index(self, index: VettIndex) -> None:
        with self._lock(self.index_path):
            self._write_index(index)

    def update_index(self, mutate: Callable[[VettIndex], None]) -> VettIndex:
        """Apply ``mutate`` to a freshly loaded index and save it, all under the lock."""
        self.load_index()
        with self._lock(self.index_path):
            index = self._read_index()
            mutate(index)
            self._write_index(index)
        return index

    def list_installed(self) -> list[InstalledSkill]:
        return self.load_index().installed_skills

    def add_installed_skill(self, skill: InstalledSkill) -> None:
        """Insert a record, replacing any existing one with the same owner/repo/name."""

        def mutate(index: VettIndex) -> None:
            for i, existing in enumerate(index.installed_skills):
                if existing.matches(skill.owner, skill.repo, skill.name):
                    index.installed_skills[i] = skill
                    return
            index.installed_skills.append(skill)

        self.update_index(mutate)

    def remove_installed_skill(self, owner: str, repo: str | None, name: str) -> None:
        def mutate(index: VettIndex) -> None:
            index.installed_skills = [
                s for s in index.installed_skills if not s.matches(owner, repo, name)
            ]

        self.update_index(mutate)

    def get_installed_skill(self, owner: str, repo: str | None, name: str) -> InstalledSkill | None:
        for skill in self.list_installed():
            if skill.matches(owner, repo, name):
                return skill
        return None

    def find_installed(self, ref: str) -> FindResult:
        """Find an installed skill by slug, ``owner/repo/name``, ``owner/name`` or bare ``name``.

        Slugs and full references match exactly. A bare name matches case-insensitively
        and may be ambiguous.
        """
        parts = ref.strip().split("/")
        if not all(parts):
            return FindResult(status="not_found")
        skills = self.list_installed()
        for skill in skills:
            if skill.slug is not None and skill.slug == ref.strip():
                return FindResult(status="found", skill=skill)

        if len(parts) in (2, 3):
            owner, name = parts[0], parts[-1]
            repo = parts[1] if len(parts) == 3 else None
            for skill in skills:
                if skill.matches(owner, repo, name):
                    return FindResult(status="found", skill=skill)
            return FindResult(status="not_found")
        if len(parts) != 1:
            return FindResult(status="not_found")

        wanted = parts[0].lower()
        matches = [s for s in skills if s.name.lower() == wanted]
        if not matches:
            return FindResult(status="not_found")
        if len(matches) > 1:
            return FindResult(status="ambiguous", matches=matches)
        return FindResult(status="found", skill=matches[0])
