"""
Install and removal pipeline.

Installation runs in a fixed order, and nothing touches the disk until the
artifact has been hash-checked, parsed and signature-verified:

1. resolve the source to a registry skill version
2. download the artifact (https only, SHA-256 checked)
3. parse and bound-check the manifest
4. verify the signature over the downloaded bytes
5. write the canonical store directory
6. link the skill into each target agent
7. record the installation in the index
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from vett.agents.registry import AgentRegistry
from vett.config.app import Settings
from vett.errors import (
    AlreadyInstalledError,
    PathTraversalError,
    RegistryError,
    RiskRefusedError,
    SkillNotFoundError,
    SymlinkTraversalError,
    UpgradeRequiredError,
    VettError,
)
from vett.installer.links import InstallResult, Scope, install_to_agents, remove_from_agent
from vett.registry.client import RegistryClient
from vett.registry.schemas import (
    ApiJob,
    ApiSkillDetail,
    ApiSkillVersion,
    ResolveNotFound,
    ResolveProcessing,
    ResolveReady,
)
from vett.safety.paths import assert_no_symlink_components, assert_within_base, is_path_safe
from vett.signing.verifier import SignatureMeta, SignatureVerifier
from vett.skills.identity import SkillIdentity, parse_skill_ref, parse_source
from vett.skills.manifest import parse_manifest, replace_skill_directory
from vett.storage.state import InstalledSkill, StateStore

logger = logging.getLogger(__name__)

# Ingestion can report complete slightly before the skill is queryable
DETAIL_RETRY_ATTEMPTS = 20
DETAIL_RETRY_DELAY = 0.5


@dataclass
class InstallRequest:
    """What to install and where."""

    source: str
    version: str | None = None
    agent_ids: list[str] | None = None
    scope: Scope = "global"
    cwd: Path | None = None
    force: bool = False
    accept_risk: bool = False


@dataclass
class ResolvedSkill:
    detail: ApiSkillDetail
    version: ApiSkillVersion
    identity: SkillIdentity | None = None

    @property
    def ref(self) -> str:
        return "/".join(p for p in (self.detail.owner, self.detail.repo, self.detail.name) if p)


@dataclass
class InstallOutcome:
    skill: InstalledSkill
    resolved: ResolvedSkill
    signature_mode: str
    results: list[InstallResult] = field(default_factory=list)
    invalid_agents: list[str] = field(default_factory=list)

    @property
    def failed(self) -> list[InstallResult]:
        return [r for r in self.results if not r.success]


@dataclass
class UpdateOutcome:
    """Result of checking one installed skill against the registry's newest version."""

    skill: InstalledSkill
    status: Literal["updated", "up_to_date", "not_found", "no_versions", "failed"]
    latest_version: str | None = None
    error: str | None = None
    installed: InstallOutcome | None = None

    @property
    def slug(self) -> str:
        return self.skill.slug or self.skill.ref


@dataclass
class RemoveOutcome:
    skill: InstalledSkill
    agent_errors: dict[str, str] = field(default_factory=dict)
    canonical_removed: bool = False


def canonical_skill_dir(install_root: Path, owner: str, repo: str | None, name: str) -> Path:
    """Return ``install_root/owner/[repo/]name`` after checking every segment.

    Raises:
        PathTraversalError: If a segment is unsafe or the result leaves the root
    """
    segments = [owner, repo, name] if repo else [owner, name]
    for segment in segments:
        if not is_path_safe(segment):
            raise PathTraversalError("Path traversal detected: unsafe skill path segment")
    relative = "/".join(segments)
    skill_dir = assert_within_base(install_root, relative)
    assert_no_symlink_components(install_root, relative)
    return skill_dir


def risk_verdict(risk: str | None) -> str:
    """Map a registry risk level to ``verified``, ``review``, ``caution`` or ``blocked``."""
    if risk in (None, "none", "low"):
        return "verified"
    if risk == "medium":
        return "review"
    if risk == "high":
        return "caution"
    return "blocked"


class SkillInstaller:
    """Orchestrates install and removal against one set of collaborators."""

    def __init__(
        self,
        settings: Settings,
        client: RegistryClient,
        verifier: SignatureVerifier,
        store: StateStore,
        registry: AgentRegistry,
    ) -> None:
        self.settings = settings
        self.client = client
        self.verifier = verifier
        self.store = store
        self.registry = registry

    async def _detail_after_job(self, slug: str) -> ApiSkillDetail:
        for attempt in range(DETAIL_RETRY_ATTEMPTS):
            detail = await self.client.get_detail(slug)
            if detail is not None and detail.versions:
                return detail
            if attempt < DETAIL_RETRY_ATTEMPTS - 1:
                await asyncio.sleep(DETAIL_RETRY_DELAY)
        raise SkillNotFoundError("Skill not found in registry after analysis completed")

    async def resolve(
        self,
        source: str,
        version: str | None = None,
        on_progress: Callable[[ApiJob], None] | None = None,
    ) -> ResolvedSkill:
        """Resolve a ref or URL to a registry skill and version.

        Raises:
            InvalidSourceError: If ``source`` is not a ref and cannot be parsed
            SkillNotFoundError: If the registry has no such skill or version
        """
        identity: SkillIdentity | None = None
        ref = parse_skill_ref(source)

        if ref is not None:
            version = version or ref.version
            detail = await self.client.get_detail(ref.slug)
            if detail is None:
                raise SkillNotFoundError(f"Skill not found: {ref.slug}")
        else:
            identity = parse_source(source, registry_hosts=self.settings.registry_hosts)
            result = await self.client.resolve(source.strip(), version)
            if isinstance(result, ResolveNotFound):
                raise SkillNotFoundError(result.message)
            if isinstance(result, ResolveProcessing):
                job = await self.client.wait_for_job(result.job_id, on_progress=on_progress)
                if job.status == "failed":
                    raise RegistryError(f"Analysis failed: {job.error or 'unknown error'}")
                slug = result.slug or job.slug
                if not slug:
                    raise SkillNotFoundError("Registry did not report a slug for the analyzed skill")
                detail = await self._detail_after_job(slug)
            elif isinstance(result, ResolveReady):
                detail = result.skill
            else:
                raise TypeError(f"Unhandled resolve result: {type(result).__name__}")

            if identity.skill and identity.skill != detail.name.lower():
                logger.info(f"Registry identity differs from source ({identity.id}); using registry record")

        selected = detail.select_version(version)
        if selected is None:
            if version:
                raise SkillNotFoundError(f"Version {version} not found in registry")
            raise SkillNotFoundError("No versions available for this skill")
        return ResolvedSkill(detail=detail, version=selected, identity=identity)

    def _check_risk(self, resolved: ResolvedSkill, accept_risk: bool) -> None:
        risk = resolved.version.risk
        verdict = risk_verdict(risk)
        if verdict == "blocked":
            raise RiskRefusedError(str(risk), "Installation refused: potential malicious behavior detected")
        if verdict == "caution" and not accept_risk:
            raise RiskRefusedError(
                str(risk),
                "This skill has significant security concerns; pass --yes to install anyway",
            )

    async def install(
        self,
        request: InstallRequest,
        on_progress: Callable[[ApiJob], None] | None = None,
    ) -> InstallOutcome:
        """Install a skill end to end.

        Raises:
            VettError: Any resolution, download, validation or signature error;
                in those cases nothing has been written
        """
        resolved = await self.resolve(request.source, request.version, on_progress)
        detail, version = resolved.detail, resolved.version

        existing = self.store.get_installed_skill(detail.owner, detail.repo, detail.name)
        if existing is not None and not request.force:
            raise AlreadyInstalledError(resolved.ref, existing.version)
        self._check_risk(resolved, request.accept_risk)

        artifact_url = version.artifact_url or self.client.artifact_url_for(detail.slug, version.version)
        data = await self.client.download_artifact(artifact_url, version.hash)
        manifest = parse_manifest(data)
        signature_mode = await self.verifier.verify(data, SignatureMeta.from_version(version))

        install_root = self.settings.install_dir
        skill_dir = canonical_skill_dir(install_root, detail.owner, detail.repo, detail.name)
        await asyncio.to_thread(replace_skill_directory, manifest, skill_dir)
        logger.info(f"Installed {resolved.ref}@{version.version} to {skill_dir}")

        invalid: list[str] = []
        if request.agent_ids is None:
            agent_ids = await self.registry.detect_installed(request.cwd)
        else:
            agent_ids, invalid = self.registry.parse_agent_ids(request.agent_ids)

        results = await install_to_agents(
            skill_dir,
            detail.name,
            [self.registry[a] for a in agent_ids],
            request.scope,
            request.cwd,
        )

        record = InstalledSkill(
            owner=detail.owner,
            repo=detail.repo,
            name=detail.name,
            version=version.version,
            canonical_path=str(skill_dir),
            agents=[r.agent_id for r in results if r.success],
            scope=request.scope,
            project_dir=str(request.cwd or Path.cwd()) if request.scope == "project" else None,
            slug=detail.slug,
        )
        self.store.add_installed_skill(record)

        return InstallOutcome(
            skill=record,
            resolved=resolved,
            signature_mode=signature_mode,
            results=results,
            invalid_agents=invalid,
        )

    def _remove_canonical(self, skill: InstalledSkill) -> bool:
        install_root = self.settings.install_dir.resolve()
        try:
            target = assert_within_base(install_root, Path(skill.canonical_path), follow_symlinks=False)
            # rmtree follows links in parent components; refuse any between root and target
            parents = target.relative_to(install_root).parent.as_posix()
            assert_no_symlink_components(install_root, parents)
        except (PathTraversalError, SymlinkTraversalError):
            logger.warning(f"Not removing {skill.ref}: canonical path is outside the install root")
            return False
        if target == install_root or not os.path.lexists(target):
            return False

        if target.is_symlink():
            target.unlink()
        else:
            try:
                assert_within_base(install_root, target)
            except PathTraversalError:
                logger.warning(f"Not removing {skill.ref}: canonical path resolves outside the install root")
                return False
            shutil.rmtree(target)

        parent = target.parent
        while parent != install_root and parent.is_relative_to(install_root):
            try:
                parent.rmdir()
            except OSError:
                break
            parent = parent.parent
        return True

    async def uninstall(self, skill: InstalledSkill) -> RemoveOutcome:
        """Remove a skill's agent links, its canonical directory and its index record."""
        outcome = RemoveOutcome(skill=skill)
        cwd = Path(skill.project_dir) if skill.project_dir else None

        for agent_id in skill.agents:
            agent = self.registry.get(agent_id)
            if agent is None:
                continue
            result = await asyncio.to_thread(remove_from_agent, skill.name, agent, skill.scope, cwd)
            if not result.success:
                outcome.agent_errors[agent_id] = result.error or "unknown error"

        outcome.canonical_removed = await asyncio.to_thread(self._remove_canonical, skill)
        self.store.remove_installed_skill(skill.owner, skill.repo, skill.name)
        return outcome

    async def update(self, skill: InstalledSkill) -> UpdateOutcome:
        """Reinstall ``skill`` when the registry's newest version differs from the installed one.

        The reinstall keeps the recorded agents and scope, and accepts the
        risk level the way an explicit ``--force --yes`` install would.
        Failures are reported in the outcome; an upgrade-required response
        propagates so the caller stops checking further skills.
        """
        slug = skill.slug or skill.ref
        try:
            detail = await self.client.get_detail(slug)
            if detail is None:
                return UpdateOutcome(skill=skill, status="not_found")
            latest = detail.select_version()
            if latest is None:
                return UpdateOutcome(skill=skill, status="no_versions")
            if latest.version == skill.version:
                return UpdateOutcome(skill=skill, status="up_to_date", latest_version=latest.version)

            logger.info(f"Updating {slug}: {skill.version} -> {latest.version}")
            installed = await self.install(
                InstallRequest(
                    source=slug,
                    version=latest.version,
                    agent_ids=skill.agents or None,
                    scope=skill.scope,
                    cwd=Path(skill.project_dir) if skill.project_dir else None,
                    force=True,
                    accept_risk=True,
                )
            )
        except UpgradeRequiredError:
            raise
        except VettError as e:
            logger.debug(f"Update of {slug} failed", exc_info=True)
            return UpdateOutcome(skill=skill, status="failed", error=str(e))

        return UpdateOutcome(
            skill=skill, status="updated", latest_version=latest.version, installed=installed
        )
