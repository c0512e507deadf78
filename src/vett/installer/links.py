"""
Fan-out installation of canonical skills into agent skill directories.

The canonical store holds the one real copy of each skill. Agents get a
relative symlink pointing at it, or a full copy where symlinks cannot be
created. Replacing an existing entry removes it first, so there is a brief
window in which the agent-side path does not exist.
"""

from __future__ import annotations

import asyncio
import errno
import logging
import os
import shutil
import sys
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Literal, NamedTuple

from vett.agents.registry import AgentConfig
from vett.errors import PathTraversalError
from vett.safety.names import sanitize_name
from vett.safety.paths import assert_within_base

logger = logging.getLogger(__name__)

Scope = Literal["global", "project"]
InstallMode = Literal["symlink", "copy"]


class SymlinkStatus(str, Enum):
    """State of an agent-side skill entry."""

    OK = "ok"
    MISSING = "missing"
    BROKEN = "broken"
    WRONG_TARGET = "wrong_target"
    COPY = "copy"


class AgentTarget(NamedTuple):
    agent_base: Path
    skill_dir: Path


@dataclass
class InstallResult:
    """Outcome of installing one skill into one agent."""

    agent_id: str
    display_name: str
    path: str
    mode: InstallMode
    success: bool
    error: str | None = None


@dataclass
class RemoveResult:
    success: bool
    error: str | None = None


def get_agent_target_path(
    skill_name: str,
    agent: AgentConfig,
    scope: Scope = "global",
    cwd: Path | None = None,
) -> AgentTarget | None:
    """Compute where ``skill_name`` lives for ``agent``.

    Returns:
        The agent's skills directory and the skill directory inside it, or
        None when the agent has no global directory and ``scope`` is global
    """
    if scope == "global":
        if agent.global_skills_dir is None:
            return None
        agent_base = agent.global_skills_dir
    else:
        agent_base = (cwd or Path.cwd()) / agent.project_skills_dir

    return AgentTarget(agent_base, agent_base / sanitize_name(skill_name))


def _resolve_link(link_path: Path) -> str:
    """Resolve a symlink's target relative to the directory it lives in."""
    target = os.readlink(link_path)
    return os.path.realpath(os.path.join(os.path.dirname(link_path), target))


def _remove_entry(path: Path) -> None:
    """Remove whatever sits at ``path``: link, file or directory tree."""
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


def _create_symlink(target: Path, link_path: Path) -> bool:
    """Point ``link_path`` at ``target`` with a relative symlink.

    On Windows the link is created as a directory symlink, which needs
    Developer Mode or elevation. No junction is attempted: when the symlink
    cannot be created the caller copies the directory instead.

    Returns:
        True if the link is in place (created or already correct), False if
        the caller should fall back to copying
    """
    try:
        resolved_target = os.path.realpath(target)
        if resolved_target == os.path.realpath(link_path) and not link_path.is_symlink():
            # link path is the canonical directory itself
            return True

        try:
            if link_path.is_symlink():
                if _resolve_link(link_path) == resolved_target:
                    return True
                link_path.unlink()
            elif link_path.exists():
                _remove_entry(link_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            if e.errno != errno.ELOOP:
                raise
            try:
                os.unlink(link_path)
            except OSError:
                logger.debug(f"Could not remove looping link at {link_path}")

        link_dir = link_path.parent
        link_dir.mkdir(parents=True, exist_ok=True)
        relative = os.path.relpath(resolved_target, os.path.realpath(link_dir))
        os.symlink(relative, link_path, target_is_directory=sys.platform == "win32")
        return True
    except OSError as e:
        logger.debug(f"Symlink creation failed for {link_path}: {e}")
        return False


def install_to_agent(
    canonical_path: Path,
    skill_name: str,
    agent: AgentConfig,
    scope: Scope = "global",
    cwd: Path | None = None,
) -> InstallResult:
    """Install one canonical skill into one agent's skills directory.

    Tries a relative symlink first and falls back to a recursive copy.
    Safe to call repeatedly with the same arguments.

    Args:
        canonical_path: Skill directory in the canonical store
        skill_name: Display name, sanitized into the directory name
        agent: Target agent
        scope: ``global`` for the agent's home directory, ``project`` for ``cwd``
        cwd: Project root for project scope

    Returns:
        InstallResult describing what happened; failures are reported, not raised
    """
    target = get_agent_target_path(skill_name, agent, scope, cwd)
    if target is None:
        return InstallResult(
            agent_id=agent.id,
            display_name=agent.display_name,
            path="",
            mode="symlink",
            success=False,
            error=f"{agent.display_name} does not support global skill installation",
        )

    agent_base, skill_dir = target
    try:
        assert_within_base(agent_base, skill_dir, follow_symlinks=False)
    except PathTraversalError:
        return InstallResult(
            agent_id=agent.id,
            display_name=agent.display_name,
            path=str(skill_dir),
            mode="symlink",
            success=False,
            error="Invalid skill name: potential path traversal detected",
        )

    try:
        agent_base.mkdir(parents=True, exist_ok=True)

        if _create_symlink(canonical_path, skill_dir):
            return InstallResult(
                agent_id=agent.id,
                display_name=agent.display_name,
                path=str(skill_dir),
                mode="symlink",
                success=True,
            )

        if skill_dir.is_symlink() or skill_dir.exists():
            _remove_entry(skill_dir)
        shutil.copytree(canonical_path, skill_dir)
        return InstallResult(
            agent_id=agent.id,
            display_name=agent.display_name,
            path=str(skill_dir),
            mode="copy",
            success=True,
        )
    except OSError as e:
        logger.error(f"Failed to install {skill_name} to {agent.id}: {e}")
        return InstallResult(
            agent_id=agent.id,
            display_name=agent.display_name,
            path=str(skill_dir),
            mode="symlink",
            success=False,
            error=str(e),
        )


async def install_to_agents(
    canonical_path: Path,
    skill_name: str,
    agents: Iterable[AgentConfig],
    scope: Scope = "global",
    cwd: Path | None = None,
) -> list[InstallResult]:
    """Install into several agents concurrently.

    Agents that share a skills directory are installed one after another so
    they never race on the same path. Results keep the order of ``agents``.
    """
    agents = list(agents)
    groups: dict[str, list[int]] = {}
    for i, agent in enumerate(agents):
        target = get_agent_target_path(skill_name, agent, scope, cwd)
        key = os.path.abspath(target.skill_dir) if target else f"unsupported:{agent.id}"
        groups.setdefault(key, []).append(i)

    def run_group(indexes: list[int]) -> list[tuple[int, InstallResult]]:
        return [
            (i, install_to_agent(canonical_path, skill_name, agents[i], scope, cwd)) for i in indexes
        ]

    batches = await asyncio.gather(
        *(asyncio.to_thread(run_group, indexes) for indexes in groups.values())
    )

    results: list[InstallResult | None] = [None] * len(agents)
    for batch in batches:
        for i, result in batch:
            results[i] = result
    return [r for r in results if r is not None]


def remove_from_agent(
    skill_name: str,
    agent: AgentConfig,
    scope: Scope = "global",
    cwd: Path | None = None,
) -> RemoveResult:
    """Remove a skill's entry from one agent. Missing entries count as removed."""
    target = get_agent_target_path(skill_name, agent, scope, cwd)
    if target is None:
        return RemoveResult(success=True)

    agent_base, skill_dir = target
    try:
        assert_within_base(agent_base, skill_dir, follow_symlinks=False)
    except PathTraversalError:
        return RemoveResult(success=False, error="Invalid skill name")

    try:
        _remove_entry(skill_dir)
    except FileNotFoundError:
        pass
    except OSError as e:
        return RemoveResult(success=False, error=str(e))
    return RemoveResult(success=True)


def check_symlink_status(link_path: Path, expected_target: Path) -> SymlinkStatus:
    """Classify the entry at ``link_path`` against the expected canonical target.

    A real directory is ``COPY``, which is an accepted install mode.
    """
    try:
        is_link = link_path.is_symlink()
        if not is_link and not os.path.lexists(link_path):
            return SymlinkStatus.MISSING
        if not is_link:
            return SymlinkStatus.COPY
        resolved = _resolve_link(link_path)
    except OSError:
        return SymlinkStatus.MISSING

    if resolved != os.path.realpath(expected_target):
        return SymlinkStatus.WRONG_TARGET
    if not os.path.exists(resolved):
        return SymlinkStatus.BROKEN
    return SymlinkStatus.OK
