"""
Drift detection and repair for recorded installations.

A scan compares every agent link recorded in the install index against the
filesystem. Repairs re-run the normal installer per (skill, agent) pair and
keep going past individual failures.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from vett.agents.registry import AgentRegistry
from vett.installer.links import SymlinkStatus, check_symlink_status, get_agent_target_path, install_to_agent
from vett.storage.state import InstalledSkill, StateStore, VettIndex

logger = logging.getLogger(__name__)

HEALTHY_STATUSES = frozenset({SymlinkStatus.OK, SymlinkStatus.COPY})
DRIFT_STATUSES = frozenset({SymlinkStatus.MISSING, SymlinkStatus.BROKEN, SymlinkStatus.WRONG_TARGET})


@dataclass
class SyncIssue:
    """One drifted agent link."""

    skill: InstalledSkill
    agent_id: str
    status: SymlinkStatus
    path: Path


@dataclass
class SyncReport:
    issues: list[SyncIssue] = field(default_factory=list)
    new_agents: dict[str, list[str]] = field(default_factory=dict)
    skills: dict[str, InstalledSkill] = field(default_factory=dict)

    @property
    def in_sync(self) -> bool:
        return not self.issues and not self.new_agents


@dataclass
class RepairOutcome:
    skill_ref: str
    agent_id: str
    success: bool
    error: str | None = None
    added: bool = False


def _project_cwd(skill: InstalledSkill) -> Path | None:
    return Path(skill.project_dir) if skill.project_dir else None


def scan_installations(
    skills: Iterable[InstalledSkill],
    registry: AgentRegistry,
    detected_agents: Iterable[str] = (),
) -> SyncReport:
    """Check every recorded agent link and collect drift.

    Args:
        skills: Installed skills from the index
        registry: Agent registry used to compute expected paths
        detected_agents: Agents present on this machine, for add-new candidates

    Returns:
        SyncReport with drift issues and, per skill ref, detected agents the
        skill is not yet installed to
    """
    report = SyncReport()
    detected = list(detected_agents)

    for skill in skills:
        report.skills[skill.ref] = skill
        for agent_id in skill.agents:
            agent = registry.get(agent_id)
            if agent is None:
                logger.warning(f"Skipping unknown agent {agent_id!r} recorded for {skill.ref}")
                continue
            target = get_agent_target_path(skill.name, agent, skill.scope, _project_cwd(skill))
            if target is None:
                continue

            status = check_symlink_status(target.skill_dir, Path(skill.canonical_path))
            if status in HEALTHY_STATUSES:
                continue
            if status in DRIFT_STATUSES:
                report.issues.append(SyncIssue(skill, agent_id, status, target.skill_dir))
            else:
                raise ValueError(f"Unhandled link status: {status}")

        missing = [
            a
            for a in detected
            if a not in skill.agents
            and a in registry
            and get_agent_target_path(skill.name, registry[a], skill.scope, _project_cwd(skill)) is not None
        ]
        if missing:
            report.new_agents[skill.ref] = missing

    return report


async def repair_installations(
    report: SyncReport,
    registry: AgentRegistry,
    store: StateStore,
    add_new: bool = False,
) -> list[RepairOutcome]:
    """Repair drifted links and optionally install to newly detected agents.

    A skill whose canonical directory is gone cannot be repaired; each of its
    issues is reported as a failed outcome. Agents added successfully are
    recorded in the install index afterwards.
    """
    outcomes: list[RepairOutcome] = []

    for issue in report.issues:
        skill = issue.skill
        if not Path(skill.canonical_path).is_dir():
            outcomes.append(
                RepairOutcome(skill.ref, issue.agent_id, False, "canonical path missing")
            )
            continue
        result = await asyncio.to_thread(
            install_to_agent,
            Path(skill.canonical_path),
            skill.name,
            registry[issue.agent_id],
            skill.scope,
            _project_cwd(skill),
        )
        outcomes.append(RepairOutcome(skill.ref, issue.agent_id, result.success, result.error))

    if not add_new:
        return outcomes

    added: dict[str, list[str]] = {}
    for ref, agent_ids in report.new_agents.items():
        skill = report.skills[ref]
        if not Path(skill.canonical_path).is_dir():
            for agent_id in agent_ids:
                outcomes.append(RepairOutcome(ref, agent_id, False, "canonical path missing", added=True))
            continue
        for agent_id in agent_ids:
            result = await asyncio.to_thread(
                install_to_agent,
                Path(skill.canonical_path),
                skill.name,
                registry[agent_id],
                skill.scope,
                _project_cwd(skill),
            )
            outcomes.append(RepairOutcome(ref, agent_id, result.success, result.error, added=True))
            if result.success:
                added.setdefault(ref, []).append(agent_id)

    if added:

        def mutate(index: VettIndex) -> None:
            for record in index.installed_skills:
                new_ids = added.get(record.ref)
                if new_ids:
                    record.agents = list(dict.fromkeys([*record.agents, *new_ids]))

        store.update_index(mutate)
        logger.info(f"Recorded new agents for {len(added)} skill(s)")

    return outcomes
