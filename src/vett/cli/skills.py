"""Skill commands: add, remove, update, list, sync and search."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import click

from vett.installer.pipeline import InstallRequest, SkillInstaller, UpdateOutcome
from vett.installer.sync import repair_installations, scan_installations
from vett.registry.schemas import ApiJob
from vett.storage.state import InstalledSkill, StateStore

from .utils import (
    get_agent_registry,
    get_client,
    get_installer,
    get_store,
    handle_errors,
    run_async,
)

logger = logging.getLogger(__name__)

_ISSUE_LABELS = {"missing": "missing", "broken": "broken", "wrong_target": "wrong target"}


def _echo_progress(job: ApiJob) -> None:
    click.echo(f"  analysis: {job.status}", err=True)


@click.command()
@click.argument("source")
@click.option("--agent", "-a", "agents", multiple=True, help="Target agent (repeatable)")
@click.option("--global/--project", "global_", default=True, help="Install scope (default: global)")
@click.option("--skill-version", help="Version to install (default: latest)")
@click.option("--force", "-f", is_flag=True, help="Replace an existing installation")
@click.option("--yes", "-y", is_flag=True, help="Install even when analysis flags high risk")
@click.pass_context
@handle_errors
def add(
    ctx: click.Context,
    source: str,
    agents: tuple[str, ...],
    global_: bool,
    skill_version: str | None,
    force: bool,
    yes: bool,
) -> None:
    """Install a skill from a registry ref (owner/repo/name[@version]) or URL."""
    installer = get_installer(ctx)
    request = InstallRequest(
        source=source,
        version=skill_version,
        agent_ids=list(agents) if agents else None,
        scope="global" if global_ else "project",
        cwd=Path.cwd(),
        force=force,
        accept_risk=yes,
    )
    outcome = run_async(installer.install(request, on_progress=_echo_progress))

    for invalid in outcome.invalid_agents:
        click.echo(f"Warning: unknown agent: {invalid}", err=True)
    for failed in outcome.failed:
        click.echo(f"Warning: {failed.display_name}: {failed.error}", err=True)

    skill = outcome.skill
    click.echo(f"Installed {skill.ref}@{skill.version}")
    click.echo(f"  Canonical: {skill.canonical_path}")
    click.echo(f"  Signature: verified ({outcome.signature_mode})")

    succeeded = [r for r in outcome.results if r.success]
    if succeeded:
        names = ", ".join(
            f"{r.display_name} (copied)" if r.mode == "copy" else r.display_name for r in succeeded
        )
        click.echo(f"  Agents: {names} ({skill.scope})")
    else:
        click.echo("  No agents configured. Use -a <agent> to target specific agents.")


def _find_or_exit(store: StateStore, ref: str) -> InstalledSkill:
    found = store.find_installed(ref)
    if found.status == "ambiguous":
        click.echo(f"'{ref}' matches several installed skills:", err=True)
        for match in found.matches:
            click.echo(f"  {match.ref}", err=True)
        click.echo("Use the full owner/repo/name reference.", err=True)
        sys.exit(1)
    if found.skill is None:
        click.echo(f"Skill not installed: {ref}", err=True)
        sys.exit(1)
    return found.skill


@click.command()
@click.argument("ref")
@click.pass_context
@handle_errors
def remove(ctx: click.Context, ref: str) -> None:
    """Remove an installed skill by owner/repo/name or name."""
    skill = _find_or_exit(get_store(ctx), ref)
    outcome = run_async(get_installer(ctx).uninstall(skill))
    for agent_id, error in outcome.agent_errors.items():
        click.echo(f"Warning: {agent_id}: {error}", err=True)
    click.echo(f"Removed {skill.ref}")


async def _update_skills(installer: SkillInstaller, skills: list[InstalledSkill]) -> list[UpdateOutcome]:
    return [await installer.update(skill) for skill in skills]


def _describe_update(outcome: UpdateOutcome) -> str:
    slug = outcome.slug
    if outcome.status == "updated":
        return f"{slug}: {outcome.skill.version} -> {outcome.latest_version}"
    if outcome.status == "up_to_date":
        return f"{slug}: up to date ({outcome.skill.version})"
    if outcome.status == "not_found":
        return f"{slug}: not found in registry"
    if outcome.status == "no_versions":
        return f"{slug}: no versions available"
    return f"{slug}: failed to update - {outcome.error}"


@click.command()
@click.argument("ref", required=False)
@click.pass_context
@handle_errors
def update(ctx: click.Context, ref: str | None) -> None:
    """Update an installed skill (by slug or name), or every installed skill, to its newest version."""
    store = get_store(ctx)
    if ref:
        skills = [_find_or_exit(store, ref)]
    else:
        skills = store.list_installed()
        if not skills:
            click.echo("No skills installed. Nothing to update.")
            return

    outcomes = run_async(_update_skills(get_installer(ctx), skills))
    for outcome in outcomes:
        click.echo(_describe_update(outcome), err=outcome.status == "failed")

    updated = sum(1 for o in outcomes if o.status == "updated")
    failed = sum(1 for o in outcomes if o.status == "failed")
    if updated:
        click.echo(f"Updated {updated} skill{'s' if updated != 1 else ''}.")
    elif not failed:
        click.echo("All skills are up to date.")
    if failed:
        sys.exit(1)


@click.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@handle_errors
def list_skills(ctx: click.Context, as_json: bool) -> None:
    """List installed skills."""
    skills = get_store(ctx).list_installed()

    if as_json:
        click.echo(json.dumps([s.model_dump(mode="json") for s in skills], indent=2))
        return
    if not skills:
        click.echo("No skills installed.")
        return

    for skill in skills:
        agents = ", ".join(skill.agents) or "no agents"
        click.echo(f"{skill.ref}@{skill.version} [{skill.scope}]")
        click.echo(f"  {agents}")


@click.command()
@click.option("--fix", is_flag=True, help="Repair drifted agent links")
@click.option("--add-new", is_flag=True, help="Also install to newly detected agents")
@click.pass_context
@handle_errors
def sync(ctx: click.Context, fix: bool, add_new: bool) -> None:
    """Check agent links of installed skills and optionally repair them."""
    store = get_store(ctx)
    registry = get_agent_registry(ctx)
    skills = store.list_installed()

    if not skills:
        click.echo("No skills installed. Nothing to sync.")
        return

    detected = run_async(registry.detect_installed()) if add_new else []
    report = scan_installations(skills, registry, detected)

    if report.in_sync:
        click.echo("All installations are in sync.")
        return

    if report.issues:
        count = len(report.issues)
        click.echo(f"Found {count} issue{'s' if count != 1 else ''}:")
        for issue in report.issues:
            agent = registry.get(issue.agent_id)
            name = agent.display_name if agent else issue.agent_id
            click.echo(f"  {issue.skill.name} -> {name}: {_ISSUE_LABELS[issue.status.value]}")

    if report.new_agents:
        click.echo(f"{len(report.new_agents)} skill(s) can be added to newly detected agents:")
        for ref, agent_ids in report.new_agents.items():
            click.echo(f"  {ref} -> {', '.join(agent_ids)}")

    if not fix:
        click.echo("Run 'vett sync --fix' to repair issues.")
        return

    outcomes = run_async(repair_installations(report, registry, store, add_new=add_new))
    fixed = sum(1 for o in outcomes if o.success)
    failed = [o for o in outcomes if not o.success]
    for outcome in failed:
        click.echo(f"Warning: could not fix {outcome.skill_ref} -> {outcome.agent_id}: {outcome.error}", err=True)
    click.echo(f"Fixed {fixed}, failed {len(failed)}.")
    if failed:
        sys.exit(1)


@click.command()
@click.argument("query", required=False)
@click.option("--limit", "-n", default=20, help="Max results")
@click.pass_context
@handle_errors
def search(ctx: click.Context, query: str | None, limit: int) -> None:
    """Search the registry."""
    results = run_async(get_client(ctx).search(query, limit=limit))
    if not results:
        click.echo("No skills found.")
        return

    for skill in results:
        latest = skill.latest_version
        version = f"@{latest.version}" if latest else ""
        risk = f" [risk: {latest.risk}]" if latest and latest.risk else ""
        click.echo(f"{skill.slug}{version}{risk}")
        if skill.description:
            click.echo(f"  {skill.description}")

