"""The ``agents`` command."""

from __future__ import annotations

import click

from .utils import get_agent_registry, handle_errors, run_async


@click.command()
@click.option("--detected", is_flag=True, help="Only show agents found on this machine")
@click.pass_context
@handle_errors
def agents(ctx: click.Context, detected: bool) -> None:
    """List supported agents and their skill directories."""
    registry = get_agent_registry(ctx)
    found = set(run_async(registry.detect_installed()))

    for agent_id, agent in registry.items():
        if detected and agent_id not in found:
            continue
        marker = "*" if agent_id in found else " "
        global_dir = str(agent.global_skills_dir) if agent.global_skills_dir else "(project only)"
        click.echo(f"{marker} {agent_id:<16} {agent.display_name:<16} {agent.project_skills_dir:<22} {global_dir}")

    if not detected:
        click.echo(f"\n* detected ({len(found)} of {len(registry)})")
