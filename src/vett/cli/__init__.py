"""
vett CLI entry point.
"""

import os

import click

from vett import __version__
from vett.agents.registry import build_default_registry
from vett.config.app import get_vett_home, resolve_settings
from vett.storage.state import StateStore

from .agents import agents
from .skills import add, list_skills, remove, search, sync, update
from .utils import handle_errors, setup_logging


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.version_option(__version__, prog_name="vett")
@click.pass_context
@handle_errors
def cli(ctx: click.Context, verbose: bool) -> None:
    """vett - install signed, security-analyzed skills into AI coding agents."""
    setup_logging(verbose)

    # Store shared state in context for subcommands; callers may pre-seed it
    ctx.ensure_object(dict)
    if "store" not in ctx.obj:
        ctx.obj["store"] = StateStore(get_vett_home())
    if "settings" not in ctx.obj:
        ctx.obj["settings"] = resolve_settings(os.environ, ctx.obj["store"])
    if "agents" not in ctx.obj:
        ctx.obj["agents"] = build_default_registry(env=os.environ)


# Register commands
cli.add_command(add)
cli.add_command(remove)
cli.add_command(update)
cli.add_command(list_skills)
cli.add_command(sync)
cli.add_command(agents)
cli.add_command(search)
