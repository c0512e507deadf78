"""Shared helpers for vett CLI commands."""

from __future__ import annotations

import asyncio
import functools
import logging
import sys
from collections.abc import Callable, Coroutine
from typing import Any, TypeVar

import click

from vett.agents.registry import AgentRegistry
from vett.config.app import Settings
from vett.errors import RateLimitedError, UpgradeRequiredError, VettError
from vett.installer.pipeline import SkillInstaller
from vett.registry.client import RegistryClient
from vett.signing.verifier import SignatureVerifier
from vett.storage.state import StateStore

logger = logging.getLogger(__name__)

EXIT_FAILURE = 1
EXIT_UPGRADE_REQUIRED = 3

T = TypeVar("T")


def setup_logging(verbose: bool = False) -> None:
    """
    Configure logging for CLI.

    Args:
        verbose: If True, enable DEBUG level logging
    """
    log_level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Silence noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def handle_errors(func: Callable[..., T]) -> Callable[..., T]:
    """Turn vett errors into a message on stderr and a non-zero exit.

    An upgrade-required response gets its own exit code and is handled
    before the generic error path.
    """

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return func(*args, **kwargs)
        except UpgradeRequiredError as e:
            click.echo(f"Error: {e}", err=True)
            click.echo("Upgrade with: pip install --upgrade vett", err=True)
            sys.exit(EXIT_UPGRADE_REQUIRED)
        except RateLimitedError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(EXIT_FAILURE)
        except VettError as e:
            logger.debug("Command failed", exc_info=True)
            click.echo(f"Error: {e}", err=True)
            sys.exit(EXIT_FAILURE)

    return wrapper


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    return asyncio.run(coro)


def get_settings(ctx: click.Context) -> Settings:
    settings: Settings = ctx.obj["settings"]
    return settings


def get_store(ctx: click.Context) -> StateStore:
    store: StateStore = ctx.obj["store"]
    return store


def get_agent_registry(ctx: click.Context) -> AgentRegistry:
    registry: AgentRegistry = ctx.obj["agents"]
    return registry


def get_client(ctx: click.Context) -> RegistryClient:
    if "client" not in ctx.obj:
        ctx.obj["client"] = RegistryClient(get_settings(ctx).registry_url)
    client: RegistryClient = ctx.obj["client"]
    return client


def get_installer(ctx: click.Context) -> SkillInstaller:
    settings = get_settings(ctx)
    client = get_client(ctx)
    verifier = SignatureVerifier(
        key_source=client.get_signing_keys,
        key_override=settings.signing_key_override,
    )
    return SkillInstaller(settings, client, verifier, get_store(ctx), get_agent_registry(ctx))
