"""
Configuration for the vett CLI.

The persisted configuration lives in ``~/.vett/config.yaml``. Each run
resolves one immutable :class:`Settings` value with the hierarchy
environment > config.yaml > defaults, and passes it explicitly to the
components that need it.
"""

from __future__ import annotations

import logging
import os
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field, field_validator

from vett.skills.identity import DEFAULT_REGISTRY_HOSTS

if TYPE_CHECKING:
    from vett.storage.state import StateStore

logger = logging.getLogger(__name__)

CONFIG_SCHEMA_VERSION = 1
DEFAULT_REGISTRY_URL = "https://vett.sh"

_TRUE_WORDS = frozenset({"1", "true", "yes", "y", "on"})
_FALSE_WORDS = frozenset({"0", "false", "no", "n", "off"})


def get_vett_home(env: Mapping[str, str] | None = None) -> Path:
    """Return the vett home directory (``VETT_HOME`` or ``~/.vett``)."""
    env = os.environ if env is None else env
    override = env.get("VETT_HOME", "").strip()
    if override:
        return Path(override).expanduser()
    return Path.home() / ".vett"


def parse_env_bool(value: str | None) -> bool | None:
    """Parse a boolean word such as ``yes`` or ``off``; None if unrecognised."""
    if not value:
        return None
    normalized = value.strip().lower()
    if normalized in _TRUE_WORDS:
        return True
    if normalized in _FALSE_WORDS:
        return False
    return None


def is_valid_device_id(value: object) -> bool:
    if not isinstance(value, str):
        return False
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return len(value) == 36


class TelemetryConfig(BaseModel):
    """Telemetry preferences."""

    enabled: bool = Field(
        default=True,
        description="Send anonymous usage events",
    )
    device_id: str | None = Field(
        default=None,
        description="Random per-device UUID attached to usage events",
    )


class VettConfig(BaseModel):
    """Persisted CLI configuration (config.yaml)."""

    schema_version: int = Field(
        default=CONFIG_SCHEMA_VERSION,
        description="Configuration document schema version",
    )
    registry_url: str = Field(
        default=DEFAULT_REGISTRY_URL,
        description="Base URL of the skill registry",
    )
    install_dir: str = Field(
        description="Root of the canonical skill store",
    )
    telemetry: TelemetryConfig = Field(
        default_factory=TelemetryConfig,
        description="Telemetry preferences",
    )

    @field_validator("registry_url")
    @classmethod
    def validate_registry_url(cls, v: str) -> str:
        """Validate the registry URL is http(s)."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("registry_url must start with http:// or https://")
        return v.rstrip("/")


@dataclass(frozen=True)
class Settings:
    """Effective settings for one CLI invocation."""

    home: Path
    registry_url: str
    install_dir: Path
    telemetry_enabled: bool
    device_id: str | None
    registry_hosts: tuple[str, ...] = DEFAULT_REGISTRY_HOSTS
    signing_key_override: tuple[str, str] | None = None


def resolve_settings(
    env: Mapping[str, str] | None = None,
    store: StateStore | None = None,
) -> Settings:
    """Resolve effective settings: environment, then config.yaml, then defaults.

    Args:
        env: Environment mapping (defaults to ``os.environ``)
        store: State store to read persisted configuration from

    Returns:
        Frozen Settings for this run
    """
    from vett.storage.state import StateStore

    env = os.environ if env is None else env
    store = store or StateStore(get_vett_home(env))
    config = store.load_config()

    registry_url = env.get("VETT_REGISTRY_URL", "").strip().rstrip("/") or config.registry_url
    install_dir = env.get("VETT_INSTALL_DIR", "").strip() or config.install_dir

    telemetry_enabled = parse_env_bool(env.get("VETT_TELEMETRY_ENABLED"))
    if telemetry_enabled is None:
        telemetry_enabled = config.telemetry.enabled

    hosts_env = env.get("VETT_REGISTRY_HOSTS", "")
    registry_hosts = tuple(h.strip().lower() for h in hosts_env.split(",") if h.strip())

    key_id = env.get("VETT_SIGNING_KEY_ID", "").strip()
    key_material = env.get("VETT_SIGNING_PUBLIC_KEY", "").strip()
    signing_key_override = (key_id, key_material) if key_id and key_material else None
    if bool(key_id) != bool(key_material):
        logger.warning("Ignoring signing key override: VETT_SIGNING_KEY_ID and VETT_SIGNING_PUBLIC_KEY must both be set")

    return Settings(
        home=store.home,
        registry_url=registry_url,
        install_dir=Path(install_dir).expanduser(),
        telemetry_enabled=telemetry_enabled,
        device_id=config.telemetry.device_id,
        registry_hosts=registry_hosts or DEFAULT_REGISTRY_HOSTS,
        signing_key_override=signing_key_override,
    )
