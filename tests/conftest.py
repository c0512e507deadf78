"""Pytest configuration and shared fixtures for vett tests."""

import base64
import hashlib
import json
import tempfile
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from vett.agents.registry import AgentConfig, AgentRegistry
from vett.config.app import Settings
from vett.storage.state import StateStore

TEST_KEY_ID = "test-key-1"


@pytest.fixture
def temp_dir() -> Iterator[Path]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def vett_home(temp_dir: Path) -> Path:
    home = temp_dir / ".vett"
    home.mkdir()
    return home


@pytest.fixture
def store(vett_home: Path) -> StateStore:
    """Create a state store rooted in a temp vett home."""
    return StateStore(vett_home)


@pytest.fixture
def install_root(vett_home: Path) -> Path:
    root = vett_home / "skills"
    root.mkdir()
    return root


@pytest.fixture
def settings(vett_home: Path, install_root: Path) -> Settings:
    return Settings(
        home=vett_home,
        registry_url="https://registry.test",
        install_dir=install_root,
        telemetry_enabled=False,
        device_id=None,
    )


@pytest.fixture
def agent_home(temp_dir: Path) -> Path:
    home = temp_dir / "home"
    home.mkdir()
    return home


@pytest.fixture
def agent_registry(agent_home: Path) -> AgentRegistry:
    """A small registry: two global-capable agents and one project-only agent."""
    return AgentRegistry(
        [
            AgentConfig(
                "claude-code",
                "Claude Code",
                ".claude/skills",
                agent_home / ".claude/skills",
                (agent_home / ".claude",),
            ),
            AgentConfig(
                "cursor",
                "Cursor",
                ".cursor/skills",
                agent_home / ".cursor/skills",
                (agent_home / ".cursor",),
            ),
            AgentConfig("replit", "Replit", ".agent/skills", None, (Path(".agent"),)),
        ]
    )


@pytest.fixture
def signing_key() -> Ed25519PrivateKey:
    return Ed25519PrivateKey.generate()


@pytest.fixture
def public_key_b64(signing_key: Ed25519PrivateKey) -> str:
    raw = signing_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
    return base64.b64encode(raw).decode()


@pytest.fixture
def manifest_bytes() -> Callable[..., bytes]:
    """Factory for serialized skill manifests."""

    def _make(files: list[dict[str, Any]] | None = None, **extra: Any) -> bytes:
        manifest = {
            "schemaVersion": 1,
            "entryPoint": "SKILL.md",
            "files": files
            or [
                {"path": "SKILL.md", "content": "# Hello\n\nSay hello.\n"},
                {"path": "rules/style.md", "content": "Be brief.\n"},
            ],
        }
        manifest.update(extra)
        return json.dumps(manifest).encode("utf-8")

    return _make


@pytest.fixture
def sign_detached(signing_key: Ed25519PrivateKey) -> Callable[[bytes], dict[str, str]]:
    """Sign artifact bytes the way the registry does: Ed25519 over the raw SHA-256 digest."""

    def _sign(data: bytes) -> dict[str, str]:
        digest = hashlib.sha256(data).digest()
        return {
            "hash": digest.hex(),
            "signature": base64.b64encode(signing_key.sign(digest)).decode(),
            "keyId": TEST_KEY_ID,
        }

    return _sign


def _version_payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "version": "1.0.0",
        "hash": "a" * 64,
        "risk": "low",
        "analysis": None,
        "sigstoreBundle": None,
        "scanStatus": "completed",
    }
    payload.update(overrides)
    return payload


def _skill_payload(versions: list[dict[str, Any]] | None = None, **overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "slug": "acme/tools/hello",
        "owner": "acme",
        "repo": "tools",
        "name": "hello",
        "description": "Says hello",
        "installCount": 3,
        "versions": versions if versions is not None else [_version_payload()],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def version_payload() -> Callable[..., dict[str, Any]]:
    """Factory for registry skill-version records in wire (camelCase) form."""
    return _version_payload


@pytest.fixture
def skill_payload() -> Callable[..., dict[str, Any]]:
    """Factory for registry skill-detail records in wire (camelCase) form."""
    return _skill_payload
