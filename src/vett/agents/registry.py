"""
Registry of supported AI coding agents.

Each agent has a project-relative skills directory, an optional global skills
directory and a set of marker paths whose presence means the agent is
installed. The registry is built once per run and never mutated.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from types import MappingProxyType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AgentConfig:
    """Skill directory conventions for one agent.

    Attributes:
        id: Stable identifier used on the command line and in the index
        display_name: Human-readable name
        project_skills_dir: Skills directory relative to a project root
        global_skills_dir: Absolute global skills directory, or None when the
            agent only supports project installs
        detect_paths: Marker paths; absolute paths are checked as-is, relative
            ones against the current working directory
    """

    id: str
    display_name: str
    project_skills_dir: str
    global_skills_dir: Path | None = None
    detect_paths: tuple[Path, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        rel = PurePosixPath(self.project_skills_dir)
        if rel.is_absolute() or self.project_skills_dir.startswith(("/", "\\")) or ".." in rel.parts:
            raise ValueError(f"project_skills_dir for {self.id} must be relative without '..'")
        if self.global_skills_dir is not None and not self.global_skills_dir.is_absolute():
            raise ValueError(f"global_skills_dir for {self.id} must be absolute")

    @property
    def supports_global(self) -> bool:
        return self.global_skills_dir is not None

    def detect_installed(self, cwd: Path | None = None) -> bool:
        """Return True if any marker path exists."""
        base = cwd or Path.cwd()
        for marker in self.detect_paths:
            candidate = marker if marker.is_absolute() else base / marker
            if candidate.exists():
                return True
        return False


class AgentRegistry(Mapping[str, AgentConfig]):
    """Read-only mapping of agent id to :class:`AgentConfig`."""

    def __init__(self, agents: Iterable[AgentConfig]) -> None:
        entries: dict[str, AgentConfig] = {}
        for agent in agents:
            if agent.id in entries:
                raise ValueError(f"Duplicate agent id: {agent.id}")
            entries[agent.id] = agent
        self._agents = MappingProxyType(entries)

    def __getitem__(self, key: str) -> AgentConfig:
        return self._agents[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._agents)

    def __len__(self) -> int:
        return len(self._agents)

    def parse_agent_ids(self, inputs: Iterable[str]) -> tuple[list[str], list[str]]:
        """Split user-supplied agent ids into known and unknown ones.

        Matching ignores case and surrounding whitespace. Unknown inputs are
        returned verbatim.

        Returns:
            Tuple of (valid ids, invalid inputs)
        """
        valid: list[str] = []
        invalid: list[str] = []
        for raw in inputs:
            normalized = raw.strip().lower()
            if normalized in self._agents:
                if normalized not in valid:
                    valid.append(normalized)
            else:
                invalid.append(raw)
        return valid, invalid

    async def detect_installed(self, cwd: Path | None = None) -> list[str]:
        """Check every agent concurrently and return the ids that are present."""
        agents = list(self._agents.values())
        results = await asyncio.gather(
            *(asyncio.to_thread(agent.detect_installed, cwd) for agent in agents),
            return_exceptions=True,
        )

        detected: list[str] = []
        for agent, result in zip(agents, results, strict=True):
            if isinstance(result, BaseException):
                logger.debug(f"Detection failed for {agent.id}: {result}")
                continue
            if result:
                detected.append(agent.id)
        return detected


def _env_dir(env: Mapping[str, str], name: str, default: Path) -> Path:
    value = env.get(name, "").strip()
    return Path(value).expanduser().absolute() if value else default


def build_default_registry(
    home: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> AgentRegistry:
    """Build the registry of all supported agents.

    Args:
        home: User home directory (defaults to ``Path.home()``)
        env: Environment for ``CLAUDE_CONFIG_DIR`` and ``CODEX_HOME`` overrides
    """
    home = home or Path.home()
    env = os.environ if env is None else env
    claude_home = _env_dir(env, "CLAUDE_CONFIG_DIR", home / ".claude")
    codex_home = _env_dir(env, "CODEX_HOME", home / ".codex")

    def agent(
        agent_id: str,
        display_name: str,
        project_dir: str,
        global_dir: Path | None,
        *markers: Path,
    ) -> AgentConfig:
        return AgentConfig(agent_id, display_name, project_dir, global_dir, tuple(markers))

    return AgentRegistry(
        [
            agent("claude-code", "Claude Code", ".claude/skills", claude_home / "skills", claude_home),
            agent("cursor", "Cursor", ".cursor/skills", home / ".cursor/skills", home / ".cursor"),
            agent(
                "codex", "Codex", ".codex/skills", codex_home / "skills", codex_home, Path("/etc/codex")
            ),
            agent(
                "windsurf",
                "Windsurf",
                ".windsurf/skills",
                home / ".codeium/windsurf/skills",
                home / ".codeium/windsurf",
            ),
            agent(
                "github-copilot",
                "GitHub Copilot",
                ".github/skills",
                home / ".copilot/skills",
                Path(".github"),
                home / ".copilot",
            ),
            agent("cline", "Cline", ".cline/skills", home / ".cline/skills", home / ".cline"),
            agent("roo", "Roo Code", ".roo/skills", home / ".roo/skills", home / ".roo"),
            agent("goose", "Goose", ".goose/skills", home / ".config/goose/skills", home / ".config/goose"),
            agent("amp", "Amp", ".agents/skills", home / ".config/agents/skills", home / ".config/amp"),
            agent(
                "continue",
                "Continue",
                ".continue/skills",
                home / ".continue/skills",
                Path(".continue"),
                home / ".continue",
            ),
            agent("zencoder", "Zencoder", ".zencoder/skills", home / ".zencoder/skills", home / ".zencoder"),
            agent("augment", "Augment", ".augment/rules", home / ".augment/rules", home / ".augment"),
            agent("kilo", "Kilo Code", ".kilocode/skills", home / ".kilocode/skills", home / ".kilocode"),
            agent("gemini-cli", "Gemini CLI", ".gemini/skills", home / ".gemini/skills", home / ".gemini"),
            agent("trae", "Trae", ".trae/skills", home / ".trae/skills", home / ".trae"),
            agent(
                "opencode",
                "OpenCode",
                ".opencode/skills",
                home / ".config/opencode/skills",
                home / ".config/opencode",
                claude_home / "skills",
            ),
            agent("aider", "Aider", ".aider/skills", home / ".aider/skills", home / ".aider"),
            agent("void", "Void", ".void/skills", home / ".void/skills", home / ".void"),
            agent("pear", "Pear", ".pear/skills", home / ".pear/skills", home / ".pear"),
            agent("junie", "Junie", ".junie/skills", home / ".junie/skills", home / ".junie"),
            agent("mux", "Mux", ".mux/skills", home / ".mux/skills", home / ".mux"),
            agent("qodo", "Qodo", ".qodo/skills", home / ".qodo/skills", home / ".qodo"),
            agent("replit", "Replit", ".agent/skills", None, Path(".agent")),
            agent("codeium", "Codeium", ".codeium/skills", home / ".codeium/skills", home / ".codeium"),
            agent("aide", "Aide", ".aide/skills", home / ".aide/skills", home / ".aide"),
            agent(
                "antigravity",
                "Antigravity",
                ".agent/skills",
                home / ".gemini/antigravity/global_skills",
                Path(".agent"),
                home / ".gemini/antigravity",
            ),
            agent(
                "openclaw",
                "OpenClaw",
                "skills",
                home / ".moltbot/skills",
                home / ".openclaw",
                home / ".clawdbot",
                home / ".moltbot",
            ),
            agent(
                "codebuddy",
                "CodeBuddy",
                ".codebuddy/skills",
                home / ".codebuddy/skills",
                Path(".codebuddy"),
                home / ".codebuddy",
            ),
            agent(
                "command-code",
                "Command Code",
                ".commandcode/skills",
                home / ".commandcode/skills",
                home / ".commandcode",
            ),
            agent("crush", "Crush", ".crush/skills", home / ".config/crush/skills", home / ".config/crush"),
            agent("droid", "Droid", ".factory/skills", home / ".factory/skills", home / ".factory"),
            agent("iflow-cli", "iFlow CLI", ".iflow/skills", home / ".iflow/skills", home / ".iflow"),
            agent(
                "kimi-cli", "Kimi Code CLI", ".agents/skills", home / ".config/agents/skills", home / ".kimi"
            ),
            agent("kiro-cli", "Kiro CLI", ".kiro/skills", home / ".kiro/skills", home / ".kiro"),
            agent("kode", "Kode", ".kode/skills", home / ".kode/skills", home / ".kode"),
            agent("mcpjam", "MCPJam", ".mcpjam/skills", home / ".mcpjam/skills", home / ".mcpjam"),
            agent("mistral-vibe", "Mistral Vibe", ".vibe/skills", home / ".vibe/skills", home / ".vibe"),
            agent(
                "openclaude",
                "OpenClaude IDE",
                ".openclaude/skills",
                home / ".openclaude/skills",
                home / ".openclaude",
                Path(".openclaude"),
            ),
            agent("openhands", "OpenHands", ".openhands/skills", home / ".openhands/skills", home / ".openhands"),
            agent("pi", "Pi", ".pi/skills", home / ".pi/agent/skills", home / ".pi/agent"),
            agent("qoder", "Qoder", ".qoder/skills", home / ".qoder/skills", home / ".qoder"),
            agent("qwen-code", "Qwen Code", ".qwen/skills", home / ".qwen/skills", home / ".qwen"),
            agent("trae-cn", "Trae CN", ".trae/skills", home / ".trae-cn/skills", home / ".trae-cn"),
            agent("neovate", "Neovate", ".neovate/skills", home / ".neovate/skills", home / ".neovate"),
            agent("pochi", "Pochi", ".pochi/skills", home / ".pochi/skills", home / ".pochi"),
            agent("adal", "AdaL", ".adal/skills", home / ".adal/skills", home / ".adal"),
        ]
    )
