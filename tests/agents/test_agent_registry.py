"""Tests for the agent registry."""

from pathlib import Path

import pytest

from vett.agents.registry import AgentConfig, AgentRegistry, build_default_registry

pytestmark = pytest.mark.unit


class TestAgentConfig:
    """Tests for AgentConfig validation."""

    @pytest.mark.parametrize("project_dir", ["/abs/skills", "../skills", ".x/../../skills", "\\skills"])
    def test_rejects_unsafe_project_dir(self, project_dir: str) -> None:
        with pytest.raises(ValueError, match="must be relative"):
            AgentConfig("bad", "Bad", project_dir)

    def test_rejects_relative_global_dir(self) -> None:
        with pytest.raises(ValueError, match="must be absolute"):
            AgentConfig("bad", "Bad", ".bad/skills", Path("relative/skills"))

    def test_supports_global(self, temp_dir: Path) -> None:
        assert AgentConfig("a", "A", ".a/skills", temp_dir / "skills").supports_global
        assert not AgentConfig("b", "B", ".b/skills").supports_global

    def test_detect_absolute_marker(self, temp_dir: Path) -> None:
        marker = temp_dir / ".tool"
        agent = AgentConfig("tool", "Tool", ".tool/skills", None, (marker,))

        assert not agent.detect_installed()
        marker.mkdir()
        assert agent.detect_installed()

    def test_detect_relative_marker_uses_cwd(self, temp_dir: Path) -> None:
        agent = AgentConfig("tool", "Tool", ".tool/skills", None, (Path(".tool"),))
        (temp_dir / ".tool").mkdir()

        assert agent.detect_installed(cwd=temp_dir)
        assert not agent.detect_installed(cwd=temp_dir / "elsewhere")


class TestAgentRegistry:
    """Tests for AgentRegistry."""

    def test_is_read_only_mapping(self, agent_registry: AgentRegistry) -> None:
        assert list(agent_registry) == ["claude-code", "cursor", "replit"]
        assert agent_registry["cursor"].display_name == "Cursor"
        with pytest.raises(TypeError):
            agent_registry["new"] = agent_registry["cursor"]  # type: ignore[index]

    def test_duplicate_ids(self) -> None:
        with pytest.raises(ValueError, match="Duplicate agent id"):
            AgentRegistry([AgentConfig("a", "A", ".a"), AgentConfig("a", "A2", ".a2")])

    def test_parse_agent_ids(self, agent_registry: AgentRegistry) -> None:
        valid, invalid = agent_registry.parse_agent_ids(
            [" Claude-Code ", "cursor", "CURSOR", "vim", "Emacs"]
        )

        assert valid == ["claude-code", "cursor"]
        assert invalid == ["vim", "Emacs"]

    def test_parse_agent_ids_empty(self, agent_registry: AgentRegistry) -> None:
        assert agent_registry.parse_agent_ids([]) == ([], [])

    @pytest.mark.asyncio
    async def test_detect_installed(self, agent_registry: AgentRegistry, agent_home: Path, temp_dir: Path) -> None:
        (agent_home / ".cursor").mkdir()
        (temp_dir / ".agent").mkdir()

        assert await agent_registry.detect_installed(cwd=temp_dir) == ["cursor", "replit"]

    @pytest.mark.asyncio
    async def test_detect_installed_skips_failing_marker_check(self, temp_dir: Path) -> None:
        class Exploding(AgentConfig):
            def detect_installed(self, cwd: Path | None = None) -> bool:
                raise PermissionError("denied")

        marker = temp_dir / ".ok"
        marker.mkdir()
        registry = AgentRegistry(
            [Exploding("boom", "Boom", ".boom"), AgentConfig("ok", "Ok", ".ok", None, (marker,))]
        )

        assert await registry.detect_installed() == ["ok"]


class TestDefaultRegistry:
    """Tests for build_default_registry."""

    def test_all_agents_present(self, temp_dir: Path) -> None:
        registry = build_default_registry(home=temp_dir, env={})

        assert len(registry) == 46
        assert {"claude-code", "cursor", "codex", "windsurf", "replit", "antigravity"} <= set(registry)

    def test_default_paths(self, temp_dir: Path) -> None:
        registry = build_default_registry(home=temp_dir, env={})

        assert registry["claude-code"].global_skills_dir == temp_dir / ".claude" / "skills"
        assert registry["codex"].global_skills_dir == temp_dir / ".codex" / "skills"
        assert registry["replit"].global_skills_dir is None

    def test_env_overrides(self, temp_dir: Path) -> None:
        env = {"CLAUDE_CONFIG_DIR": str(temp_dir / "claude-cfg"), "CODEX_HOME": str(temp_dir / "cx")}
        registry = build_default_registry(home=temp_dir, env=env)

        assert registry["claude-code"].global_skills_dir == temp_dir / "claude-cfg" / "skills"
        assert registry["codex"].global_skills_dir == temp_dir / "cx" / "skills"

    def test_blank_env_override_ignored(self, temp_dir: Path) -> None:
        registry = build_default_registry(home=temp_dir, env={"CODEX_HOME": "  "})
        assert registry["codex"].global_skills_dir == temp_dir / ".codex" / "skills"

    def test_every_project_dir_is_relative(self, temp_dir: Path) -> None:
        for agent in build_default_registry(home=temp_dir, env={}).values():
            assert not Path(agent.project_skills_dir).is_absolute()
            if agent.global_skills_dir is not None:
                assert agent.global_skills_dir.is_absolute()
