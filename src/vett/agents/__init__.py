"""Supported AI coding agents and their skill directories."""

from vett.agents.registry import AgentConfig, AgentRegistry, build_default_registry

__all__ = ["AgentConfig", "AgentRegistry", "build_default_registry"]
