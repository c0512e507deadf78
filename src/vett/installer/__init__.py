"""Installing skills into the canonical store and agent directories."""

from vett.installer.links import (
    AgentTarget,
    InstallResult,
    RemoveResult,
    SymlinkStatus,
    check_symlink_status,
    get_agent_target_path,
    install_to_agent,
    install_to_agents,
    remove_from_agent,
)

__all__ = [
    "AgentTarget",
    "InstallResult",
    "RemoveResult",
    "SymlinkStatus",
    "check_symlink_status",
    "get_agent_target_path",
    "install_to_agent",
    "install_to_agents",
    "remove_from_agent",
]
