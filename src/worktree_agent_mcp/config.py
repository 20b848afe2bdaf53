from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from importlib import metadata as importlib_metadata

from worktree_agent.config_loader import load_config, require_project_root
from worktree_agent.config_schema import WorktreeAgentConfig

from .observability import log_debug


__all__ = [
    "SyncSettings",
    "get_logging_config",
    "get_sync_settings",
    "get_transport_config",
    "get_version",
]

DEFAULT_HTTP_HOST = "127.0.0.1"
DEFAULT_HTTP_PORT = 3000


@dataclass(frozen=True)
class SyncSettings:
    """Resolved configuration for one feature sync."""

    project_root: Path
    worktrees_dir: str = ".worktrees"
    base_branch: str = "main"
    remote: str = "origin"
    branch_prefix: str = "feature/"
    agent_command: str = "claude"
    agent_args: Tuple[str, ...] = ("--dangerously-skip-permissions",)

    @property
    def upstream(self) -> str:
        return f"{self.remote}/{self.base_branch}"

    @classmethod
    def from_config(cls, config: WorktreeAgentConfig) -> "SyncSettings":
        return cls(
            project_root=require_project_root(config),
            worktrees_dir=config.sync.worktrees_dir,
            base_branch=config.sync.base_branch,
            remote=config.sync.remote,
            branch_prefix=config.sync.branch_prefix,
            agent_command=config.agent.command,
            agent_args=tuple(config.agent.args),
        )


def get_sync_settings(project_path: Optional[Path] = None) -> SyncSettings:
    """Load configuration and resolve the settings a sync needs.

    Read fresh on every call so a changed environment takes effect without
    restarting the server.

    Raises:
        ConfigError: If the configuration is invalid or PROJECT_ROOT is unset
    """
    settings = SyncSettings.from_config(load_config(project_path))
    log_debug(
        "Resolved sync settings",
        project_root=str(settings.project_root),
        upstream=settings.upstream,
        agent=settings.agent_command,
    )
    return settings


def get_logging_config(project_path: Optional[Path] = None) -> Dict[str, Any]:
    """Get logging configuration as keyword arguments for ``configure_logging``.

    Environment variables override config file values.

    Raises:
        ConfigError: If the configuration is invalid
    """
    logging = load_config(project_path).logging
    return {
        "level": logging.level,
        "log_dir": logging.dir or None,
        "disable_file": logging.disable_file,
    }


def get_transport_config() -> Dict[str, Any]:
    """Get MCP transport configuration.

    Returns dict with keys: transport, host, port
    """
    return {
        "transport": os.getenv("WORKTREE_AGENT_MCP_TRANSPORT", "stdio").lower(),
        "host": os.getenv("WORKTREE_AGENT_MCP_HOST", DEFAULT_HTTP_HOST),
        "port": int(os.getenv("WORKTREE_AGENT_MCP_PORT", str(DEFAULT_HTTP_PORT))),
    }


def get_version() -> str:
    try:
        return importlib_metadata.version("claude-worktree-agent")
    except importlib_metadata.PackageNotFoundError:
        return os.getenv("WORKTREE_AGENT_MCP_VERSION", "0.0.0")
