"""Configuration schema for the worktree agent.

Defines all configuration options with types, defaults, and validation.
Uses Pydantic for schema enforcement and clear error messages.
"""

from __future__ import annotations

import shlex
import warnings
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


DEFAULT_AGENT_COMMAND = "claude"
DEFAULT_AGENT_ARGS = ["--dangerously-skip-permissions"]


class AgentConfig(BaseModel):
    """External agent process used for conflict resolution."""

    command: str = Field(
        default=DEFAULT_AGENT_COMMAND,
        description="Executable for the autonomous agent (CLAUDE_COMMAND)",
    )
    args: List[str] = Field(
        default_factory=lambda: list(DEFAULT_AGENT_ARGS),
        description="Arguments passed to the agent (CLAUDE_ARGS)",
    )

    @field_validator("command")
    @classmethod
    def validate_command(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("agent command must not be empty")
        return v

    @field_validator("args", mode="before")
    @classmethod
    def split_args(cls, v):
        """Accept a space-separated string as well as a list."""
        if isinstance(v, str):
            return shlex.split(v)
        return v


class SyncConfig(BaseModel):
    """Feature sync behavior settings."""

    base_branch: str = Field(
        default="main",
        description="Upstream branch that features are rebased onto",
    )
    remote: str = Field(
        default="origin",
        description="Remote the base branch is fetched from",
    )
    branch_prefix: str = Field(
        default="feature/",
        description="Prefix for feature branch names",
    )
    worktrees_dir: str = Field(
        default=".worktrees",
        description="Directory (relative to project root) holding feature worktrees",
    )

    @field_validator("base_branch", "remote")
    @classmethod
    def validate_ref_part(cls, v: str) -> str:
        v = v.strip()
        if not v or v.startswith("-") or any(ch.isspace() for ch in v):
            raise ValueError(f"invalid git ref component: {v!r}")
        return v


class LoggingConfig(BaseModel):
    """Logging settings for the MCP server."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Log level",
    )
    dir: str = Field(
        default="",
        description="Log directory (empty = ~/.worktree-agent/logs)",
    )
    disable_file: bool = Field(
        default=False,
        description="Disable file logging (stderr only)",
    )

    @field_validator("level", mode="before")
    @classmethod
    def upper_level(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v


class WorktreeAgentConfig(BaseModel):
    """Root configuration model."""

    version: int = Field(
        default=1,
        ge=1,
        description="Config schema version",
    )
    project_root: Optional[str] = Field(
        default=None,
        description="Repository root holding the worktrees directory (PROJECT_ROOT)",
    )

    agent: AgentConfig = Field(default_factory=AgentConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("project_root")
    @classmethod
    def validate_project_root(cls, v: Optional[str]) -> Optional[str]:
        """Warn if the project root doesn't exist."""
        if v:
            path = Path(v).expanduser()
            if not path.exists():
                warnings.warn(
                    f"Project root does not exist: {v}",
                    UserWarning,
                )
        return v or None

    @classmethod
    def default(cls) -> "WorktreeAgentConfig":
        """Create config with all defaults."""
        return cls()
